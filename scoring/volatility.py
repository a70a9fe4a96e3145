"""
Stage 4: Volatility.

Compares the option's implied volatility with realised volatility and the
volatility-index history to judge whether options are cheap to buy.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from config.constants import (
    MIN_HV_CLOSES,
    OptionPricing,
    StageName,
    VixCategory,
    VolatilityRegime,
    VolatilityTrend,
)
from scoring import indicators
from scoring.regime import categorize_vix
from scoring.types import StageResult, VolatilityInput
from utils.numerical_validation import clamp_score

logger = logging.getLogger(__name__)

PASS_SCORE = 50.0


def vix_trend(history: Sequence[float]) -> VolatilityTrend:
    """Average of the last five readings versus the five before, with a 5 % band."""
    if len(history) < 5:
        return VolatilityTrend.STABLE
    values = np.asarray(history, dtype=np.float64)
    recent = values[-5:]
    older = values[-10:-5]
    if older.size == 0 or older.mean() == 0:
        return VolatilityTrend.STABLE

    change = (recent.mean() - older.mean()) / older.mean() * 100
    if change > 5:
        return VolatilityTrend.RISING
    if change < -5:
        return VolatilityTrend.FALLING
    return VolatilityTrend.STABLE


def iv_percentile(iv: float, history: Sequence[float]) -> float:
    """Share of the volatility-index history strictly below ``iv``, in percent."""
    if not history:
        return 50.0
    return sum(1 for v in history if v < iv) / len(history) * 100


def iv_rank(percentile: float) -> str:
    if percentile < 30:
        return "LOW"
    if percentile < 70:
        return "MEDIUM"
    return "HIGH"


def volatility_regime(ratio: Optional[float]) -> VolatilityRegime:
    if ratio is None:
        return VolatilityRegime.EXTREME
    if ratio < 0.9:
        return VolatilityRegime.COMPRESSED
    if ratio < 1.1:
        return VolatilityRegime.NORMAL
    if ratio < 1.3:
        return VolatilityRegime.ELEVATED
    return VolatilityRegime.EXTREME


def option_pricing(ratio: Optional[float], percentile: float) -> OptionPricing:
    if (ratio is not None and ratio < 0.9) or percentile < 25:
        return OptionPricing.CHEAP
    if ratio is None or ratio > 1.2 or percentile > 75:
        return OptionPricing.EXPENSIVE
    return OptionPricing.FAIR


STRIKE_SUGGESTIONS = {
    VolatilityRegime.COMPRESSED: "ATM or 1-2 strikes OTM (Delta 0.40-0.60)",
    VolatilityRegime.NORMAL: "ATM or 1-2 strikes OTM (Delta 0.40-0.60)",
    VolatilityRegime.ELEVATED: "2-3 strikes OTM (Delta 0.25-0.40)",
    VolatilityRegime.EXTREME: "3-5 strikes OTM (Delta 0.15-0.30) or avoid trading",
}


class VolatilityScorer:
    stage = StageName.VOLATILITY

    def evaluate(self, stage_input: VolatilityInput) -> StageResult:
        category = categorize_vix(stage_input.vix_current)
        trend = vix_trend(stage_input.vix_history)
        hv = indicators.historical_volatility(
            indicators.closes(stage_input.candles), min_points=MIN_HV_CLOSES
        )
        percentile = iv_percentile(stage_input.strike_iv, stage_input.vix_history)
        # No realised volatility means the ratio is undefined and treated as extreme
        ratio = stage_input.strike_iv / hv if hv > 0 else None
        regime = volatility_regime(ratio)
        pricing = option_pricing(ratio, percentile)

        if ratio is None:
            logger.debug(
                f"{stage_input.symbol}: historical volatility unavailable "
                f"({len(stage_input.candles)} closes), IV/HV ratio undefined"
            )

        score = self._score(category, trend, percentile, regime, pricing)

        return StageResult(
            stage=self.stage,
            score=score,
            passed=score >= PASS_SCORE,
            reason=self._explain(score, category, regime, pricing),
            metrics={
                "vix_level": stage_input.vix_current,
                "vix_category": category.value,
                "vix_trend": trend.value,
                "iv_percentile": percentile,
                "iv_rank": iv_rank(percentile),
                "historical_vol": hv,
                "implied_vol": stage_input.strike_iv,
                "atm_iv": stage_input.atm_iv,
                "iv_vs_hv_ratio": ratio,
                "vol_regime": regime.value,
                "option_pricing": pricing.value,
                "optimal_strike_suggestion": STRIKE_SUGGESTIONS[regime],
            },
        )

    def _score(
        self,
        category: VixCategory,
        trend: VolatilityTrend,
        percentile: float,
        regime: VolatilityRegime,
        pricing: OptionPricing,
    ) -> float:
        score = {
            VixCategory.LOW: 30,
            VixCategory.MEDIUM: 25,
            VixCategory.HIGH: 15,
            VixCategory.EXTREME: 5,
        }[category]

        score += {
            VolatilityTrend.FALLING: 15,
            VolatilityTrend.STABLE: 10,
            VolatilityTrend.RISING: 5,
        }[trend]

        if percentile < 25:
            score += 25
        elif percentile < 50:
            score += 20
        elif percentile < 75:
            score += 10
        else:
            score += 5

        score += {
            VolatilityRegime.COMPRESSED: 20,
            VolatilityRegime.NORMAL: 15,
            VolatilityRegime.ELEVATED: 5,
            VolatilityRegime.EXTREME: 0,
        }[regime]

        if pricing is OptionPricing.CHEAP:
            score += 10
        elif pricing is OptionPricing.FAIR:
            score += 5

        return clamp_score(score, "volatility_score")

    def _explain(self, score: float, category: VixCategory, regime: VolatilityRegime, pricing: OptionPricing) -> str:
        reasons = [
            f"VIX: {category.value}",
            f"Volatility regime: {regime.value}",
            f"Option pricing: {pricing.value}",
        ]
        if score >= 70:
            reasons.append("Excellent volatility conditions for option buying")
        elif score >= 50:
            reasons.append("Good volatility conditions")
        elif score >= 30:
            reasons.append("Fair volatility, be selective")
        else:
            reasons.append("Poor volatility conditions, options are expensive")
        return ". ".join(reasons)
