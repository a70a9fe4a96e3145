"""
Stage 1: Market regime detection.

Classifies the daily series into trending, ranging or volatile regimes
from EMA alignment, ADX and the volatility index, and scores how
favourable the regime is for directional option buying.
"""

import logging
from dataclasses import dataclass

from config.constants import (
    MIN_TREND_BARS,
    Bias,
    MarketRegime,
    StageName,
    TrendDirection,
    VixCategory,
)
from scoring import indicators
from scoring.types import RegimeInput, StageResult
from utils.numerical_validation import clamp_score

logger = logging.getLogger(__name__)

PASS_SCORE = 50.0


def categorize_vix(vix: float) -> VixCategory:
    if vix < 15:
        return VixCategory.LOW
    if vix < 20:
        return VixCategory.MEDIUM
    if vix < 30:
        return VixCategory.HIGH
    return VixCategory.EXTREME


@dataclass(frozen=True)
class Trend:
    direction: TrendDirection
    strength: float


@dataclass(frozen=True)
class RegimeIndicators:
    adx: float
    ema20: float
    ema50: float
    ema200: float
    rsi: float
    macd: indicators.MACD

    def to_dict(self) -> dict:
        return {
            "adx": self.adx,
            "ema20": self.ema20,
            "ema50": self.ema50,
            "ema200": self.ema200,
            "rsi": self.rsi,
            "macd": {
                "value": self.macd.value,
                "signal": self.macd.signal,
                "histogram": self.macd.histogram,
            },
        }


class MarketRegimeScorer:
    """
    Regime classifier and scorer.

    Usage:
        >>> result = MarketRegimeScorer().evaluate(RegimeInput("NIFTY", 22000, 13.5, daily))
        >>> result.metrics["regime"]
        'TRENDING_BULLISH'
    """

    stage = StageName.REGIME

    def evaluate(self, stage_input: RegimeInput) -> StageResult:
        candles = stage_input.candles
        vix_category = categorize_vix(stage_input.vix_level)
        trend = self._detect_trend(candles)
        ind = self._indicators(candles)
        regime = self._classify(trend, vix_category, ind.adx)
        sentiment, sentiment_score = self._sentiment(trend, ind, stage_input.vix_level)
        score = self._score(regime, trend, vix_category, ind.adx)

        if len(candles) < MIN_TREND_BARS:
            logger.debug(
                f"{stage_input.symbol}: only {len(candles)} daily bars, trend treated as sideways"
            )

        return StageResult(
            stage=self.stage,
            score=score,
            passed=score >= PASS_SCORE,
            reason=self._explain(regime, trend, vix_category, score),
            metrics={
                "regime": regime.value,
                "regime_strength": self._regime_strength(regime, trend),
                "trend_direction": trend.direction.value,
                "trend_strength": trend.strength,
                "vix_level": stage_input.vix_level,
                "vix_category": vix_category.value,
                "market_sentiment": sentiment.value,
                "sentiment_score": sentiment_score,
                "indicators": ind.to_dict(),
                "key_levels": self._key_levels(candles),
            },
        )

    def _detect_trend(self, candles) -> Trend:
        if len(candles) < MIN_TREND_BARS:
            return Trend(TrendDirection.SIDEWAYS, 0.0)

        prices = indicators.closes(candles)
        ema20 = indicators.ema(prices, 20)
        ema50 = indicators.ema(prices, 50)
        price = float(prices[-1])

        direction = TrendDirection.SIDEWAYS
        if price > ema20 > ema50:
            direction = TrendDirection.UP
        elif price < ema20 < ema50:
            direction = TrendDirection.DOWN

        # ADX of 30 maps to full strength
        strength = min(100.0, indicators.adx(candles, 14) * 3.33)
        return Trend(direction, strength)

    def _indicators(self, candles) -> RegimeIndicators:
        prices = indicators.closes(candles)
        return RegimeIndicators(
            adx=indicators.adx(candles, 14),
            ema20=indicators.ema(prices, 20),
            ema50=indicators.ema(prices, 50),
            ema200=indicators.ema(prices, 200),
            rsi=indicators.rsi(prices, 14),
            macd=indicators.macd(prices),
        )

    def _classify(self, trend: Trend, vix: VixCategory, adx: float) -> MarketRegime:
        if vix is VixCategory.EXTREME or adx < 20:
            return MarketRegime.VOLATILE
        if trend.strength > 25:
            if trend.direction is TrendDirection.UP:
                return MarketRegime.TRENDING_BULLISH
            if trend.direction is TrendDirection.DOWN:
                return MarketRegime.TRENDING_BEARISH
        if adx < 25:
            return MarketRegime.RANGING
        return MarketRegime.UNCERTAIN

    def _sentiment(self, trend: Trend, ind: RegimeIndicators, vix: float) -> tuple[Bias, float]:
        points = 0.0

        if trend.direction is TrendDirection.UP:
            points += 30
        elif trend.direction is TrendDirection.DOWN:
            points -= 30

        if ind.rsi > 50:
            points += 20
        elif ind.rsi < 50:
            points -= 20

        if ind.macd.histogram > 0:
            points += 20
        elif ind.macd.histogram < 0:
            points -= 20

        if vix < 15:
            points += 15
        elif vix > 25:
            points -= 15

        if ind.ema20 > ind.ema50:
            points += 15
        elif ind.ema20 < ind.ema50:
            points -= 15

        if points > 20:
            return Bias.BULLISH, points
        if points < -20:
            return Bias.BEARISH, points
        return Bias.NEUTRAL, points

    def _regime_strength(self, regime: MarketRegime, trend: Trend) -> float:
        if regime in (MarketRegime.TRENDING_BULLISH, MarketRegime.TRENDING_BEARISH):
            return trend.strength
        if regime is MarketRegime.RANGING:
            return 100.0 - trend.strength
        return 50.0

    def _score(self, regime: MarketRegime, trend: Trend, vix: VixCategory, adx: float) -> float:
        score = 0.0

        if regime in (MarketRegime.TRENDING_BULLISH, MarketRegime.TRENDING_BEARISH):
            score += 40
        elif regime is MarketRegime.RANGING:
            score += 25
        elif regime is MarketRegime.VOLATILE:
            score += 10

        score += trend.strength * 0.3

        score += {
            VixCategory.LOW: 20,
            VixCategory.MEDIUM: 15,
            VixCategory.HIGH: 5,
            VixCategory.EXTREME: 0,
        }[vix]

        if adx > 25:
            score += 10
        elif adx > 20:
            score += 5

        return clamp_score(score, "regime_score")

    def _key_levels(self, candles) -> dict:
        if not candles:
            return {"support": [], "resistance": []}
        recent = list(candles)[-20:]
        recent_high = max(c.high for c in recent)
        recent_low = min(c.low for c in recent)
        return {
            "support": [recent_low * 0.99, recent_low * 0.98],
            "resistance": [recent_high * 1.01, recent_high * 1.02],
        }

    def _explain(self, regime: MarketRegime, trend: Trend, vix: VixCategory, score: float) -> str:
        reasons = [
            f"Market regime: {regime.value}",
            f"Trend: {trend.direction.value} with {trend.strength:.0f}% strength",
            f"VIX: {vix.value}",
        ]
        if score >= 70:
            reasons.append("Strong favorable conditions for trading")
        elif score >= 50:
            reasons.append("Moderate conditions, proceed with caution")
        elif score >= 30:
            reasons.append("Weak conditions, be selective")
        else:
            reasons.append("Unfavorable conditions, avoid trading")
        return ". ".join(reasons)
