"""
Stage 5: Writer ratio, the mandatory gate.

For a call purchase, put writers must outnumber call writers by at least
the configured minimum ratio (2.5x by default); for a put purchase the
reverse. ``WriterRatioResult.gate_passed`` is the only value the
orchestrator uses to short-circuit the pipeline.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from config.constants import Bias, SignalDirection, StageName
from config.settings import WriterRatioConfig
from core.domain.entities import OptionStrike
from scoring.types import WriterRatioInput, WriterRatioResult
from utils.numerical_validation import clamp_score, safe_ratio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenInterestSummary:
    total_call_oi: float
    total_put_oi: float
    call_oi_change: float
    put_oi_change: float

    @classmethod
    def from_strikes(cls, strikes: Sequence[OptionStrike]) -> "OpenInterestSummary":
        return cls(
            total_call_oi=float(sum(s.call_oi for s in strikes)),
            total_put_oi=float(sum(s.put_oi for s in strikes)),
            call_oi_change=float(sum(s.call_oi_change for s in strikes)),
            put_oi_change=float(sum(s.put_oi_change for s in strikes)),
        )

    def to_dict(self) -> dict:
        return {
            "total_call_oi": self.total_call_oi,
            "total_put_oi": self.total_put_oi,
            "call_oi_change": self.call_oi_change,
            "put_oi_change": self.put_oi_change,
        }


def estimate_writers(strikes: Sequence[OptionStrike], atm_strike: float) -> tuple[float, float]:
    """
    Open interest attributed to fresh writing on each side.

    Call writers: call OI at or above ATM where call OI increased.
    Put writers: put OI at or below ATM where put OI increased.
    """
    call_writers = 0.0
    put_writers = 0.0
    for s in strikes:
        if s.strike >= atm_strike and s.call_oi_change > 0:
            call_writers += s.call_oi
        if s.strike <= atm_strike and s.put_oi_change > 0:
            put_writers += s.put_oi
    return call_writers, put_writers


def max_pain(strikes: Sequence[OptionStrike]) -> float:
    """Strike at which total intrinsic value paid out by writers is smallest."""
    if not strikes:
        return 0.0
    best_strike = strikes[0].strike
    min_pain = float("inf")
    for candidate in strikes:
        pain = 0.0
        for s in strikes:
            if s.strike < candidate.strike:
                pain += (candidate.strike - s.strike) * s.call_oi
            if s.strike > candidate.strike:
                pain += (s.strike - candidate.strike) * s.put_oi
        if pain < min_pain:
            min_pain = pain
            best_strike = candidate.strike
    return best_strike


class WriterRatioScorer:
    """
    Gatekeeper scorer.

    Usage:
        >>> scorer = WriterRatioScorer(WriterRatioConfig())
        >>> result = scorer.evaluate(stage_input)
        >>> if not result.gate_passed:
        ...     reject()
    """

    stage = StageName.WRITER_RATIO

    def __init__(self, config: Optional[WriterRatioConfig] = None):
        self.config = config or WriterRatioConfig()

    def writer_ratio(self, call_writers: float, put_writers: float, direction: SignalDirection) -> float:
        """Favourable writers over opposing writers for ``direction``."""
        if direction is SignalDirection.BUY_CALL:
            favourable, opposing = put_writers, call_writers
        else:
            favourable, opposing = call_writers, put_writers
        if opposing == 0:
            return self.config.unbounded_ratio if favourable > 0 else 0.0
        return favourable / opposing

    def evaluate(self, stage_input: WriterRatioInput) -> WriterRatioResult:
        direction = stage_input.signal_type
        summary = OpenInterestSummary.from_strikes(stage_input.strikes)
        call_writers, put_writers = estimate_writers(stage_input.strikes, stage_input.atm_strike)

        ratio = self.writer_ratio(call_writers, put_writers, direction)
        gate_passed = ratio >= self.config.min_ratio

        flow = self._institutional_flow(call_writers, put_writers)
        pcr = safe_ratio(summary.total_put_oi, summary.total_call_oi, default=0.0)
        aligned = gate_passed and (
            (direction is SignalDirection.BUY_CALL and flow is Bias.BULLISH)
            or (direction is SignalDirection.BUY_PUT and flow is Bias.BEARISH)
        )

        score = self._score(ratio, gate_passed, aligned, pcr)
        warning = None if gate_passed else self._warning(ratio, direction, call_writers, put_writers)

        if not gate_passed:
            logger.info(
                f"{stage_input.symbol} {direction.value}: writer ratio {ratio:.2f}x "
                f"below {self.config.min_ratio}x (call={call_writers:.0f}, put={put_writers:.0f})"
            )

        return WriterRatioResult(
            stage=self.stage,
            score=score,
            passed=gate_passed,
            reason=self._explain(ratio, gate_passed, flow),
            metrics={
                "institutional_flow": flow.value,
                "pcr": pcr,
                "max_pain": max_pain(stage_input.strikes),
                "writer_direction": "ALIGNED" if aligned else "CONFLICTING",
                "oi_analysis": summary.to_dict(),
                "atm_strike": stage_input.atm_strike,
                "target_strike": stage_input.target_strike,
                "min_ratio": self.config.min_ratio,
            },
            gate_passed=gate_passed,
            writer_ratio=ratio,
            call_writers=call_writers,
            put_writers=put_writers,
            warning=warning,
        )

    @staticmethod
    def _institutional_flow(call_writers: float, put_writers: float) -> Bias:
        # Put writing is bullish positioning, call writing bearish
        ratio = put_writers / (call_writers or 1)
        if ratio >= 2:
            return Bias.BULLISH
        if ratio <= 0.5:
            return Bias.BEARISH
        return Bias.NEUTRAL

    def _score(self, ratio: float, gate_passed: bool, aligned: bool, pcr: float) -> float:
        if not gate_passed:
            # A failed gate scores at most 40
            return clamp_score(min(40.0, ratio * 16), "writer_ratio_score")

        score = 50.0 if ratio >= self.config.ideal_ratio else 40.0
        score += 30 if aligned else 5
        if pcr > 1.2:
            score += 20
        elif pcr > 0.8:
            score += 10
        else:
            score += 5
        return clamp_score(score, "writer_ratio_score")

    def _warning(self, ratio: float, direction: SignalDirection, call_writers: float, put_writers: float) -> str:
        if direction is SignalDirection.BUY_CALL:
            favourable, favourable_n, opposing, opposing_n = "PUT", put_writers, "CALL", call_writers
        else:
            favourable, favourable_n, opposing, opposing_n = "CALL", call_writers, "PUT", put_writers
        return (
            f"Writer ratio FAILED ({ratio:.2f}x, need {self.config.min_ratio}x minimum). "
            f"{favourable} writers ({favourable_n:.0f}) are not sufficiently higher than "
            f"{opposing} writers ({opposing_n:.0f}). Institutional positioning is against this trade."
        )

    def _explain(self, ratio: float, gate_passed: bool, flow: Bias) -> str:
        if not gate_passed:
            return (
                f"Writer ratio FAILED: {ratio:.2f}x (need minimum {self.config.min_ratio}x). "
                f"Institutional positioning is against this trade"
            )
        quality = "Excellent" if ratio >= self.config.ideal_ratio else "Good"
        return (
            f"Writer ratio PASSED: {ratio:.2f}x (minimum {self.config.min_ratio}x). "
            f"Institutional flow: {flow.value}. {quality} writer positioning"
        )
