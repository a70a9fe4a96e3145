"""
Decision rules for the signal orchestrator.

Pure functions: weighted overall score, recommendation precedence, reason
derivation, and the fixed-band stop-loss/target helpers.
"""

import logging
import math
from typing import Mapping, Optional

from config.constants import STAGE_ORDER, Recommendation, RejectionReason, StageName
from config.settings import DecisionThresholds, StageWeights
from core.domain.entities import OptionChainSnapshot

logger = logging.getLogger(__name__)

APPROVAL_REASON_TEMPLATE = "All stages passed. Overall score: {score}/100"


def compute_overall_score(
    scores: Mapping[StageName, float],
    weights: StageWeights,
    round_score: bool = False,
) -> float:
    """
    Weighted mean of the seven stage scores.

    With default weights this is (s1 + s2 + s3 + s4 + 2*s5 + s6 + s7) / 8.
    """
    weight_map = weights.as_mapping()
    missing = [s.value for s in STAGE_ORDER if s not in scores]
    if missing:
        raise ValueError(f"Missing stage scores: {missing}")

    total = math.fsum(scores[stage] * weight_map[stage] for stage in STAGE_ORDER)
    # Trim float noise so an exact 70.0 mean is not read as 69.99999999999999
    overall = round(total / weights.total, 9)
    if round_score:
        # Half-up, not banker's rounding
        return float(int(overall + 0.5))
    return overall


def proposed_signal_strength(scores: Mapping[StageName, float]) -> float:
    """Unweighted mean of stages 1-6, handed to the portfolio stage."""
    first_six = STAGE_ORDER[:6]
    return sum(scores[s] for s in first_six) / len(first_six)


def derive_recommendation(
    gate_passed: bool,
    trading_allowed: bool,
    position_allowed: bool,
    overall_score: float,
    thresholds: DecisionThresholds,
) -> Recommendation:
    """
    Final decision; the first matching rule wins.

    1. gate failed              -> REJECT
    2. trading not allowed      -> WAIT
    3. position not allowed     -> REJECT
    4. score >= execute_score   -> EXECUTE
    5. score >= wait_score      -> WAIT
    6. otherwise                -> REJECT
    """
    if not gate_passed:
        return Recommendation.REJECT
    if not trading_allowed:
        return Recommendation.WAIT
    if not position_allowed:
        return Recommendation.REJECT
    if overall_score >= thresholds.execute_score:
        return Recommendation.EXECUTE
    if overall_score >= thresholds.wait_score:
        return Recommendation.WAIT
    return Recommendation.REJECT


def derive_rejection_reason(
    recommendation: Recommendation,
    trading_allowed: bool,
    position_allowed: bool,
    restriction: Optional[str],
    portfolio_warning: Optional[str],
) -> Optional[str]:
    """Reason text for non-EXECUTE decisions after the gate passed; None for EXECUTE."""
    if recommendation is Recommendation.EXECUTE:
        return None
    if recommendation is Recommendation.WAIT:
        if not trading_allowed and restriction and restriction != "NONE":
            return restriction
        return RejectionReason.WEAK_SIGNAL.value
    if not position_allowed:
        return portfolio_warning or RejectionReason.PORTFOLIO_LIMITS.value
    return RejectionReason.LOW_OVERALL_SCORE.value


def approval_reason(overall_score: float) -> str:
    return APPROVAL_REASON_TEMPLATE.format(score=f"{overall_score:g}")


def calculate_stop_loss(entry_price: float, bullish: bool, stop_loss_pct: float = 0.02) -> float:
    """Fixed-percentage stop below entry for calls, above entry for puts."""
    if bullish:
        return entry_price * (1 - stop_loss_pct)
    return entry_price * (1 + stop_loss_pct)


def calculate_target(entry_price: float, bullish: bool, target_pct: float = 0.05) -> float:
    """Fixed-percentage target in the direction of the trade."""
    if bullish:
        return entry_price * (1 + target_pct)
    return entry_price * (1 - target_pct)


def lookup_atm_iv(chain: OptionChainSnapshot) -> Optional[float]:
    """
    Call-side IV at the ATM strike, or None when the strike is missing or has
    no usable IV. The caller decides whether None means default or error.
    """
    entry = chain.find_strike(chain.atm_strike)
    if entry is None or entry.call_iv is None or entry.call_iv <= 0:
        return None
    return entry.call_iv
