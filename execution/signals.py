"""
Signal records and evaluation outcomes.

A ``SignalRecord`` is the write-once audit record for one evaluation: the
instrument, every stage result (placeholders for stages skipped by the
gate), the overall score, the decision and, only for approved signals,
the execution parameters. Stores assign identity and creation time and
hand back a ``PersistedSignal``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from config.constants import (
    STAGE_ORDER,
    OptionType,
    Recommendation,
    RejectionReason,
    SignalDirection,
    SignalStatus,
    StageName,
)
from scoring.types import PortfolioResult, RiskRegimeResult, StageResult, WriterRatioResult

logger = logging.getLogger(__name__)

SIGNAL_SCHEMA_VERSION = "1.0"


@dataclass(frozen=True)
class ExecutionDetails:
    """Order parameters attached to approved signals only."""

    entry_price: float
    target: float
    stop_loss: float
    quantity: int
    capital_to_allocate: float
    risk_amount: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_price": self.entry_price,
            "target": self.target,
            "stop_loss": self.stop_loss,
            "quantity": self.quantity,
            "capital_to_allocate": self.capital_to_allocate,
            "risk_amount": self.risk_amount,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionDetails":
        return cls(
            entry_price=float(data["entry_price"]),
            target=float(data["target"]),
            stop_loss=float(data["stop_loss"]),
            quantity=int(data["quantity"]),
            capital_to_allocate=float(data["capital_to_allocate"]),
            risk_amount=float(data["risk_amount"]),
        )


@dataclass(frozen=True)
class SignalRecord:
    """
    Immutable outcome of one evaluation, ready to persist.

    Attributes:
        symbol, strike, expiry, option_type, signal_type: Instrument identity
        status: APPROVED, REJECTED or WAIT
        status_reason: Reason code or approval text
        overall_score: Weighted mean of the seven stage scores (0 on gate rejection)
        stage_results: One result per stage, in pipeline order
        execution: Order parameters, present only when APPROVED
        evaluated_at: Clock reading when the evaluation started
        timeframe: Series used by the price-action stage
        organization_id, user_id: Tenant identity, optional
    """

    symbol: str
    strike: float
    expiry: datetime
    option_type: OptionType
    signal_type: SignalDirection
    status: SignalStatus
    status_reason: str
    overall_score: float
    stage_results: tuple[StageResult, ...]
    evaluated_at: datetime
    execution: Optional[ExecutionDetails] = None
    timeframe: str = "5m"
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    schema_version: str = field(default=SIGNAL_SCHEMA_VERSION)

    def __post_init__(self) -> None:
        stages = tuple(r.stage for r in self.stage_results)
        if stages != STAGE_ORDER:
            raise ValueError(f"Signal must carry one result per stage in order, got {[s.value for s in stages]}")

        gate_passed = self.writer_ratio.gate_passed
        skipped = [r.stage for r in self.stage_results if r.skipped]

        if self.status is SignalStatus.APPROVED:
            if not gate_passed or skipped:
                raise ValueError("APPROVED signal requires a passed gate and all seven stages")
            if self.execution is None:
                raise ValueError("APPROVED signal requires execution details")
        elif self.execution is not None:
            raise ValueError(f"{self.status.value} signal must not carry execution details")

        if skipped:
            if gate_passed or set(skipped) != {StageName.RISK_REGIME, StageName.PORTFOLIO}:
                raise ValueError("Only stages 6-7 may be skipped, and only when the gate failed")
            if self.status is not SignalStatus.REJECTED:
                raise ValueError("A gate-rejected signal must be REJECTED")

    def result(self, stage: StageName) -> StageResult:
        return self.stage_results[STAGE_ORDER.index(stage)]

    @property
    def writer_ratio(self) -> WriterRatioResult:
        result = self.result(StageName.WRITER_RATIO)
        assert isinstance(result, WriterRatioResult)
        return result

    @property
    def risk_regime(self) -> RiskRegimeResult:
        result = self.result(StageName.RISK_REGIME)
        assert isinstance(result, RiskRegimeResult)
        return result

    @property
    def portfolio(self) -> PortfolioResult:
        result = self.result(StageName.PORTFOLIO)
        assert isinstance(result, PortfolioResult)
        return result

    @property
    def stage_scores(self) -> dict[StageName, float]:
        return {r.stage: r.score for r in self.stage_results}

    @property
    def gate_rejected(self) -> bool:
        return not self.writer_ratio.gate_passed

    @property
    def signal_strength(self) -> float:
        """Overall score for approved signals, zero otherwise."""
        return self.overall_score if self.status is SignalStatus.APPROVED else 0.0

    @property
    def vix_level(self) -> Optional[float]:
        return self.result(StageName.REGIME).metrics.get("vix_level")

    @property
    def market_regime(self) -> Optional[str]:
        return self.result(StageName.REGIME).metrics.get("regime")

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "strike": self.strike,
            "expiry": self.expiry.isoformat(),
            "option_type": self.option_type.value,
            "signal_type": self.signal_type.value,
            "status": self.status.value,
            "status_reason": self.status_reason,
            "overall_score": self.overall_score,
            "signal_strength": self.signal_strength,
            "timeframe": self.timeframe,
            "evaluated_at": self.evaluated_at.isoformat(),
            "writer_ratio": self.writer_ratio.writer_ratio,
            "writer_ratio_passed": self.writer_ratio.gate_passed,
            "call_writers": self.writer_ratio.call_writers,
            "put_writers": self.writer_ratio.put_writers,
            "vix_level": self.vix_level,
            "market_regime": self.market_regime,
            "stage_scores": {s.value: score for s, score in self.stage_scores.items()},
            "analysis": {r.stage.value: r.to_dict() for r in self.stage_results},
            "execution": self.execution.to_dict() if self.execution else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SignalRecord":
        analysis = data["analysis"]
        return cls(
            symbol=data["symbol"],
            strike=float(data["strike"]),
            expiry=datetime.fromisoformat(data["expiry"]),
            option_type=OptionType(data["option_type"]),
            signal_type=SignalDirection(data["signal_type"]),
            status=SignalStatus(data["status"]),
            status_reason=data["status_reason"],
            overall_score=float(data["overall_score"]),
            stage_results=tuple(StageResult.from_dict(analysis[s.value]) for s in STAGE_ORDER),
            evaluated_at=datetime.fromisoformat(data["evaluated_at"]),
            execution=ExecutionDetails.from_dict(data["execution"]) if data.get("execution") else None,
            timeframe=data.get("timeframe", "5m"),
            organization_id=data.get("organization_id"),
            user_id=data.get("user_id"),
            schema_version=data.get("schema_version", SIGNAL_SCHEMA_VERSION),
        )


@dataclass(frozen=True)
class PersistedSignal:
    """A stored signal: store-assigned identity plus the record."""

    signal_id: str
    created_at: datetime
    record: SignalRecord

    def to_dict(self) -> dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "created_at": self.created_at.isoformat(),
            **self.record.to_dict(),
        }


@dataclass(frozen=True)
class EvaluationOutcome:
    """
    What ``generate_signal`` returns to the caller.

    ``success`` is True only when the recommendation is EXECUTE.
    ``analysis`` maps every stage to its result; stages skipped by the gate
    hold zero-score placeholders.
    """

    success: bool
    signal: PersistedSignal
    analysis: Mapping[StageName, StageResult]
    overall_score: float
    recommendation: Recommendation
    rejection_reason: Optional[str] = None
    execution_details: Optional[ExecutionDetails] = None
    atm_iv_defaulted: bool = False

    @property
    def gate_rejected(self) -> bool:
        return self.rejection_reason == RejectionReason.WRITER_RATIO_FAILED.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "signal": self.signal.to_dict(),
            "analysis": {stage.value: result.to_dict() for stage, result in self.analysis.items()},
            "overall_score": self.overall_score,
            "recommendation": self.recommendation.value,
            "rejection_reason": self.rejection_reason,
            "execution_details": self.execution_details.to_dict() if self.execution_details else None,
            "atm_iv_defaulted": self.atm_iv_defaulted,
        }
