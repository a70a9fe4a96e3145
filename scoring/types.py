"""
Stage result and stage input types.

Each scorer consumes one frozen input record and returns a frozen
``StageResult``. The fields the orchestrator branches on are explicit
(score, gate flag, allowed flags, sizing); everything else is carried in
the ``metrics`` mapping for audit only.
"""

import math
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from config.constants import MAX_SCORE, MIN_SCORE, SignalDirection, StageName
from core.domain.entities import Candle, OptionStrike, PortfolioSnapshot, RiskContext
from utils.numerical_validation import validate_numeric_dict


def _freeze(metrics: Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(metrics, MappingProxyType):
        return metrics
    return _freeze_value(validate_numeric_dict(dict(metrics)))


def _freeze_value(value: Any) -> Any:
    # Read-only all the way down: nested dicts become proxies, lists tuples
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze_value(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(v) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


@dataclass(frozen=True)
class StageResult:
    """
    Output of one scorer.

    Attributes:
        stage: Which pipeline stage produced the result
        score: Stage score in [0, 100]
        passed: Stage-level pass flag (authoritative only for the gate)
        reason: Human-readable explanation
        metrics: Audit-only payload, read-only
        skipped: True for placeholder results of stages that never ran
    """

    stage: StageName
    score: float
    passed: bool
    reason: str = ""
    metrics: Mapping[str, Any] = field(default_factory=dict)
    skipped: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.score, (int, float)) or not math.isfinite(self.score):
            raise ValueError(f"{self.stage.value} score must be finite, got {self.score!r}")
        if not MIN_SCORE <= self.score <= MAX_SCORE:
            raise ValueError(f"{self.stage.value} score {self.score} outside [0, 100]")
        object.__setattr__(self, "score", float(self.score))
        object.__setattr__(self, "metrics", _freeze(self.metrics))

    @classmethod
    def empty(cls, stage: StageName, reason: str = "Stage not evaluated") -> "StageResult":
        """Zero-score placeholder for a stage skipped by the gate short-circuit."""
        result_cls = _RESULT_TYPES.get(stage, StageResult)
        return result_cls(stage=stage, score=0.0, passed=False, reason=reason, skipped=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StageResult":
        """Rebuild a result from ``to_dict`` output, restoring the stage-specific type."""
        stage = StageName(data["stage"])
        result_cls = _RESULT_TYPES.get(stage, StageResult)
        kwargs: dict[str, Any] = {
            "stage": stage,
            "score": float(data.get("score", 0.0)),
            "passed": bool(data.get("passed", False)),
            "reason": data.get("reason", ""),
            "metrics": data.get("metrics") or {},
            "skipped": bool(data.get("skipped", False)),
        }
        for f in fields(result_cls):
            if f.name not in kwargs and f.name in data:
                kwargs[f.name] = data[f.name]
        return result_cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "stage": self.stage.value,
            "score": self.score,
            "passed": self.passed,
            "reason": self.reason,
            "skipped": self.skipped,
            "metrics": _thaw(self.metrics),
        }
        data.update(self._extra_fields())
        return data

    def _extra_fields(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class WriterRatioResult(StageResult):
    """Gatekeeper result. ``gate_passed`` alone decides the short-circuit."""

    gate_passed: bool = False
    writer_ratio: float = 0.0
    call_writers: float = 0.0
    put_writers: float = 0.0
    warning: Optional[str] = None

    def _extra_fields(self) -> dict[str, Any]:
        return {
            "gate_passed": self.gate_passed,
            "writer_ratio": self.writer_ratio,
            "call_writers": self.call_writers,
            "put_writers": self.put_writers,
            "warning": self.warning,
        }


@dataclass(frozen=True)
class RiskRegimeResult(StageResult):
    trading_allowed: bool = False
    restriction: str = "NONE"
    risk_level: str = "VERY_LOW"

    def _extra_fields(self) -> dict[str, Any]:
        return {
            "trading_allowed": self.trading_allowed,
            "restriction": self.restriction,
            "risk_level": self.risk_level,
        }


@dataclass(frozen=True)
class PortfolioResult(StageResult):
    """Sizing result. Quantity and capital are zero when the position is not allowed."""

    position_allowed: bool = False
    warning: Optional[str] = None
    quantity: int = 0
    capital_to_allocate: float = 0.0
    risk_amount: float = 0.0

    def _extra_fields(self) -> dict[str, Any]:
        return {
            "position_allowed": self.position_allowed,
            "warning": self.warning,
            "quantity": self.quantity,
            "capital_to_allocate": self.capital_to_allocate,
            "risk_amount": self.risk_amount,
        }


@dataclass(frozen=True)
class ProposedTrade:
    """Entry/stop/target handed to the portfolio stage."""

    symbol: str
    entry_price: float
    stop_loss: float
    target: float
    signal_strength: float

    @property
    def stop_distance(self) -> float:
        return abs(self.entry_price - self.stop_loss)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "target": self.target,
            "signal_strength": self.signal_strength,
        }


_RESULT_TYPES: dict[StageName, type[StageResult]] = {
    StageName.WRITER_RATIO: WriterRatioResult,
    StageName.RISK_REGIME: RiskRegimeResult,
    StageName.PORTFOLIO: PortfolioResult,
}


# Stage inputs

@dataclass(frozen=True)
class RegimeInput:
    symbol: str
    spot_price: float
    vix_level: float
    candles: Sequence[Candle]


@dataclass(frozen=True)
class PriceActionInput:
    symbol: str
    timeframe: str
    candles: Sequence[Candle]
    current_price: float


@dataclass(frozen=True)
class MultiTimeframeInput:
    symbol: str
    one_hour: Sequence[Candle]
    fifteen_min: Sequence[Candle]
    five_min: Sequence[Candle]


@dataclass(frozen=True)
class VolatilityInput:
    symbol: str
    vix_current: float
    vix_history: Sequence[float]
    strike_iv: float
    atm_iv: float
    candles: Sequence[Candle]


@dataclass(frozen=True)
class WriterRatioInput:
    symbol: str
    strikes: Sequence[OptionStrike]
    atm_strike: float
    target_strike: float
    signal_type: SignalDirection


@dataclass(frozen=True)
class RiskRegimeInput:
    symbol: str
    context: RiskContext
    vix_level: float


@dataclass(frozen=True)
class PortfolioInput:
    portfolio: PortfolioSnapshot
    proposed_trade: ProposedTrade
