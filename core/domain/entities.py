"""
Domain models for one signal evaluation.

Every model is frozen: an ``EvaluationRequest`` is built once per call and
never mutated, so the same request can be replayed to reproduce a decision.
"""
from typing import Literal, Optional, List
from datetime import datetime

from pydantic import Field, field_validator, model_validator

from config.constants import EventSeverity, OptionType, SignalDirection
from core.domain.base import DomainEntity

Timeframe = Literal["5m", "15m", "1h"]


class Candle(DomainEntity):
    """One OHLCV bar."""
    timestamp: Optional[datetime] = None
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def validate_range(self) -> "Candle":
        if self.high < self.low:
            raise ValueError(f"Candle high ({self.high}) below low ({self.low})")
        return self


class OptionStrike(DomainEntity):
    """Open interest, volume and IV for one strike of the chain."""
    strike: float = Field(..., gt=0)
    call_oi: float = Field(default=0.0, ge=0)
    put_oi: float = Field(default=0.0, ge=0)
    call_oi_change: float = 0.0
    put_oi_change: float = 0.0
    call_volume: float = Field(default=0.0, ge=0)
    put_volume: float = Field(default=0.0, ge=0)
    call_ltp: float = Field(default=0.0, ge=0)
    put_ltp: float = Field(default=0.0, ge=0)
    call_iv: Optional[float] = None
    put_iv: Optional[float] = None


class MarketSnapshot(DomainEntity):
    """
    Spot, volatility index and price history across timeframes.

    ``historical`` holds daily bars and feeds the regime and volatility
    stages. The intraday series feed the price-action and multi-timeframe
    stages.
    """
    spot_price: float = Field(..., gt=0)
    vix_level: float = Field(..., ge=0)
    vix_history: List[float] = Field(default_factory=list)
    historical: List[Candle] = Field(default_factory=list)
    one_hour: List[Candle] = Field(default_factory=list)
    fifteen_min: List[Candle] = Field(default_factory=list)
    five_min: List[Candle] = Field(default_factory=list)

    def series(self, timeframe: Timeframe) -> List[Candle]:
        return {
            "5m": self.five_min,
            "15m": self.fifteen_min,
            "1h": self.one_hour,
        }[timeframe]


class OptionChainSnapshot(DomainEntity):
    strikes: List[OptionStrike] = Field(default_factory=list)
    atm_strike: float = Field(..., gt=0)
    target_strike: float = Field(..., gt=0)

    def find_strike(self, strike: float) -> Optional[OptionStrike]:
        for entry in self.strikes:
            if entry.strike == strike:
                return entry
        return None


class MarketEvent(DomainEntity):
    """Scheduled event (earnings, policy announcement, data release)."""
    event_type: str = "OTHER"
    event_time: datetime
    severity: EventSeverity = EventSeverity.LOW


class RiskContext(DomainEntity):
    """
    Session, event and liquidity context for the risk-regime stage.

    Times are exchange-local. ``day_of_week`` follows the 0=Sunday
    convention used by stored requests; when omitted it is derived from
    ``current_time``.
    """
    current_time: datetime
    market_open_time: datetime
    market_close_time: datetime
    is_expiry_day: bool = False
    upcoming_events: List[MarketEvent] = Field(default_factory=list)
    current_volume: float = Field(default=0.0, ge=0)
    avg_volume: float = Field(default=0.0, ge=0)
    circuit_breaker: bool = False
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)

    @model_validator(mode="after")
    def validate_timezones(self) -> "RiskContext":
        times = [self.current_time, self.market_open_time, self.market_close_time]
        times.extend(event.event_time for event in self.upcoming_events)
        aware = {t.tzinfo is not None for t in times}
        if len(aware) > 1:
            raise ValueError("Risk context mixes timezone-aware and naive datetimes")
        return self

    @property
    def effective_day_of_week(self) -> int:
        if self.day_of_week is not None:
            return self.day_of_week
        return self.current_time.isoweekday() % 7


class OpenPosition(DomainEntity):
    symbol: str
    capital_allocated: float = Field(default=0.0, ge=0)
    unrealized_pnl: float = 0.0


class TradingHistory(DomainEntity):
    """Closed-trade statistics used for Kelly sizing."""
    total_trades: int = Field(default=0, ge=0)
    winning_trades: int = Field(default=0, ge=0)
    losing_trades: int = Field(default=0, ge=0)
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0

    @model_validator(mode="after")
    def validate_counts(self) -> "TradingHistory":
        if self.winning_trades > self.total_trades:
            raise ValueError(
                f"winning_trades ({self.winning_trades}) exceeds total_trades ({self.total_trades})"
            )
        return self

    @property
    def win_rate(self) -> float:
        if self.total_trades == 0:
            return 0.0
        return self.winning_trades / self.total_trades


class PortfolioSnapshot(DomainEntity):
    """
    Capital and exposure at evaluation time.

    ``risk_per_trade`` is a percentage of total capital (2.0 means 2 %).
    """
    total_capital: float = Field(..., ge=0)
    available_capital: float = Field(..., ge=0)
    open_positions: List[OpenPosition] = Field(default_factory=list)
    trading_history: TradingHistory = Field(default_factory=TradingHistory)
    risk_per_trade: float = Field(default=2.0, gt=0, le=100)
    max_open_positions: int = Field(default=5, ge=0)

    @property
    def allocated_capital(self) -> float:
        return float(sum(p.capital_allocated for p in self.open_positions))


class EvaluationRequest(DomainEntity):
    """Immutable input bundle for one evaluation."""
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    symbol: str = Field(..., min_length=1)
    strike: float = Field(..., gt=0)
    expiry: datetime
    option_type: OptionType
    signal_type: SignalDirection
    market: MarketSnapshot
    option_chain: OptionChainSnapshot
    risk_context: RiskContext
    portfolio: PortfolioSnapshot

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()

    @property
    def is_bullish(self) -> bool:
        return self.signal_type.is_bullish
