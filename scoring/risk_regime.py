"""
Stage 6: Risk regime filter.

Blocks trading around the session open and close, the lunch lull, major
scheduled events, circuit breakers, extreme volatility, thin volume and
expiry day. When trading is blocked the orchestrator answers WAIT with the
restriction code as the reason.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from config.constants import EventSeverity, RiskLevel, StageName, TradingRestriction
from config.settings import RiskRegimeConfig
from core.domain.entities import MarketEvent
from scoring.types import RiskRegimeInput, RiskRegimeResult
from utils.numerical_validation import clamp_score

logger = logging.getLogger(__name__)

MONDAY = 1
FRIDAY = 5


@dataclass(frozen=True)
class TimeWindow:
    market_open: bool
    market_close: bool
    lunch_hour: bool

    @property
    def allowed(self) -> bool:
        return not (self.market_open or self.market_close or self.lunch_hour)


@dataclass(frozen=True)
class EventWindow:
    major_event_near: bool
    event_type: Optional[str] = None
    minutes_to_event: Optional[float] = None

    @property
    def allowed(self) -> bool:
        return not self.major_event_near


@dataclass(frozen=True)
class MarketConditions:
    circuit_breaker: bool
    extreme_volatility: bool
    low_liquidity: bool

    @property
    def allowed(self) -> bool:
        return not (self.circuit_breaker or self.extreme_volatility or self.low_liquidity)


@dataclass(frozen=True)
class DayRisk:
    is_expiry: bool
    is_monday: bool
    is_friday: bool

    @property
    def level(self) -> RiskLevel:
        if self.is_expiry:
            return RiskLevel.HIGH
        if self.is_monday or self.is_friday:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @property
    def allowed(self) -> bool:
        return not self.is_expiry


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


class RiskRegimeScorer:
    stage = StageName.RISK_REGIME

    def __init__(self, config: Optional[RiskRegimeConfig] = None):
        self.config = config or RiskRegimeConfig()

    def evaluate(self, stage_input: RiskRegimeInput) -> RiskRegimeResult:
        ctx = stage_input.context
        time_window = self._time_window(ctx.current_time, ctx.market_open_time, ctx.market_close_time)
        events = self._event_window(ctx.current_time, ctx.upcoming_events)
        market = MarketConditions(
            circuit_breaker=ctx.circuit_breaker,
            extreme_volatility=stage_input.vix_level > self.config.extreme_vix,
            low_liquidity=ctx.current_volume < ctx.avg_volume * self.config.low_liquidity_ratio,
        )
        day_of_week = ctx.effective_day_of_week
        day = DayRisk(
            is_expiry=ctx.is_expiry_day,
            is_monday=day_of_week == MONDAY,
            is_friday=day_of_week == FRIDAY,
        )

        trading_allowed = time_window.allowed and events.allowed and market.allowed and day.allowed
        risk_level = self._risk_level(time_window, events, market, day)
        restriction = self._main_restriction(time_window, events, market, day)
        score = self._score(risk_level, trading_allowed, time_window, events, market, day)

        if not trading_allowed:
            logger.info(f"{stage_input.symbol}: trading blocked ({restriction.value}, risk {risk_level.value})")

        return RiskRegimeResult(
            stage=self.stage,
            score=score,
            passed=trading_allowed,
            reason=self._explain(score, risk_level, trading_allowed, restriction),
            metrics={
                "time_restrictions": {
                    "market_open": time_window.market_open,
                    "market_close": time_window.market_close,
                    "lunch_hour": time_window.lunch_hour,
                    "allowed": time_window.allowed,
                },
                "event_restrictions": {
                    "major_event_near": events.major_event_near,
                    "event_type": events.event_type,
                    "time_to_event": events.minutes_to_event,
                    "allowed": events.allowed,
                },
                "market_restrictions": {
                    "circuit_breaker": market.circuit_breaker,
                    "extreme_volatility": market.extreme_volatility,
                    "low_liquidity": market.low_liquidity,
                    "allowed": market.allowed,
                },
                "day_restrictions": {
                    "is_expiry": day.is_expiry,
                    "is_monday": day.is_monday,
                    "is_friday": day.is_friday,
                    "risk_level": day.level.value,
                    "allowed": day.allowed,
                },
            },
            trading_allowed=trading_allowed,
            restriction=restriction.value,
            risk_level=risk_level.value,
        )

    def _time_window(self, now: datetime, market_open: datetime, market_close: datetime) -> TimeWindow:
        return TimeWindow(
            market_open=_minutes_between(market_open, now) <= self.config.opening_window_minutes,
            market_close=_minutes_between(now, market_close) <= self.config.closing_window_minutes,
            lunch_hour=now.hour == self.config.lunch_hour,
        )

    def _event_window(self, now: datetime, events: Sequence[MarketEvent]) -> EventWindow:
        for event in events:
            minutes = _minutes_between(now, event.event_time)
            if (
                event.severity is EventSeverity.HIGH
                and -self.config.event_window_after_minutes <= minutes <= self.config.event_window_before_minutes
            ):
                return EventWindow(True, event.event_type, minutes)
        return EventWindow(False)

    @staticmethod
    def _risk_level(time_window: TimeWindow, events: EventWindow, market: MarketConditions, day: DayRisk) -> RiskLevel:
        points = 0
        if not time_window.allowed:
            points += 2
        if events.major_event_near:
            points += 3
        if market.circuit_breaker:
            points += 4
        if market.extreme_volatility:
            points += 3
        if market.low_liquidity:
            points += 2
        if day.level is RiskLevel.HIGH:
            points += 3
        elif day.level is RiskLevel.MEDIUM:
            points += 1

        if points >= 6:
            return RiskLevel.EXTREME
        if points >= 4:
            return RiskLevel.HIGH
        if points >= 2:
            return RiskLevel.MEDIUM
        if points >= 1:
            return RiskLevel.LOW
        return RiskLevel.VERY_LOW

    @staticmethod
    def _main_restriction(
        time_window: TimeWindow, events: EventWindow, market: MarketConditions, day: DayRisk
    ) -> TradingRestriction:
        checks = [
            (market.circuit_breaker, TradingRestriction.CIRCUIT_BREAKER),
            (events.major_event_near, TradingRestriction.MAJOR_EVENT_NEAR),
            (market.extreme_volatility, TradingRestriction.EXTREME_VOLATILITY),
            (day.is_expiry, TradingRestriction.EXPIRY_DAY),
            (time_window.market_open, TradingRestriction.MARKET_OPENING),
            (time_window.market_close, TradingRestriction.MARKET_CLOSING),
            (time_window.lunch_hour, TradingRestriction.LUNCH_HOUR),
            (market.low_liquidity, TradingRestriction.LOW_LIQUIDITY),
            (day.is_monday, TradingRestriction.MONDAY_GAP_RISK),
            (day.is_friday, TradingRestriction.FRIDAY_ROLLOVER_RISK),
        ]
        for active, restriction in checks:
            if active:
                return restriction
        return TradingRestriction.NONE

    @staticmethod
    def _score(
        level: RiskLevel,
        trading_allowed: bool,
        time_window: TimeWindow,
        events: EventWindow,
        market: MarketConditions,
        day: DayRisk,
    ) -> float:
        if not trading_allowed:
            return {
                RiskLevel.EXTREME: 0.0,
                RiskLevel.HIGH: 20.0,
                RiskLevel.MEDIUM: 40.0,
            }.get(level, 50.0)

        score = 100.0
        if not time_window.allowed:
            score -= 20
        if not events.allowed:
            score -= 25
        if not market.allowed:
            score -= 30
        if not day.allowed:
            score -= 25
        score -= {
            RiskLevel.EXTREME: 50,
            RiskLevel.HIGH: 30,
            RiskLevel.MEDIUM: 15,
            RiskLevel.LOW: 5,
        }.get(level, 0)
        return clamp_score(score, "risk_regime_score")

    @staticmethod
    def _explain(score: float, level: RiskLevel, trading_allowed: bool, restriction: TradingRestriction) -> str:
        reasons = [f"Risk level: {level.value}"]
        if not trading_allowed:
            reasons.append(f"Trading NOT allowed: {restriction.value}")
        else:
            reasons.append("Trading allowed")
            if score >= 80:
                reasons.append("Low risk environment")
            elif score >= 60:
                reasons.append("Moderate risk, normal position sizing")
            else:
                reasons.append("Elevated risk, consider reducing position size")
        return ". ".join(reasons)
