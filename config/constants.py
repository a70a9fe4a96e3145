"""
Constants and enumerations for the signal evaluation pipeline.

String enums are used everywhere a value is persisted or logged so the
stored representation is the plain value (``"APPROVED"``, ``"BUY_CALL"``).

Example:
    >>> from config.constants import Recommendation, SignalStatus
    >>> Recommendation.EXECUTE.to_status()
    <SignalStatus.APPROVED: 'APPROVED'>
"""

from enum import Enum
from typing import Final


class SignalDirection(str, Enum):
    """Desired trade direction."""

    BUY_CALL = "BUY_CALL"
    BUY_PUT = "BUY_PUT"

    @property
    def is_bullish(self) -> bool:
        return self is SignalDirection.BUY_CALL


class OptionType(str, Enum):
    CE = "CE"
    PE = "PE"


class Recommendation(str, Enum):
    """Final decision returned to the caller."""

    EXECUTE = "EXECUTE"
    WAIT = "WAIT"
    REJECT = "REJECT"

    def to_status(self) -> "SignalStatus":
        return {
            Recommendation.EXECUTE: SignalStatus.APPROVED,
            Recommendation.WAIT: SignalStatus.WAIT,
            Recommendation.REJECT: SignalStatus.REJECTED,
        }[self]


class SignalStatus(str, Enum):
    """Persisted status of a signal record."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WAIT = "WAIT"


class RejectionReason(str, Enum):
    """Reason codes produced by the orchestrator itself.

    Stage 6 restrictions and stage 7 warnings are passed through verbatim
    and are not members of this enum.
    """

    WRITER_RATIO_FAILED = "WRITER_RATIO_FAILED"
    WEAK_SIGNAL = "WEAK_SIGNAL"
    PORTFOLIO_LIMITS = "PORTFOLIO_LIMITS"
    LOW_OVERALL_SCORE = "LOW_OVERALL_SCORE"


class StageName(str, Enum):
    """The seven pipeline stages, in execution order."""

    REGIME = "regime"
    PRICE_ACTION = "price_action"
    MULTI_TIMEFRAME = "multi_timeframe"
    VOLATILITY = "volatility"
    WRITER_RATIO = "writer_ratio"
    RISK_REGIME = "risk_regime"
    PORTFOLIO = "portfolio"

    @property
    def number(self) -> int:
        return STAGE_ORDER.index(self) + 1


STAGE_ORDER: Final[tuple[StageName, ...]] = tuple(StageName)


# Stage 1
class VixCategory(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    SIDEWAYS = "SIDEWAYS"


class MarketRegime(str, Enum):
    TRENDING_BULLISH = "TRENDING_BULLISH"
    TRENDING_BEARISH = "TRENDING_BEARISH"
    RANGING = "RANGING"
    VOLATILE = "VOLATILE"
    UNCERTAIN = "UNCERTAIN"


class Bias(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


# Stage 2
class MarketStructure(str, Enum):
    HIGHER_HIGHS = "HIGHER_HIGHS"
    LOWER_LOWS = "LOWER_LOWS"
    RANGING = "RANGING"


class PriceLocation(str, Enum):
    AT_DEMAND = "AT_DEMAND"
    AT_SUPPLY = "AT_SUPPLY"
    NO_ZONE = "NO_ZONE"


# Stage 3
class Alignment(str, Enum):
    PERFECT = "PERFECT"
    STRONG = "STRONG"
    WEAK = "WEAK"
    CONFLICTING = "CONFLICTING"


class EntrySignal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    WAIT = "WAIT"


# Stage 4
class VolatilityTrend(str, Enum):
    RISING = "RISING"
    FALLING = "FALLING"
    STABLE = "STABLE"


class VolatilityRegime(str, Enum):
    COMPRESSED = "COMPRESSED"
    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    EXTREME = "EXTREME"


class OptionPricing(str, Enum):
    CHEAP = "CHEAP"
    FAIR = "FAIR"
    EXPENSIVE = "EXPENSIVE"


# Stage 6
class RiskLevel(str, Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class EventSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TradingRestriction(str, Enum):
    """Stage 6 restriction codes, listed in reporting precedence."""

    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    MAJOR_EVENT_NEAR = "MAJOR_EVENT_NEAR"
    EXTREME_VOLATILITY = "EXTREME_VOLATILITY"
    EXPIRY_DAY = "EXPIRY_DAY"
    MARKET_OPENING = "MARKET_OPENING"
    MARKET_CLOSING = "MARKET_CLOSING"
    LUNCH_HOUR = "LUNCH_HOUR"
    LOW_LIQUIDITY = "LOW_LIQUIDITY"
    MONDAY_GAP_RISK = "MONDAY_GAP_RISK"
    FRIDAY_ROLLOVER_RISK = "FRIDAY_ROLLOVER_RISK"
    NONE = "NONE"


MIN_SCORE: Final[float] = 0.0
MAX_SCORE: Final[float] = 100.0

# Minimum candle counts before indicators are considered meaningful
MIN_TREND_BARS: Final[int] = 50
MIN_CONFLUENCE_BARS: Final[int] = 20
MIN_HV_CLOSES: Final[int] = 21
TRADING_DAYS_PER_YEAR: Final[int] = 252

DEFAULT_LIST_LIMIT: Final[int] = 50
