"""Immutable input snapshots for one signal evaluation."""

from core.domain.entities import (
    Candle,
    EvaluationRequest,
    MarketEvent,
    MarketSnapshot,
    OpenPosition,
    OptionChainSnapshot,
    OptionStrike,
    PortfolioSnapshot,
    RiskContext,
    TradingHistory,
)

__all__ = [
    "Candle",
    "EvaluationRequest",
    "MarketEvent",
    "MarketSnapshot",
    "OpenPosition",
    "OptionChainSnapshot",
    "OptionStrike",
    "PortfolioSnapshot",
    "RiskContext",
    "TradingHistory",
]
