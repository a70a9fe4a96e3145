"""
Stage scorers for the signal pipeline.

Each scorer exposes ``evaluate(stage_input) -> StageResult`` and holds no
mutable state, so a single instance can serve concurrent evaluations.
"""

from scoring.multi_timeframe import MultiTimeframeScorer
from scoring.portfolio import PortfolioScorer
from scoring.price_action import PriceActionScorer
from scoring.regime import MarketRegimeScorer
from scoring.risk_regime import RiskRegimeScorer
from scoring.types import (
    PortfolioResult,
    ProposedTrade,
    RiskRegimeResult,
    StageResult,
    WriterRatioResult,
)
from scoring.volatility import VolatilityScorer
from scoring.writer_ratio import WriterRatioScorer

__all__ = [
    "MarketRegimeScorer",
    "PriceActionScorer",
    "MultiTimeframeScorer",
    "VolatilityScorer",
    "WriterRatioScorer",
    "RiskRegimeScorer",
    "PortfolioScorer",
    "StageResult",
    "WriterRatioResult",
    "RiskRegimeResult",
    "PortfolioResult",
    "ProposedTrade",
]
