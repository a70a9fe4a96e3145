"""
Stage 7: Portfolio sizing.

Applies portfolio-level limits (projected risk, open-position count,
track-record quality) and sizes the position from the per-trade risk
budget, capped by a quarter-Kelly allocation and the available capital.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from config.constants import StageName
from config.settings import PortfolioConfig
from core.domain.entities import PortfolioSnapshot, TradingHistory
from scoring.types import PortfolioInput, PortfolioResult, ProposedTrade
from utils.numerical_validation import clamp_score, safe_ratio

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PortfolioRisk:
    current_risk: float
    projected_risk: float
    max_risk_allowed: float

    @property
    def within_limits(self) -> bool:
        return self.projected_risk <= self.max_risk_allowed


@dataclass(frozen=True)
class PositionSize:
    quantity: int
    capital_to_allocate: float
    risk_amount: float


class PortfolioScorer:
    """
    Position limits and Kelly sizing.

    The Kelly fraction is clamped to [0, 0.25] and then multiplied by
    ``kelly_multiplier`` again when capping quantity.
    """

    stage = StageName.PORTFOLIO

    def __init__(self, config: Optional[PortfolioConfig] = None):
        self.config = config or PortfolioConfig()

    def kelly_fraction(self, history: TradingHistory) -> float:
        if history.total_trades < self.config.min_trades_for_stats or history.avg_loss == 0:
            return self.config.default_kelly

        win_rate = history.win_rate
        win_loss = abs(history.avg_win / history.avg_loss)
        if win_loss == 0:
            return 0.0
        fraction = (win_rate * win_loss - (1 - win_rate)) / win_loss
        return max(0.0, min(0.25, fraction))

    def portfolio_risk(self, portfolio: PortfolioSnapshot) -> PortfolioRisk:
        total = portfolio.total_capital
        if total <= 0:
            # No capital means nothing can be risked
            return PortfolioRisk(math.inf, math.inf, self.config.max_portfolio_risk_pct)

        allocated = portfolio.allocated_capital
        trade_risk = total * portfolio.risk_per_trade / 100
        return PortfolioRisk(
            current_risk=allocated / total * 100,
            projected_risk=(allocated + trade_risk) / total * 100,
            max_risk_allowed=self.config.max_portfolio_risk_pct,
        )

    def position_size(
        self,
        portfolio: PortfolioSnapshot,
        trade: ProposedTrade,
        kelly: float,
    ) -> PositionSize:
        total = portfolio.total_capital
        entry = trade.entry_price
        risk_amount = total * portfolio.risk_per_trade / 100

        if entry <= 0 or trade.stop_distance <= 0:
            return PositionSize(0, 0.0, risk_amount)

        # risk / (entry * stop%) reduces to risk / stop distance
        quantity = math.floor(risk_amount / trade.stop_distance)
        if kelly > 0:
            kelly_quantity = math.floor(total * kelly * self.config.kelly_multiplier / entry)
            quantity = min(quantity, kelly_quantity)

        if quantity * entry > portfolio.available_capital:
            quantity = math.floor(portfolio.available_capital / entry)

        quantity = max(0, quantity)
        return PositionSize(quantity, quantity * entry, risk_amount)

    def evaluate(self, stage_input: PortfolioInput) -> PortfolioResult:
        portfolio = stage_input.portfolio
        trade = stage_input.proposed_trade
        history = portfolio.trading_history

        kelly = self.kelly_fraction(history)
        risk = self.portfolio_risk(portfolio)
        positions = len(portfolio.open_positions)
        diversified = positions < portfolio.max_open_positions
        percent_allocated = safe_ratio(portfolio.allocated_capital, portfolio.total_capital) * 100

        failures = self._limit_failures(risk, positions, portfolio.max_open_positions, kelly, history)
        allowed = not failures

        if allowed:
            size = self.position_size(portfolio, trade, kelly)
        else:
            size = PositionSize(0, 0.0, 0.0)

        score = self._score(allowed, kelly, risk, positions, portfolio.max_open_positions, percent_allocated, history)
        warning = None if allowed else f"Position NOT allowed: {', '.join(failures)}"

        if not allowed:
            logger.info(f"{trade.symbol}: {warning}")

        return PortfolioResult(
            stage=self.stage,
            score=score,
            passed=allowed,
            reason=self._explain(score, allowed, risk, positions, portfolio.max_open_positions, kelly),
            metrics={
                "kelly_fraction": kelly,
                "kelly_position_size": kelly * self.config.kelly_multiplier,
                "portfolio_risk": {
                    "current_risk": risk.current_risk if math.isfinite(risk.current_risk) else None,
                    "projected_risk": risk.projected_risk if math.isfinite(risk.projected_risk) else None,
                    "max_risk_allowed": risk.max_risk_allowed,
                    "within_limits": risk.within_limits,
                },
                "diversification": {
                    "current_positions": positions,
                    "max_positions": portfolio.max_open_positions,
                    "within_limits": diversified,
                },
                "capital_allocation": {
                    "total": portfolio.total_capital,
                    "allocated": portfolio.allocated_capital,
                    "available": portfolio.available_capital,
                    "percent_allocated": percent_allocated,
                },
                "proposed_trade": trade.to_dict(),
            },
            position_allowed=allowed,
            warning=warning,
            quantity=size.quantity,
            capital_to_allocate=size.capital_to_allocate,
            risk_amount=size.risk_amount,
        )

    def _limit_failures(
        self,
        risk: PortfolioRisk,
        positions: int,
        max_positions: int,
        kelly: float,
        history: TradingHistory,
    ) -> list[str]:
        failures: list[str] = []
        if not risk.within_limits:
            failures.append(
                f"Portfolio risk too high ({risk.projected_risk:.1f}% > {risk.max_risk_allowed}%)"
            )
        if positions >= max_positions:
            failures.append(f"Max positions reached ({positions}/{max_positions})")
        if kelly <= 0:
            failures.append("Negative Kelly Criterion (no statistical edge)")
        if history.total_trades >= self.config.min_trades_for_stats:
            if history.win_rate < self.config.min_win_rate:
                failures.append(
                    f"Win rate too low ({history.win_rate:.0%} < {self.config.min_win_rate:.0%})"
                )
            if history.profit_factor < self.config.min_profit_factor:
                failures.append(
                    f"Profit factor too low ({history.profit_factor:.2f} < {self.config.min_profit_factor})"
                )
        return failures

    def _score(
        self,
        allowed: bool,
        kelly: float,
        risk: PortfolioRisk,
        positions: int,
        max_positions: int,
        percent_allocated: float,
        history: TradingHistory,
    ) -> float:
        if not allowed:
            return 0.0

        score = 100.0
        if risk.projected_risk > 8:
            score -= 20
        elif risk.projected_risk > 6:
            score -= 10

        usage = safe_ratio(positions, max_positions)
        if usage > 0.8:
            score -= 15
        elif usage > 0.6:
            score -= 5

        if percent_allocated > 80:
            score -= 15
        elif percent_allocated > 60:
            score -= 5

        if kelly > 0.15:
            score += 10
        elif kelly > 0.10:
            score += 5
        elif kelly < 0.05:
            score -= 10

        if history.total_trades >= self.config.min_trades_for_stats:
            if history.profit_factor > 2.0:
                score += 10
            elif history.profit_factor > 1.5:
                score += 5

        return clamp_score(score, "portfolio_score")

    @staticmethod
    def _explain(
        score: float,
        allowed: bool,
        risk: PortfolioRisk,
        positions: int,
        max_positions: int,
        kelly: float,
    ) -> str:
        if not allowed:
            return "Position NOT allowed"
        reasons = [
            "Position allowed",
            f"Portfolio risk: {risk.projected_risk:.1f}% (limit: {risk.max_risk_allowed}%)",
            f"Open positions: {positions}/{max_positions}",
            f"Kelly fraction: {kelly * 100:.1f}%",
        ]
        if score >= 80:
            reasons.append("Excellent portfolio health")
        elif score >= 60:
            reasons.append("Good portfolio health")
        else:
            reasons.append("Portfolio near limits, reduce position size")
        return ". ".join(reasons)
