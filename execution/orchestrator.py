"""
Signal Orchestrator Module.

Runs one evaluation end to end:
1. Stages 1-4 (regime, price action, multi-timeframe, volatility)
2. Stage 5 writer-ratio gate, with short-circuit on failure
3. Stage 6 risk regime
4. Proposed trade and stage 7 portfolio sizing
5. Weighted overall score and final decision
6. Persistence of the write-once signal record

Every call works over its own request and builds its own record; the
orchestrator holds no per-evaluation state and is safe to share between
threads. The store is the only shared resource.
"""

import asyncio
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from opentelemetry import trace

from config.constants import STAGE_ORDER, Recommendation, RejectionReason, StageName
from config.logging_config import LogCategory
from config.settings import Settings
from core.domain.entities import EvaluationRequest
from core.interfaces import SignalRepository, StageScorer
from execution.decision_logic import (
    approval_reason,
    calculate_stop_loss,
    calculate_target,
    compute_overall_score,
    derive_recommendation,
    derive_rejection_reason,
    lookup_atm_iv,
    proposed_signal_strength,
)
from execution.errors import EvaluationInputError, PersistenceError, StageEvaluationError
from execution.signals import EvaluationOutcome, ExecutionDetails, PersistedSignal, SignalRecord
from observability import LatencyTimer, SignalMetrics
from scoring import (
    MarketRegimeScorer,
    MultiTimeframeScorer,
    PortfolioScorer,
    PriceActionScorer,
    RiskRegimeScorer,
    VolatilityScorer,
    WriterRatioScorer,
)
from scoring.types import (
    MultiTimeframeInput,
    PortfolioInput,
    PortfolioResult,
    PriceActionInput,
    ProposedTrade,
    RegimeInput,
    RiskRegimeInput,
    RiskRegimeResult,
    StageResult,
    VolatilityInput,
    WriterRatioInput,
    WriterRatioResult,
)

logger = logging.getLogger(__name__)

_EXPECTED_RESULT = {
    StageName.WRITER_RATIO: WriterRatioResult,
    StageName.RISK_REGIME: RiskRegimeResult,
    StageName.PORTFOLIO: PortfolioResult,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StageScorers:
    """One scorer per pipeline stage."""

    regime: StageScorer
    price_action: StageScorer
    multi_timeframe: StageScorer
    volatility: StageScorer
    writer_ratio: StageScorer
    risk_regime: StageScorer
    portfolio: StageScorer

    @classmethod
    def default(cls, settings: Settings) -> "StageScorers":
        return cls(
            regime=MarketRegimeScorer(),
            price_action=PriceActionScorer(),
            multi_timeframe=MultiTimeframeScorer(),
            volatility=VolatilityScorer(),
            writer_ratio=WriterRatioScorer(settings.writer_ratio),
            risk_regime=RiskRegimeScorer(settings.risk_regime),
            portfolio=PortfolioScorer(settings.portfolio),
        )

    def for_stage(self, stage: StageName) -> StageScorer:
        return getattr(self, stage.value)


class SignalOrchestrator:
    """
    Coordinator for the seven-stage evaluation.

    Gate and soft rejections are normal outcomes and are persisted like
    approvals. A scorer that raises aborts the call with
    ``StageEvaluationError`` and nothing is stored; a store failure
    surfaces as ``PersistenceError`` carrying the computed record.
    """

    def __init__(
        self,
        settings: Settings,
        store: SignalRepository,
        scorers: Optional[StageScorers] = None,
        metrics: Optional[SignalMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tracer: Optional[trace.Tracer] = None,
    ):
        self.settings = settings
        self.store = store
        self.scorers = scorers or StageScorers.default(settings)
        self.metrics = metrics or SignalMetrics(enable_prometheus=settings.observability.enable_prometheus)
        self.clock = clock or _utc_now

        if tracer is not None:
            self.tracer = tracer
        elif settings.observability.enable_tracing:
            self.tracer = trace.get_tracer(__name__)
        else:
            self.tracer = None

    def _span(self, name: str):
        if self.tracer:
            return self.tracer.start_as_current_span(name)
        return nullcontext()

    def generate_signal(self, request: EvaluationRequest) -> EvaluationOutcome:
        """
        Evaluate one request and persist the resulting signal.

        Raises:
            EvaluationInputError: ATM IV missing while ``strict_atm_iv`` is set
            StageEvaluationError: A scorer raised
            PersistenceError: The store could not save the record
        """
        with LatencyTimer(self.metrics.record_latency), self._span("signal_orchestrator.generate_signal") as span:
            if span is not None:
                span.set_attribute("symbol", request.symbol)
                span.set_attribute("strike", request.strike)
                span.set_attribute("signal_type", request.signal_type.value)

            outcome = self._evaluate(request)

            if span is not None:
                span.set_attribute("recommendation", outcome.recommendation.value)
                span.set_attribute("overall_score", outcome.overall_score)

        self.metrics.record_evaluation(outcome.recommendation.value)
        return outcome

    async def generate_signal_async(self, request: EvaluationRequest) -> EvaluationOutcome:
        """Run ``generate_signal`` in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.generate_signal, request)

    def _evaluate(self, request: EvaluationRequest) -> EvaluationOutcome:
        evaluated_at = self.clock()
        trade_params = self.settings.trade
        timeframe = trade_params.price_action_timeframe
        market = request.market
        chain = request.option_chain

        logger.info(
            f"{LogCategory.PIPELINE} Evaluating {request.symbol} {request.strike:g} {request.option_type.value} "
            f"({request.signal_type.value})"
        )

        atm_iv, atm_iv_defaulted = self._resolve_atm_iv(request)

        results: dict[StageName, StageResult] = {}
        results[StageName.REGIME] = self._run_stage(
            StageName.REGIME,
            RegimeInput(
                symbol=request.symbol,
                spot_price=market.spot_price,
                vix_level=market.vix_level,
                candles=market.historical,
            ),
        )
        results[StageName.PRICE_ACTION] = self._run_stage(
            StageName.PRICE_ACTION,
            PriceActionInput(
                symbol=request.symbol,
                timeframe=timeframe,
                candles=market.series(timeframe),
                current_price=market.spot_price,
            ),
        )
        results[StageName.MULTI_TIMEFRAME] = self._run_stage(
            StageName.MULTI_TIMEFRAME,
            MultiTimeframeInput(
                symbol=request.symbol,
                one_hour=market.one_hour,
                fifteen_min=market.fifteen_min,
                five_min=market.five_min,
            ),
        )
        results[StageName.VOLATILITY] = self._run_stage(
            StageName.VOLATILITY,
            VolatilityInput(
                symbol=request.symbol,
                vix_current=market.vix_level,
                vix_history=market.vix_history,
                strike_iv=atm_iv,
                atm_iv=atm_iv,
                candles=market.historical,
            ),
        )
        writer = self._run_stage(
            StageName.WRITER_RATIO,
            WriterRatioInput(
                symbol=request.symbol,
                strikes=chain.strikes,
                atm_strike=chain.atm_strike,
                target_strike=chain.target_strike,
                signal_type=request.signal_type,
            ),
        )
        results[StageName.WRITER_RATIO] = writer

        if not writer.gate_passed:
            return self._gate_rejection(request, results, evaluated_at, atm_iv_defaulted)

        risk = self._run_stage(
            StageName.RISK_REGIME,
            RiskRegimeInput(symbol=request.symbol, context=request.risk_context, vix_level=market.vix_level),
        )
        results[StageName.RISK_REGIME] = risk
        if not risk.trading_allowed:
            logger.info(f"{LogCategory.RISK} {request.symbol}: trading not recommended ({risk.restriction})")

        trade = self._propose_trade(request, results)
        portfolio = self._run_stage(
            StageName.PORTFOLIO,
            PortfolioInput(portfolio=request.portfolio, proposed_trade=trade),
        )
        results[StageName.PORTFOLIO] = portfolio

        scores = {stage: result.score for stage, result in results.items()}
        overall = compute_overall_score(
            scores, self.settings.weights, round_score=self.settings.thresholds.round_overall_score
        )
        recommendation = derive_recommendation(
            gate_passed=True,
            trading_allowed=risk.trading_allowed,
            position_allowed=portfolio.position_allowed,
            overall_score=overall,
            thresholds=self.settings.thresholds,
        )
        logger.info(f"{LogCategory.PIPELINE} {request.symbol}: overall score {overall:.2f}/100 -> {recommendation.value}")

        if recommendation is Recommendation.EXECUTE:
            execution = ExecutionDetails(
                entry_price=trade.entry_price,
                target=trade.target,
                stop_loss=trade.stop_loss,
                quantity=portfolio.quantity,
                capital_to_allocate=portfolio.capital_to_allocate,
                risk_amount=portfolio.risk_amount,
            )
            reason = approval_reason(overall)
            rejection_reason = None
        else:
            execution = None
            reason = derive_rejection_reason(
                recommendation,
                trading_allowed=risk.trading_allowed,
                position_allowed=portfolio.position_allowed,
                restriction=risk.restriction,
                portfolio_warning=portfolio.warning,
            )
            rejection_reason = reason

        record = self._build_record(request, results, recommendation, reason, overall, evaluated_at, execution)
        persisted = self._persist(record)

        return EvaluationOutcome(
            success=recommendation is Recommendation.EXECUTE,
            signal=persisted,
            analysis=dict(results),
            overall_score=overall,
            recommendation=recommendation,
            rejection_reason=rejection_reason,
            execution_details=execution,
            atm_iv_defaulted=atm_iv_defaulted,
        )

    def _resolve_atm_iv(self, request: EvaluationRequest) -> tuple[float, bool]:
        atm_iv = lookup_atm_iv(request.option_chain)
        if atm_iv is not None:
            return atm_iv, False

        trade_params = self.settings.trade
        if trade_params.strict_atm_iv:
            raise EvaluationInputError(
                f"{request.symbol}: no usable IV at ATM strike {request.option_chain.atm_strike:g}"
            )

        logger.warning(
            f"{LogCategory.DATA} {request.symbol}: no usable IV at ATM strike {request.option_chain.atm_strike:g}, "
            f"using default {trade_params.default_atm_iv:g}%"
        )
        self.metrics.record_atm_iv_fallback()
        return trade_params.default_atm_iv, True

    def _run_stage(self, stage: StageName, stage_input) -> StageResult:
        scorer = self.scorers.for_stage(stage)
        with self._span(f"stage.{stage.value}") as span:
            try:
                result = scorer.evaluate(stage_input)
            except Exception as e:
                logger.error(f"Stage {stage.number} ({stage.value}) raised: {e}")
                raise StageEvaluationError(stage, e) from e

            expected = _EXPECTED_RESULT.get(stage, StageResult)
            if not isinstance(result, expected) or result.stage is not stage:
                raise StageEvaluationError(
                    stage, TypeError(f"expected {expected.__name__} for {stage.value}, got {result!r}")
                )
            if span is not None:
                span.set_attribute("score", result.score)
                span.set_attribute("passed", result.passed)

        logger.debug(f"Stage {stage.number} ({stage.value}) score {result.score:.1f}")
        self.metrics.record_stage_score(stage.value, result.score)
        return result

    def _propose_trade(self, request: EvaluationRequest, results: dict[StageName, StageResult]) -> ProposedTrade:
        # Fixed percentage band around spot; stage 2 zones are not consulted
        entry = request.market.spot_price
        bullish = request.is_bullish
        params = self.settings.trade
        return ProposedTrade(
            symbol=request.symbol,
            entry_price=entry,
            stop_loss=calculate_stop_loss(entry, bullish, params.stop_loss_pct),
            target=calculate_target(entry, bullish, params.target_pct),
            signal_strength=proposed_signal_strength({s: r.score for s, r in results.items()}),
        )

    def _gate_rejection(
        self,
        request: EvaluationRequest,
        results: dict[StageName, StageResult],
        evaluated_at: datetime,
        atm_iv_defaulted: bool,
    ) -> EvaluationOutcome:
        writer = results[StageName.WRITER_RATIO]
        logger.warning(
            f"{LogCategory.GATE} {request.symbol}: writer ratio {writer.writer_ratio:.2f}x below "
            f"{self.settings.writer_ratio.min_ratio}x, rejected at gate"
        )
        self.metrics.record_gate_veto()

        for stage in (StageName.RISK_REGIME, StageName.PORTFOLIO):
            results[stage] = StageResult.empty(stage, reason="Skipped: writer ratio gate failed")

        reason = RejectionReason.WRITER_RATIO_FAILED.value
        record = self._build_record(request, results, Recommendation.REJECT, reason, 0.0, evaluated_at, None)
        persisted = self._persist(record)

        return EvaluationOutcome(
            success=False,
            signal=persisted,
            analysis=dict(results),
            overall_score=0.0,
            recommendation=Recommendation.REJECT,
            rejection_reason=reason,
            atm_iv_defaulted=atm_iv_defaulted,
        )

    def _build_record(
        self,
        request: EvaluationRequest,
        results: dict[StageName, StageResult],
        recommendation: Recommendation,
        reason: str,
        overall_score: float,
        evaluated_at: datetime,
        execution: Optional[ExecutionDetails],
    ) -> SignalRecord:
        return SignalRecord(
            symbol=request.symbol,
            strike=request.strike,
            expiry=request.expiry,
            option_type=request.option_type,
            signal_type=request.signal_type,
            status=recommendation.to_status(),
            status_reason=reason,
            overall_score=overall_score,
            stage_results=tuple(results[stage] for stage in STAGE_ORDER),
            evaluated_at=evaluated_at,
            execution=execution,
            timeframe=self.settings.trade.price_action_timeframe,
            organization_id=request.organization_id,
            user_id=request.user_id,
        )

    def _persist(self, record: SignalRecord) -> PersistedSignal:
        try:
            persisted = self.store.save_signal(record)
        except PersistenceError:
            self.metrics.record_persistence_failure()
            logger.error(f"{LogCategory.PERSIST} {record.symbol}: {record.status.value} signal computed but not stored")
            raise
        logger.info(f"{LogCategory.PERSIST} {record.symbol}: stored {record.status.value} signal {persisted.signal_id}")
        return persisted
