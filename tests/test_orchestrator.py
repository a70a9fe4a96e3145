"""
Tests for SignalOrchestrator.

Stub scorers pin every stage score so the gate, decision precedence,
persistence and error paths can be checked exactly. A final class runs
the real scorers end to end.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import HealthCheck, given, settings as hypothesis_settings, strategies as st

from config.constants import (
    STAGE_ORDER,
    Recommendation,
    RejectionReason,
    SignalDirection,
    SignalStatus,
    StageName,
)
from config.settings import Settings, TradeParameters
from execution.errors import EvaluationInputError, PersistenceError, StageEvaluationError
from execution.orchestrator import SignalOrchestrator, StageScorers
from execution.signal_store import InMemorySignalStore
from observability import SignalMetrics
from tests.factories import (
    FixedScorer,
    FrozenClock,
    RaisingScorer,
    make_chain,
    make_request,
    make_scorers,
    stage_result,
)


class FailingStore(InMemorySignalStore):
    def save_signal(self, record):
        raise PersistenceError("disk full", record=record)


@pytest.fixture
def store():
    return InMemorySignalStore()


@pytest.fixture
def metrics():
    return SignalMetrics(enable_prometheus=False)


def build(settings, store, scorers, metrics=None, **kwargs) -> SignalOrchestrator:
    return SignalOrchestrator(
        settings,
        store,
        scorers=scorers,
        metrics=metrics or SignalMetrics(enable_prometheus=False),
        clock=kwargs.pop("clock", FrozenClock(datetime(2026, 10, 14, 11, tzinfo=timezone.utc))),
        **kwargs,
    )


class TestApprovedPath:
    def test_all_stages_strong_executes(self, settings, store, evaluation_request):
        orchestrator = build(settings, store, make_scorers())

        outcome = orchestrator.generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.EXECUTE
        assert outcome.success is True
        assert outcome.overall_score == pytest.approx(80.0)
        assert outcome.rejection_reason is None
        assert outcome.signal.record.status is SignalStatus.APPROVED
        assert outcome.signal.record.status_reason == "All stages passed. Overall score: 80/100"
        assert len(store) == 1

    def test_execution_details_from_trade_and_portfolio(self, settings, store, evaluation_request):
        orchestrator = build(settings, store, make_scorers())

        details = orchestrator.generate_signal(evaluation_request).execution_details

        assert details is not None
        assert details.entry_price == 22000
        assert details.stop_loss == pytest.approx(21560.0)
        assert details.target == pytest.approx(23100.0)
        assert details.quantity == 10
        assert details.capital_to_allocate == 220_000.0
        assert details.risk_amount == 20_000.0
        assert outcome_record_matches(store, details)

    def test_put_trade_mirrors_stop_and_target(self, settings, store):
        orchestrator = build(settings, store, make_scorers())
        request = make_request(signal_type=SignalDirection.BUY_PUT)

        details = orchestrator.generate_signal(request).execution_details

        assert details.stop_loss == pytest.approx(22440.0)
        assert details.target == pytest.approx(20900.0)

    def test_analysis_covers_all_stages(self, settings, store, evaluation_request):
        outcome = build(settings, store, make_scorers()).generate_signal(evaluation_request)

        assert list(outcome.analysis) == list(STAGE_ORDER)
        assert all(not r.skipped for r in outcome.analysis.values())
        assert outcome.signal.record.stage_results == tuple(outcome.analysis.values())


def outcome_record_matches(store, details) -> bool:
    [stored] = store.list_signals()
    return stored.record.execution == details


class TestGatekeeper:
    def test_gate_failure_rejects_without_running_later_stages(self, settings, store, evaluation_request):
        risk = RaisingScorer(AssertionError("stage 6 must not run"))
        portfolio = RaisingScorer(AssertionError("stage 7 must not run"))
        scorers = make_scorers(
            writer_ratio=stage_result(StageName.WRITER_RATIO, 30.0, gate_passed=False),
            risk_regime=risk,
            portfolio=portfolio,
        )

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.REJECT
        assert outcome.success is False
        assert outcome.rejection_reason == RejectionReason.WRITER_RATIO_FAILED.value
        assert outcome.gate_rejected
        assert outcome.overall_score == 0.0
        assert outcome.execution_details is None
        assert risk.calls == 0
        assert portfolio.calls == 0

    def test_gate_failure_persists_placeholders_for_skipped_stages(self, settings, store, evaluation_request):
        scorers = make_scorers(writer_ratio=stage_result(StageName.WRITER_RATIO, 30.0, gate_passed=False))

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)
        record = store.get_signal(outcome.signal.signal_id).record

        assert record.status is SignalStatus.REJECTED
        assert record.status_reason == "WRITER_RATIO_FAILED"
        assert record.result(StageName.RISK_REGIME).skipped
        assert record.result(StageName.PORTFOLIO).skipped
        assert record.result(StageName.PORTFOLIO).score == 0.0
        assert record.result(StageName.REGIME).score == 80.0
        assert record.execution is None

    @hypothesis_settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        scores=st.lists(st.floats(min_value=0, max_value=100), min_size=4, max_size=4),
        gate_score=st.floats(min_value=0, max_value=100),
    )
    def test_failed_gate_always_rejects(self, settings, scores, gate_score):
        stage_scores = dict(zip(STAGE_ORDER[:4], scores))
        scorers = make_scorers(
            stage_scores,
            writer_ratio=stage_result(StageName.WRITER_RATIO, gate_score, gate_passed=False),
            risk_regime=stage_result(StageName.RISK_REGIME, 100.0),
            portfolio=stage_result(StageName.PORTFOLIO, 100.0),
        )

        outcome = build(settings, InMemorySignalStore(), scorers).generate_signal(make_request())

        assert outcome.recommendation is Recommendation.REJECT
        assert outcome.rejection_reason == "WRITER_RATIO_FAILED"


class TestDecisionPrecedence:
    def test_trading_not_allowed_waits_with_restriction(self, settings, store, evaluation_request):
        scorers = make_scorers(
            risk_regime=stage_result(
                StageName.RISK_REGIME, 20.0, trading_allowed=False, restriction="MAJOR_EVENT_NEAR"
            ),
        )

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.WAIT
        assert outcome.success is False
        assert outcome.rejection_reason == "MAJOR_EVENT_NEAR"
        assert outcome.signal.record.status is SignalStatus.WAIT
        assert outcome.execution_details is None

    def test_trading_not_allowed_beats_position_rejection(self, settings, store, evaluation_request):
        scorers = make_scorers(
            risk_regime=stage_result(StageName.RISK_REGIME, 40.0, trading_allowed=False, restriction="LUNCH_HOUR"),
            portfolio=stage_result(StageName.PORTFOLIO, 0.0, position_allowed=False, warning="Max positions"),
        )

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.WAIT
        assert outcome.rejection_reason == "LUNCH_HOUR"

    def test_position_not_allowed_rejects_with_warning(self, settings, store, evaluation_request):
        warning = "Position NOT allowed: Max positions reached (5/5)"
        scorers = make_scorers(
            portfolio=stage_result(StageName.PORTFOLIO, 0.0, position_allowed=False, warning=warning),
        )

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.REJECT
        assert outcome.rejection_reason == warning
        assert outcome.signal.record.status is SignalStatus.REJECTED

    def test_position_not_allowed_without_warning_falls_back(self, settings, store, evaluation_request):
        scorers = make_scorers(portfolio=stage_result(StageName.PORTFOLIO, 0.0, position_allowed=False))

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.rejection_reason == "PORTFOLIO_LIMITS"

    def test_middling_score_waits_as_weak_signal(self, settings, store, evaluation_request):
        scores = {stage: 60.0 for stage in StageName}

        outcome = build(settings, store, make_scorers(scores)).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.WAIT
        assert outcome.rejection_reason == "WEAK_SIGNAL"
        # Soft rejections keep the computed score
        assert outcome.overall_score == pytest.approx(60.0)
        assert outcome.signal.record.overall_score == pytest.approx(60.0)

    def test_low_score_rejects(self, settings, store, evaluation_request):
        scores = {stage: 40.0 for stage in StageName}

        outcome = build(settings, store, make_scorers(scores)).generate_signal(evaluation_request)

        assert outcome.recommendation is Recommendation.REJECT
        assert outcome.rejection_reason == "LOW_OVERALL_SCORE"

    def test_gate_weight_counts_double(self, settings, store, evaluation_request):
        # (6 * 80 + 2 * 40) / 8 = 70
        at_threshold = make_scorers({StageName.WRITER_RATIO: 40.0})
        # (6 * 80 + 2 * 38) / 8 = 69.5
        below = make_scorers({StageName.WRITER_RATIO: 38.0})

        assert build(settings, store, at_threshold).generate_signal(evaluation_request).recommendation is (
            Recommendation.EXECUTE
        )
        assert build(settings, store, below).generate_signal(evaluation_request).recommendation is (
            Recommendation.WAIT
        )

    def test_fractional_scores_meeting_threshold_execute(self, settings, store, evaluation_request):
        # (79.1 + 60.1 + 75.7 + 76.4 + 2 * 58.1 + 77.7 + 74.8) / 8 = 70
        values = [79.1, 60.1, 75.7, 76.4, 58.1, 77.7, 74.8]
        scorers = make_scorers(dict(zip(STAGE_ORDER, values)))

        outcome = build(settings, store, scorers).generate_signal(evaluation_request)

        assert outcome.overall_score == 70.0
        assert outcome.recommendation is Recommendation.EXECUTE
        assert outcome.signal.record.status is SignalStatus.APPROVED

    def test_rounding_is_opt_in(self, store, evaluation_request):
        rounded = Settings(_env_file=None, thresholds={"round_overall_score": True})
        below = make_scorers({StageName.WRITER_RATIO: 38.0})

        outcome = build(rounded, store, below).generate_signal(evaluation_request)

        assert outcome.overall_score == 70.0
        assert outcome.recommendation is Recommendation.EXECUTE


class TestProposedTrade:
    def test_portfolio_receives_fixed_band_trade(self, settings, store, evaluation_request):
        portfolio = FixedScorer(stage_result(StageName.PORTFOLIO))
        scores = {StageName.REGIME: 60.0, StageName.PRICE_ACTION: 90.0}
        scorers = make_scorers(scores, portfolio=portfolio)

        build(settings, store, scorers).generate_signal(evaluation_request)

        [portfolio_input] = portfolio.inputs
        trade = portfolio_input.proposed_trade
        assert portfolio_input.portfolio == evaluation_request.portfolio
        assert trade.entry_price == evaluation_request.market.spot_price
        assert trade.stop_loss == pytest.approx(22000 * 0.98)
        assert trade.target == pytest.approx(22000 * 1.05)
        # Mean of stages 1-6: (60 + 90 + 80 * 4) / 6
        assert trade.signal_strength == pytest.approx(470 / 6)

    def test_stop_ignores_price_action_zones(self, settings, store, evaluation_request):
        # Stage 2 reporting a nearby demand zone does not move the stop
        zone_result = stage_result(
            StageName.PRICE_ACTION, 80.0,
            metrics={"demand_zones": [{"high": 21950.0, "low": 21900.0}]},
        )
        portfolio = FixedScorer(stage_result(StageName.PORTFOLIO))
        scorers = make_scorers(price_action=zone_result, portfolio=portfolio)

        build(settings, store, scorers).generate_signal(evaluation_request)

        assert portfolio.inputs[0].proposed_trade.stop_loss == pytest.approx(21560.0)

    def test_configured_band(self, store, evaluation_request):
        custom = Settings(_env_file=None, trade=TradeParameters(stop_loss_pct=0.01, target_pct=0.03))

        details = build(custom, store, make_scorers()).generate_signal(evaluation_request).execution_details

        assert details.stop_loss == pytest.approx(21780.0)
        assert details.target == pytest.approx(22660.0)


class TestAtmImpliedVolatility:
    def test_uses_atm_call_iv(self, settings, store, evaluation_request):
        volatility = FixedScorer(stage_result(StageName.VOLATILITY))
        outcome = build(settings, store, make_scorers(volatility=volatility)).generate_signal(evaluation_request)

        stage_input = volatility.inputs[0]
        assert stage_input.atm_iv == 15.0
        assert stage_input.strike_iv == 15.0
        assert outcome.atm_iv_defaulted is False

    @pytest.mark.parametrize("atm_call_iv", [None, 0.0])
    def test_missing_iv_defaults_to_twenty(self, settings, store, metrics, atm_call_iv):
        volatility = FixedScorer(stage_result(StageName.VOLATILITY))
        request = make_request(option_chain=make_chain(atm_call_iv=atm_call_iv))

        outcome = build(settings, store, make_scorers(volatility=volatility), metrics).generate_signal(request)

        assert volatility.inputs[0].atm_iv == 20.0
        assert outcome.atm_iv_defaulted is True
        assert outcome.recommendation is Recommendation.EXECUTE
        assert metrics.export()["counters"]["atm_iv_fallbacks"] == 1

    def test_strict_mode_raises_before_any_stage(self, store):
        strict = Settings(_env_file=None, trade=TradeParameters(strict_atm_iv=True))
        regime = FixedScorer(stage_result(StageName.REGIME))
        request = make_request(option_chain=make_chain(atm_call_iv=None))

        with pytest.raises(EvaluationInputError):
            build(strict, store, make_scorers(regime=regime)).generate_signal(request)

        assert regime.inputs == []
        assert len(store) == 0


class TestFaults:
    @pytest.mark.parametrize("stage", list(StageName))
    def test_scorer_exception_aborts_without_persisting(self, settings, store, evaluation_request, stage):
        boom = ZeroDivisionError("division by zero")
        scorers = make_scorers(**{stage.value: RaisingScorer(boom)})

        with pytest.raises(StageEvaluationError) as exc_info:
            build(settings, store, scorers).generate_signal(evaluation_request)

        assert exc_info.value.stage is stage
        assert exc_info.value.__cause__ is boom
        assert len(store) == 0

    def test_wrong_result_type_is_a_stage_fault(self, settings, store, evaluation_request):
        # A plain StageResult carries no gate flag
        scorers = make_scorers(writer_ratio=FixedScorer(stage_result(StageName.REGIME)))

        with pytest.raises(StageEvaluationError) as exc_info:
            build(settings, store, scorers).generate_signal(evaluation_request)

        assert exc_info.value.stage is StageName.WRITER_RATIO
        assert len(store) == 0

    def test_persistence_failure_propagates_with_record(self, settings, metrics, evaluation_request):
        orchestrator = build(settings, FailingStore(), make_scorers(), metrics)

        with pytest.raises(PersistenceError) as exc_info:
            orchestrator.generate_signal(evaluation_request)

        assert exc_info.value.record is not None
        assert exc_info.value.record.status is SignalStatus.APPROVED
        assert metrics.export()["counters"]["persistence_failures"] == 1

    def test_persistence_failure_on_gate_rejection(self, settings, evaluation_request):
        scorers = make_scorers(writer_ratio=stage_result(StageName.WRITER_RATIO, 10.0, gate_passed=False))

        with pytest.raises(PersistenceError) as exc_info:
            build(settings, FailingStore(), scorers).generate_signal(evaluation_request)

        assert exc_info.value.record.status_reason == "WRITER_RATIO_FAILED"

    def test_persistence_error_is_not_a_stage_error(self):
        assert not issubclass(PersistenceError, StageEvaluationError)


class TestDeterminism:
    def test_same_request_same_decision_new_identity(self, settings, store, evaluation_request):
        orchestrator = build(settings, store, make_scorers())

        first = orchestrator.generate_signal(evaluation_request)
        second = orchestrator.generate_signal(evaluation_request)

        assert first.overall_score == second.overall_score
        assert first.recommendation is second.recommendation
        assert first.signal.record.stage_results == second.signal.record.stage_results
        assert first.signal.signal_id != second.signal.signal_id
        assert store.count_signals() == 2

    def test_evaluated_at_from_clock(self, settings, store, evaluation_request):
        clock = FrozenClock(datetime(2026, 10, 14, 11, 5, tzinfo=timezone.utc))

        outcome = build(settings, store, make_scorers(), clock=clock).generate_signal(evaluation_request)

        assert outcome.signal.record.evaluated_at == datetime(2026, 10, 14, 11, 5, tzinfo=timezone.utc)

    def test_instrument_identity_carried_to_record(self, settings, store, evaluation_request):
        record = build(settings, store, make_scorers()).generate_signal(evaluation_request).signal.record

        assert record.symbol == "NIFTY"
        assert record.strike == 22000
        assert record.organization_id == "org-1"
        assert record.user_id == "user-1"
        assert record.timeframe == "5m"


class TestMetricsAndAsync:
    def test_metrics_recorded(self, settings, store, metrics, evaluation_request):
        scorers = make_scorers(writer_ratio=stage_result(StageName.WRITER_RATIO, 10.0, gate_passed=False))
        orchestrator = build(settings, store, scorers, metrics)

        orchestrator.generate_signal(evaluation_request)
        snapshot = metrics.export()

        assert snapshot["counters"]["evaluations"] == {"REJECT": 1}
        assert snapshot["counters"]["gate_vetoes"] == 1
        assert snapshot["stage_scores"]["writer_ratio"]["count"] == 1
        assert "portfolio" not in snapshot["stage_scores"]
        assert snapshot["latency"]["count"] == 1

    @pytest.mark.asyncio
    async def test_generate_signal_async(self, settings, store, evaluation_request):
        orchestrator = build(settings, store, make_scorers())

        outcome = await orchestrator.generate_signal_async(evaluation_request)

        assert outcome.recommendation is Recommendation.EXECUTE
        assert store.get_signal(outcome.signal.signal_id) is not None

    def test_tracing_disabled(self, store, evaluation_request):
        quiet = Settings(_env_file=None, observability={"enable_tracing": False})
        orchestrator = build(quiet, store, make_scorers())

        assert orchestrator.tracer is None
        assert orchestrator.generate_signal(evaluation_request).success


class TestDefaultScorers:
    """Real scorers over the shared sample request."""

    def test_end_to_end_persists_full_record(self, settings, store, evaluation_request):
        orchestrator = SignalOrchestrator(settings, store, metrics=SignalMetrics(enable_prometheus=False))

        outcome = orchestrator.generate_signal(evaluation_request)
        record = outcome.signal.record

        assert outcome.analysis[StageName.WRITER_RATIO].gate_passed
        assert outcome.analysis[StageName.WRITER_RATIO].writer_ratio == pytest.approx(3.0)
        assert all(not r.skipped for r in record.stage_results)
        assert all(0 <= r.score <= 100 for r in record.stage_results)
        assert outcome.recommendation in set(Recommendation)
        assert (outcome.execution_details is not None) == (outcome.recommendation is Recommendation.EXECUTE)
        assert record.vix_level == 14.0

    def test_put_against_put_writers_fails_gate(self, settings, store):
        request = make_request(signal_type=SignalDirection.BUY_PUT)
        orchestrator = SignalOrchestrator(settings, store, metrics=SignalMetrics(enable_prometheus=False))

        outcome = orchestrator.generate_signal(request)

        assert outcome.recommendation is Recommendation.REJECT
        assert outcome.rejection_reason == "WRITER_RATIO_FAILED"
        assert outcome.analysis[StageName.WRITER_RATIO].writer_ratio == pytest.approx(1 / 3)

    def test_default_bundle_uses_settings(self, settings):
        scorers = StageScorers.default(settings)

        assert scorers.writer_ratio.config == settings.writer_ratio
        assert scorers.for_stage(StageName.PORTFOLIO) is scorers.portfolio
