"""
Tests for stage 1 market regime detection.
"""

import pytest

from config.constants import MarketRegime, TrendDirection, VixCategory
from scoring.regime import MarketRegimeScorer, Trend, categorize_vix
from scoring.types import RegimeInput
from tests.factories import make_candles


def evaluate(candles, vix: float = 14.0):
    return MarketRegimeScorer().evaluate(RegimeInput("NIFTY", 22000.0, vix, candles))


class TestVixCategory:
    @pytest.mark.parametrize(
        "vix,expected",
        [
            (9.0, VixCategory.LOW),
            (14.99, VixCategory.LOW),
            (15.0, VixCategory.MEDIUM),
            (19.99, VixCategory.MEDIUM),
            (20.0, VixCategory.HIGH),
            (29.99, VixCategory.HIGH),
            (30.0, VixCategory.EXTREME),
        ],
    )
    def test_boundaries(self, vix, expected):
        assert categorize_vix(vix) is expected


class TestRegimeClassification:
    def test_strong_uptrend(self):
        result = evaluate(make_candles(60, start=21000, step=15, spread=40))

        assert result.metrics["regime"] == MarketRegime.TRENDING_BULLISH.value
        assert result.metrics["trend_direction"] == TrendDirection.UP.value
        assert result.metrics["trend_strength"] == pytest.approx(100.0)
        assert result.metrics["indicators"]["adx"] == pytest.approx(100.0)
        assert result.metrics["market_sentiment"] == "BULLISH"
        # 40 regime + 30 trend strength + 20 low VIX + 10 ADX
        assert result.score == pytest.approx(100.0)
        assert result.passed

    def test_strong_downtrend(self):
        result = evaluate(make_candles(60, start=23000, step=-15, spread=40))

        assert result.metrics["regime"] == MarketRegime.TRENDING_BEARISH.value
        assert result.metrics["trend_direction"] == TrendDirection.DOWN.value
        assert result.metrics["market_sentiment"] == "BEARISH"

    def test_extreme_vix_forces_volatile(self):
        result = evaluate(make_candles(60, start=23000, step=-15, spread=40), vix=35.0)

        assert result.metrics["regime"] == MarketRegime.VOLATILE.value
        assert result.metrics["vix_category"] == VixCategory.EXTREME.value
        # 10 volatile + 30 trend strength + 0 VIX + 10 ADX
        assert result.score == pytest.approx(50.0)

    def test_short_history_is_sideways(self):
        result = evaluate(make_candles(10))

        assert result.metrics["trend_direction"] == TrendDirection.SIDEWAYS.value
        assert result.metrics["trend_strength"] == 0.0
        # ADX unavailable, so the regime reads as volatile
        assert result.metrics["regime"] == MarketRegime.VOLATILE.value
        assert result.score == pytest.approx(30.0)
        assert not result.passed

    def test_empty_history(self):
        result = evaluate([])

        assert result.metrics["key_levels"] == {"support": [], "resistance": []}
        assert result.score == pytest.approx(30.0)

    def test_ranging_and_uncertain(self):
        scorer = MarketRegimeScorer()
        sideways = Trend(TrendDirection.SIDEWAYS, 70.0)

        assert scorer._classify(sideways, VixCategory.LOW, 22.0) is MarketRegime.RANGING
        assert scorer._classify(sideways, VixCategory.LOW, 30.0) is MarketRegime.UNCERTAIN

    def test_key_levels_from_last_twenty_bars(self):
        candles = make_candles(60, start=1000, step=1, spread=2)
        levels = evaluate(candles).metrics["key_levels"]

        recent = candles[-20:]
        low = min(c.low for c in recent)
        high = max(c.high for c in recent)
        assert levels["support"] == pytest.approx([low * 0.99, low * 0.98])
        assert levels["resistance"] == pytest.approx([high * 1.01, high * 1.02])

    def test_reason_mentions_regime(self):
        result = evaluate(make_candles(60, start=21000, step=15, spread=40))
        assert result.reason.startswith("Market regime: TRENDING_BULLISH")
        assert "Strong favorable conditions" in result.reason
