"""
Tests for the single-value technical indicators.
"""

import numpy as np
import pytest
from hypothesis import given, strategies as st

from core.domain.entities import Candle
from scoring import indicators
from tests.factories import make_candles


def bar(high: float, low: float, close: float = None) -> Candle:
    close = (high + low) / 2 if close is None else close
    return Candle(open=close, high=high, low=low, close=close, volume=100)


class TestEma:
    def test_sma_seeded(self):
        # seed = mean(1..5) = 3, then each step lags the price by 2
        assert indicators.ema(list(range(1, 11)), 5) == pytest.approx(8.0)

    def test_short_series_returns_last_price(self):
        assert indicators.ema([4.0, 5.0], 20) == 5.0

    def test_empty(self):
        assert indicators.ema([], 20) == 0.0

    @given(st.floats(min_value=0.01, max_value=1e5), st.integers(min_value=1, max_value=60))
    def test_constant_series(self, price, period):
        assert indicators.ema([price] * 60, period) == pytest.approx(price)


class TestRsi:
    def test_too_short_is_neutral(self):
        assert indicators.rsi([1.0] * 10, 14) == 50.0

    def test_no_losses(self):
        assert indicators.rsi(list(range(30)), 14) == 100.0

    def test_no_gains(self):
        assert indicators.rsi(list(range(30, 0, -1)), 14) == 0.0

    def test_balanced_moves(self):
        prices = [100.0 + (i % 2) for i in range(15)]
        assert indicators.rsi(prices, 14) == pytest.approx(50.0)

    def test_only_last_window_counts(self):
        # Early losses fall outside the 14-change window
        prices = [200.0 - i for i in range(20)] + [100.0 + i for i in range(15)]
        assert indicators.rsi(prices, 14) == 100.0


class TestMacd:
    def test_signal_is_ninety_percent_of_line(self):
        result = indicators.macd([100.0 + i for i in range(40)])
        assert result.value > 0
        assert result.signal == pytest.approx(result.value * 0.9)
        assert result.histogram == pytest.approx(result.value * 0.1)


class TestAdx:
    def test_too_short(self):
        assert indicators.adx(make_candles(14), 14) == 0.0

    def test_one_sided_trend(self):
        # Rising highs and lows: all directional movement is positive
        assert indicators.adx(make_candles(30, step=15, spread=40), 14) == pytest.approx(100.0)

    def test_flat_market(self):
        candles = [bar(101, 99, 100) for _ in range(20)]
        assert indicators.adx(candles, 14) == 0.0


class TestHistoricalVolatility:
    def test_insufficient_points(self):
        assert indicators.historical_volatility([100.0] * 20, min_points=21) == 0.0

    def test_constant_prices(self):
        assert indicators.historical_volatility([100.0] * 30) == 0.0

    def test_non_positive_prices(self):
        assert indicators.historical_volatility([100.0] * 25 + [0.0]) == 0.0

    def test_annualised_percent(self):
        prices = [100.0 if i % 2 == 0 else 110.0 for i in range(30)]
        returns = np.diff(np.log(prices))
        expected = returns.std() * np.sqrt(252) * 100
        assert indicators.historical_volatility(prices) == pytest.approx(expected)


class TestSwingLevels:
    def test_single_peak(self):
        candles = [bar(1, 0.5), bar(2, 1.5), bar(5, 4.5), bar(2, 1.5), bar(1, 0.5)]
        assert indicators.swing_levels(candles) == [5]

    def test_single_trough(self):
        candles = [bar(10, 9), bar(9, 8), bar(8, 1), bar(9, 8), bar(10, 9)]
        assert indicators.swing_levels(candles) == [1]

    def test_monotonic_series_has_no_swings(self):
        assert indicators.swing_levels(make_candles(30)) == []

    def test_lookback_limits_window(self):
        peak = [bar(1, 0.5), bar(2, 1.5), bar(5, 4.5), bar(2, 1.5), bar(1, 0.5)]
        candles = peak + make_candles(10, start=50)
        assert indicators.swing_levels(candles, lookback=10) == []
