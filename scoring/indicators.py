"""
Technical indicators shared by the scorers.

These are the simplified single-value forms used by the
production dashboards (SMA-seeded EMA, last-window RSI, single-window ADX,
MACD signal approximated as 0.9 x MACD), not the smoothed textbook series.
Each function returns the latest value only.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from config.constants import TRADING_DAYS_PER_YEAR
from core.domain.entities import Candle


@dataclass(frozen=True)
class MACD:
    value: float
    signal: float
    histogram: float


def closes(candles: Sequence[Candle]) -> np.ndarray:
    return np.asarray([c.close for c in candles], dtype=np.float64)


def highs(candles: Sequence[Candle]) -> np.ndarray:
    return np.asarray([c.high for c in candles], dtype=np.float64)


def lows(candles: Sequence[Candle]) -> np.ndarray:
    return np.asarray([c.low for c in candles], dtype=np.float64)


def ema(prices: Sequence[float] | np.ndarray, period: int) -> float:
    """
    Exponential moving average seeded with the SMA of the first ``period`` prices.

    With fewer than ``period`` prices the last price is returned (0.0 when empty).
    """
    values = np.asarray(prices, dtype=np.float64)
    if values.size < period:
        return float(values[-1]) if values.size else 0.0

    multiplier = 2.0 / (period + 1)
    value = float(values[:period].mean())
    for price in values[period:]:
        value = (float(price) - value) * multiplier + value
    return value


def rsi(prices: Sequence[float] | np.ndarray, period: int = 14) -> float:
    """RSI over the last ``period`` changes. 50 when too short, 100 with no losses."""
    values = np.asarray(prices, dtype=np.float64)
    if values.size < period + 1:
        return 50.0

    changes = np.diff(values[-(period + 1):])
    avg_gain = changes[changes > 0].sum() / period
    avg_loss = -changes[changes < 0].sum() / period
    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def macd(prices: Sequence[float] | np.ndarray) -> MACD:
    line = ema(prices, 12) - ema(prices, 26)
    signal = line * 0.9
    return MACD(value=line, signal=signal, histogram=line - signal)


def adx(candles: Sequence[Candle], period: int = 14) -> float:
    """Directional index over a single window of the last ``period`` bars."""
    if len(candles) < period + 1:
        return 0.0

    h = highs(candles)[-(period + 1):]
    l = lows(candles)[-(period + 1):]
    c = closes(candles)[-(period + 1):]

    up_move = h[1:] - h[:-1]
    down_move = l[:-1] - l[1:]
    plus_dm = np.where((up_move > down_move) & (up_move > 0), up_move, 0.0).sum()
    minus_dm = np.where((down_move > up_move) & (down_move > 0), down_move, 0.0).sum()

    true_range = np.maximum.reduce([
        h[1:] - l[1:],
        np.abs(h[1:] - c[:-1]),
        np.abs(l[1:] - c[:-1]),
    ]).sum()
    if true_range <= 0:
        return 0.0

    plus_di = plus_dm / true_range * 100
    minus_di = minus_dm / true_range * 100
    if plus_di + minus_di == 0:
        return 0.0
    return float(abs(plus_di - minus_di) / (plus_di + minus_di) * 100)


def historical_volatility(prices: Sequence[float] | np.ndarray, min_points: int = 21) -> float:
    """Annualised close-to-close volatility in percent (population std of log returns)."""
    values = np.asarray(prices, dtype=np.float64)
    if values.size < min_points or np.any(values <= 0):
        return 0.0
    returns = np.diff(np.log(values))
    return float(returns.std() * np.sqrt(TRADING_DAYS_PER_YEAR) * 100)


def swing_levels(candles: Sequence[Candle], lookback: int = 50) -> list[float]:
    """Five-bar swing highs and lows within the last ``lookback`` bars."""
    recent = list(candles)[-lookback:]
    levels: list[float] = []
    for i in range(2, len(recent) - 2):
        window = recent[i - 2:i + 3]
        current = recent[i]
        others = window[:2] + window[3:]
        if all(current.high > o.high for o in others):
            levels.append(current.high)
        if all(current.low < o.low for o in others):
            levels.append(current.low)
    return levels
