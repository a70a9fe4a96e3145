"""
Stage 3: Multi-timeframe alignment.

Compares the trend on the 1h, 15m and 5m series and rewards agreement,
trend strength and price levels that coincide across timeframes.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from config.constants import MIN_CONFLUENCE_BARS, MIN_TREND_BARS, Alignment, Bias, EntrySignal, StageName
from core.domain.entities import Candle
from scoring import indicators
from scoring.types import MultiTimeframeInput, StageResult
from utils.numerical_validation import clamp_score

logger = logging.getLogger(__name__)

PASS_SCORE = 50.0
CONFLUENCE_TOLERANCE = 0.003


@dataclass(frozen=True)
class TimeframeTrend:
    direction: Bias
    strength: float
    ema20: float
    ema50: float
    rsi: float

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "strength": self.strength,
            "ema20": self.ema20,
            "ema50": self.ema50,
            "rsi": self.rsi,
        }


def analyze_trend(candles: Sequence[Candle]) -> TimeframeTrend:
    """Direction and strength of one timeframe from EMA20/EMA50 and RSI."""
    if len(candles) < MIN_TREND_BARS:
        last = candles[-1].close if candles else 0.0
        return TimeframeTrend(Bias.NEUTRAL, 0.0, last, last, 50.0)

    prices = indicators.closes(candles)
    ema20 = indicators.ema(prices, 20)
    ema50 = indicators.ema(prices, 50)
    rsi = indicators.rsi(prices, 14)
    price = float(prices[-1])

    if price > ema20 > ema50 and rsi > 50:
        direction = Bias.BULLISH
    elif price < ema20 < ema50 and rsi < 50:
        direction = Bias.BEARISH
    else:
        return TimeframeTrend(Bias.NEUTRAL, 30.0, ema20, ema50, rsi)

    strength = 50.0
    spread = abs(ema20 - ema50) / ema50 * 100 if ema50 else 0.0
    if spread > 2:
        strength += 20
    elif spread > 1:
        strength += 10

    distance = (price - ema20) / ema20 * 100 if ema20 else 0.0
    if direction is Bias.BULLISH and distance > 1:
        strength += 15
    if direction is Bias.BEARISH and distance < -1:
        strength += 15

    if direction is Bias.BULLISH and 55 < rsi < 75:
        strength += 15
    if direction is Bias.BEARISH and 25 < rsi < 45:
        strength += 15

    return TimeframeTrend(direction, min(100.0, strength), ema20, ema50, rsi)


def determine_alignment(one_hour: TimeframeTrend, fifteen: TimeframeTrend, five: TimeframeTrend) -> Alignment:
    directions = [one_hour.direction, fifteen.direction, five.direction]
    if all(d is Bias.BULLISH for d in directions) or all(d is Bias.BEARISH for d in directions):
        return Alignment.PERFECT
    if one_hour.direction is fifteen.direction and one_hour.direction is not Bias.NEUTRAL:
        return Alignment.STRONG
    if directions.count(Bias.BULLISH) == 2 or directions.count(Bias.BEARISH) == 2:
        return Alignment.WEAK
    return Alignment.CONFLICTING


class MultiTimeframeScorer:
    stage = StageName.MULTI_TIMEFRAME

    def evaluate(self, stage_input: MultiTimeframeInput) -> StageResult:
        one_hour = analyze_trend(stage_input.one_hour)
        fifteen = analyze_trend(stage_input.fifteen_min)
        five = analyze_trend(stage_input.five_min)

        alignment = determine_alignment(one_hour, fifteen, five)
        zones = self._confluence_zones(stage_input)
        entry = self._entry_signal(alignment, one_hour, fifteen, five)

        score = {
            Alignment.PERFECT: 50.0,
            Alignment.STRONG: 35.0,
            Alignment.WEAK: 15.0,
            Alignment.CONFLICTING: 0.0,
        }[alignment]
        score += (one_hour.strength + fifteen.strength + five.strength) / 3 * 0.3
        if zones:
            score += min(20, len(zones) * 5)
        score = clamp_score(score, "multi_timeframe_score")

        return StageResult(
            stage=self.stage,
            score=score,
            passed=score >= PASS_SCORE,
            reason=self._explain(score, alignment, entry),
            metrics={
                "alignment": alignment.value,
                "one_hour_trend": one_hour.to_dict(),
                "fifteen_min_trend": fifteen.to_dict(),
                "five_min_trend": five.to_dict(),
                "confluence_zones": zones,
                "entry_signal": entry.value,
            },
        )

    def _confluence_zones(self, stage_input: MultiTimeframeInput) -> list[dict]:
        levels: list[float] = []
        for series in (stage_input.one_hour, stage_input.fifteen_min, stage_input.five_min):
            if len(series) >= MIN_CONFLUENCE_BARS:
                levels.extend(indicators.swing_levels(series, lookback=50))

        zones = []
        for i, level in enumerate(levels):
            if level <= 0:
                continue
            count = 1 + sum(
                1 for other in levels[i + 1:] if abs(level - other) / level < CONFLUENCE_TOLERANCE
            )
            if count >= 2:
                zones.append({"level": level, "strength": count * 33.33})

        zones.sort(key=lambda z: z["strength"], reverse=True)
        return zones[:5]

    def _entry_signal(
        self,
        alignment: Alignment,
        one_hour: TimeframeTrend,
        fifteen: TimeframeTrend,
        five: TimeframeTrend,
    ) -> EntrySignal:
        # STRONG alignment still waits for 5m confirmation
        if alignment in (Alignment.PERFECT, Alignment.STRONG):
            if one_hour.direction is Bias.BULLISH and five.direction is Bias.BULLISH:
                return EntrySignal.BUY
            if one_hour.direction is Bias.BEARISH and five.direction is Bias.BEARISH:
                return EntrySignal.SELL
        return EntrySignal.WAIT

    def _explain(self, score: float, alignment: Alignment, entry: EntrySignal) -> str:
        reasons = [f"Timeframe alignment: {alignment.value}", f"Entry signal: {entry.value}"]
        if score >= 70:
            reasons.append("All major timeframes aligned")
        elif score >= 50:
            reasons.append("Major timeframes aligned")
        elif score >= 30:
            reasons.append("Partial alignment")
        else:
            reasons.append("Conflicting timeframes, do not trade")
        return ". ".join(reasons)
