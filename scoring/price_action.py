"""
Stage 2: Price action.

Detects supply/demand zones, order blocks and fair-value gaps on the
intraday series, reads market structure, and scores whether price is
sitting at a meaningful level.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Sequence

from config.constants import Bias, MarketStructure, PriceLocation, StageName
from core.domain.entities import Candle
from scoring.types import PriceActionInput, StageResult
from utils.numerical_validation import clamp_score

logger = logging.getLogger(__name__)

PASS_SCORE = 50.0
ZONE_TOLERANCE = 0.002
MAX_ZONES = 5


@dataclass(frozen=True)
class Zone:
    kind: str  # SUPPLY, DEMAND, ORDER_BLOCK, FVG
    high: float
    low: float
    strength: float
    tested: int = 0

    @property
    def fresh(self) -> bool:
        return self.tested == 0

    def contains(self, price: float, tolerance: float = ZONE_TOLERANCE) -> bool:
        return self.low * (1 - tolerance) <= price <= self.high * (1 + tolerance)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["fresh"] = self.fresh
        return data


def _mean_previous(candles: Sequence[Candle], index: int, attr) -> float:
    # Always divided by 10 even when fewer bars precede the zone
    window = candles[max(0, index - 10):index]
    return sum(attr(c) for c in window) / 10


class PriceActionScorer:
    """Zone and structure scorer for one intraday timeframe."""

    stage = StageName.PRICE_ACTION

    def evaluate(self, stage_input: PriceActionInput) -> StageResult:
        candles = list(stage_input.candles)
        demand = self._find_zones(candles, bullish=True)
        supply = self._find_zones(candles, bullish=False)
        order_blocks = self._order_blocks(candles)
        gaps = self._fair_value_gaps(candles)

        structure = self._structure(candles)
        structure_break = self._structure_break(candles)
        sweep = self._liquidity_sweep(candles)
        location = self._locate(stage_input.current_price, demand, supply)
        bias = self._bias(location, structure, structure_break, sweep)

        score = self._score(location, demand, supply, structure, structure_break, sweep)

        return StageResult(
            stage=self.stage,
            score=score,
            passed=score >= PASS_SCORE,
            reason=self._explain(score, location, bias, structure_break),
            metrics={
                "timeframe": stage_input.timeframe,
                "price_level": location.value,
                "demand_zones": [z.to_dict() for z in demand],
                "supply_zones": [z.to_dict() for z in supply],
                "order_blocks": [z.to_dict() for z in order_blocks],
                "fair_value_gaps": [z.to_dict() for z in gaps],
                "market_structure": structure.value,
                "structure_break": structure_break,
                "liquidity_sweep": sweep,
                "trading_bias": bias.value,
            },
        )

    def _find_zones(self, candles: list[Candle], bullish: bool) -> list[Zone]:
        zones: list[Zone] = []
        for i in range(2, len(candles) - 2):
            prev, current = candles[i - 1], candles[i]
            if bullish:
                impulsive = current.close > current.open and current.close > prev.high
            else:
                impulsive = current.close < current.open and current.close < prev.low
            if not impulsive or not current.volume > prev.volume * 1.5:
                continue
            zones.append(Zone(
                kind="DEMAND" if bullish else "SUPPLY",
                high=current.high,
                low=current.low,
                strength=self._zone_strength(candles, i),
                tested=self._count_touches(candles, current.low, current.high, i),
            ))
        zones.sort(key=lambda z: z.strength, reverse=True)
        return zones[:MAX_ZONES]

    def _zone_strength(self, candles: list[Candle], index: int) -> float:
        strength = 50.0
        current = candles[index]

        avg_volume = _mean_previous(candles, index, lambda c: c.volume)
        if current.volume > avg_volume * 1.5:
            strength += 20

        avg_range = _mean_previous(candles, index, lambda c: c.high - c.low)
        if current.high - current.low > avg_range * 1.3:
            strength += 15

        if index < len(candles) - 5:
            follow_through = abs(candles[index + 5].close - current.close)
            if follow_through > avg_range * 3:
                strength += 15

        return min(100.0, strength)

    @staticmethod
    def _count_touches(candles: list[Candle], low: float, high: float, start: int) -> int:
        return sum(1 for c in candles[start + 1:] if c.low <= high and c.high >= low)

    def _order_blocks(self, candles: list[Candle]) -> list[Zone]:
        blocks: list[Zone] = []
        for i in range(3, len(candles) - 1):
            base, move = candles[i - 1], candles[i]
            base_body = abs(base.close - base.open)
            move_body = abs(move.close - move.open)
            opposite = (base.close < base.open and move.close > move.open) or (
                base.close > base.open and move.close < move.open
            )
            if opposite and move_body > base_body * 2:
                blocks.append(Zone("ORDER_BLOCK", base.high, base.low, 80.0))
        return blocks[-10:]

    def _fair_value_gaps(self, candles: list[Candle]) -> list[Zone]:
        gaps: list[Zone] = []
        for i in range(1, len(candles) - 1):
            prev, current, nxt = candles[i - 1], candles[i], candles[i + 1]
            if nxt.low > prev.high and current.close > current.open:
                gaps.append(Zone("FVG", nxt.low, prev.high, 70.0))
            if nxt.high < prev.low and current.close < current.open:
                gaps.append(Zone("FVG", prev.low, nxt.high, 70.0))
        return gaps[-5:]

    def _structure(self, candles: list[Candle]) -> MarketStructure:
        if len(candles) < 20:
            return MarketStructure.RANGING
        recent = candles[-20:]
        recent_high = max(c.high for c in recent[-5:])
        previous_high = max(c.high for c in recent[:10])
        recent_low = min(c.low for c in recent[-5:])
        previous_low = min(c.low for c in recent[:10])

        if recent_high > previous_high and recent_low > previous_low:
            return MarketStructure.HIGHER_HIGHS
        if recent_high < previous_high and recent_low < previous_low:
            return MarketStructure.LOWER_LOWS
        return MarketStructure.RANGING

    def _structure_break(self, candles: list[Candle]) -> bool:
        if len(candles) < 10:
            return False
        first_half = candles[-10:-5]
        last_close = candles[-1].close
        return last_close > max(c.high for c in first_half) or last_close < min(c.low for c in first_half)

    def _liquidity_sweep(self, candles: list[Candle]) -> bool:
        if len(candles) < 5:
            return False
        current, prev = candles[-1], candles[-2]
        bullish = current.low < prev.low and current.close > current.open and current.close > prev.close
        bearish = current.high > prev.high and current.close < current.open and current.close < prev.close
        return bullish or bearish

    def _locate(self, price: float, demand: list[Zone], supply: list[Zone]) -> PriceLocation:
        if any(z.contains(price) for z in demand):
            return PriceLocation.AT_DEMAND
        if any(z.contains(price) for z in supply):
            return PriceLocation.AT_SUPPLY
        return PriceLocation.NO_ZONE

    def _bias(self, location: PriceLocation, structure: MarketStructure, broke: bool, swept: bool) -> Bias:
        bullish = bearish = 0
        if location is PriceLocation.AT_DEMAND:
            bullish += 2
        if location is PriceLocation.AT_SUPPLY:
            bearish += 2
        if structure is MarketStructure.HIGHER_HIGHS:
            bullish += 2
        if structure is MarketStructure.LOWER_LOWS:
            bearish += 2
        # Breaks and sweeps are read as reversal setups
        if broke:
            bullish += 1
        if swept:
            bullish += 1

        if bullish > bearish + 1:
            return Bias.BULLISH
        if bearish > bullish + 1:
            return Bias.BEARISH
        return Bias.NEUTRAL

    def _score(
        self,
        location: PriceLocation,
        demand: list[Zone],
        supply: list[Zone],
        structure: MarketStructure,
        broke: bool,
        swept: bool,
    ) -> float:
        score = 0.0
        if location in (PriceLocation.AT_DEMAND, PriceLocation.AT_SUPPLY):
            score += 40
            zones = demand if location is PriceLocation.AT_DEMAND else supply
            if zones and zones[0].fresh:
                score += 20
        else:
            score += 10

        score += 5 if structure is MarketStructure.RANGING else 20
        if broke:
            score += 10
        if swept:
            score += 10
        return clamp_score(score, "price_action_score")

    def _explain(self, score: float, location: PriceLocation, bias: Bias, broke: bool) -> str:
        reasons = [f"Price level: {location.value}", f"Trading bias: {bias.value}"]
        if broke:
            reasons.append("Structure break detected")
        if score >= 70:
            reasons.append("Strong price action setup")
        elif score >= 50:
            reasons.append("Moderate price action setup")
        else:
            reasons.append("Weak price action, wait for better setup")
        return ". ".join(reasons)
