from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import (
    Candle,
    Pivot,
    StructureEvent,
    PIVOT_HIGH,
    PIVOT_LOW,
    BOS_UP,
    BOS_DOWN,
    CHOCH_UP,
    CHOCH_DOWN,
    TREND_BULLISH,
    TREND_BEARISH,
    TREND_UNKNOWN,
)
from .swings import pivots_at, _check_window

log = logging.getLogger("structure")


@dataclass
class PivotMem:
    last_high: Optional[Pivot] = None
    last_low: Optional[Pivot] = None


def directional_bar_count(candles: Sequence[Candle], start_idx: int, end_idx: int, direction: int) -> int:
    """Bar-to-bar closes moving in `direction` along the leg (start_idx, end_idx]."""
    count = 0
    for i in range(max(start_idx + 1, 1), min(end_idx, len(candles) - 1) + 1):
        ch = candles[i].close - candles[i - 1].close
        if (direction > 0 and ch > 0) or (direction < 0 and ch < 0):
            count += 1
    return count


class StructureClassifier:
    """Turns an ordered pivot stream into BOS / CHoCH events.

    The trend state is carried across calls for the life of the instance, so one
    classifier must be used per structure stream.
    """

    def __init__(self, *, min_impulse_bars: int = 0, min_leg_size: float = 0.0, require_body_break: bool = False) -> None:
        self.min_impulse_bars = int(min_impulse_bars)
        self.min_leg_size = float(min_leg_size)
        self.require_body_break = require_body_break
        self.trend = TREND_UNKNOWN
        self.piv = PivotMem()

    def reset(self) -> None:
        self.trend = TREND_UNKNOWN
        self.piv = PivotMem()

    def classify(self, pivots: Sequence[Pivot], candles: Sequence[Candle]) -> List[StructureEvent]:
        events: List[StructureEvent] = []
        for p in pivots:
            ev = self.on_pivot(p, candles)
            if ev is not None:
                events.append(ev)
        return events

    def on_pivot(self, p: Pivot, candles: Sequence[Candle]) -> Optional[StructureEvent]:
        ev: Optional[StructureEvent] = None
        if p.kind == PIVOT_HIGH:
            prev = self.piv.last_high
            if prev is not None and p.price > prev.price and self._body_break_ok(p, prev, candles, 1):
                ev = self._candidate(p, prev, self.piv.last_low, candles, 1)
            # Update pivot memory regardless of whether an event fired
            self.piv.last_high = p
        elif p.kind == PIVOT_LOW:
            prev = self.piv.last_low
            if prev is not None and p.price < prev.price and self._body_break_ok(p, prev, candles, -1):
                ev = self._candidate(p, prev, self.piv.last_high, candles, -1)
            self.piv.last_low = p
        return ev

    def _body_break_ok(self, p: Pivot, prev: Pivot, candles: Sequence[Candle], direction: int) -> bool:
        if not self.require_body_break:
            return True
        cur = candles[p.index]
        old = candles[prev.index]
        if direction > 0:
            return min(cur.open, cur.close) > max(old.open, old.close) and cur.close > old.high
        return max(cur.open, cur.close) < min(old.open, old.close) and cur.close < old.low

    def _is_impulsive(self, leg: float, bars: int) -> bool:
        checks = []
        if self.min_impulse_bars > 0:
            checks.append(bars >= self.min_impulse_bars)
        if self.min_leg_size > 0:
            checks.append(leg >= self.min_leg_size)
        return any(checks) if checks else True

    def _candidate(
        self,
        p: Pivot,
        broken: Pivot,
        origin: Optional[Pivot],
        candles: Sequence[Candle],
        direction: int,
    ) -> Optional[StructureEvent]:
        if origin is None or origin.index >= p.index:
            return None
        leg = (p.price - origin.price) if direction > 0 else (origin.price - p.price)
        bars = directional_bar_count(candles, origin.index, p.index, direction)
        if not self._is_impulsive(leg, bars):
            log.debug("break_not_impulsive dir=%d pivot=%s leg=%.5f bars=%d", direction, p.index, leg, bars)
            return None

        trend_before = self.trend
        if direction > 0:
            kind = CHOCH_UP if trend_before == TREND_BEARISH else BOS_UP
            self.trend = TREND_BULLISH
        else:
            kind = CHOCH_DOWN if trend_before == TREND_BULLISH else BOS_DOWN
            self.trend = TREND_BEARISH

        return StructureEvent(
            kind=kind,
            broken_pivot=broken,
            pivot=p,
            leg_start=origin,
            confirming_bar=candles[p.index],
            leg_magnitude=float(leg),
            directional_bar_count=int(bars),
            trend_before=trend_before,
        )


class CandleWindow:
    """Closed bars addressed by absolute index; the oldest ones can be dropped.

    `len()` counts every bar ever appended so pivot indices stay valid.
    Iteration yields the kept bars only.
    """

    def __init__(self) -> None:
        self.offset = 0
        self._bars: List[Candle] = []

    def __len__(self) -> int:
        return self.offset + len(self._bars)

    def __iter__(self):
        return iter(self._bars)

    def __getitem__(self, idx: int) -> Candle:
        if idx < 0:
            idx += len(self)
        if idx < self.offset:
            raise IndexError(f"bar {idx} was dropped (first kept bar is {self.offset})")
        return self._bars[idx - self.offset]

    def append(self, c: Candle) -> None:
        self._bars.append(c)

    def drop_before(self, idx: int) -> None:
        n = idx - self.offset
        if n > 0:
            del self._bars[:n]
            self.offset = idx


class StructureTracker:
    """Incremental pivot confirmation + classification over closed bars.

    With a `capacity`, bars older than both the confirmation window and the
    remembered pivots are dropped, and pivot/event history is capped.
    """

    def __init__(self, left: int, right: int, classifier: StructureClassifier, *, capacity: Optional[int] = None) -> None:
        _check_window(left, right)
        self.left = left
        self.right = right
        self.classifier = classifier
        self.capacity = max(int(capacity), left + right + 1) if capacity else None
        self.candles = CandleWindow()
        self.pivots: List[Pivot] = []
        self.events: List[StructureEvent] = []

    @property
    def trend(self) -> str:
        return self.classifier.trend

    def on_candle(self, c: Candle) -> List[StructureEvent]:
        """Consume a CLOSED candle. Returns the events confirmed by this close."""
        self.candles.append(c)
        confirm_idx = len(self.candles) - 1
        pivot_idx = confirm_idx - self.right
        if pivot_idx - self.left < 0:
            return []

        fired: List[StructureEvent] = []
        for p in pivots_at(self.candles, pivot_idx, self.left, self.right):
            self.pivots.append(p)
            ev = self.classifier.on_pivot(p, self.candles)
            if ev is not None:
                log.info(
                    "structure_event kind=%s pivot_epoch=%s price=%.5f broken=%.5f leg=%.5f bars=%d",
                    ev.kind,
                    p.epoch,
                    p.price,
                    ev.broken_pivot.price,
                    ev.leg_magnitude,
                    ev.directional_bar_count,
                )
                fired.append(ev)
        self.events.extend(fired)
        self._trim()
        return fired

    def _trim(self) -> None:
        if not self.capacity:
            return
        floor = len(self.candles) - self.capacity
        piv = self.classifier.piv
        for p in (piv.last_high, piv.last_low):
            if p is not None:
                floor = min(floor, p.index)
        self.candles.drop_before(floor)
        del self.pivots[:-self.capacity]
        del self.events[:-self.capacity]
