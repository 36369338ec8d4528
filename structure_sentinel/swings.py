from __future__ import annotations

from typing import List, Sequence

from .models import Candle, Pivot, PIVOT_HIGH, PIVOT_LOW


def _check_window(left: int, right: int) -> None:
    if left < 1 or right < 1:
        raise ValueError(f"swing window must be >= 1 on both sides (left={left}, right={right})")


def is_swing_high(candles: Sequence[Candle], idx: int, left: int, right: int) -> bool:
    """Strict pivot high: ties with any neighbour in the window are rejected."""
    if idx - left < 0 or idx + right >= len(candles):
        return False
    pivot_high = candles[idx].high
    for i in range(idx - left, idx + right + 1):
        if i == idx:
            continue
        if pivot_high <= candles[i].high:
            return False
    return True


def is_swing_low(candles: Sequence[Candle], idx: int, left: int, right: int) -> bool:
    if idx - left < 0 or idx + right >= len(candles):
        return False
    pivot_low = candles[idx].low
    for i in range(idx - left, idx + right + 1):
        if i == idx:
            continue
        if pivot_low >= candles[i].low:
            return False
    return True


def pivots_at(candles: Sequence[Candle], idx: int, left: int, right: int) -> List[Pivot]:
    """Pivots confirmed at bar `idx`, HIGH before LOW."""
    out: List[Pivot] = []
    c = candles[idx]
    if is_swing_high(candles, idx, left, right):
        out.append(Pivot(index=idx, epoch=c.epoch, kind=PIVOT_HIGH, price=c.high))
    if is_swing_low(candles, idx, left, right):
        out.append(Pivot(index=idx, epoch=c.epoch, kind=PIVOT_LOW, price=c.low))
    return out


def detect_swings(candles: Sequence[Candle], left: int, right: int) -> List[Pivot]:
    """All confirmed pivots in ascending index order.

    Bars closer than `left` / `right` to either end of the series are never
    classified: they lack the context needed to confirm them yet.
    """
    _check_window(left, right)
    pivots: List[Pivot] = []
    for i in range(left, len(candles) - right):
        pivots.extend(pivots_at(candles, i, left, right))
    return pivots
