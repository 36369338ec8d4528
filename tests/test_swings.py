import pytest

from structure_sentinel.models import Candle, PIVOT_HIGH, PIVOT_LOW
from structure_sentinel.swings import detect_swings, is_swing_high, is_swing_low, pivots_at


def _c(idx: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(epoch=idx * 300, open=o, high=h, low=l, close=c)


def _flat(idx: int, px: float) -> Candle:
    return _c(idx, px, px, px, px)


def test_radius_one_pivots():
    candles = [_flat(i, px) for i, px in enumerate([10, 12, 8, 15, 9])]
    pivots = detect_swings(candles, 1, 1)
    assert [(p.kind, p.index, p.price) for p in pivots] == [
        (PIVOT_HIGH, 1, 12),
        (PIVOT_LOW, 2, 8),
        (PIVOT_HIGH, 3, 15),
    ]
    assert pivots[1].epoch == 600


def test_edges_are_never_classified():
    candles = [_flat(i, px) for i, px in enumerate([20, 12, 8, 15, 1])]
    idx = {p.index for p in detect_swings(candles, 1, 1)}
    assert 0 not in idx
    assert 4 not in idx
    assert not is_swing_high(candles, 0, 1, 1)
    assert not is_swing_low(candles, 4, 1, 1)


def test_ties_are_rejected():
    candles = [_flat(i, px) for i, px in enumerate([10, 12, 12, 9, 10])]
    highs = [p for p in detect_swings(candles, 1, 1) if p.kind == PIVOT_HIGH]
    assert highs == []


def test_outside_bar_emits_high_then_low():
    candles = [
        _c(0, 7, 10, 5, 8),
        _c(1, 8, 12, 3, 6),
        _c(2, 6, 11, 4, 9),
    ]
    kinds = [p.kind for p in pivots_at(candles, 1, 1, 1)]
    assert kinds == [PIVOT_HIGH, PIVOT_LOW]


def test_asymmetric_window():
    candles = [_flat(i, px) for i, px in enumerate([1, 2, 3, 9, 4, 5])]
    pivots = detect_swings(candles, 3, 1)
    assert [(p.kind, p.index) for p in pivots] == [(PIVOT_HIGH, 3)]


def test_window_must_be_positive():
    candles = [_flat(i, px) for i, px in enumerate([10, 12, 8])]
    with pytest.raises(ValueError):
        detect_swings(candles, 0, 1)
    with pytest.raises(ValueError):
        detect_swings(candles, 1, 0)
