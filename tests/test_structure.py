import math

from structure_sentinel.models import (
    Candle,
    Pivot,
    PIVOT_HIGH,
    PIVOT_LOW,
    BOS_UP,
    CHOCH_DOWN,
    LONG,
    SHORT,
    TREND_BULLISH,
    TREND_BEARISH,
    TREND_UNKNOWN,
)
from structure_sentinel.structure import StructureClassifier, StructureTracker, directional_bar_count
from structure_sentinel.swings import detect_swings


def _c(idx: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(epoch=idx * 900, open=o, high=h, low=l, close=c)


def _flat_candles(n: int, px: float = 100.0):
    return [_c(i, px, px + 1, px - 1, px) for i in range(n)]


def _pv(idx: int, kind: str, price: float) -> Pivot:
    return Pivot(index=idx, epoch=idx * 900, kind=kind, price=price)


def _wave(n: int = 90):
    out = []
    prev = 100.0
    for i in range(n):
        px = 100.0 + 10.0 * math.sin(i / 3.0) + 0.5 * i
        o = px - 0.1 * (px - prev)
        out.append(_c(i, o, max(o, px) + 0.5, min(o, px) - 0.5, px))
        prev = px
    return out


def test_break_of_high_emits_bos_up():
    candles = _flat_candles(12)
    clf = StructureClassifier()
    pivots = [_pv(1, PIVOT_HIGH, 100), _pv(3, PIVOT_LOW, 90), _pv(5, PIVOT_HIGH, 105)]
    events = clf.classify(pivots, candles)

    assert len(events) == 1
    ev = events[0]
    assert ev.kind == BOS_UP
    assert ev.leg_magnitude == 15
    assert ev.broken_pivot.price == 100
    assert ev.leg_start.price == 90
    assert ev.side == LONG
    assert ev.trend_before == TREND_UNKNOWN
    assert ev.confirming_bar == candles[5]
    assert clf.trend == TREND_BULLISH


def test_opposite_break_is_choch():
    candles = _flat_candles(12)
    clf = StructureClassifier()
    pivots = [
        _pv(1, PIVOT_HIGH, 100),
        _pv(3, PIVOT_LOW, 90),
        _pv(5, PIVOT_HIGH, 105),
        _pv(7, PIVOT_LOW, 95),
        _pv(9, PIVOT_LOW, 85),
    ]
    events = clf.classify(pivots, candles)

    assert [e.kind for e in events] == [BOS_UP, CHOCH_DOWN]
    choch = events[1]
    # pivot memory moved to 95 even though no event fired there
    assert choch.broken_pivot.price == 95
    assert choch.leg_start.price == 105
    assert choch.leg_magnitude == 20
    assert choch.side == SHORT
    assert choch.trend_before == TREND_BULLISH
    assert clf.trend == TREND_BEARISH


def test_non_impulsive_break_is_ignored_but_memory_moves():
    candles = _flat_candles(12)
    clf = StructureClassifier(min_impulse_bars=3)
    pivots = [_pv(1, PIVOT_HIGH, 100), _pv(3, PIVOT_LOW, 90), _pv(5, PIVOT_HIGH, 105)]
    assert clf.classify(pivots, candles) == []
    assert clf.piv.last_high.price == 105
    assert clf.trend == TREND_UNKNOWN


def test_any_enabled_criterion_makes_a_leg_impulsive():
    candles = _flat_candles(12)
    pivots = [_pv(1, PIVOT_HIGH, 100), _pv(3, PIVOT_LOW, 90), _pv(5, PIVOT_HIGH, 105)]

    by_size = StructureClassifier(min_impulse_bars=3, min_leg_size=10)
    assert [e.kind for e in by_size.classify(pivots, candles)] == [BOS_UP]

    neither = StructureClassifier(min_impulse_bars=3, min_leg_size=20)
    assert neither.classify(pivots, candles) == []


def test_directional_bar_count():
    candles = [_c(i, px, px, px, px) for i, px in enumerate([1, 2, 3, 2, 4])]
    assert directional_bar_count(candles, 0, 4, 1) == 3
    assert directional_bar_count(candles, 0, 4, -1) == 1


def test_body_break_filter():
    candles = _flat_candles(8)
    # pivot high at 5 only wicks above the old high at 1
    candles[1] = _c(1, 99, 100, 98, 99.5)
    candles[5] = _c(5, 99, 105, 98, 99.8)
    pivots = [_pv(1, PIVOT_HIGH, 100), _pv(3, PIVOT_LOW, 90), _pv(5, PIVOT_HIGH, 105)]
    assert StructureClassifier(require_body_break=True).classify(pivots, candles) == []
    assert len(StructureClassifier(require_body_break=False).classify(pivots, candles)) == 1


def test_tracker_matches_batch():
    candles = _wave()
    batch = StructureClassifier().classify(detect_swings(candles, 3, 3), candles)

    tracker = StructureTracker(3, 3, StructureClassifier())
    streamed = []
    for c in candles:
        streamed.extend(tracker.on_candle(c))

    assert batch
    assert streamed == batch
    assert tracker.pivots == detect_swings(candles, 3, 3)


def test_classification_is_deterministic():
    candles = _wave()
    pivots = detect_swings(candles, 3, 3)
    a = StructureClassifier(min_impulse_bars=2).classify(pivots, candles)
    b = StructureClassifier(min_impulse_bars=2).classify(pivots, candles)
    assert a == b


def test_tracker_events_only_after_right_window():
    candles = _wave(20)
    tracker = StructureTracker(3, 3, StructureClassifier())
    for c in candles[:6]:
        tracker.on_candle(c)
    # index 3 is the first bar that can be confirmed, at the close of bar 6
    assert all(p.index <= 2 for p in tracker.pivots)
    tracker.on_candle(candles[6])
    assert all(p.index <= 3 for p in tracker.pivots)


def test_capped_tracker_keeps_recent_bars_only():
    candles = _wave(300)
    full = StructureTracker(3, 3, StructureClassifier(min_impulse_bars=2))
    capped = StructureTracker(3, 3, StructureClassifier(min_impulse_bars=2), capacity=20)
    a, b = [], []
    for c in candles:
        a.extend(full.on_candle(c))
        b.extend(capped.on_candle(c))

    assert a and a == b
    assert len(capped.candles) == 300
    assert capped.candles[299] == candles[299]
    assert len(list(capped.candles)) <= 60
    assert len(capped.pivots) <= 20
    assert capped.pivots == full.pivots[-len(capped.pivots):]
