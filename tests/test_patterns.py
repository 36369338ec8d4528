from structure_sentinel.models import Candle, LONG, SHORT
from structure_sentinel.patterns import engulfing_direction, is_bearish_engulfing, is_bullish_engulfing


def _c(o: float, h: float, l: float, c: float) -> Candle:
    return Candle(epoch=0, open=o, high=h, low=l, close=c)


def test_bullish_engulfing_strict_and_full_range():
    prev = _c(10, 11, 9, 9.5)
    curr = _c(9, 12, 8, 11)
    assert is_bullish_engulfing(curr, prev)
    assert is_bullish_engulfing(curr, prev, full_range=True)
    assert engulfing_direction(curr, prev) == LONG
    assert not is_bearish_engulfing(curr, prev)


def test_full_range_needs_wicks_engulfed():
    prev = _c(10, 13, 9, 9.5)
    curr = _c(9, 12, 8, 11)
    assert is_bullish_engulfing(curr, prev)
    assert not is_bullish_engulfing(curr, prev, full_range=True)


def test_bearish_engulfing():
    prev = _c(9.5, 11, 9, 10)
    curr = _c(11, 12, 8, 9)
    assert is_bearish_engulfing(curr, prev)
    assert engulfing_direction(curr, prev, full_range=True) == SHORT


def test_same_colour_bars_never_engulf():
    prev = _c(9, 11, 8, 10)
    curr = _c(8, 12, 7, 11)
    assert engulfing_direction(curr, prev) is None


def test_missing_bar():
    assert engulfing_direction(_c(9, 12, 8, 11), None) is None
    assert not is_bearish_engulfing(None, _c(9, 12, 8, 11))
