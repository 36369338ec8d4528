import pytest

from structure_sentinel.candles import (
    APPENDED,
    IGNORED,
    REPLACED,
    CandleSeries,
    CandleStore,
    close_index_at_or_before,
    tf_seconds,
)
from structure_sentinel.models import Candle


def _c(epoch: int, px: float) -> Candle:
    return Candle(epoch=epoch, open=px, high=px + 1, low=px - 1, close=px)


def test_tf_seconds():
    assert tf_seconds("5m") == 300
    assert tf_seconds("1h") == 3600
    assert tf_seconds("2H") == 7200
    assert tf_seconds("1d") == 86400
    with pytest.raises(ValueError):
        tf_seconds("5x")
    with pytest.raises(ValueError):
        tf_seconds("")


def test_append_replace_and_ignore():
    s = CandleSeries("5m", capacity=10)
    assert s.append_or_replace(_c(0, 1)) == APPENDED
    assert s.append_or_replace(_c(300, 2)) == APPENDED
    assert s.append_or_replace(_c(300, 3)) == REPLACED
    assert len(s) == 2
    assert s.last.close == 3
    assert s.append_or_replace(_c(0, 9)) == IGNORED
    assert [c.close for c in s] == [1, 3]


def test_capacity_evicts_oldest():
    s = CandleSeries("5m", capacity=3)
    for i in range(5):
        s.append_or_replace(_c(i * 300, i))
    assert len(s) == 3
    assert s[0].epoch == 600
    assert s.last.epoch == 1200


def test_merge_length_never_shrinks():
    s = CandleSeries("5m", capacity=100)
    updates = [0, 0, 300, 300, 300, 600, 300, 900, 900]
    prev_len = 0
    for e in updates:
        s.append_or_replace(_c(e, e / 100))
        assert len(s) >= prev_len
        assert len(s) - prev_len <= 1
        prev_len = len(s)
    assert [c.epoch for c in s] == [0, 300, 600, 900]


def test_views():
    s = CandleSeries("5m")
    s.load([_c(i * 300, i) for i in range(4)])
    assert [c.epoch for c in s.view_since(600)] == [600, 900]
    assert [c.epoch for c in s.closed()] == [0, 300, 600]
    assert s.last_at_or_before(700).epoch == 600
    assert s.last_at_or_before(-1) is None


def test_store_routes_by_timeframe():
    store = CandleStore(["5m", "15m"], capacity=50)
    store.append_or_replace("5m", _c(0, 1))
    store.append_or_replace("15m", _c(0, 2))
    store.append_or_replace("15m", _c(900, 3))
    assert len(store["5m"]) == 1
    assert [c.close for c in store.view_since("15m", 900)] == [3]


def test_close_index_at_or_before():
    closes = [300, 600, 900]
    assert close_index_at_or_before(closes, 299) == -1
    assert close_index_at_or_before(closes, 300) == 0
    assert close_index_at_or_before(closes, 899) == 1
    assert close_index_at_or_before(closes, 5000) == 2
