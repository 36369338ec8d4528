from __future__ import annotations

import logging
from bisect import bisect_right
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

from .models import Candle

log = logging.getLogger("candles")

APPENDED = "appended"
REPLACED = "replaced"
IGNORED = "ignored"


def tf_seconds(tf: str) -> int:
    """Granularity of a timeframe label such as '5m', '1h', '2h' or '1d'."""
    tf = (tf or "").strip().lower()
    if not tf or not tf[:-1].isdigit():
        raise ValueError(f"Unsupported timeframe: {tf!r}")
    n = int(tf[:-1])
    if tf.endswith("m"):
        return n * 60
    if tf.endswith("h"):
        return n * 3600
    if tf.endswith("d"):
        return n * 86400
    raise ValueError(f"Unsupported timeframe: {tf!r}")


class CandleSeries:
    """Per-timeframe bars, oldest first, bounded by a ring buffer."""

    def __init__(self, timeframe: str, capacity: Optional[int] = 1000) -> None:
        self.timeframe = timeframe
        self.granularity = tf_seconds(timeframe)
        self.capacity = max(1, int(capacity)) if capacity else None
        self._bars: Deque[Candle] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self):
        return iter(self._bars)

    def __getitem__(self, idx: int) -> Candle:
        return self._bars[idx]

    @property
    def last(self) -> Optional[Candle]:
        return self._bars[-1] if self._bars else None

    def load(self, candles: Iterable[Candle]) -> None:
        """Replace the whole series with a history snapshot."""
        self._bars.clear()
        for c in candles:
            self.append_or_replace(c)

    def append_or_replace(self, c: Candle) -> str:
        last = self.last
        if last is not None:
            if c.epoch == last.epoch:
                self._bars[-1] = c
                return REPLACED
            if c.epoch < last.epoch:
                log.warning("out_of_order_candle tf=%s epoch=%s last=%s", self.timeframe, c.epoch, last.epoch)
                return IGNORED
        self._bars.append(c)
        return APPENDED

    def view_since(self, epoch: int) -> List[Candle]:
        return [c for c in self._bars if c.epoch >= epoch]

    def closed(self) -> List[Candle]:
        """All bars except the newest, which is still forming on a live feed."""
        bars = list(self._bars)
        return bars[:-1]

    def last_at_or_before(self, epoch: int) -> Optional[Candle]:
        bars = list(self._bars)
        i = bisect_right([c.epoch for c in bars], epoch)
        return bars[i - 1] if i > 0 else None


class CandleStore:
    """One CandleSeries per timeframe for a single instrument."""

    def __init__(self, timeframes: Iterable[str], capacity: Optional[int] = 1000) -> None:
        self.series: Dict[str, CandleSeries] = {tf: CandleSeries(tf, capacity) for tf in timeframes}

    def __getitem__(self, tf: str) -> CandleSeries:
        return self.series[tf]

    def append_or_replace(self, tf: str, c: Candle) -> str:
        return self.series[tf].append_or_replace(c)

    def view_since(self, tf: str, epoch: int) -> List[Candle]:
        return self.series[tf].view_since(epoch)


def close_index_at_or_before(close_times: List[int], ts: int) -> int:
    """Index of the last bar whose close time is <= ts, or -1."""
    return bisect_right(close_times, ts) - 1
