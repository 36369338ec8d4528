from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import math

from .models import Candle


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def rma_next(prev: Optional[float], x: float, length: int) -> float:
    """Wilder's RMA (used by ATR / RSI / ADX)."""
    if length <= 1:
        return x
    if prev is None:
        return x
    alpha = 1.0 / float(length)
    return prev + alpha * (x - prev)


def sma(values: Sequence[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def sma_series(values: Sequence[Optional[float]], length: int) -> List[Optional[float]]:
    """Rolling mean; None until `length` consecutive ready inputs are seen."""
    out: List[Optional[float]] = []
    window: List[float] = []
    total = 0.0
    for v in values:
        if v is None:
            window.clear()
            total = 0.0
            out.append(None)
            continue
        window.append(v)
        total += v
        if len(window) > length:
            total -= window.pop(0)
        out.append(total / length if length > 0 and len(window) == length else None)
    return out


def ema_series(values: Sequence[float], length: int) -> List[Optional[float]]:
    """EMA seeded with the SMA of the first `length` values."""
    out: List[Optional[float]] = []
    prev: Optional[float] = None
    for i, v in enumerate(values):
        if length <= 0:
            out.append(None)
            continue
        if i < length - 1:
            out.append(None)
            continue
        if prev is None:
            prev = sum(values[i - length + 1:i + 1]) / float(length)
        else:
            prev = ema_next(prev, v, length)
        out.append(prev)
    return out


def _wilder_series(values: Sequence[float], length: int, start: int = 0) -> List[Optional[float]]:
    """Wilder smoothing with SMA seed at the first full window beginning at `start`."""
    out: List[Optional[float]] = [None] * len(values)
    if length <= 0:
        return out
    prev: Optional[float] = None
    for i in range(start, len(values)):
        if i - start < length - 1:
            continue
        if prev is None:
            prev = sum(values[i - length + 1:i + 1]) / float(length)
        else:
            prev = rma_next(prev, values[i], length)
        out[i] = prev
    return out


def bollinger_series(
    values: Sequence[float], length: int, mult: float
) -> Tuple[List[Optional[float]], List[Optional[float]], List[Optional[float]]]:
    """Upper / middle / lower bands (population standard deviation)."""
    upper: List[Optional[float]] = []
    middle: List[Optional[float]] = []
    lower: List[Optional[float]] = []
    for i in range(len(values)):
        if length <= 0 or i < length - 1:
            upper.append(None)
            middle.append(None)
            lower.append(None)
            continue
        window = values[i - length + 1:i + 1]
        mean = sum(window) / float(length)
        var = sum((x - mean) ** 2 for x in window) / float(length)
        sd = math.sqrt(var)
        upper.append(mean + mult * sd)
        middle.append(mean)
        lower.append(mean - mult * sd)
    return upper, middle, lower


def true_range_series(candles: Sequence[Candle]) -> List[float]:
    trs: List[float] = []
    for i, c in enumerate(candles):
        prev_close = candles[i - 1].close if i > 0 else c.close
        trs.append(true_range(c.high, c.low, prev_close))
    return trs


def atr_series(candles: Sequence[Candle], length: int = 14) -> List[Optional[float]]:
    """Wilder ATR; the first bar's TR is its high-low range."""
    return _wilder_series(true_range_series(candles), length)


def rsi_series(closes: Sequence[float], length: int = 14) -> List[Optional[float]]:
    """Wilder RSI; first value at index `length` (needs `length` price changes)."""
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n < length + 1:
        return out
    gains = [0.0] * n
    losses = [0.0] * n
    for i in range(1, n):
        ch = closes[i] - closes[i - 1]
        gains[i] = ch if ch > 0 else 0.0
        losses[i] = -ch if ch < 0 else 0.0
    avg_gain = _wilder_series(gains, length, start=1)
    avg_loss = _wilder_series(losses, length, start=1)
    for i in range(n):
        g, l = avg_gain[i], avg_loss[i]
        if g is None or l is None:
            continue
        if l == 0:
            out[i] = 100.0
        else:
            rs = g / l
            out[i] = 100.0 - (100.0 / (1.0 + rs))
    return out


def adx_series(candles: Sequence[Candle], length: int = 14) -> List[Optional[float]]:
    """Wilder ADX; DI ready at index `length`, ADX at `2 * length - 1`."""
    n = len(candles)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n < 2:
        return out
    trs = [0.0] * n
    plus_dm = [0.0] * n
    minus_dm = [0.0] * n
    for i in range(1, n):
        c, p = candles[i], candles[i - 1]
        up = c.high - p.high
        down = p.low - c.low
        plus_dm[i] = up if (up > down and up > 0) else 0.0
        minus_dm[i] = down if (down > up and down > 0) else 0.0
        trs[i] = true_range(c.high, c.low, p.close)

    atr = _wilder_series(trs, length, start=1)
    pdm = _wilder_series(plus_dm, length, start=1)
    mdm = _wilder_series(minus_dm, length, start=1)

    dx: List[float] = [0.0] * n
    first_dx: Optional[int] = None
    for i in range(n):
        if atr[i] is None or pdm[i] is None or mdm[i] is None:
            continue
        if first_dx is None:
            first_dx = i
        if atr[i] == 0:
            continue
        plus_di = 100.0 * pdm[i] / atr[i]
        minus_di = 100.0 * mdm[i] / atr[i]
        di_sum = plus_di + minus_di
        dx[i] = 0.0 if di_sum == 0 else 100.0 * abs(plus_di - minus_di) / di_sum

    if first_dx is None:
        return out
    return _wilder_series(dx, length, start=first_dx)


@dataclass
class IndicatorFrame:
    """Indicator samples aligned 1:1 with the source candles (None = not ready)."""
    ema_trend: List[Optional[float]] = field(default_factory=list)
    ema_fast: List[Optional[float]] = field(default_factory=list)
    ema_slow: List[Optional[float]] = field(default_factory=list)
    bb_upper: List[Optional[float]] = field(default_factory=list)
    bb_mid: List[Optional[float]] = field(default_factory=list)
    bb_lower: List[Optional[float]] = field(default_factory=list)
    atr: List[Optional[float]] = field(default_factory=list)
    atr_avg: List[Optional[float]] = field(default_factory=list)
    adx: List[Optional[float]] = field(default_factory=list)
    rsi: List[Optional[float]] = field(default_factory=list)

    def value(self, name: str, idx: int) -> Optional[float]:
        series = getattr(self, name)
        if idx < 0 or idx >= len(series):
            return None
        return series[idx]


class IndicatorEngine:
    def __init__(
        self,
        *,
        ema_trend: int = 50,
        ema_fast: int = 20,
        ema_slow: int = 50,
        bb_period: int = 20,
        bb_stddev: float = 2.0,
        atr_period: int = 14,
        atr_avg_period: int = 20,
        adx_period: int = 14,
        rsi_period: int = 14,
    ) -> None:
        self.ema_trend = ema_trend
        self.ema_fast = ema_fast
        self.ema_slow = ema_slow
        self.bb_period = bb_period
        self.bb_stddev = bb_stddev
        self.atr_period = atr_period
        self.atr_avg_period = atr_avg_period
        self.adx_period = adx_period
        self.rsi_period = rsi_period

    @property
    def min_band_bars(self) -> int:
        # Same warm-up the band/trend bias needs before it is evaluated.
        return max(self.bb_period, self.ema_trend) + 2

    def compute(self, candles: Sequence[Candle]) -> IndicatorFrame:
        closes = [c.close for c in candles]
        upper, middle, lower = bollinger_series(closes, self.bb_period, self.bb_stddev)
        atr = atr_series(candles, self.atr_period)
        return IndicatorFrame(
            ema_trend=ema_series(closes, self.ema_trend),
            ema_fast=ema_series(closes, self.ema_fast),
            ema_slow=ema_series(closes, self.ema_slow),
            bb_upper=upper,
            bb_mid=middle,
            bb_lower=lower,
            atr=atr,
            atr_avg=sma_series(atr, self.atr_avg_period),
            adx=adx_series(candles, self.adx_period),
            rsi=rsi_series(closes, self.rsi_period),
        )
