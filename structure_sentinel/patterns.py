from __future__ import annotations

from typing import Optional

from .models import Candle, LONG, SHORT


def is_bullish_engulfing(curr: Optional[Candle], prev: Optional[Candle], full_range: bool = False) -> bool:
    if curr is None or prev is None:
        return False
    curr_bull = curr.close > curr.open
    prev_bear = prev.close < prev.open
    body_engulf = curr.close >= prev.open and curr.open <= prev.close
    if not (curr_bull and prev_bear and body_engulf):
        return False
    if full_range:
        return curr.high >= prev.high and curr.low <= prev.low
    return True


def is_bearish_engulfing(curr: Optional[Candle], prev: Optional[Candle], full_range: bool = False) -> bool:
    if curr is None or prev is None:
        return False
    curr_bear = curr.close < curr.open
    prev_bull = prev.close > prev.open
    body_engulf = curr.open >= prev.close and curr.close <= prev.open
    if not (curr_bear and prev_bull and body_engulf):
        return False
    if full_range:
        return curr.high >= prev.high and curr.low <= prev.low
    return True


def engulfing_direction(curr: Optional[Candle], prev: Optional[Candle], full_range: bool = False) -> Optional[str]:
    if is_bullish_engulfing(curr, prev, full_range):
        return LONG
    if is_bearish_engulfing(curr, prev, full_range):
        return SHORT
    return None
