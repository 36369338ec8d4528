from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .candles import tf_seconds
from .indicators import IndicatorFrame
from .models import (
    Candle,
    Signal,
    StructureEvent,
    LONG,
    SHORT,
    ROLE_HTF,
    ROLE_LTF,
    TREND_BULLISH,
    TREND_BEARISH,
)
from .modules import MEAN_REVERSION, CONTINUATION, STRUCTURE_PULLBACK
from .patterns import engulfing_direction

log = logging.getLogger("signals")

OVERBOUGHT = "overbought"
OVERSOLD = "oversold"
INSIDE = "inside"


@dataclass
class TimeframeContext:
    """Read-only view of one timeframe up to its last CLOSED bar."""
    role: str
    timeframe: str
    candles: Sequence[Candle]
    frame: IndicatorFrame
    index: int  # last closed bar, -1 when none
    events: List[StructureEvent] = field(default_factory=list)

    def bar(self, back: int = 0) -> Optional[Candle]:
        i = self.index - back
        if i < 0 or i >= len(self.candles):
            return None
        return self.candles[i]

    def value(self, name: str, back: int = 0) -> Optional[float]:
        return self.frame.value(name, self.index - back)

    @property
    def bars(self) -> int:
        return self.index + 1


@dataclass
class PullbackSetup:
    event: StructureEvent
    side: str
    set_bar: int
    deepest_retrace: float = 0.0


class SignalComposer:
    """Fuses band/trend bias, structure breaks and engulfing confirmation."""

    def __init__(self, strategy_cfg, *, min_htf_bars: int = 2) -> None:
        self.cfg = strategy_cfg
        self.enabled = set(strategy_cfg.modules)
        self.min_htf_bars = max(2, int(min_htf_bars))
        self.setup: Optional[PullbackSetup] = None
        self._bar_no = 0

    # ---- band / trend bias -------------------------------------------------

    def htf_bias(self, htf: TimeframeContext) -> Optional[Signal]:
        """Band/trend bias on the last closed higher-timeframe bar (no entry bar yet)."""
        if htf is None or htf.bars < self.min_htf_bars:
            return None
        curr, prev = htf.bar(0), htf.bar(1)
        upper = htf.value("bb_upper")
        lower = htf.value("bb_lower")
        mid = htf.value("bb_mid")
        ema = htf.value("ema_trend")
        if curr is None or prev is None or upper is None or lower is None or mid is None or ema is None:
            return None

        if curr.close >= upper:
            band_state = OVERBOUGHT
        elif curr.close <= lower:
            band_state = OVERSOLD
        else:
            band_state = INSIDE
        trend_state = TREND_BULLISH if curr.close > ema else (TREND_BEARISH if curr.close < ema else None)
        engulf = engulfing_direction(curr, prev)

        module = None
        bias = None
        if MEAN_REVERSION.name in self.enabled:
            if band_state == OVERBOUGHT and engulf == SHORT:
                module, bias = MEAN_REVERSION, SHORT
            elif band_state == OVERSOLD and engulf == LONG:
                module, bias = MEAN_REVERSION, LONG
        if module is None and CONTINUATION.name in self.enabled:
            if engulf == LONG and curr.close > ema:
                module, bias = CONTINUATION, LONG
            elif engulf == SHORT and curr.close < ema:
                module, bias = CONTINUATION, SHORT
        if module is None:
            return None

        return Signal(
            timeframe_role=ROLE_HTF,
            timeframe=htf.timeframe,
            module=module,
            bias=bias,
            reference_bar=curr,
            band_state=band_state,
            trend_state=trend_state,
            anchor_high=curr.high,
            anchor_low=curr.low,
            band_mid=mid,
            anchor_epoch=curr.epoch,
            extra={
                "bb_upper": upper,
                "bb_lower": lower,
                "ema_trend": ema,
                "rsi": htf.value("rsi"),
            },
        )

    def _aligned(self, bias: str, ltf: TimeframeContext, etf: TimeframeContext) -> bool:
        if engulfing_direction(ltf.bar(0), ltf.bar(1)) != bias:
            return False
        if self.cfg.require_etf_confirm and etf is not ltf:
            return engulfing_direction(etf.bar(0), etf.bar(1)) == bias
        return True

    # ---- structure pullback ------------------------------------------------

    def _ema_side(self, ctx: TimeframeContext) -> Optional[str]:
        fast = ctx.value("ema_fast")
        slow = ctx.value("ema_slow")
        if fast is None or slow is None:
            return None
        if fast > slow:
            return LONG
        if fast < slow:
            return SHORT
        return None

    def _strength_ok(self, etf: TimeframeContext) -> Optional[bool]:
        atr = etf.value("atr")
        atr_avg = etf.value("atr_avg")
        adx = etf.value("adx")
        if atr is None or atr_avg is None or adx is None:
            return None
        return atr > atr_avg or adx > float(self.cfg.adx_threshold)

    def _clear_setup(self, reason: str) -> None:
        if self.setup is not None:
            log.info("pullback_cleared side=%s reason=%s", self.setup.side, reason)
        self.setup = None

    def _on_structure_events(self, htf: Optional[TimeframeContext], ltf: TimeframeContext, etf: TimeframeContext) -> None:
        for ev in ltf.events:
            # A newer break always supersedes a pending setup
            self._clear_setup("superseded")
            if ev.leg_magnitude <= 0:
                continue
            htf_side = self._ema_side(htf) if htf is not None else None
            etf_side = self._ema_side(etf)
            if htf_side != ev.side or etf_side != ev.side:
                log.debug("pullback_trend_mismatch kind=%s htf=%s etf=%s", ev.kind, htf_side, etf_side)
                continue
            deepest = self._retrace_since_pivot(ev, ltf, etf)
            if deepest > float(self.cfg.max_retrace):
                log.info("pullback_not_armed kind=%s side=%s reason=over_retraced retrace=%.3f", ev.kind, ev.side, deepest)
                continue
            self.setup = PullbackSetup(event=ev, side=ev.side, set_bar=self._bar_no, deepest_retrace=deepest)
            log.info(
                "pullback_armed kind=%s side=%s leg_end=%.5f leg=%.5f retrace=%.3f",
                ev.kind,
                ev.side,
                ev.leg_end,
                ev.leg_magnitude,
                deepest,
            )

    @staticmethod
    def _retrace(side: str, ev: StructureEvent, bar: Candle) -> float:
        if side == LONG:
            return (ev.leg_end - bar.low) / ev.leg_magnitude
        return (bar.high - ev.leg_end) / ev.leg_magnitude

    def _retrace_since_pivot(self, ev: StructureEvent, ltf: TimeframeContext, etf: TimeframeContext) -> float:
        """Deepest retracement over execution bars opened after the leg-end pivot bar closed.

        The event is confirmed `swing_right` LTF bars after its pivot, so price
        may already have pulled back by the time the setup is armed.
        """
        after = ev.pivot.epoch + tf_seconds(ltf.timeframe)
        deepest = 0.0
        for i in range(min(etf.index, len(etf.candles) - 1), -1, -1):
            bar = etf.candles[i]
            if bar.epoch < after:
                break
            deepest = max(deepest, self._retrace(ev.side, ev, bar))
        return deepest

    def _pullback_signal(self, etf: TimeframeContext) -> Optional[Signal]:
        s = self.setup
        if s is None:
            return None
        if self._bar_no > s.set_bar + int(self.cfg.pullback_max_wait_bars):
            self._clear_setup("expired")
            return None
        curr, prev = etf.bar(0), etf.bar(1)
        if curr is None or prev is None:
            return None

        ev = s.event
        retrace = self._retrace(s.side, ev, curr)
        s.deepest_retrace = max(s.deepest_retrace, retrace)

        if s.deepest_retrace > float(self.cfg.max_retrace):
            self._clear_setup("over_retraced")
            return None
        if retrace < float(self.cfg.min_retrace):
            return None

        engulf = engulfing_direction(curr, prev, full_range=bool(self.cfg.pullback_full_range_engulf))
        if engulf != s.side:
            return None
        strong = self._strength_ok(etf)
        if not strong:
            return None

        sig = Signal(
            timeframe_role=ROLE_LTF,
            timeframe=etf.timeframe,
            module=STRUCTURE_PULLBACK,
            bias=s.side,
            reference_bar=curr,
            band_state=None,
            trend_state=TREND_BULLISH if s.side == LONG else TREND_BEARISH,
            anchor_high=max(ev.leg_start.price, ev.leg_end),
            anchor_low=min(ev.leg_start.price, ev.leg_end),
            structure_ref=ev,
            anchor_epoch=ev.pivot.epoch,
            extra={
                "retrace": retrace,
                "atr": etf.value("atr"),
                "atr_avg": etf.value("atr_avg"),
                "adx": etf.value("adx"),
                "structure_kind": ev.kind,
            },
        )
        self.setup = None
        return sig

    # ---- entry point -------------------------------------------------------

    def compose(
        self,
        htf: Optional[TimeframeContext],
        ltf: TimeframeContext,
        etf: TimeframeContext,
    ) -> Optional[Signal]:
        """Evaluate one ETF close. Returns at most one signal."""
        self._bar_no += 1

        pullback: Optional[Signal] = None
        if STRUCTURE_PULLBACK.name in self.enabled:
            self._on_structure_events(htf, ltf, etf)
            pullback = self._pullback_signal(etf)

        entry_bar = etf.bar(0)
        if entry_bar is None:
            return None

        bias_sig = self.htf_bias(htf) if htf is not None else None
        if bias_sig is not None and self._aligned(bias_sig.bias, ltf, etf):
            log.info(
                "signal_found htf=%s module=%s bias=%s band=%s",
                bias_sig.timeframe,
                bias_sig.module.name,
                bias_sig.bias,
                bias_sig.band_state,
            )
            # Entry is taken on the confirming execution bar; the HTF bar stays the stop anchor
            return Signal(
                timeframe_role=bias_sig.timeframe_role,
                timeframe=bias_sig.timeframe,
                module=bias_sig.module,
                bias=bias_sig.bias,
                reference_bar=entry_bar,
                band_state=bias_sig.band_state,
                trend_state=bias_sig.trend_state,
                anchor_high=bias_sig.anchor_high,
                anchor_low=bias_sig.anchor_low,
                band_mid=bias_sig.band_mid if bias_sig.module is MEAN_REVERSION else None,
                anchor_epoch=bias_sig.anchor_epoch,
                extra=bias_sig.extra,
            )

        if pullback is not None:
            log.info(
                "signal_found module=%s bias=%s retrace=%.3f",
                pullback.module.name,
                pullback.bias,
                pullback.extra.get("retrace", 0.0),
            )
        return pullback
