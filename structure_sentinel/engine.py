from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .config import Config
from .indicators import IndicatorEngine
from .models import Candle, Signal, StructureEvent
from .signals import SignalComposer, TimeframeContext
from .simulator import PositionSimulator
from .structure import StructureClassifier, StructureTracker

log = logging.getLogger("engine")


def build_indicator_engine(cfg: Config) -> IndicatorEngine:
    ic = cfg.indicators
    return IndicatorEngine(
        ema_trend=ic.ema_trend,
        ema_fast=ic.ema_fast,
        ema_slow=ic.ema_slow,
        bb_period=ic.bb_period,
        bb_stddev=ic.bb_stddev,
        atr_period=ic.atr_period,
        atr_avg_period=ic.atr_avg_period,
        adx_period=ic.adx_period,
        rsi_period=ic.rsi_period,
    )


def build_tracker(cfg: Config, capacity: Optional[int] = None) -> StructureTracker:
    sc = cfg.structure
    classifier = StructureClassifier(
        min_impulse_bars=sc.min_impulse_bars,
        min_leg_size=sc.min_leg_size,
        require_body_break=sc.require_body_break,
    )
    return StructureTracker(sc.swing_left, sc.swing_right, classifier, capacity=capacity)


class StrategyEngine:
    """One simulation context: structure tracker, composer and simulator.

    Runners own one engine each; nothing here is shared between instances.
    """

    def __init__(self, cfg: Config, *, history_cap: Optional[int] = None):
        self.cfg = cfg
        self.indicators = build_indicator_engine(cfg)
        self.tracker = build_tracker(cfg, history_cap)
        self.composer = SignalComposer(cfg.strategy, min_htf_bars=2)
        self.simulator = PositionSimulator(cfg.risk)
        self._pending: List[StructureEvent] = []
        self.signals = 0

    def on_ltf_close(self, candle: Candle) -> List[StructureEvent]:
        """Feed a closed LTF bar; confirmed events wait for the next evaluation."""
        events = self.tracker.on_candle(candle)
        self._pending.extend(events)
        return events

    def clear_pending(self) -> None:
        self._pending = []

    def select_htf(self, candidates: Sequence[TimeframeContext]) -> Optional[TimeframeContext]:
        """First candidate with enough bars for the band/trend bias, else the first one."""
        if not candidates:
            return None
        need = self.indicators.min_band_bars
        for ctx in candidates:
            if ctx.bars >= need:
                return ctx
        return candidates[0]

    def on_bar(
        self,
        htf_candidates: Sequence[TimeframeContext],
        ltf: TimeframeContext,
        etf: TimeframeContext,
        *,
        allow_signals: bool = True,
    ) -> Optional[Signal]:
        """Evaluate one closed ETF bar: manage the open position, then look for an entry."""
        bar = etf.bar(0)
        if bar is None:
            return None

        sim = self.simulator
        sim.roll_session(bar.epoch)
        sim.manage(bar)

        ltf.events = list(self._pending)
        self._pending = []
        htf = self.select_htf(htf_candidates)
        sig = self.composer.compose(htf, ltf, etf)
        if sig is None or not allow_signals:
            return None

        self.signals += 1
        if sim.try_enter(sig, bar) is None:
            log.debug("signal_not_taken module=%s bias=%s open=%s paused=%s", sig.module.name, sig.bias, sim.is_open, sim.session.paused)
        return sig

    def finish(self, last_bar: Optional[Candle]) -> None:
        if self.simulator.is_open:
            self.simulator.force_close(last_bar)
