from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence

from .candles import CandleStore, close_index_at_or_before, tf_seconds
from .config import Config
from .engine import StrategyEngine
from .formatters import format_notification
from .indicators import IndicatorFrame
from .models import Candle, Notification, TradeRecord, ROLE_HTF, ROLE_LTF, ROLE_ETF
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .signals import TimeframeContext
from .simulator import summarize_ledger

log = logging.getLogger("runner")

SENT_HISTORY = 200


@dataclass
class BacktestResult:
    ledger: List[TradeRecord]
    final_equity: float
    stats: Dict[str, Any]
    notifications: List[Notification] = field(default_factory=list)
    signals: int = 0


class BacktestRunner:
    """Replays closed bars of every timeframe through one StrategyEngine.

    The loop is driven by the execution timeframe. Every other timeframe is
    aligned to its last bar that had closed by the execution bar's close, so
    a higher-timeframe bar is never seen before it is complete.
    """

    def __init__(self, cfg: Config):
        self.cfg = cfg
        self.engine = StrategyEngine(cfg)

    def run(self, series: Dict[str, Sequence[Candle]]) -> BacktestResult:
        tfs = self.cfg.timeframes
        for tf in tfs.all():
            if tf not in series:
                raise ValueError(f"Missing candles for timeframe {tf}")

        eng = self.engine
        etf_bars = list(series[tfs.etf])
        frames: Dict[str, IndicatorFrame] = {}
        close_times: Dict[str, List[int]] = {}
        for tf in tfs.all():
            bars = series[tf]
            gran = tf_seconds(tf)
            frames[tf] = eng.indicators.compute(bars)
            close_times[tf] = [c.epoch + gran for c in bars]
        log.info(
            "backtest_start etf=%s bars=%d ltf=%s htf=%s",
            tfs.etf,
            len(etf_bars),
            tfs.ltf,
            ",".join(tfs.htf),
        )

        ltf_bars = series[tfs.ltf]
        ltf_fed = -1
        etf_gran = tf_seconds(tfs.etf)
        for i, bar in enumerate(etf_bars):
            ts = bar.epoch + etf_gran

            ltf_idx = close_index_at_or_before(close_times[tfs.ltf], ts)
            while ltf_fed < ltf_idx:
                ltf_fed += 1
                eng.on_ltf_close(ltf_bars[ltf_fed])

            htf_ctx = [
                TimeframeContext(ROLE_HTF, tf, series[tf], frames[tf], close_index_at_or_before(close_times[tf], ts))
                for tf in tfs.htf
            ]
            ltf_ctx = TimeframeContext(ROLE_LTF, tfs.ltf, ltf_bars, frames[tfs.ltf], ltf_idx)
            etf_ctx = TimeframeContext(ROLE_ETF, tfs.etf, etf_bars, frames[tfs.etf], i)
            eng.on_bar(htf_ctx, ltf_ctx, etf_ctx)

        eng.finish(etf_bars[-1] if etf_bars else None)

        sim = eng.simulator
        ledger = list(sim.ledger)
        stats = summarize_ledger(ledger, sim.initial_equity)
        log.info(
            "backtest_done trades=%d win_rate=%.1f net_pnl=%.2f final_equity=%.2f max_dd=%.2f",
            stats["total_trades"],
            stats["win_rate"],
            stats["net_pnl"],
            sim.equity,
            stats["max_drawdown"],
        )
        return BacktestResult(
            ledger=ledger,
            final_equity=sim.equity,
            stats=stats,
            notifications=sim.drain_notifications(),
            signals=eng.signals,
        )


class LiveRunner:
    """Consumes a live candle feed for one symbol and paper-trades it.

    The newest bar of every live series is still forming, so evaluation only
    happens when a new execution bar has closed.
    """

    def __init__(self, cfg: Config, provider=None):
        self.cfg = cfg
        if provider is None:
            from .providers.deriv import DerivProvider

            provider = DerivProvider(
                app_id=cfg.provider.app_id,
                token=cfg.provider.token,
                ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
                request_timeout_s=cfg.provider.request_timeout_s,
            )
        self.provider = provider
        self.engine = StrategyEngine(cfg, history_cap=cfg.provider.buffer_capacity)
        self.store = CandleStore(cfg.timeframes.all(), cfg.provider.buffer_capacity)

        self.tg = TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            parse_mode=cfg.telegram.parse_mode,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            symbol=cfg.provider.symbol,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )

        self._loaded: set = set()
        self.warmed = False
        self._last_etf_close: Optional[int] = None
        self._last_ltf_fed: Optional[int] = None
        self.sent: Deque[str] = deque(maxlen=SENT_HISTORY)

    async def run_forever(self) -> None:
        tfs = self.cfg.timeframes.all()
        count = int(self.cfg.provider.warmup_candles)
        log.info("live_start symbol=%s timeframes=%s warmup=%d", self.cfg.provider.symbol, tfs, count)
        try:
            async for evt in self.provider.stream(self.cfg.provider.symbol, tfs, count):
                await self.on_event(evt)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        # Close at the last known price, which may belong to a still-forming bar
        self.engine.finish(self.store[self.cfg.timeframes.etf].last)
        await self._dispatch()
        log.info(
            "live_stopped trades=%d equity=%.2f",
            len(self.engine.simulator.ledger),
            self.engine.simulator.equity,
        )

    async def on_event(self, evt) -> None:
        tf = evt.timeframe
        if tf not in self.store.series:
            return
        if evt.snapshot:
            self.store[tf].load(evt.candles)
            self._loaded.add(tf)
            log.info("snapshot_loaded tf=%s bars=%d", tf, len(self.store[tf]))
            if not self.warmed and self._loaded.issuperset(self.store.series):
                self._warmup()
                if self.tg.enabled():
                    await self.tg.send(
                        f"{self.cfg.app.name}: warmup complete. Paper trading {self.cfg.provider.symbol} on {self.cfg.timeframes.etf}."
                    )
            return

        for c in evt.candles:
            self.store.append_or_replace(tf, c)
        if self.warmed and tf == self.cfg.timeframes.etf:
            await self._evaluate()

    def _warmup(self) -> None:
        """Seed structure state from history; no signals are produced here."""
        tfs = self.cfg.timeframes
        etf_closed = self.store[tfs.etf].closed()
        if etf_closed:
            self._last_etf_close = etf_closed[-1].epoch
            self._feed_ltf(self._last_etf_close + tf_seconds(tfs.etf))
        # Breaks found in history must not arm a setup on the first live bar
        self.engine.clear_pending()
        self.warmed = True
        log.info("warmup_done ltf_bars=%d pivots=%d trend=%s", len(self.engine.tracker.candles), len(self.engine.tracker.pivots), self.engine.tracker.trend)

    def _closed_by(self, tf: str, ts: int) -> List[Candle]:
        """Bars of `tf` whose close time is at or before ts, newest stored bar included.

        Subscriptions for different timeframes arrive in any order, so a bar
        counts as closed by its close time, not by the arrival of its successor.
        """
        bars = list(self.store[tf])
        gran = tf_seconds(tf)
        n = close_index_at_or_before([c.epoch + gran for c in bars], ts) + 1
        return bars[:n]

    def _feed_ltf(self, ts: int) -> None:
        for c in self._closed_by(self.cfg.timeframes.ltf, ts):
            if self._last_ltf_fed is None or c.epoch > self._last_ltf_fed:
                self.engine.on_ltf_close(c)
                self._last_ltf_fed = c.epoch

    def _context(self, role: str, tf: str, ts: int) -> TimeframeContext:
        bars = self._closed_by(tf, ts)
        frame = self.engine.indicators.compute(bars)
        return TimeframeContext(role, tf, bars, frame, len(bars) - 1)

    async def _evaluate(self) -> None:
        tfs = self.cfg.timeframes
        etf_closed = self.store[tfs.etf].closed()
        fresh = [c for c in etf_closed if self._last_etf_close is None or c.epoch > self._last_etf_close]
        if not fresh:
            return

        etf_gran = tf_seconds(tfs.etf)
        for bar in fresh:
            ts = bar.epoch + etf_gran
            self._feed_ltf(ts)
            htf_ctx = [self._context(ROLE_HTF, tf, ts) for tf in tfs.htf]
            ltf_ctx = self._context(ROLE_LTF, tfs.ltf, ts)
            etf_ctx = self._context(ROLE_ETF, tfs.etf, ts)
            self.engine.on_bar(htf_ctx, ltf_ctx, etf_ctx)
            self._last_etf_close = bar.epoch
            await self._dispatch()

    async def _dispatch(self) -> None:
        for note in self.engine.simulator.drain_notifications():
            text = format_notification(note, self.cfg.provider.symbol, parse_mode=self.cfg.telegram.parse_mode)
            self.sent.append(text)
            if self.webhook.enabled:
                try:
                    await self.webhook.send_notification(note)
                except Exception as e:
                    log.warning("webhook_send_failed kind=%s err=%s", note.kind, e)
            if self.tg.enabled():
                await self.tg.send(text)
