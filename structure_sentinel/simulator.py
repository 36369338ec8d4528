from __future__ import annotations

import logging
import math
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence

from .models import (
    Candle,
    Notification,
    Position,
    SessionState,
    Signal,
    TradeRecord,
    LONG,
    EXIT_STOP,
    EXIT_TARGET,
    EXIT_FORCE_CLOSE,
    EXIT_NO_EXIT,
    NOTIFY_ENTER,
    NOTIFY_EXIT,
)

log = logging.getLogger("simulator")


def utc_date(epoch: int) -> str:
    return datetime.fromtimestamp(int(epoch), tz=timezone.utc).strftime("%Y-%m-%d")


class PositionSimulator:
    """Single-position state machine: Flat -> Open -> Flat.

    Owns equity, session counters, the open position and the trade ledger of
    one simulation context. Never performs I/O; enter/exit notifications are
    queued for the caller to drain.
    """

    def __init__(self, risk_cfg) -> None:
        self.risk = risk_cfg
        self.initial_equity = float(risk_cfg.initial_equity)
        self.equity = self.initial_equity
        self.peak_equity = self.initial_equity
        self.max_drawdown = 0.0
        self.max_drawdown_pct = 0.0
        self.position: Optional[Position] = None
        self.session = SessionState()
        self.ledger: List[TradeRecord] = []
        self._notifications: Deque[Notification] = deque()
        self._drained = 0

    @property
    def is_open(self) -> bool:
        return self.position is not None

    # ---- session bookkeeping -------------------------------------------------

    def roll_session(self, epoch: int) -> None:
        """Per-bar date rollover for the per-day trade cap."""
        if self.risk.trade_cap_period != "day":
            return
        today = utc_date(epoch)
        if self.session.last_trade_date is not None and today != self.session.last_trade_date:
            if self.session.trades_today:
                log.info("session_rollover date=%s trades_reset_from=%d", today, self.session.trades_today)
            self.session.trades_today = 0
            self.session.last_trade_date = today

    def can_enter(self) -> bool:
        if self.position is not None or self.session.paused:
            return False
        return self.session.trades_today < int(self.risk.max_trades_per_session)

    # ---- entry -------------------------------------------------------------

    def try_enter(self, signal: Signal, bar: Optional[Candle] = None) -> Optional[Position]:
        if not self.can_enter():
            return None
        bar = bar or signal.reference_bar
        side = signal.bias
        entry = float(bar.close)
        stop, target = signal.module.levels(side, entry, signal, self.risk)

        risk_per_trade = self.equity * float(self.risk.risk_fraction)
        risk_per_unit = (entry - stop) if side == LONG else (stop - entry)
        if not math.isfinite(risk_per_unit) or risk_per_unit <= 0:
            log.info("entry_rejected reason=risk_per_unit side=%s entry=%.5f stop=%.5f", side, entry, stop)
            return None
        qty = risk_per_trade / risk_per_unit
        if not math.isfinite(qty) or qty <= 0:
            log.info("entry_rejected reason=quantity side=%s qty=%s", side, qty)
            return None
        reward = (target - entry) if side == LONG else (entry - target)
        if not math.isfinite(reward) or reward <= 0:
            log.info("entry_rejected reason=target_behind_entry side=%s entry=%.5f target=%.5f", side, entry, target)
            return None

        self.position = Position(
            side=side,
            entry_price=entry,
            entry_time=int(bar.epoch),
            stop_price=float(stop),
            target_price=float(target),
            quantity=float(qty),
            module=signal.module.name,
            structure_ref=signal.structure_ref,
            anchor_epoch=signal.anchor_epoch,
        )
        self.session.trades_today += 1
        self.session.last_trade_date = utc_date(bar.epoch)
        self._notifications.append(
            Notification(kind=NOTIFY_ENTER, side=side, price=entry, quantity=float(qty), module=signal.module.name, epoch=int(bar.epoch))
        )
        log.info(
            "enter side=%s module=%s entry=%.5f stop=%.5f target=%.5f qty=%.4f trades_today=%d",
            side,
            signal.module.name,
            entry,
            stop,
            target,
            qty,
            self.session.trades_today,
        )
        return self.position

    # ---- management ----------------------------------------------------------

    def manage(self, bar: Candle) -> Optional[TradeRecord]:
        """Check one closed bar's full range against stop and target.

        If both are touched inside the bar, the stop is taken first.
        """
        pos = self.position
        if pos is None:
            return None
        pos.bars_held += 1

        if pos.side == LONG:
            hit_stop = bar.low <= pos.stop_price
            hit_target = bar.high >= pos.target_price
        else:
            hit_stop = bar.high >= pos.stop_price
            hit_target = bar.low <= pos.target_price

        if hit_stop:
            return self._close(pos.stop_price, int(bar.epoch), EXIT_STOP)
        if hit_target:
            return self._close(pos.target_price, int(bar.epoch), EXIT_TARGET)
        return None

    def force_close(self, bar: Optional[Candle]) -> Optional[TradeRecord]:
        """Close at the last known price when the data or the feed ends."""
        pos = self.position
        if pos is None:
            return None
        if bar is None or int(bar.epoch) <= pos.entry_time:
            return self._close(pos.entry_price, pos.entry_time if bar is None else int(bar.epoch), EXIT_NO_EXIT)
        return self._close(float(bar.close), int(bar.epoch), EXIT_FORCE_CLOSE)

    def _close(self, price: float, epoch: int, reason: str) -> TradeRecord:
        pos = self.position
        per_unit = (price - pos.entry_price) if pos.side == LONG else (pos.entry_price - price)
        pnl = per_unit * pos.quantity
        self.equity += pnl

        if pnl > 0:
            self.session.consecutive_losses = 0
        else:
            self.session.consecutive_losses += 1
        if not self.session.paused and self.session.consecutive_losses >= int(self.risk.loss_pause_after):
            self.session.paused = True
            log.warning("paused consecutive_losses=%d", self.session.consecutive_losses)

        self._update_drawdown()
        rec = TradeRecord(
            side=pos.side,
            module=pos.module,
            entry_price=pos.entry_price,
            entry_time=pos.entry_time,
            exit_price=float(price),
            exit_time=int(epoch),
            stop_price=pos.stop_price,
            target_price=pos.target_price,
            quantity=pos.quantity,
            exit_reason=reason,
            pnl=float(pnl),
            equity_after=self.equity,
        )
        self.ledger.append(rec)
        self.position = None
        self._notifications.append(
            Notification(
                kind=NOTIFY_EXIT,
                side=rec.side,
                price=rec.exit_price,
                quantity=rec.quantity,
                module=rec.module,
                epoch=rec.exit_time,
                reason=reason,
                pnl=rec.pnl,
            )
        )
        log.info(
            "exit side=%s reason=%s entry=%.5f exit=%.5f pnl=%.2f equity=%.2f",
            rec.side,
            reason,
            rec.entry_price,
            rec.exit_price,
            rec.pnl,
            self.equity,
        )
        return rec

    def _update_drawdown(self) -> None:
        if self.equity > self.peak_equity:
            self.peak_equity = self.equity
        dd = self.peak_equity - self.equity
        if dd > self.max_drawdown:
            self.max_drawdown = dd
            self.max_drawdown_pct = (dd / self.peak_equity) * 100.0 if self.peak_equity > 0 else 0.0

    # ---- outputs -------------------------------------------------------------

    def drain_notifications(self) -> List[Notification]:
        out = list(self._notifications)
        self._notifications.clear()
        return out

    def drain_trades(self) -> List[TradeRecord]:
        """Trades closed since the previous drain (ledger itself is never mutated)."""
        out = self.ledger[self._drained:]
        self._drained = len(self.ledger)
        return out


def summarize_ledger(ledger: Sequence[TradeRecord], initial_equity: float) -> Dict[str, Any]:
    total = len(ledger)
    wins = sum(1 for t in ledger if t.pnl > 0)
    net = sum(t.pnl for t in ledger)

    equity = float(initial_equity)
    peak = equity
    max_dd = 0.0
    max_dd_pct = 0.0
    for t in ledger:
        equity += t.pnl
        if equity > peak:
            peak = equity
        dd = peak - equity
        if dd > max_dd:
            max_dd = dd
            max_dd_pct = (dd / peak) * 100.0 if peak > 0 else 0.0

    by_reason: Dict[str, int] = {}
    for t in ledger:
        by_reason[t.exit_reason] = by_reason.get(t.exit_reason, 0) + 1

    return {
        "total_trades": total,
        "wins": wins,
        "losses": total - wins,
        "win_rate": (wins / total * 100.0) if total else 0.0,
        "net_pnl": net,
        "final_equity": float(initial_equity) + net,
        "return_pct": (net / float(initial_equity) * 100.0) if initial_equity else 0.0,
        "max_drawdown": max_dd,
        "max_drawdown_pct": max_dd_pct,
        "exits": by_reason,
    }
