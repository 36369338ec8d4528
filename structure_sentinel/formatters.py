from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .models import Notification, TradeRecord, NOTIFY_ENTER


def _fmt_epoch(epoch: int) -> str:
    dt = datetime.fromtimestamp(int(epoch), tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:g}"


def format_notification(note: Notification, symbol: str, *, parse_mode: str = "HTML") -> str:
    """Telegram text for a simulated entry or exit."""
    pm = (parse_mode or "HTML").upper()
    if note.kind == NOTIFY_ENTER:
        header = f"ENTER {note.side}"
        lines = [
            f"{_bold(header, pm)} {_escape_text(symbol, pm)}",
            _escape_text(f"Module: {note.module}", pm),
            _escape_text(f"Price: {_fmt_price(note.price)} | Qty: {note.quantity:.4f}", pm),
            _escape_text(f"Time: {_fmt_epoch(note.epoch)}", pm),
        ]
        return "\n".join(lines)

    header = f"EXIT {note.side} ({note.reason})"
    pnl = note.pnl if note.pnl is not None else 0.0
    lines = [
        f"{_bold(header, pm)} {_escape_text(symbol, pm)}",
        _escape_text(f"Module: {note.module}", pm),
        _escape_text(f"Price: {_fmt_price(note.price)} | PnL: {pnl:+.2f}", pm),
        _escape_text(f"Time: {_fmt_epoch(note.epoch)}", pm),
    ]
    return "\n".join(lines)


def format_trade_row(t: TradeRecord) -> str:
    return (
        f"{_fmt_epoch(t.entry_time)} -> {_fmt_epoch(t.exit_time)} "
        f"{t.side:<5} {t.module:<18} entry={_fmt_price(t.entry_price)} exit={_fmt_price(t.exit_price)} "
        f"{t.exit_reason:<11} pnl={t.pnl:+.2f} equity={t.equity_after:.2f}"
    )


def format_summary(stats: Dict[str, Any], initial_equity: float) -> str:
    """Plain-text backtest summary for the console."""
    exits = stats.get("exits") or {}
    exit_str = ", ".join(f"{k}={v}" for k, v in sorted(exits.items())) or "-"
    lines = [
        "=" * 60,
        "BACKTEST SUMMARY",
        "=" * 60,
        f"Trades:        {stats['total_trades']} (wins {stats['wins']}, losses {stats['losses']})",
        f"Win rate:      {stats['win_rate']:.1f}%",
        f"Initial:       {initial_equity:.2f}",
        f"Final equity:  {stats['final_equity']:.2f}",
        f"Net PnL:       {stats['net_pnl']:+.2f} ({stats['return_pct']:+.2f}%)",
        f"Max drawdown:  {stats['max_drawdown']:.2f} ({stats['max_drawdown_pct']:.2f}%)",
        f"Exits:         {exit_str}",
    ]
    return "\n".join(lines)
