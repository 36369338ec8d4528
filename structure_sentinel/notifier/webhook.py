from __future__ import annotations

import json
import logging
from typing import Any, Dict

import aiohttp

from ..models import Notification

log = logging.getLogger("webhook")


def notification_payload(note: Notification, *, symbol: str, secret: str = "") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "symbol": symbol,
        "event": note.kind,
        "side": note.side,
        "module": note.module,
        "price": note.price,
        "quantity": note.quantity,
        "epoch": int(note.epoch),
    }
    if secret:
        payload["secret"] = secret
    if note.reason is not None:
        payload["reason"] = note.reason
    if note.pnl is not None:
        payload["pnl"] = note.pnl
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, symbol: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled) and bool(url)
        self.url = url or ""
        self.secret = secret or ""
        self.symbol = symbol
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def send_notification(self, note: Notification) -> None:
        if not self.enabled:
            return
        body = json.dumps(notification_payload(note, symbol=self.symbol, secret=self.secret), separators=(",", ":"))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
        except Exception as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
