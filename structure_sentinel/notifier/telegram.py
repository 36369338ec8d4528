from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

import aiohttp

log = logging.getLogger("telegram")

MAX_MESSAGE_CHARS = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_CHARS) -> List[str]:
    """Split on line breaks so every part fits Telegram's message limit.

    A single line longer than the limit is cut at the limit.
    """
    parts: List[str] = []
    cur = ""
    for line in text.split("\n"):
        while len(line) > limit:
            if cur:
                parts.append(cur)
                cur = ""
            parts.append(line[:limit])
            line = line[limit:]
        candidate = f"{cur}\n{line}" if cur else line
        if len(candidate) > limit:
            parts.append(cur)
            cur = line
        else:
            cur = candidate
    if cur or not parts:
        parts.append(cur)
    return parts


class TelegramNotifier:
    """Enter/exit and status messages for every configured chat."""

    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        parse_mode: Optional[str] = "HTML",
        disable_web_page_preview: bool = True,
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.parse_mode = parse_mode
        self.disable_web_page_preview = disable_web_page_preview

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    def payloads(self, chat_id: str, text: str) -> List[dict]:
        out = []
        for part in split_message(text):
            payload = {
                "chat_id": chat_id,
                "text": part,
                "disable_web_page_preview": self.disable_web_page_preview,
            }
            if self.parse_mode:
                payload["parse_mode"] = self.parse_mode
            out.append(payload)
        return out

    async def send(self, text: str) -> None:
        """Deliver to every chat; failures are logged per chat and never raised."""
        if not self.enabled():
            return
        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=15)) as sess:
            for chat_id in self.chat_ids:
                try:
                    for payload in self.payloads(chat_id, text):
                        async with sess.post(url, json=payload) as resp:
                            if resp.status != 200:
                                body = await resp.text()
                                log.warning("telegram_send_failed chat_id=%s status=%s body=%s", chat_id, resp.status, body[:2000])
                                break
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    log.warning("telegram_send_error chat_id=%s err=%s", chat_id, e)
