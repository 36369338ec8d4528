from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import websockets
from websockets.exceptions import WebSocketException

from ..candles import tf_seconds
from ..models import Candle

log = logging.getLogger("deriv")

DERIV_WS_URL = "wss://ws.derivws.com/websockets/v3?app_id={app_id}"
CHUNK_DAYS = 30


@dataclass(frozen=True)
class CandleEvent:
    """One feed update. A snapshot replaces the series; otherwise candles are merged."""
    timeframe: str
    candles: Tuple[Candle, ...]
    snapshot: bool = False


def candle_from_history(row: Dict[str, Any]) -> Candle:
    return Candle(
        epoch=int(row["epoch"]),
        open=float(row["open"]),
        high=float(row["high"]),
        low=float(row["low"]),
        close=float(row["close"]),
    )


def candle_from_ohlc(o: Dict[str, Any]) -> Candle:
    return Candle(
        epoch=int(o["open_time"]),
        open=float(o["open"]),
        high=float(o["high"]),
        low=float(o["low"]),
        close=float(o["close"]),
    )


class DerivProvider:
    def __init__(
        self,
        app_id: str,
        *,
        token: str = "",
        ws_heartbeat_s: int = 20,
        request_timeout_s: int = 30,
        max_retries: int = 5,
        retry_delay_s: float = 2.0,
        max_reconnects: Optional[int] = None,
        url: Optional[str] = None,
    ):
        self.app_id = str(app_id or "1089")
        self.token = token or ""
        self.ws_heartbeat_s = ws_heartbeat_s
        self.request_timeout_s = request_timeout_s
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.max_reconnects = max_reconnects
        self.url = url or DERIV_WS_URL.format(app_id=self.app_id)
        self._req_id = 0

    async def close(self) -> None:
        # Connections are scoped to each call
        return None

    def _connect(self):
        return websockets.connect(
            self.url,
            ping_interval=self.ws_heartbeat_s,
            ping_timeout=self.ws_heartbeat_s,
            close_timeout=5,
            max_queue=5000,
        )

    def _next_req_id(self) -> int:
        self._req_id += 1
        return self._req_id

    async def _request(self, ws, payload: Dict[str, Any]) -> Dict[str, Any]:
        req_id = self._next_req_id()
        await ws.send(json.dumps({**payload, "req_id": req_id}))
        while True:
            msg = await asyncio.wait_for(ws.recv(), timeout=self.request_timeout_s)
            try:
                j = json.loads(msg)
            except ValueError:
                continue
            if j.get("req_id") == req_id:
                return j

    async def _authorize(self, ws) -> None:
        if not self.token:
            return
        j = await self._request(ws, {"authorize": self.token})
        if j.get("error"):
            raise RuntimeError(f"Deriv authorize failed: {j['error'].get('message')}")
        auth = j.get("authorize") or {}
        log.info("authorized loginid=%s balance=%s %s", auth.get("loginid"), auth.get("balance"), auth.get("currency"))

    async def fetch_history(self, symbol: str, timeframe: str, start: int, end: int) -> List[Candle]:
        """Closed candles in [start, end], downloaded in 30-day chunks."""
        gran = tf_seconds(timeframe)
        out: List[Candle] = []
        async with self._connect() as ws:
            cur = int(start)
            chunk = 1
            while cur < end:
                chunk_end = min(cur + CHUNK_DAYS * 86400, int(end))
                req = {
                    "ticks_history": symbol,
                    "start": cur,
                    "end": chunk_end,
                    "granularity": gran,
                    "style": "candles",
                }
                rows: List[Dict[str, Any]] = []
                for attempt in range(1, int(self.max_retries) + 1):
                    j = await self._request(ws, req)
                    if j.get("error"):
                        log.warning(
                            "history_error chunk=%d attempt=%d/%d err=%s",
                            chunk,
                            attempt,
                            self.max_retries,
                            j["error"].get("message"),
                        )
                    else:
                        rows = j.get("candles") or []
                        if rows:
                            break
                        log.warning("history_empty chunk=%d attempt=%d/%d start=%d", chunk, attempt, self.max_retries, cur)
                    await asyncio.sleep(self.retry_delay_s)
                else:
                    log.warning("history_chunk_skipped chunk=%d start=%d end=%d", chunk, cur, chunk_end)

                out.extend(candle_from_history(r) for r in rows)
                log.info("history_chunk symbol=%s tf=%s chunk=%d candles=%d", symbol, timeframe, chunk, len(rows))
                cur = chunk_end + gran
                chunk += 1
        return out

    async def stream(self, symbol: str, timeframes: List[str], count: int) -> AsyncIterator[CandleEvent]:
        """Snapshot + live `ohlc` updates for every timeframe. Auto-reconnects."""
        by_gran = {tf_seconds(tf): tf for tf in timeframes}

        backoff = 1
        reconnects = 0
        while True:
            try:
                async with self._connect() as ws:
                    await self._authorize(ws)
                    backoff = 1
                    for gran, tf in by_gran.items():
                        req = {
                            "ticks_history": symbol,
                            "style": "candles",
                            "count": int(count),
                            "granularity": gran,
                            "end": "latest",
                            "subscribe": 1,
                        }
                        await ws.send(json.dumps(req))
                        log.info("ws_subscribed symbol=%s tf=%s count=%d", symbol, tf, count)

                    async for msg in ws:
                        try:
                            j = json.loads(msg)
                        except ValueError:
                            continue
                        if j.get("error"):
                            log.warning("ws_api_error code=%s msg=%s", j["error"].get("code"), j["error"].get("message"))
                            continue

                        kind = j.get("msg_type")
                        if kind == "candles":
                            gran = int((j.get("echo_req") or {}).get("granularity") or 0)
                            tf = by_gran.get(gran)
                            if tf is None:
                                continue
                            bars = tuple(candle_from_history(r) for r in j.get("candles") or [])
                            yield CandleEvent(timeframe=tf, candles=bars, snapshot=True)
                        elif kind == "ohlc":
                            o = j.get("ohlc") or {}
                            tf = by_gran.get(int(o.get("granularity") or 0))
                            if tf is None:
                                continue
                            yield CandleEvent(timeframe=tf, candles=(candle_from_ohlc(o),))

            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)

            reconnects += 1
            if self.max_reconnects is not None and reconnects > self.max_reconnects:
                log.warning("ws_giving_up reconnects=%d", reconnects - 1)
                return
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, 60)
