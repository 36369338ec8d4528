from __future__ import annotations

import csv
import logging
import os
from typing import Dict, Iterable, List, Sequence

from .models import Candle, TradeRecord

log = logging.getLogger("csv_feed")

CANDLE_HEADER = ["epoch", "open", "high", "low", "close"]
LEDGER_HEADER = [
    "entry_time",
    "exit_time",
    "side",
    "module",
    "entry_price",
    "exit_price",
    "stop_price",
    "target_price",
    "quantity",
    "exit_reason",
    "pnl",
    "equity_after",
]


def csv_path(data_dir: str, symbol: str, timeframe: str) -> str:
    return os.path.join(data_dir, f"{symbol}_{timeframe}.csv")


def normalize_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Sort by epoch; on duplicate epochs the later row wins."""
    by_epoch: Dict[int, Candle] = {}
    for c in candles:
        by_epoch[c.epoch] = c
    return [by_epoch[k] for k in sorted(by_epoch)]


def read_candles_csv(path: str) -> List[Candle]:
    out: List[Candle] = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        for lineno, row in enumerate(csv.reader(f), start=1):
            if not row or not "".join(row).strip():
                continue
            if lineno == 1 and row[0].strip().lower() == "epoch":
                continue
            if len(row) < 5:
                raise ValueError(f"{path}:{lineno}: expected 5 columns, got {len(row)}")
            try:
                out.append(
                    Candle(
                        epoch=int(float(row[0])),
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                    )
                )
            except ValueError as e:
                raise ValueError(f"{path}:{lineno}: {e}") from e
    candles = normalize_candles(out)
    if len(candles) != len(out):
        log.info("csv_deduped path=%s rows=%d kept=%d", path, len(out), len(candles))
    return candles


def load_series(data_dir: str, symbol: str, timeframes: Sequence[str]) -> Dict[str, List[Candle]]:
    series: Dict[str, List[Candle]] = {}
    for tf in timeframes:
        path = csv_path(data_dir, symbol, tf)
        series[tf] = read_candles_csv(path)
        log.info("csv_loaded tf=%s bars=%d path=%s", tf, len(series[tf]), path)
    return series


def write_candles_csv(path: str, candles: Iterable[Candle]) -> int:
    rows = normalize_candles(candles)
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(CANDLE_HEADER)
        for c in rows:
            w.writerow([c.epoch, c.open, c.high, c.low, c.close])
    return len(rows)


def write_ledger_csv(path: str, ledger: Sequence[TradeRecord]) -> None:
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(LEDGER_HEADER)
        for t in ledger:
            w.writerow([getattr(t, k) for k in LEDGER_HEADER])
