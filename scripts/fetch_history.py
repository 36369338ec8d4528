from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from structure_sentinel.config import load_config
from structure_sentinel.csv_feed import csv_path, write_candles_csv
from structure_sentinel.providers.deriv import DerivProvider


def _parse_date(s: str) -> int:
    dt = datetime.strptime(s, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


async def _fetch(cfg, timeframes, start: int, end: int, out_dir: str) -> None:
    provider = DerivProvider(
        app_id=cfg.provider.app_id,
        token=cfg.provider.token,
        ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
        request_timeout_s=cfg.provider.request_timeout_s,
    )
    for tf in timeframes:
        candles = await provider.fetch_history(cfg.provider.symbol, tf, start, end)
        path = csv_path(out_dir, cfg.provider.symbol, tf)
        n = write_candles_csv(path, candles)
        print(f"{tf}: saved {n} candles -> {path}")


def main():
    p = argparse.ArgumentParser(description="Download Deriv candle history into <SYMBOL>_<tf>.csv files")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--start", required=True, help="UTC start date YYYY-MM-DD")
    p.add_argument("--end", required=True, help="UTC end date YYYY-MM-DD (inclusive)")
    p.add_argument("--tf", action="append", default=None, help="Timeframe to fetch (repeatable); defaults to all configured")
    p.add_argument("--out-dir", default=None, help="Output directory (defaults to backtest.data_dir)")
    args = p.parse_args()

    cfg = load_config(args.config)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    start = _parse_date(args.start)
    end = _parse_date(args.end) + 86399
    timeframes = args.tf or cfg.timeframes.all()
    asyncio.run(_fetch(cfg, timeframes, start, end, args.out_dir or cfg.backtest.data_dir))


if __name__ == "__main__":
    main()
