from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .csv_feed import load_series, write_ledger_csv
from .formatters import format_summary, format_trade_row
from .runner import BacktestRunner, LiveRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _run_backtest(cfg, args) -> int:
    data_dir = args.data_dir or cfg.backtest.data_dir
    series = load_series(data_dir, cfg.provider.symbol, cfg.timeframes.all())
    result = BacktestRunner(cfg).run(series)

    for t in result.ledger:
        print(format_trade_row(t))
    print(format_summary(result.stats, cfg.risk.initial_equity))

    ledger_out = args.ledger_out or cfg.backtest.ledger_out
    if ledger_out:
        write_ledger_csv(ledger_out, result.ledger)
        logging.getLogger("main").info("ledger_written path=%s trades=%d", ledger_out, len(result.ledger))
    return 0


def _run_live(cfg) -> int:
    runner = LiveRunner(cfg)

    async def _run() -> None:
        try:
            await runner.run_forever()
        finally:
            await runner.provider.close()

    asyncio.run(_run())
    return 0


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Structure Sentinel - multi-TF structure/engulfing paper trader")
    sub = p.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Replay CSV history through the strategy")
    bt.add_argument("--config", required=True, help="Path to YAML config")
    bt.add_argument("--data-dir", default=None, help="Directory holding <SYMBOL>_<tf>.csv files")
    bt.add_argument("--ledger-out", default=None, help="Write the trade ledger to this CSV")

    live = sub.add_parser("live", help="Paper-trade the live Deriv feed")
    live.add_argument("--config", required=True, help="Path to YAML config")

    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    try:
        if args.command == "backtest":
            return _run_backtest(cfg, args)
        return _run_live(cfg)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
