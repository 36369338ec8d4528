from __future__ import annotations

import argparse
from datetime import datetime, timezone

from structure_sentinel.csv_feed import read_candles_csv
from structure_sentinel.structure import StructureClassifier
from structure_sentinel.swings import detect_swings


def _fmt(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def main():
    p = argparse.ArgumentParser(description="Print swing pivots and BOS/CHoCH events for one candle CSV")
    p.add_argument("csv", help="CSV with epoch,open,high,low,close")
    p.add_argument("--swing", type=int, default=3, help="Pivot radius (bars on each side)")
    p.add_argument("--min-impulse-bars", type=int, default=3)
    p.add_argument("--min-leg-size", type=float, default=0.0)
    p.add_argument("--body-break", action="store_true", help="Require a candle-body break of the previous pivot")
    p.add_argument("--pivots", action="store_true", help="Also print every pivot")
    args = p.parse_args()

    candles = read_candles_csv(args.csv)
    pivots = detect_swings(candles, args.swing, args.swing)
    clf = StructureClassifier(
        min_impulse_bars=args.min_impulse_bars,
        min_leg_size=args.min_leg_size,
        require_body_break=args.body_break,
    )
    events = clf.classify(pivots, candles)

    if args.pivots:
        for pv in pivots:
            print(f"PIVOT {pv.kind:<4} {_fmt(pv.epoch)} price={pv.price:g}")

    for ev in events:
        print(
            f"{ev.kind:<10} {_fmt(ev.pivot.epoch)} price={ev.pivot.price:g} "
            f"broke={ev.broken_pivot.price:g} leg={ev.leg_magnitude:g} bars={ev.directional_bar_count}"
        )
    print(f"\ncandles={len(candles)} pivots={len(pivots)} events={len(events)} trend={clf.trend}")


if __name__ == "__main__":
    main()
