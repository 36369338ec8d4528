import math

import pytest

from structure_sentinel.config import (
    Config,
    IndicatorConfig,
    RiskConfig,
    StructureConfig,
    TimeframesConfig,
)
from structure_sentinel.models import Candle, EXIT_FORCE_CLOSE, EXIT_NO_EXIT, EXIT_STOP, EXIT_TARGET
from structure_sentinel.runner import BacktestRunner

T0 = 1704067200  # 2024-01-01 00:00 UTC


def _wave_5m(n: int):
    out = []
    prev = 1000.0
    for i in range(n):
        px = 1000.0 + 30.0 * math.sin(i / 20.0) + 15.0 * math.sin(i / 7.0) + 0.02 * i
        o = prev
        h = max(o, px) + 1.0 + (i % 3) * 0.5
        l = min(o, px) - 1.0 - (i % 2) * 0.5
        out.append(Candle(epoch=T0 + i * 300, open=o, high=h, low=l, close=px))
        prev = px
    return out


def _aggregate(bars, n: int):
    out = []
    for k in range(0, len(bars) - n + 1, n):
        chunk = bars[k:k + n]
        out.append(
            Candle(
                epoch=chunk[0].epoch,
                open=chunk[0].open,
                high=max(c.high for c in chunk),
                low=min(c.low for c in chunk),
                close=chunk[-1].close,
            )
        )
    return out


def _series(n: int = 2016):
    m5 = _wave_5m(n)
    return {"5m": m5, "15m": _aggregate(m5, 3), "1h": _aggregate(m5, 12), "2h": _aggregate(m5, 24)}


def _trend_bar(k: int, units: int) -> Candle:
    """Bar k of a timeframe spanning `units` 5m bars on a steady uptrend.

    Even bars are bearish, odd bars engulf them bullishly, and every
    timeframe shares the same price path.
    """
    n = float(units)
    mid = 1000.0 + 0.5 * k * n
    epoch = T0 + k * units * 300
    if k % 2 == 0:
        return Candle(epoch=epoch, open=mid + 0.3 * n, high=mid + 0.4 * n, low=mid - 0.4 * n, close=mid - 0.3 * n)
    return Candle(epoch=epoch, open=mid - 0.9 * n, high=mid + 0.4 * n, low=mid - n, close=mid + 0.3 * n)


def _trending_series(n: int = 2016):
    return {tf: [_trend_bar(k, units) for k in range(n // units)] for tf, units in (("5m", 1), ("15m", 3), ("1h", 12), ("2h", 24))}


def _cfg(**risk) -> Config:
    base = dict(max_trades_per_session=50, loss_pause_after=1000)
    base.update(risk)
    cfg = Config(
        timeframes=TimeframesConfig(htf=["2h", "1h"], ltf="15m", etf="5m"),
        indicators=IndicatorConfig(ema_trend=20, ema_fast=9, ema_slow=21, bb_period=20),
        structure=StructureConfig(swing_left=2, swing_right=2, min_impulse_bars=2),
        risk=RiskConfig(**base),
    )
    cfg.validate()
    return cfg


def test_backtest_is_deterministic():
    series = _trending_series()
    a = BacktestRunner(_cfg()).run(series)
    b = BacktestRunner(_cfg()).run(series)
    assert len(a.ledger) > 1
    assert a.ledger == b.ledger
    assert a.final_equity == b.final_equity
    assert a.stats == b.stats


def test_ledger_balances_and_positions_never_overlap():
    res = BacktestRunner(_cfg()).run(_trending_series())
    assert len(res.ledger) > 1
    assert res.final_equity == pytest.approx(10000.0 + sum(t.pnl for t in res.ledger))
    assert res.stats["total_trades"] == len(res.ledger)
    for prev, nxt in zip(res.ledger, res.ledger[1:]):
        assert nxt.entry_time >= prev.exit_time
    for t in res.ledger:
        assert t.exit_time >= t.entry_time
        assert t.module == "continuation"
    # every trade emits an enter and an exit notification
    assert len(res.notifications) == 2 * len(res.ledger)
    # only the final trade can be closed by the end of data
    assert all(t.exit_reason == EXIT_TARGET for t in res.ledger[:-1])
    assert all(t.exit_reason not in (EXIT_FORCE_CLOSE, EXIT_NO_EXIT) for t in res.ledger[:-1])


def test_first_entry_waits_for_a_ready_higher_timeframe():
    res = BacktestRunner(_cfg()).run(_trending_series())
    first = res.ledger[0]
    # 1h has its 22 bars on the close of 5m bar 263; 5m, 15m and 1h all close bullish engulfing there
    assert first.entry_time == T0 + 263 * 300
    assert first.entry_price == pytest.approx(1131.8)
    assert first.stop_price == pytest.approx(1114.0 - 1131.8 * 0.0001)


def test_loss_pause_blocks_entries_for_the_rest_of_the_run():
    res = BacktestRunner(_cfg(fixed_stop_distance=0.25, fixed_target_distance=5.0, loss_pause_after=2)).run(_trending_series())
    assert [t.exit_reason for t in res.ledger] == [EXIT_STOP, EXIT_STOP]
    assert [t.entry_time for t in res.ledger] == [T0 + 263 * 300, T0 + 265 * 300]
    assert all(t.pnl < 0 for t in res.ledger)
    # signals keep coming but none is taken once paused
    assert res.signals > len(res.ledger)
    assert len(res.notifications) == 4


def test_every_closed_ltf_bar_reaches_the_tracker():
    series = _series(600)
    runner = BacktestRunner(_cfg())
    runner.run(series)
    assert list(runner.engine.tracker.candles) == series["15m"]


def test_higher_timeframe_bar_is_not_seen_before_it_closes():
    series = _series(48)
    runner = BacktestRunner(_cfg())
    seen = []
    orig = runner.engine.on_bar

    def spy(htf_candidates, ltf, etf, **kw):
        seen.append((etf.bar(0).epoch, htf_candidates[0].index, ltf.index))
        return orig(htf_candidates, ltf, etf, **kw)

    runner.engine.on_bar = spy
    runner.run(series)

    for etf_epoch, htf_idx, ltf_idx in seen:
        etf_close = etf_epoch + 300
        if htf_idx >= 0:
            assert series["2h"][htf_idx].epoch + 7200 <= etf_close
        if ltf_idx >= 0:
            assert series["15m"][ltf_idx].epoch + 900 <= etf_close
    # first 2h bar becomes visible exactly on the close of the 24th 5m bar
    assert seen[22][1] == -1
    assert seen[23][1] == 0


def test_missing_timeframe_is_rejected():
    series = _series(100)
    del series["1h"]
    with pytest.raises(ValueError):
        BacktestRunner(_cfg()).run(series)


def test_empty_data_produces_no_trades():
    res = BacktestRunner(_cfg()).run({"5m": [], "15m": [], "1h": [], "2h": []})
    assert res.ledger == []
    assert res.final_equity == 10000.0
    assert res.stats["total_trades"] == 0
