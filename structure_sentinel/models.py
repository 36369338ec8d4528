from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

LONG = "LONG"
SHORT = "SHORT"

PIVOT_HIGH = "HIGH"
PIVOT_LOW = "LOW"

BOS_UP = "BOS_UP"
BOS_DOWN = "BOS_DOWN"
CHOCH_UP = "CHOCH_UP"
CHOCH_DOWN = "CHOCH_DOWN"

TREND_BULLISH = "bullish"
TREND_BEARISH = "bearish"
TREND_UNKNOWN = "unknown"

ROLE_HTF = "HTF"
ROLE_LTF = "LTF"
ROLE_ETF = "ETF"

EXIT_STOP = "STOP"
EXIT_TARGET = "TARGET"
EXIT_FORCE_CLOSE = "FORCE_CLOSE"
EXIT_NO_EXIT = "NO_EXIT"

NOTIFY_ENTER = "ENTER"
NOTIFY_EXIT = "EXIT"


@dataclass(frozen=True)
class Candle:
    epoch: int  # bar open, UTC seconds
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Pivot:
    index: int
    epoch: int
    kind: str  # HIGH or LOW
    price: float


@dataclass(frozen=True)
class StructureEvent:
    kind: str  # BOS_UP | BOS_DOWN | CHOCH_UP | CHOCH_DOWN
    broken_pivot: Pivot
    pivot: Pivot  # the new pivot that broke structure
    leg_start: Pivot  # opposite pivot the leg starts from
    confirming_bar: Candle
    leg_magnitude: float
    directional_bar_count: int
    trend_before: str

    @property
    def direction(self) -> int:
        return 1 if self.kind in (BOS_UP, CHOCH_UP) else -1

    @property
    def side(self) -> str:
        return LONG if self.direction > 0 else SHORT

    @property
    def leg_end(self) -> float:
        return self.pivot.price


@dataclass(frozen=True)
class Signal:
    timeframe_role: str  # HTF | LTF | ETF
    timeframe: str
    module: Any  # StrategyModule
    bias: str  # LONG or SHORT
    reference_bar: Candle  # confirming (entry) bar
    band_state: Optional[str]  # overbought | oversold | inside
    trend_state: Optional[str]
    anchor_high: float
    anchor_low: float
    band_mid: Optional[float] = None
    structure_ref: Optional[StructureEvent] = None
    anchor_epoch: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Position:
    side: str
    entry_price: float
    entry_time: int
    stop_price: float
    target_price: float
    quantity: float
    module: str
    structure_ref: Optional[StructureEvent] = None
    anchor_epoch: Optional[int] = None
    bars_held: int = 0


@dataclass(frozen=True)
class TradeRecord:
    side: str
    module: str
    entry_price: float
    entry_time: int
    exit_price: float
    exit_time: int
    stop_price: float
    target_price: float
    quantity: float
    exit_reason: str
    pnl: float
    equity_after: float


@dataclass
class SessionState:
    trades_today: int = 0
    last_trade_date: Optional[str] = None  # YYYY-MM-DD (UTC)
    consecutive_losses: int = 0
    paused: bool = False


@dataclass(frozen=True)
class Notification:
    kind: str  # ENTER or EXIT
    side: str
    price: float
    quantity: float
    module: str
    epoch: int
    reason: Optional[str] = None
    pnl: Optional[float] = None
