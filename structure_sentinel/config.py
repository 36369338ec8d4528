from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .candles import tf_seconds
from .modules import MODULES


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Structure Sentinel"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "deriv"
    app_id: str = ""
    token: str = ""
    symbol: str = "R_75"
    warmup_candles: int = 120
    buffer_capacity: int = 1000
    ws_heartbeat_s: int = 20
    request_timeout_s: int = 30


@dataclass
class TimeframesConfig:
    htf: List[str] = field(default_factory=lambda: ["2h", "1h"])  # first ready wins
    ltf: str = "15m"
    etf: str = "5m"

    def all(self) -> List[str]:
        out: List[str] = []
        for tf in list(self.htf) + [self.ltf, self.etf]:
            if tf not in out:
                out.append(tf)
        return out

    def granularities(self) -> Dict[str, int]:
        return {tf: tf_seconds(tf) for tf in self.all()}


@dataclass
class IndicatorConfig:
    ema_trend: int = 50
    ema_fast: int = 20
    ema_slow: int = 50
    bb_period: int = 20
    bb_stddev: float = 2.0
    atr_period: int = 14
    atr_avg_period: int = 20
    adx_period: int = 14
    rsi_period: int = 14


@dataclass
class StructureConfig:
    swing_left: int = 3
    swing_right: int = 3
    min_impulse_bars: int = 3
    min_leg_size: float = 0.0
    require_body_break: bool = False


@dataclass
class StrategyConfig:
    modules: List[str] = field(default_factory=lambda: ["mean_reversion", "continuation", "structure_pullback"])
    require_etf_confirm: bool = True

    # Structure pullback
    min_retrace: float = 0.382
    max_retrace: float = 0.618
    pullback_max_wait_bars: int = 48
    pullback_full_range_engulf: bool = True
    adx_threshold: float = 25.0


@dataclass
class RiskConfig:
    initial_equity: float = 10000.0
    risk_fraction: float = 0.01
    max_trades_per_session: int = 2
    trade_cap_period: str = "day"  # day | session
    loss_pause_after: int = 2
    reward_multiple: float = 2.0
    stop_buffer_frac: float = 0.0001
    fixed_stop_distance: Optional[float] = None
    fixed_target_distance: Optional[float] = None


@dataclass
class BacktestConfig:
    data_dir: str = "data"
    ledger_out: str = ""


@dataclass
class TelegramConfig:
    enabled: bool = False
    token: str = ""
    chat_ids: List[str] = None
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    timeframes: TimeframesConfig = field(default_factory=TimeframesConfig)
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)

    def validate(self) -> None:
        errs = []
        try:
            grans = self.timeframes.granularities()
        except ValueError as e:
            errs.append(str(e))
            grans = {}
        if not self.timeframes.htf:
            errs.append("timeframes.htf must list at least one timeframe")
        if grans:
            etf_g = grans[self.timeframes.etf]
            ltf_g = grans[self.timeframes.ltf]
            if ltf_g < etf_g:
                errs.append("timeframes.ltf must not be finer than timeframes.etf")
            if any(grans[tf] < ltf_g for tf in self.timeframes.htf):
                errs.append("timeframes.htf must not be finer than timeframes.ltf")
        if self.structure.swing_left < 1 or self.structure.swing_right < 1:
            errs.append("structure.swing_left/swing_right must be >= 1")
        unknown = [m for m in self.strategy.modules if m not in MODULES]
        if unknown:
            errs.append(f"strategy.modules has unknown entries {unknown}; known: {sorted(MODULES)}")
        if not (0.0 <= self.strategy.min_retrace <= self.strategy.max_retrace):
            errs.append("strategy requires 0 <= min_retrace <= max_retrace")
        if not (0.0 < self.risk.risk_fraction <= 1.0):
            errs.append("risk.risk_fraction must be in (0, 1]")
        if self.risk.initial_equity <= 0:
            errs.append("risk.initial_equity must be > 0")
        if self.risk.trade_cap_period not in ("day", "session"):
            errs.append("risk.trade_cap_period must be 'day' or 'session'")
        if self.risk.loss_pause_after < 1:
            errs.append("risk.loss_pause_after must be >= 1")
        if self.indicators.bb_stddev <= 0:
            errs.append("indicators.bb_stddev must be > 0")
        if errs:
            raise ValueError("Config violation: " + "; ".join(errs))


def _apply_env(cfg: Config) -> None:
    # env overrides (useful on servers)
    cfg.provider.app_id = str(_env_override(cfg.provider.app_id, "DERIV_APP_ID"))
    cfg.provider.token = _env_override(cfg.provider.token, "DERIV_API_TOKEN")
    cfg.provider.symbol = _env_override(cfg.provider.symbol, "SYMBOL")

    risk_pct = os.getenv("RISK_PCT")
    if risk_pct:
        try:
            cfg.risk.risk_fraction = float(risk_pct) / 100.0
        except ValueError:
            pass
    cfg.risk.max_trades_per_session = _env_override(cfg.risk.max_trades_per_session, "MAX_TRADES_PER_SESSION")
    cfg.risk.loss_pause_after = _env_override(cfg.risk.loss_pause_after, "LOSS_PAUSE_AFTER")
    cfg.indicators.ema_trend = _env_override(cfg.indicators.ema_trend, "HTF_EMA")
    cfg.indicators.bb_period = _env_override(cfg.indicators.bb_period, "BB_PERIOD")

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}


def config_from_dict(raw: Dict[str, Any]) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        timeframes=TimeframesConfig(**raw.get("timeframes", {})),
        indicators=IndicatorConfig(**raw.get("indicators", {})),
        structure=StructureConfig(**raw.get("structure", {})),
        strategy=StrategyConfig(**raw.get("strategy", {})),
        risk=RiskConfig(**raw.get("risk", {})),
        backtest=BacktestConfig(**raw.get("backtest", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
    )
    _apply_env(cfg)
    cfg.validate()
    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return config_from_dict(raw)
