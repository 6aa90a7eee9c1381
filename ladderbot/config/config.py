"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from ladderbot.core.errors import ConfigError
from ladderbot.core.json_utils import dumps
from ladderbot.core.types import PriceReference, QuoteMode, Side

load_dotenv()

# Exchanges that use a non-standard name for the API secret variable
_SECRET_ALIASES = {
    "xt": ("XT_SECRET_KEY",),
}


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


def _optional_float_env(key: str) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return None
    return float(raw)


@dataclass(frozen=True)
class ExchangeCredentials:
    """API credentials for one exchange, read from <EXCHANGE>_* variables."""
    api_key: str
    secret: str
    password: Optional[str] = None
    uid: Optional[str] = None

    @classmethod
    def from_env(cls, exchange: str) -> "ExchangeCredentials":
        prefix = exchange.upper()
        api_key = os.getenv(f"{prefix}_API_KEY", "")
        secret = os.getenv(f"{prefix}_SECRET", "")
        for alias in _SECRET_ALIASES.get(exchange.lower(), ()):
            secret = secret or os.getenv(alias, "")
        if not api_key or not secret:
            raise ConfigError(
                f"Missing credentials for {exchange}: set {prefix}_API_KEY and {prefix}_SECRET"
            )
        return cls(
            api_key=api_key,
            secret=secret,
            password=os.getenv(f"{prefix}_PASSWORD") or None,
            uid=os.getenv(f"{prefix}_UID") or None,
        )

    def to_ccxt(self) -> dict:
        """Keyword options for a ccxt exchange constructor."""
        opts = {"apiKey": self.api_key, "secret": self.secret}
        if self.password:
            opts["password"] = self.password
        if self.uid:
            opts["uid"] = self.uid
        return opts

    def __repr__(self) -> str:
        return f"ExchangeCredentials(api_key={self.api_key[:4]}***, password={'set' if self.password else None})"


@dataclass(frozen=True)
class QuoteConfig:
    exchange: str
    symbol: str
    mode: QuoteMode
    side: Side  # quoted side in mono mode
    bid_total_notional: float
    ask_total_notional: float
    spread_pct: float
    orders_per_side: int
    price_reference: PriceReference
    drift_threshold_pct: float
    tick_interval_sec: float
    # Pacing
    order_delay_ms: int = 50
    rate_limit_backoff_sec: float = 2.0
    side_pause_sec: float = 0.5
    cancel_settle_sec: float = 1.5
    heartbeat_sec: float = 10.0
    max_drain_attempts: int = 10
    cap_to_balance: bool = True
    # Exchange client
    testnet: bool = False
    http_timeout_ms: int = 30000
    # Ops
    metrics_port: int = 0
    log_file: Optional[str] = None
    log_level: str = "INFO"
    alert_webhook_url: Optional[str] = None
    alert_webhook_type: str = "generic"  # generic, slack, discord
    alert_enabled: bool = True
    credentials: Optional[ExchangeCredentials] = field(default=None, repr=False, compare=False)

    @property
    def quoted_sides(self) -> Tuple[Side, ...]:
        """Sides this run quotes; bid first in both-side mode."""
        if self.mode is QuoteMode.BOTH:
            return (Side.BID, Side.ASK)
        return (self.side,)

    @property
    def base_currency(self) -> str:
        return self.symbol.split("/")[0]

    @property
    def quote_currency(self) -> str:
        # "BTC/USDT:USDT" -> "USDT"
        return self.symbol.split("/")[1].split(":")[0]

    def budget_for(self, side: Side) -> float:
        """Configured quote-currency notional for one side."""
        return self.bid_total_notional if side is Side.BID else self.ask_total_notional

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (no credentials)."""
        out = {k: v for k, v in self.__dict__.items() if k != "credentials"}
        for key in ("mode", "side", "price_reference"):
            out[key] = out[key].value
        return out

    @classmethod
    def load(cls, require_credentials: bool = True) -> "QuoteConfig":
        exchange = os.getenv("EXCHANGE", "").strip().lower()
        symbol = os.getenv("SYMBOL", "").strip()
        if not exchange:
            raise ConfigError("EXCHANGE is required")
        if not symbol:
            raise ConfigError("SYMBOL is required")

        try:
            total = _optional_float_env("TOTAL_QUOTE_AMOUNT")
            bid_total = _optional_float_env("BID_TOTAL_QUOTE_AMOUNT")
            ask_total = _optional_float_env("ASK_TOTAL_QUOTE_AMOUNT")
            spread_pct = _float_env("SPREAD_PERCENT", 1.0)
            drift = _optional_float_env("DRIFT_THRESHOLD_PERCENT")
            cfg = cls(
                exchange=exchange,
                symbol=symbol,
                mode=QuoteMode.parse(os.getenv("MODE", "mono")),
                side=Side.parse(os.getenv("SIDE", "ask")),
                bid_total_notional=bid_total if bid_total is not None else (total or 0.0),
                ask_total_notional=ask_total if ask_total is not None else (total or 0.0),
                spread_pct=spread_pct,
                orders_per_side=_int_env("NUMBER_OF_ORDERS", 10),
                price_reference=PriceReference.parse(os.getenv("PRICE_REFERENCE", "mid")),
                drift_threshold_pct=drift if drift is not None else spread_pct,
                tick_interval_sec=_float_env("MONITOR_INTERVAL_SECONDS", 1.0),
                order_delay_ms=_int_env("ORDER_DELAY_MS", 50),
                rate_limit_backoff_sec=_float_env("RATE_LIMIT_BACKOFF_SEC", 2.0),
                side_pause_sec=_float_env("SIDE_PAUSE_SEC", 0.5),
                cancel_settle_sec=_float_env("CANCEL_SETTLE_SEC", 1.5),
                heartbeat_sec=_float_env("HEARTBEAT_SEC", 10.0),
                max_drain_attempts=_int_env("MAX_DRAIN_ATTEMPTS", 10),
                cap_to_balance=env_bool("CAP_TO_BALANCE", True),
                testnet=env_bool("TESTNET", False),
                http_timeout_ms=_int_env("HTTP_TIMEOUT_MS", 30000),
                metrics_port=_int_env("METRICS_PORT", 0),
                log_file=os.getenv("LOG_FILE") or None,
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
                alert_webhook_type=os.getenv("ALERT_WEBHOOK_TYPE", "generic").lower(),
                alert_enabled=env_bool("ALERT_ENABLED", True),
                credentials=ExchangeCredentials.from_env(exchange) if require_credentials else None,
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        try:
            cfg._validate()
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        _log_loaded(cfg)
        return cfg

    def _validate(self) -> None:
        if "/" not in self.symbol:
            raise ValueError(f"SYMBOL must look like BASE/QUOTE, got {self.symbol!r}")
        if self.orders_per_side < 1:
            raise ValueError("NUMBER_OF_ORDERS must be >= 1")
        if self.spread_pct <= 0:
            raise ValueError("SPREAD_PERCENT must be > 0")
        if self.drift_threshold_pct <= 0:
            raise ValueError("DRIFT_THRESHOLD_PERCENT must be > 0")
        if self.tick_interval_sec <= 0:
            raise ValueError("MONITOR_INTERVAL_SECONDS must be > 0")
        for side in self.quoted_sides:
            if self.budget_for(side) <= 0:
                name = "BID_TOTAL_QUOTE_AMOUNT" if side is Side.BID else "ASK_TOTAL_QUOTE_AMOUNT"
                raise ValueError(f"{name} (or TOTAL_QUOTE_AMOUNT) must be > 0")
        if self.order_delay_ms < 0 or self.rate_limit_backoff_sec < 0:
            raise ValueError("Pacing delays must be >= 0")
        if self.side_pause_sec < 0 or self.cancel_settle_sec < 0:
            raise ValueError("Pacing delays must be >= 0")
        if self.max_drain_attempts < 1:
            raise ValueError("MAX_DRAIN_ATTEMPTS must be >= 1")
        if self.alert_webhook_type not in ("generic", "slack", "discord"):
            raise ValueError("ALERT_WEBHOOK_TYPE must be one of generic|slack|discord")

        if self.drift_threshold_pct < self.spread_pct / self.orders_per_side:
            logging.getLogger("ladderbot").warning(
                f"WARNING: DRIFT_THRESHOLD_PERCENT={self.drift_threshold_pct} is tighter than one "
                "rung step; the ladder may refresh on every tick."
            )


def _log_loaded(cfg: QuoteConfig) -> None:
    """Log critical settings once at startup so overrides are obvious."""
    payload = {
        "event": "config_loaded",
        "exchange": cfg.exchange,
        "symbol": cfg.symbol,
        "mode": cfg.mode.value,
        "sides": [s.value for s in cfg.quoted_sides],
        "spread_pct": cfg.spread_pct,
        "orders_per_side": cfg.orders_per_side,
        "price_reference": cfg.price_reference.value,
        "drift_threshold_pct": cfg.drift_threshold_pct,
        "tick_interval_sec": cfg.tick_interval_sec,
        "testnet": cfg.testnet,
    }
    logging.getLogger("ladderbot").info(dumps(payload))


def budgets_summary(cfg: QuoteConfig) -> List[str]:
    """Human-readable budget lines for startup banners."""
    return [
        f"{side.value}: {cfg.budget_for(side):g} {cfg.quote_currency}"
        for side in cfg.quoted_sides
    ]
