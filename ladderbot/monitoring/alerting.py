"""
Operator alerts over webhooks (Slack, Discord or plain JSON).

Alerts raised within batch_window_ms of each other go out in one POST.
Each alert type is muted for rate_limit_seconds after it is queued, so a
flapping exchange cannot flood the channel.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger("ladderbot")


class AlertSeverity(IntEnum):
    INFO = 1
    WARNING = 2
    CRITICAL = 3


class AlertType(Enum):
    STARTUP = "startup"
    SHUTDOWN = "shutdown"
    FILL_DETECTED = "fill_detected"
    LADDER_FAILED = "ladder_failed"
    DRAIN_ABANDONED = "drain_abandoned"
    CUSTOM = "custom"


def _iso(ts_ms: int) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(ts_ms / 1000))


@dataclass
class Alert:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "symbol": self.symbol,
            "title": self.title,
            "message": self.message,
            "details": self.details,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": _iso(self.timestamp_ms),
        }


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.INFO
    rate_limit_seconds: int = 60
    batch_window_ms: int = 2000
    enabled: bool = True
    include_details: bool = True
    bot_name: str = "LadderBot"
    timeout_sec: float = 10.0


# severity -> (slack hex, discord int)
_COLORS = {
    AlertSeverity.CRITICAL: ("#FF0000", 0xFF0000),
    AlertSeverity.WARNING: ("#FFA500", 0xFFA500),
    AlertSeverity.INFO: ("#0000FF", 0x0000FF),
}
_MAX_DETAIL_FIELDS = 5


def _summary_fields(alert: Alert, config: AlertConfig) -> List[Tuple[str, str]]:
    """(label, value) pairs shown as chat fields: symbol, type, then the first details."""
    pairs = []
    if alert.symbol:
        pairs.append(("Symbol", alert.symbol))
    pairs.append(("Type", alert.alert_type.name))
    if config.include_details:
        pairs.extend((str(k), str(v)) for k, v in list(alert.details.items())[:_MAX_DETAIL_FIELDS])
    return pairs


def _render_generic(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
    return alert.to_dict()


def _render_slack(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
    attachment = {
        "color": _COLORS[alert.severity][0],
        "title": alert.title,
        "text": alert.message,
        "fields": [{"title": k, "value": v, "short": True} for k, v in _summary_fields(alert, config)],
        "footer": f"{config.bot_name} | {alert.severity.name}",
        "ts": alert.timestamp_ms // 1000,
    }
    return {"username": config.bot_name, "attachments": [attachment]}


def _render_discord(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
    embed = {
        "title": alert.title,
        "description": alert.message,
        "color": _COLORS[alert.severity][1],
        "fields": [{"name": k, "value": v, "inline": True} for k, v in _summary_fields(alert, config)],
        "footer": {"text": f"{config.bot_name} | {alert.severity.name}"},
        "timestamp": _iso(alert.timestamp_ms),
    }
    return {"username": config.bot_name, "embeds": [embed]}


_RENDERERS: Dict[str, Callable[[Alert, AlertConfig], Dict[str, Any]]] = {
    "generic": _render_generic,
    "slack": _render_slack,
    "discord": _render_discord,
}
# Chat webhooks take several cards in one message under this key.
_CARD_KEYS = {"slack": "attachments", "discord": "embeds"}


class AlertManager:
    """
    Queues alerts and delivers them from a background task.

    Without a webhook URL nothing is sent; the alert is noted at debug level.
    """

    def __init__(self, config: Optional[AlertConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config or AlertConfig()
        self._client = client
        self._outbox: List[Alert] = []
        self._sender: Optional[asyncio.Task] = None
        self._muted_until: Dict[AlertType, float] = {}

    def _accepts(self, alert: Alert) -> bool:
        cfg = self.config
        if not cfg.enabled:
            return False
        if not cfg.webhook_url:
            logger.debug("alert dropped, no webhook: %s", alert.title)
            return False
        if alert.severity < cfg.min_severity:
            return False
        now = time.monotonic()
        if now < self._muted_until.get(alert.alert_type, 0.0):
            logger.debug("alert muted: %s", alert.alert_type.name)
            return False
        self._muted_until[alert.alert_type] = now + cfg.rate_limit_seconds
        return True

    async def send_alert(self, alert: Alert) -> bool:
        """Queue an alert. False when it was filtered, muted or alerting is off."""
        if not self._accepts(alert):
            return False
        self._outbox.append(alert)
        if self._sender is None or self._sender.done():
            self._sender = asyncio.create_task(self._send_after_window())
        return True

    async def flush(self) -> None:
        if self._sender is not None and not self._sender.done():
            await self._sender

    async def close(self) -> None:
        await self.flush()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _send_after_window(self) -> None:
        await asyncio.sleep(self.config.batch_window_ms / 1000)
        batch, self._outbox = self._outbox, []
        if batch:
            await self._http_post(self._payload(batch))

    def _payload(self, batch: List[Alert]) -> Dict[str, Any]:
        kind = self.config.webhook_type
        render = _RENDERERS.get(kind, _render_generic)
        if len(batch) == 1:
            return render(batch[0], self.config)
        card_key = _CARD_KEYS.get(kind)
        if card_key is None:
            return {"alerts": [a.to_dict() for a in batch]}
        payload = render(batch[0], self.config)
        for alert in batch[1:]:
            payload[card_key].extend(render(alert, self.config)[card_key])
        return payload

    async def _http_post(self, payload: Dict[str, Any], retries: int = 2) -> bool:
        """POST the payload; retry on transport errors and non-2xx replies."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_sec)
        for attempt in range(1, retries + 2):
            try:
                resp = await self._client.post(self.config.webhook_url, json=payload)
            except httpx.HTTPError as exc:
                logger.warning("alert webhook error (attempt %d): %s", attempt, exc)
            else:
                if resp.is_success:
                    return True
                logger.warning("alert webhook returned HTTP %d (attempt %d)", resp.status_code, attempt)
            if attempt <= retries:
                await asyncio.sleep(attempt)
        return False

    async def _raise(self, kind: AlertType, severity: AlertSeverity, title: str, message: str,
                     symbol: str, details: Dict[str, Any]) -> bool:
        return await self.send_alert(Alert(kind, severity, title, message, details=details, symbol=symbol))

    async def alert_startup(self, symbol: str, **details) -> bool:
        return await self._raise(
            AlertType.STARTUP, AlertSeverity.INFO, "Bot Started",
            f"{self.config.bot_name} started quoting {symbol}", symbol, details,
        )

    async def alert_shutdown(self, symbol: str, reason: str = "normal", **details) -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return await self._raise(
            AlertType.SHUTDOWN, severity, "Bot Shutdown",
            f"{self.config.bot_name} stopped ({reason}); resting orders cancelled", symbol, details,
        )

    async def alert_fill(self, symbol: str, filled: Dict[str, List[str]]) -> bool:
        total = sum(len(ids) for ids in filled.values())
        return await self._raise(
            AlertType.FILL_DETECTED, AlertSeverity.INFO, "Fill Detected",
            f"{total} rung(s) filled, ladder rebuilt", symbol,
            {side: len(ids) for side, ids in filled.items()},
        )

    async def alert_ladder_failed(self, symbol: str, side: str, error: str) -> bool:
        return await self._raise(
            AlertType.LADDER_FAILED, AlertSeverity.WARNING, "Ladder Placement Failed",
            error, symbol, {"side": side},
        )

    async def alert_drain_abandoned(self, symbol: str, side: str, order_ids: List[str]) -> bool:
        return await self._raise(
            AlertType.DRAIN_ABANDONED, AlertSeverity.CRITICAL, "Orders Stuck Resting",
            f"{len(order_ids)} {side} order(s) survived every cancel attempt; check the exchange",
            symbol, {"side": side, "ids": ",".join(order_ids[:10])},
        )


def alert_manager_from_config(cfg) -> AlertManager:
    return AlertManager(AlertConfig(
        webhook_url=cfg.alert_webhook_url,
        webhook_type=cfg.alert_webhook_type,
        enabled=cfg.alert_enabled,
    ))
