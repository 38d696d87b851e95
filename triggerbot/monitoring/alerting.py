"""
Webhook alerting for trigger outcomes and keeper failures.

- Send alerts to webhooks (Slack, Discord, generic HTTP)
- Alert batching for bursts of trigger outcomes
- Non-blocking: notify() queues and returns, delivery happens in a task
- Delivery failures are logged and dropped, never raised to the caller
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger("triggerbot")


class AlertSeverity(Enum):
    """Alert severity levels."""
    CRITICAL = auto()  # Uncaught failure in the main loop
    WARNING = auto()   # Failed trigger, failed market scan
    INFO = auto()      # Successful trigger, lifecycle


class AlertType(Enum):
    """Types of alerts."""
    TRIGGER_SUCCESS = auto()
    TRIGGER_FAILED = auto()
    SCAN_ERROR = auto()
    LOOP_ERROR = auto()
    STARTUP = auto()
    SHUTDOWN = auto()
    CUSTOM = auto()


@dataclass
class Alert:
    """An alert to be sent."""
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "message": self.message,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
        }


@dataclass
class AlertConfig:
    """Configuration for alerting."""
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    batch_window_ms: int = 1000  # Batch alerts within this window
    enabled: bool = True
    bot_name: str = "trigger"
    timeout_sec: float = 10.0


class WebhookFormatter:
    """Formats alerts for different webhook types."""

    @staticmethod
    def format_generic(alerts: List[Alert], config: AlertConfig) -> Dict[str, Any]:
        if len(alerts) == 1:
            return {"bot": config.bot_name, **alerts[0].to_dict()}
        return {"bot": config.bot_name, "alerts": [a.to_dict() for a in alerts]}

    @staticmethod
    def format_slack(alerts: List[Alert], config: AlertConfig) -> Dict[str, Any]:
        # Slack incoming webhooks take plain text
        return {"text": "\n".join(f"[{config.bot_name}]: {a.message}" for a in alerts)}

    @staticmethod
    def format_discord(alerts: List[Alert], config: AlertConfig) -> Dict[str, Any]:
        content = "\n".join(f"[{config.bot_name}]: {a.message}" for a in alerts)
        # Discord rejects messages above 2000 characters
        if len(content) > 2000:
            content = content[:1997] + "..."
        return {"username": config.bot_name, "content": content}


class AlertManager:
    """
    Best-effort alert delivery.

    ``notify`` is synchronous and never raises; alerts queued within the
    batch window are delivered together by one background task.
    """

    FORMATTERS = {
        "generic": WebhookFormatter.format_generic,
        "slack": WebhookFormatter.format_slack,
        "discord": WebhookFormatter.format_discord,
    }

    def __init__(self, config: Optional[AlertConfig] = None) -> None:
        self.config = config or AlertConfig()
        self._pending: List[Alert] = []
        self._batch_task: Optional[asyncio.Task] = None
        self._stats = {"queued": 0, "delivered": 0, "failed": 0, "dropped": 0}

    def notify(
        self,
        text: str,
        severity: AlertSeverity = AlertSeverity.INFO,
        alert_type: AlertType = AlertType.CUSTOM,
        **details: Any,
    ) -> bool:
        """
        Queue an alert for delivery.

        Returns True if the alert was queued, False if alerting is disabled,
        no webhook is configured or there is no running event loop.
        """
        if not self.config.enabled or not self.config.webhook_url:
            logger.debug(f"Alert not sent (alerting disabled): {text[:80]}")
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._stats["dropped"] += 1
            logger.warning("Alert dropped (no running event loop)")
            return False

        self._pending.append(Alert(alert_type=alert_type, severity=severity, message=text, details=details))
        self._stats["queued"] += 1
        if self._batch_task is None or self._batch_task.done():
            self._batch_task = loop.create_task(self._batch_deliver(), name="alert-batch")
        return True

    async def _batch_deliver(self) -> None:
        """Deliver batched alerts after window expires."""
        # alerts queued during a POST go out in the next window
        while self._pending:
            await asyncio.sleep(self.config.batch_window_ms / 1000)
            await self._deliver_pending()

    async def _deliver_pending(self) -> None:
        alerts = self._pending
        self._pending = []
        if not alerts:
            return
        payload = self._format(alerts)
        if await self._http_post(payload):
            self._stats["delivered"] += len(alerts)
        else:
            self._stats["failed"] += len(alerts)

    def _format(self, alerts: List[Alert]) -> Dict[str, Any]:
        formatter = self.FORMATTERS.get(self.config.webhook_type, WebhookFormatter.format_generic)
        return formatter(alerts, self.config)

    async def _http_post(self, payload: Dict[str, Any]) -> bool:
        """Send HTTP POST to webhook URL."""
        if not self.config.webhook_url:
            return False
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.config.webhook_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout_sec),
                ) as resp:
                    if resp.status < 300:
                        logger.debug("Alert delivered successfully")
                        return True
                    logger.warning(f"Alert delivery failed: HTTP {resp.status}")
        except asyncio.TimeoutError:
            logger.warning("Alert delivery timeout")
        except aiohttp.ClientError as e:
            logger.warning(f"Alert delivery error: {e}")
        return False

    async def flush(self) -> None:
        """Deliver anything still pending; used on shutdown."""
        if self._batch_task is not None and not self._batch_task.done():
            self._batch_task.cancel()
            await asyncio.gather(self._batch_task, return_exceptions=True)
        await self._deliver_pending()

    def get_stats(self) -> dict:
        return {**self._stats, "pending": len(self._pending)}

    # ─────────────────────────────────────────────────────────────────────
    # Convenience Methods for Common Alerts
    # ─────────────────────────────────────────────────────────────────────

    def alert_startup(self, **details: Any) -> bool:
        return self.notify(
            f":rocket: {self.config.bot_name} started",
            severity=AlertSeverity.INFO,
            alert_type=AlertType.STARTUP,
            **details,
        )

    def alert_shutdown(self, reason: str = "normal") -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return self.notify(
            f":stop_sign: {self.config.bot_name} shutting down: {reason}",
            severity=severity,
            alert_type=AlertType.SHUTDOWN,
        )


def configure_alerts(
    webhook_url: Optional[str] = None,
    webhook_type: str = "generic",
    enabled: bool = True,
    bot_name: str = "trigger",
) -> AlertManager:
    """
    Build an AlertManager from settings.

    Args:
        webhook_url: URL to send alerts to
        webhook_type: Type of webhook (generic, slack, discord)
        enabled: Whether alerting is enabled
        bot_name: Name to use in alerts

    Returns:
        Configured AlertManager
    """
    return AlertManager(AlertConfig(
        webhook_url=webhook_url,
        webhook_type=webhook_type,
        enabled=enabled,
        bot_name=bot_name,
    ))
