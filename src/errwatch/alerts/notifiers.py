"""Alert notifiers — the boundary to external delivery transports."""

from __future__ import annotations

import abc
from collections.abc import Mapping

import aiohttp
import structlog

from errwatch.core.config import WebhookConfig
from errwatch.core.types import AlertPayload, NotificationChannel, Severity

logger = structlog.get_logger(__name__)

# Hex colours keyed by severity, included in webhook payloads for chat UIs.
_SEVERITY_COLORS: dict[Severity, int] = {
    Severity.LOW: 0x95A5A6,       # grey
    Severity.MEDIUM: 0x3498DB,    # blue
    Severity.HIGH: 0xF39C12,      # orange
    Severity.CRITICAL: 0xE74C3C,  # red
}


class AlertNotifier(abc.ABC):
    """Receives dispatch-ready alerts. Implemented outside the engine."""

    @abc.abstractmethod
    async def notify(self, alert: AlertPayload) -> bool:
        """Deliver an alert. Returns True on success."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class LogNotifier(AlertNotifier):
    """Writes alerts to the structured log; used for in-app delivery."""

    def __init__(self, logger_name: str = "alerts.in_app") -> None:
        self._log = structlog.get_logger(logger_name)

    async def notify(self, alert: AlertPayload) -> bool:
        self._log.warning(
            "alert_notification",
            channel=alert.channel.value,
            severity=alert.severity.name,
            subject=alert.subject,
            message=alert.message,
            rule_id=alert.rule_id,
        )
        return True


class ChannelRouter(AlertNotifier):
    """Routes each alert to the notifier registered for its channel."""

    def __init__(
        self,
        routes: Mapping[NotificationChannel, AlertNotifier] | None = None,
    ) -> None:
        self._routes: dict[NotificationChannel, AlertNotifier] = dict(routes or {})

    @property
    def channels(self) -> set[NotificationChannel]:
        return set(self._routes)

    def register(self, channel: NotificationChannel, notifier: AlertNotifier) -> None:
        self._routes[channel] = notifier

    async def notify(self, alert: AlertPayload) -> bool:
        target = self._routes.get(alert.channel)
        if target is None:
            logger.warning(
                "alert_channel_unrouted",
                channel=alert.channel.value,
                subject=alert.subject,
            )
            return False
        return await target.notify(alert)

    async def close(self) -> None:
        # A notifier may serve several channels; close each once.
        seen: set[int] = set()
        for notifier in self._routes.values():
            if id(notifier) in seen:
                continue
            seen.add(id(notifier))
            try:
                await notifier.close()
            except Exception:
                logger.exception("notifier_close_error", notifier=type(notifier).__name__)


class WebhookNotifier(AlertNotifier):
    """POSTs alerts as JSON to a configured webhook URL."""

    def __init__(self, config: WebhookConfig) -> None:
        self._url = config.url.get_secret_value()
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def notify(self, alert: AlertPayload) -> bool:
        payload = {
            "subject": alert.subject,
            "message": alert.message,
            "severity": alert.severity.name,
            "color": _SEVERITY_COLORS.get(alert.severity, 0x95A5A6),
            "channel": alert.channel.value,
            "rule_id": alert.rule_id,
            "error_count": alert.error_count,
            "timestamp": alert.timestamp,
        }

        try:
            session = self._get_session()
            async with session.post(self._url, json=payload) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "webhook_send_failed",
                    status=resp.status,
                    body=body[:200],
                )
                return False
        except Exception:
            logger.exception("webhook_send_error", subject=alert.subject)
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
