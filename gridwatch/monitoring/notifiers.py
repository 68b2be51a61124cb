"""Alert notification boundary.

The alert manager hands every fired alert to a Notifier. Concrete transports
(chat webhooks, email, SMS) live outside this package; they plug in as
NotificationChannel implementations.

Routing policy of SeverityRoutingNotifier:
- chat channel: every alert whose severity is not LOW
- email channel: CRITICAL alerts only

Usage:
    from gridwatch.monitoring.notifiers import LoggingChannel, SeverityRoutingNotifier

    notifier = SeverityRoutingNotifier(
        chat=LoggingChannel("chat"),
        email=LoggingChannel("email"),
    )
    alert_manager = AlertManager(notifier=notifier)
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Optional, Protocol

import structlog

if TYPE_CHECKING:
    from gridwatch.monitoring.alerts import Alert, AlertSeverity

logger = structlog.get_logger(__name__)

_SEVERITY_COLORS = {
    "critical": "danger",
    "high": "warning",
    "medium": "#ffa500",
    "low": "good",
}


class Notifier(Protocol):
    """Receives every fired alert."""

    def send(self, alert: "Alert") -> None | Awaitable[None]: ...


class NotificationChannel(Protocol):
    """A single delivery transport."""

    name: str

    def send(self, alert: "Alert") -> None | Awaitable[None]: ...


def severity_color(severity: "AlertSeverity | str") -> str:
    value = getattr(severity, "value", severity)
    return _SEVERITY_COLORS.get(value, "#808080")


def build_chat_payload(alert: "Alert", footer: str = "GridWatch Monitoring") -> dict[str, Any]:
    """Attachment-style payload accepted by common chat webhooks."""
    return {
        "attachments": [
            {
                "color": severity_color(alert.severity),
                "title": alert.title,
                "text": alert.message,
                "fields": [
                    {"title": "Severity", "value": alert.severity.value.upper(), "short": True},
                    {"title": "Type", "value": alert.type.value, "short": True},
                    {"title": "Time", "value": alert.timestamp_iso, "short": True},
                ],
                "footer": footer,
                "ts": int(alert.timestamp),
            }
        ]
    }


def build_email_subject(alert: "Alert") -> str:
    return f"[{alert.severity.value.upper()}] {alert.title}"


class LoggingChannel:
    """Channel that logs the payload it would deliver."""

    def __init__(self, name: str, recipients: Optional[list[str]] = None) -> None:
        self.name = name
        self.recipients = recipients or []
        self.sent: int = 0

    def send(self, alert: "Alert") -> None:
        self.sent += 1
        if self.recipients:
            logger.info(
                "alert_notification_logged",
                channel=self.name,
                alert_id=alert.id,
                to=self.recipients,
                subject=build_email_subject(alert),
            )
        else:
            logger.info(
                "alert_notification_logged",
                channel=self.name,
                alert_id=alert.id,
                payload=build_chat_payload(alert),
            )


class SeverityRoutingNotifier:
    """
    Fans alerts out to channels according to severity.

    Each channel is called in isolation: a failing channel is logged and the
    others still run. Channels returning an awaitable are scheduled on the
    running event loop.

    Args:
        chat: Receives all alerts except LOW
        email: Receives CRITICAL alerts only
    """

    def __init__(
        self,
        chat: Optional[NotificationChannel] = None,
        email: Optional[NotificationChannel] = None,
    ) -> None:
        self.chat = chat
        self.email = email
        self._pending: set[asyncio.Task] = set()

    def channels_for(self, alert: "Alert") -> list[NotificationChannel]:
        from gridwatch.monitoring.alerts import AlertSeverity

        channels: list[NotificationChannel] = []
        if self.chat is not None and alert.severity != AlertSeverity.LOW:
            channels.append(self.chat)
        if self.email is not None and alert.severity == AlertSeverity.CRITICAL:
            channels.append(self.email)
        return channels

    def send(self, alert: "Alert") -> None:
        logger.info(
            "alert_notification_dispatched",
            alert_id=alert.id,
            severity=alert.severity.value,
            title=alert.title,
            type=alert.type.value,
        )
        for channel in self.channels_for(alert):
            self._deliver(channel, alert)

    def _deliver(self, channel: NotificationChannel, alert: "Alert") -> None:
        try:
            result = channel.send(alert)
        except Exception as e:
            logger.error(
                "alert_notification_failed",
                channel=channel.name,
                alert_id=alert.id,
                error=str(e),
            )
            return

        if inspect.isawaitable(result):
            self._schedule(channel, alert, result)

    def _schedule(self, channel: NotificationChannel, alert: "Alert", pending: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(pending):
                pending.close()
            logger.error(
                "alert_notification_failed",
                channel=channel.name,
                alert_id=alert.id,
                error="async channel called without a running event loop",
            )
            return

        task = loop.create_task(self._await_delivery(channel, alert, pending))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _await_delivery(
        self,
        channel: NotificationChannel,
        alert: "Alert",
        pending: Awaitable[None],
    ) -> None:
        try:
            await pending
        except Exception as e:
            logger.error(
                "alert_notification_failed",
                channel=channel.name,
                alert_id=alert.id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight async deliveries."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
