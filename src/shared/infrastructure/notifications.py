"""
Notification Sinks
==================

Delivery targets for operational and SLA notifications.

- SlackNotificationSink: Slack incoming webhook, Block Kit message
- DatabaseNotificationSink: persisted copy in the notifications table
- LoggingNotificationSink: structured log line
- CompositeNotificationSink: fan-out; fails only when every sink failed

From the engines' point of view a notify call is fire-and-forget; delivery
guarantees belong to the sink.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import NotificationSeverity, VALID_SEVERITIES
from src.core import NotificationException, utc_now
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Notification:
    """A notification handed to a sink."""

    title: str
    message: str
    severity: str = NotificationSeverity.INFO
    related_entity_id: Optional[str] = None
    related_entity_type: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(f"severity must be one of {VALID_SEVERITIES}, got {self.severity!r}")


class INotificationSink(ABC):
    """Interface for notification delivery."""

    name: str = "sink"

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """
        Deliver a notification.

        Raises:
            NotificationException: If delivery failed
        """

    async def close(self) -> None:
        """Release resources held by the sink."""


class LoggingNotificationSink(INotificationSink):
    """Writes notifications to the application log."""

    name = "log"

    _LEVELS = {
        NotificationSeverity.INFO: "info",
        NotificationSeverity.WARNING: "warning",
        NotificationSeverity.ERROR: "error",
    }

    async def notify(self, notification: Notification) -> None:
        log = getattr(logger, self._LEVELS[notification.severity])
        log(
            notification.title,
            extra={
                "notification_message": notification.message,
                "severity": notification.severity,
                "related_entity_id": notification.related_entity_id,
                "related_entity_type": notification.related_entity_type,
            }
        )


class DatabaseNotificationSink(INotificationSink):
    """Persists notifications, one short transaction per notification."""

    name = "database"

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def notify(self, notification: Notification) -> None:
        from src.shared.infrastructure.models import NotificationModel

        try:
            async with self._session_factory() as session:
                session.add(NotificationModel(
                    title=notification.title,
                    message=notification.message,
                    severity=notification.severity,
                    related_entity_id=notification.related_entity_id,
                    related_entity_type=notification.related_entity_type,
                    payload=dict(notification.metadata),
                    created_at=notification.created_at,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            raise NotificationException(f"Failed to persist notification: {e}")


class SlackNotificationSink(INotificationSink):
    """
    Slack webhook sink.

    Sends Block Kit messages with a bounded timeout and a short retry with
    exponential backoff. Raises once all attempts are exhausted.
    """

    name = "slack"

    _EMOJI = {
        NotificationSeverity.INFO: ":information_source:",
        NotificationSeverity.WARNING: ":warning:",
        NotificationSeverity.ERROR: ":rotating_light:",
    }

    def __init__(
        self,
        webhook_url: str,
        channel: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.channel = channel
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    def _build_message(self, notification: Notification) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        emoji = self._EMOJI.get(notification.severity, "")
        fields = [{"type": "mrkdwn", "text": f"*Severity:*\n{notification.severity.title()}"}]
        if notification.related_entity_id:
            fields.append({
                "type": "mrkdwn",
                "text": f"*{(notification.related_entity_type or 'entity').title()}:*\n"
                        f"{notification.related_entity_id}"
            })

        return {
            "channel": self.channel,
            "text": f"{notification.title}: {notification.message}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": f"{emoji} {notification.title}".strip(), "emoji": True}
                },
                {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
                {"type": "section", "fields": fields},
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"Sent: {notification.created_at.isoformat()}"}
                    ]
                },
            ],
        }

    async def notify(self, notification: Notification) -> None:
        message = self._build_message(notification)
        last_error = "no attempt made"

        for attempt in range(self.max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self.webhook_url, json=message)
                if response.status_code == 200:
                    logger.info(
                        "Slack notification sent",
                        extra={"title": notification.title, "related_entity_id": notification.related_entity_id}
                    )
                    return
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "Slack notification attempt failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        raise NotificationException(f"Slack delivery failed: {last_error}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class CompositeNotificationSink(INotificationSink):
    """
    Fans a notification out to several sinks.

    Individual sink failures are logged. The call only fails when no sink
    accepted the notification.
    """

    name = "composite"

    def __init__(self, sinks: List[INotificationSink]):
        if not sinks:
            raise ValueError("CompositeNotificationSink needs at least one sink")
        self._sinks = list(sinks)

    @property
    def sinks(self) -> List[INotificationSink]:
        return list(self._sinks)

    async def notify(self, notification: Notification) -> None:
        failures = []
        for sink in self._sinks:
            try:
                await sink.notify(notification)
            except NotificationException as e:
                failures.append({"sink": sink.name, "error": e.message})
                logger.error(
                    "Notification sink failed",
                    extra={"sink": sink.name, "error": e.message, "title": notification.title}
                )

        if len(failures) == len(self._sinks):
            raise NotificationException("All notification sinks failed", {"failures": failures})

    async def close(self) -> None:
        for sink in self._sinks:
            await sink.close()
