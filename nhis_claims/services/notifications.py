"""
Notification Dispatch.

Provides:
- NotificationSink protocol consumed by the services
- Logging and in-memory sinks
- After-commit, fire-and-forget dispatch

Delivery failures are logged and never propagate to the caller; the state
change that triggered the notification has already been committed.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol

from pydantic import BaseModel, Field

from nhis_claims.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationEvent(BaseModel):
    """A single outbound notification."""

    event_type: str = Field(..., description="e.g. batch_submitted, batch_closed")
    recipient: str
    subject: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationSink(Protocol):
    async def notify(self, event: NotificationEvent) -> None:  # pragma: no cover - Protocol definition
        ...


class LoggingNotificationSink:
    """Sink that only writes notifications to the log."""

    async def notify(self, event: NotificationEvent) -> None:
        logger.info(f"Notification {event.event_type} -> {event.recipient}: {event.subject}")


class InMemoryNotificationSink:
    """Sink that keeps notifications in a list (tests and local runs)."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    async def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[NotificationEvent]:
        return [e for e in self.events if e.event_type == event_type]


class NotificationDispatcher:
    """Fans a notification out to recipients without raising."""

    def __init__(self, sink: Optional[NotificationSink] = None):
        self.sink = sink or LoggingNotificationSink()

    async def dispatch(
        self,
        event_type: str,
        recipients: Iterable[str],
        subject: str,
        payload: dict[str, Any],
    ) -> int:
        """
        Send one event per distinct recipient.

        Returns:
            Number of notifications delivered successfully
        """
        delivered = 0
        seen: set[str] = set()
        for recipient in recipients:
            if not recipient or recipient in seen:
                continue
            seen.add(recipient)
            event = NotificationEvent(
                event_type=event_type,
                recipient=recipient,
                subject=subject,
                payload=payload,
            )
            try:
                await self.sink.notify(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to deliver {event_type} notification to {recipient}: {e}")
        return delivered
