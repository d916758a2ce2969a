# src/storytree/services/notifications.py
"""Notification hand-off for domain events.

Delivery belongs to whoever implements :class:`Notifier`; this module only
builds the payloads and makes sure a failing notifier never breaks the
operation that triggered it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger, get_logger

logger = get_logger(__name__)

MAX_NOTIFICATION_LENGTH = 200


class NotificationEvent(str, Enum):
    NEW_BRANCH = "new_branch"
    PR_OPENED = "pr_opened"
    PR_APPROVED = "pr_approved"
    PR_REJECTED = "pr_rejected"
    PR_CLOSED = "pr_closed"
    PR_MERGED = "pr_merged"
    COLLAB_INVITATION = "collab_invitation"
    COLLAB_ACCEPTED = "collab_accepted"
    COLLAB_DECLINED = "collab_declined"


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Notifier that only writes notifications to the log."""

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        logger.info("Notification %s -> %s", event.value, payload.get("recipient_id"))


def _truncate(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_NOTIFICATION_LENGTH:
        return value[:MAX_NOTIFICATION_LENGTH] + "..."
    return value


async def dispatch_notification(
    notifier: Notifier | None,
    event: NotificationEvent,
    payload: dict[str, Any],
    *,
    event_logger: EventLogger | None = None,
) -> bool:
    """Send one notification; failures are logged and reported as ``False``."""
    event_logger = event_logger or get_event_logger()
    if notifier is None:
        return False
    payload = {key: _truncate(value) for key, value in payload.items()}
    try:
        await notifier.notify(event, payload)
    except Exception as exc:
        await event_logger.log(
            EventType.NOTIFICATION,
            f"Notification {event.value} failed: {exc}",
            Priority.HIGH,
            metadata={
                "event": event.value,
                "error_type": type(exc).__name__,
                "recipient_id": payload.get("recipient_id"),
            },
            story_slug=payload.get("story_slug"),
        )
        return False
    await event_logger.log(
        EventType.NOTIFICATION,
        f"Notification {event.value} dispatched",
        Priority.LOW,
        metadata={"event": event.value, "recipient_id": payload.get("recipient_id")},
        story_slug=payload.get("story_slug"),
    )
    return True


__all__ = [
    "LoggingNotifier",
    "NotificationEvent",
    "Notifier",
    "dispatch_notification",
]
