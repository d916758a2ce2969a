# src/storytree/core/logs.py
"""Structured domain event logging.

Every mutating operation in the core emits a :class:`StructuredLogEvent`.
Events are kept in a bounded in-memory buffer (so tests and operators can
inspect what happened) and mirrored to the standard ``storytree`` logger.
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, cast
from uuid import uuid4


class LogLevel(Enum):
    """Log levels with numeric values for filtering."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


class EventType(Enum):
    """Event types for structured logging."""

    SYSTEM = "system"

    # Persistence
    DATABASE_OPERATION = "database_operation"
    TRANSACTION = "transaction"

    # Domain
    CHAPTER_TREE = "chapter_tree"
    PULL_REQUEST = "pull_request"
    PR_VOTE = "pr_vote"
    COLLABORATOR = "collaborator"
    PERMISSION = "permission"
    NOTIFICATION = "notification"

    # Error handling
    ERROR = "error"
    WARNING = "warning"
    ERROR_HANDLING_START = "error_handling_start"
    RETRY_ATTEMPT = "retry_attempt"
    RETRY_EXHAUSTED = "retry_exhausted"
    ERROR_ROLLBACK = "error_rollback"


class Priority(Enum):
    """Event priority levels."""

    CRITICAL = 1  # Errors, infrastructure failures
    HIGH = 2  # State transitions, merges
    NORMAL = 3  # Regular writes
    LOW = 4  # Reads, debug traces


@dataclass
class EventMetrics:
    """Counters for emitted events."""

    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    events_by_priority: dict[int, int] = field(default_factory=dict)

    def record_event(self, event_type: str, priority: int) -> None:
        """Record an event for metrics tracking."""
        self.total_events += 1
        self.events_by_type[event_type] = self.events_by_type.get(event_type, 0) + 1
        self.events_by_priority[priority] = self.events_by_priority.get(priority, 0) + 1


@dataclass
class StructuredLogEvent:
    """Structured log event with metadata."""

    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: float = field(default_factory=time.time)
    event_type: EventType = EventType.SYSTEM
    level: LogLevel = LogLevel.INFO
    priority: Priority = Priority.NORMAL
    message: str = ""
    component: str | None = None
    story_slug: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "level": self.level.name,
            "priority": self.priority.value,
            "priority_name": self.priority.name,
            "message": self.message,
            "component": self.component,
            "story_slug": self.story_slug,
            "user_id": self.user_id,
            "metadata": self.metadata,
        }


_PRIORITY_LEVELS = {
    Priority.CRITICAL: LogLevel.ERROR,
    Priority.HIGH: LogLevel.INFO,
    Priority.NORMAL: LogLevel.INFO,
    Priority.LOW: LogLevel.DEBUG,
}


class EventLogger:
    """Structured logger for domain events.

    Args:
        max_events: Maximum number of events kept in memory.
    """

    def __init__(self, max_events: int = 10000):
        self.max_events = max_events
        self._events: deque[StructuredLogEvent] = deque(maxlen=max_events)
        self._metrics = EventMetrics()
        self._traditional_logger = logging.getLogger("storytree")

    @property
    def metrics(self) -> EventMetrics:
        return self._metrics

    def _record(self, event: StructuredLogEvent) -> StructuredLogEvent:
        self._events.append(event)
        self._metrics.record_event(event.event_type.value, event.priority.value)
        logger = self._traditional_logger
        if event.component:
            logger = logger.getChild(event.component.removeprefix("storytree."))
        if event.metadata:
            logger.log(event.level.value, "%s | %s", event.message, event.metadata)
        else:
            logger.log(event.level.value, "%s", event.message)
        return event

    async def log(
        self,
        event_type: EventType,
        message: str,
        priority: Priority = Priority.NORMAL,
        *,
        metadata: dict[str, Any] | None = None,
        component: str | None = None,
        story_slug: str | None = None,
        user_id: str | None = None,
        level: LogLevel | None = None,
    ) -> StructuredLogEvent:
        """Record a structured event."""
        event = StructuredLogEvent(
            event_type=event_type,
            level=level or _PRIORITY_LEVELS[priority],
            priority=priority,
            message=message,
            component=component,
            story_slug=story_slug,
            user_id=user_id,
            metadata=dict(metadata or {}),
        )
        return self._record(event)

    async def log_error_handling_start(
        self,
        error_type: str,
        error_msg: str,
        context: str,
        metadata: dict[str, Any] | None = None,
    ) -> StructuredLogEvent:
        """Record the start of error handling for a failed operation."""
        return await self.log(
            EventType.ERROR_HANDLING_START,
            f"Handling {error_type} in {context}: {error_msg}",
            Priority.CRITICAL,
            metadata={
                "error_type": error_type,
                "error_msg": error_msg,
                "context": context,
                **(metadata or {}),
            },
        )

    def _log_sync(
        self, level: LogLevel, message: str, event_type: EventType, **kwargs: Any
    ) -> None:
        priority = Priority.CRITICAL if level.value >= LogLevel.ERROR.value else Priority.LOW
        self._record(
            StructuredLogEvent(
                event_type=event_type,
                level=level,
                priority=priority,
                message=message,
                component=kwargs.get("component"),
                metadata=dict(kwargs.get("metadata") or {}),
            )
        )

    def debug(self, message: str, event_type: EventType = EventType.SYSTEM, **kwargs: Any) -> None:
        self._log_sync(LogLevel.DEBUG, message, event_type, **kwargs)

    def info(self, message: str, event_type: EventType = EventType.SYSTEM, **kwargs: Any) -> None:
        self._log_sync(LogLevel.INFO, message, event_type, **kwargs)

    def warning(self, message: str, event_type: EventType = EventType.WARNING, **kwargs: Any) -> None:
        self._log_sync(LogLevel.WARNING, message, event_type, **kwargs)

    def error(self, message: str, event_type: EventType = EventType.ERROR, **kwargs: Any) -> None:
        self._log_sync(LogLevel.ERROR, message, event_type, **kwargs)

    def get_events(
        self,
        event_type: EventType | None = None,
        limit: int | None = None,
    ) -> list[StructuredLogEvent]:
        """Return recorded events, oldest first, optionally filtered by type."""
        events = [e for e in self._events if event_type is None or e.event_type is event_type]
        if limit is not None:
            events = events[-limit:]
        return events



# Global event logger instance
_event_logger: EventLogger | None = None


def get_event_logger() -> EventLogger:
    """Get global event logger instance."""
    global _event_logger
    if _event_logger is None:
        _event_logger = EventLogger()
    return _event_logger


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger under the ``storytree`` logger."""
    if name == "storytree" or name.startswith("storytree."):
        return logging.getLogger(name)
    return logging.getLogger("storytree").getChild(name)


def log_message(message: str) -> None:
    """Store message in structured logging system."""
    get_event_logger().info(message, event_type=EventType.SYSTEM)


def log_calls(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorate func to log calls at the DEBUG level."""
    event_logger = get_event_logger()

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            event_logger.debug(
                f"Entering {func.__qualname__}",
                component=func.__module__,
                metadata={"function": func.__qualname__, "kwargs_keys": list(kwargs)},
            )
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                event_logger.debug(
                    f"Error in {func.__qualname__}: {e}",
                    component=func.__module__,
                    metadata={
                        "function": func.__qualname__,
                        "error_type": type(e).__name__,
                        "duration_ms": (time.time() - start_time) * 1000,
                    },
                )
                raise
            event_logger.debug(
                f"Exiting {func.__qualname__} successfully",
                component=func.__module__,
                metadata={
                    "function": func.__qualname__,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return result

        return cast(Callable[..., Any], async_wrapper)

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        event_logger.debug(
            f"Entering {func.__qualname__}",
            component=func.__module__,
            metadata={"function": func.__qualname__},
        )
        return func(*args, **kwargs)

    return cast(Callable[..., Any], sync_wrapper)


__all__ = [
    "EventLogger",
    "StructuredLogEvent",
    "EventMetrics",
    "LogLevel",
    "EventType",
    "Priority",
    "get_event_logger",
    "get_logger",
    "log_message",
    "log_calls",
]
