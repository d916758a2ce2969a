# src/storytree/services/transactions.py
"""Run multi-entity writes as one atomic, retried unit of work."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from storytree.config import TransactionConfig
from storytree.core.env import get_config
from storytree.core.errors import ConflictError, InternalError, StoryTreeError
from storytree.core.logs import EventLogger, EventType, Priority, get_event_logger

T = TypeVar("T")

UnitOfWork = Callable[[AsyncSession], Awaitable[T]]


def is_transient(exc: BaseException) -> bool:
    """Whether ``exc`` is an infrastructure hiccup worth retrying."""
    if isinstance(exc, StoryTreeError):
        return False
    if isinstance(exc, (OperationalError, InterfaceError, TimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


class TransactionCoordinator:
    """Executes a unit of work inside a single database transaction.

    The unit receives an :class:`AsyncSession` with an open transaction. It
    is committed when the unit returns and rolled back when it raises.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: TransactionConfig | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._settings = settings
        self.event_logger = event_logger or get_event_logger()

    @property
    def settings(self) -> TransactionConfig:
        return self._settings or get_config().transaction

    async def run(self, label: str, fn: UnitOfWork[T]) -> T:
        """Run ``fn`` atomically, retrying transient database failures.

        Raises:
            StoryTreeError: raised by ``fn`` itself; never retried.
            ConflictError: a uniqueness constraint fired at commit time.
            InternalError: database failures that outlived every retry.
        """
        settings = self.settings
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, settings.retry_attempts)),
                wait=wait_fixed(settings.retry_backoff),
                retry=retry_if_exception(is_transient),
                before_sleep=self._before_retry(label),
                reraise=True,
            ):
                with attempt:
                    return await self._run_once(
                        label, fn, settings.timeout, attempt.retry_state.attempt_number
                    )
        except StoryTreeError:
            raise
        except TimeoutError as exc:
            await self._exhausted(label, exc)
            raise InternalError(
                f"Transaction '{label}' timed out after {settings.timeout}s",
                "TRANSACTION_TIMEOUT",
            ) from exc
        except SQLAlchemyError as exc:
            await self._exhausted(label, exc)
            raise InternalError(
                f"Transaction '{label}' failed: {exc}", "TRANSACTION_FAILED"
            ) from exc
        raise RuntimeError("Unreachable")  # pragma: no cover - safety

    async def _run_once(
        self, label: str, fn: UnitOfWork[T], timeout: float, attempt: int
    ) -> T:
        start_time = time.time()
        await self.event_logger.log(
            EventType.TRANSACTION,
            f"Transaction started: {label}",
            Priority.LOW,
            metadata={"label": label, "attempt": attempt},
        )
        async with self.session_factory() as session:
            try:
                async with asyncio.timeout(timeout):
                    async with session.begin():
                        result = await fn(session)
            except IntegrityError as exc:
                await self._aborted(label, exc, start_time)
                raise ConflictError(
                    f"Concurrent write conflict in {label}", "WRITE_CONFLICT"
                ) from exc
            except Exception as exc:
                await self._aborted(label, exc, start_time)
                if isinstance(exc, SQLAlchemyError) and not is_transient(exc):
                    raise InternalError(f"Database error in {label}: {exc}") from exc
                raise
        await self.event_logger.log(
            EventType.TRANSACTION,
            f"Transaction committed: {label}",
            Priority.LOW,
            metadata={
                "label": label,
                "attempt": attempt,
                "duration": time.time() - start_time,
            },
        )
        return result

    async def _aborted(self, label: str, exc: BaseException, start_time: float) -> None:
        # Domain errors are expected outcomes, not failures.
        priority = Priority.NORMAL if isinstance(exc, StoryTreeError) else Priority.CRITICAL
        await self.event_logger.log(
            EventType.ERROR_ROLLBACK,
            f"Transaction aborted: {label}",
            priority,
            metadata={
                "label": label,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
                "duration": time.time() - start_time,
            },
        )

    def _before_retry(self, label: str) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            self.event_logger.warning(
                f"Retrying transaction {label}",
                event_type=EventType.RETRY_ATTEMPT,
                metadata={
                    "label": label,
                    "attempt": retry_state.attempt_number,
                    "error_type": type(exc).__name__ if exc else None,
                },
            )

        return _log

    async def _exhausted(self, label: str, exc: BaseException) -> None:
        await self.event_logger.log_error_handling_start(
            error_type=type(exc).__name__,
            error_msg=str(exc),
            context=f"Transaction {label}",
            metadata={"retries": self.settings.retry_attempts},
        )
        await self.event_logger.log(
            EventType.RETRY_EXHAUSTED,
            f"Transaction {label} gave up",
            Priority.CRITICAL,
            metadata={"label": label, "error_type": type(exc).__name__},
        )


__all__ = ["TransactionCoordinator", "UnitOfWork", "is_transient"]
