# src/storytree/canon/db.py
"""Database engine and session creation, migrations, and helpers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command as alembic_command  # type: ignore[attr-defined]
from alembic.config import Config
from sqlalchemy import BigInteger, bindparam
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func, select

from storytree.config import DatabaseConfig
from storytree.core.env import get_config
from storytree.core.logs import EventType, Priority, get_event_logger, log_calls, log_message
from storytree.models import Base

# Initialize EventLogger for database session management
event_logger = get_event_logger()

# Stable advisory lock id (signed 64-bit) serializing schema setup.
_RAW_LOCK_ID = 0x53746F727954726565534348454D41
SCHEMA_LOCK_ID = int(_RAW_LOCK_ID & 0x7FFF_FFFF_FFFF_FFFF)

_ENGINE: AsyncEngine | None = None
_SESSION_FACTORY: async_sessionmaker[AsyncSession] | None = None


def create_engine(settings: DatabaseConfig | None = None, url: str | None = None) -> AsyncEngine:
    """Create an async engine for ``url`` or the configured database.

    In-memory SQLite databases share a single connection so every session
    sees the same tables.
    """
    settings = settings or get_config().database
    url = url or settings.url
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith(":")):
        return create_async_engine(
            url,
            echo=settings.echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=settings.echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_engine()
    return _ENGINE


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = create_session_factory(get_engine())
    return _SESSION_FACTORY


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Return a SQLAlchemy asynchronous session."""

    start_time = time.time()
    factory = factory or get_session_factory()
    try:
        async with factory() as session:
            await event_logger.log(
                EventType.DATABASE_OPERATION,
                "Database session opened",
                Priority.LOW,
                metadata={
                    "operation": "session_create",
                    "creation_time": time.time() - start_time,
                },
            )
            yield session
            await event_logger.log(
                EventType.DATABASE_OPERATION,
                "Database session completed",
                Priority.LOW,
                metadata={
                    "operation": "session_complete",
                    "total_duration": time.time() - start_time,
                },
            )
    except SQLAlchemyError as exc:
        await event_logger.log_error_handling_start(
            error_type=type(exc).__name__,
            error_msg=str(exc),
            context="Database session",
            metadata={
                "operation": "session",
                "duration": time.time() - start_time,
            },
        )
        log_message(f"Database error: {exc}")
        raise


@asynccontextmanager
async def advisory_lock(session: AsyncSession, lock_id: int) -> AsyncIterator[None]:
    """Acquire a PostgreSQL advisory lock.

    Uses explicit bigint casts to avoid psycopg/SQLAlchemy binding as NUMERIC.
    Other dialects run the block unlocked.
    """

    if session.get_bind().dialect.name != "postgresql":
        yield
        return

    await event_logger.log(
        EventType.DATABASE_OPERATION,
        f"Acquiring PostgreSQL advisory lock: {lock_id}",
        Priority.NORMAL,
        metadata={"operation": "advisory_lock_acquire", "lock_id": lock_id},
    )
    await session.execute(
        select(func.pg_advisory_lock(bindparam("id", type_=BigInteger))).params(
            id=int(lock_id)
        )
    )
    try:
        yield
    finally:
        await session.execute(
            select(func.pg_advisory_unlock(bindparam("id", type_=BigInteger))).params(
                id=int(lock_id)
            )
        )
        await event_logger.log(
            EventType.DATABASE_OPERATION,
            f"Released advisory lock: {lock_id}",
            Priority.NORMAL,
            metadata={"operation": "advisory_lock_release", "lock_id": lock_id},
        )


def alembic_config(url: str | None = None) -> Config:
    """Return the Alembic configuration rooted at the repository."""
    root = Path(__file__).resolve().parents[3]
    cfg = Config(str(root / "alembic.ini"))
    cfg.set_main_option("script_location", str(root / "migrations"))
    if url:
        cfg.set_main_option("sqlalchemy.url", url)
    return cfg


@log_calls
async def ensure_schema(engine: AsyncEngine | None = None) -> None:
    """Apply migrations once, serialized across processes by an advisory lock."""
    start_time = time.time()
    engine = engine or get_engine()
    await event_logger.log(
        EventType.DATABASE_OPERATION,
        "Starting database schema initialization",
        Priority.HIGH,
        metadata={"operation": "schema_ensure", "phase": "start"},
    )
    try:
        async with get_session(create_session_factory(engine)) as session:
            async with advisory_lock(session, SCHEMA_LOCK_ID):
                cfg = alembic_config(engine.url.render_as_string(hide_password=False))
                # Alembic drives its own synchronous engine.
                await asyncio.to_thread(alembic_command.upgrade, cfg, "head")
    except Exception as e:
        await event_logger.log_error_handling_start(
            error_type=type(e).__name__,
            error_msg=str(e),
            context="Database schema initialization",
            metadata={
                "operation": "schema_ensure",
                "duration": time.time() - start_time,
                "lock_id": SCHEMA_LOCK_ID,
            },
        )
        raise
    duration = time.time() - start_time
    await event_logger.log(
        EventType.DATABASE_OPERATION,
        f"Schema initialization completed successfully in {duration:.2f}s",
        Priority.HIGH,
        metadata={"operation": "schema_ensure", "phase": "complete", "duration": duration},
    )


async def create_all(engine: AsyncEngine) -> None:
    """Create every table straight from the ORM metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _ENGINE, _SESSION_FACTORY
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    _SESSION_FACTORY = None


__all__ = [
    "SCHEMA_LOCK_ID",
    "advisory_lock",
    "alembic_config",
    "create_all",
    "create_engine",
    "create_session_factory",
    "dispose_engine",
    "ensure_schema",
    "get_engine",
    "get_session",
    "get_session_factory",
]
