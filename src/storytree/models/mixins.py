# src/storytree/models/mixins.py
"""Identifier and timestamp helpers shared by models and tables."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def new_id() -> str:
    """Return a fresh hexadecimal identifier."""
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


__all__ = ["ensure_utc", "new_id", "utcnow"]
