# src/storytree/canon/repository.py
"""Generic table access used by the per-entity repositories.

Every method takes the caller's :class:`AsyncSession` so that reads and
writes join whatever transaction the caller has open.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from storytree.core.logs import EventType, Priority, get_event_logger
from storytree.models import Base

event_logger = get_event_logger()

RowT = TypeVar("RowT", bound=Base)  # type: ignore[valid-type]


class Repository(Generic[RowT]):
    """CRUD helpers bound to one ORM table."""

    def __init__(self, table: type[RowT]) -> None:
        self.table = table
        self.table_name: str = table.__tablename__

    def _criteria(self, filters: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        criteria = []
        for name, value in filters.items():
            column = getattr(self.table, name)
            criteria.append(column.is_(None) if value is None else column == value)
        return criteria

    async def create(self, session: AsyncSession, **values: Any) -> RowT:
        """Insert a row and flush so database defaults are populated."""
        start_time = time.time()
        row = self.table(**values)
        session.add(row)
        try:
            await session.flush()
        except Exception as e:
            await event_logger.log_error_handling_start(
                error_type=type(e).__name__,
                error_msg=str(e),
                context=f"Inserting into {self.table_name}",
                metadata={
                    "operation": "insert",
                    "table": self.table_name,
                    "duration": time.time() - start_time,
                },
            )
            raise
        await event_logger.log(
            EventType.DATABASE_OPERATION,
            f"Inserted row into {self.table_name}",
            Priority.LOW,
            metadata={
                "operation": "insert",
                "table": self.table_name,
                "duration": time.time() - start_time,
            },
        )
        return row

    async def find_one(self, session: AsyncSession, **filters: Any) -> RowT | None:
        stmt = (
            select(self.table)
            .where(*self._criteria(filters))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def find_many(
        self,
        session: AsyncSession,
        *,
        order_by: Sequence[Any] = (),
        limit: int | None = None,
        where: Sequence[ColumnElement[bool]] = (),
        **filters: Any,
    ) -> list[RowT]:
        """Return rows matching ``filters`` and any extra ``where`` clauses."""
        stmt = (
            select(self.table)
            .where(*self._criteria(filters), *where)
            .execution_options(populate_existing=True)
        )
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def find_one_and_update(
        self,
        session: AsyncSession,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> RowT | None:
        """Apply ``values`` to the rows matching ``filters`` in one ``UPDATE``.

        ``values`` may contain SQL expressions (``Table.col + 1``) so counters
        are changed without a read-modify-write cycle. Returns the refreshed
        row, or ``None`` when nothing matched.
        """
        start_time = time.time()
        pk_columns = sa_inspect(self.table).primary_key
        stmt = (
            update(self.table)
            .where(*self._criteria(filters))
            .values(**values)
            .returning(*pk_columns)
            .execution_options(synchronize_session=False)
        )
        keys = (await session.execute(stmt)).all()
        await event_logger.log(
            EventType.DATABASE_OPERATION,
            f"Updated {self.table_name}",
            Priority.LOW,
            metadata={
                "operation": "update",
                "table": self.table_name,
                "columns": sorted(values),
                "matched": len(keys),
                "duration": time.time() - start_time,
            },
        )
        if not keys:
            return None
        return await session.get(
            self.table, tuple(keys[0]), populate_existing=True
        )

    async def count(self, session: AsyncSession, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.table).where(*self._criteria(filters))
        result = await session.execute(stmt)
        return int(result.scalar_one())


__all__ = ["Repository"]
