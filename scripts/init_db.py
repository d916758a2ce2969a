# scripts/init_db.py
"""Run Alembic migrations to initialize the database."""

from __future__ import annotations

from storytree.canon.db import dispose_engine, ensure_schema
from storytree.core.env import load_env
from storytree.core.logging import get_logger, init_logging

logger = get_logger(__name__)


async def init_db() -> None:
    """Apply Alembic migrations under the schema advisory lock."""
    logger.info("Applying Alembic migrations to initialize the database")
    try:
        await ensure_schema()
        logger.info("Alembic migrations applied successfully")
    except Exception as e:
        logger.exception("Failed to apply Alembic migrations: %s", e)
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":  # pragma: no cover - CLI execution
    import asyncio

    load_env()
    init_logging()
    asyncio.run(init_db())
