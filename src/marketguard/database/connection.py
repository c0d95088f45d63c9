"""PostgreSQL connection pool management.

The pool backs ownership lookups and the security audit log. It is created
and closed by the application lifespan.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import asyncpg

from marketguard.core.config import get_settings
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from asyncpg import Pool

    from marketguard.core.config import Settings

logger = get_logger(__name__)

_pool: Pool | None = None


async def init_database_pool(settings: Settings | None = None) -> None:
    """Initialize the PostgreSQL connection pool.

    Should be called during application startup (lifespan).
    """
    global _pool  # noqa: PLW0603

    settings = settings or get_settings()

    logger.info(
        "Initializing database connection pool",
        host=settings.database.host,
        port=settings.database.port,
        database=settings.database.name,
    )

    _pool = await asyncpg.create_pool(
        host=settings.database.host,
        port=settings.database.port,
        database=settings.database.name,
        user=settings.database.user,
        password=settings.DATABASE_PASSWORD or None,
        min_size=settings.database.min_pool_size,
        max_size=settings.database.max_pool_size,
        command_timeout=settings.database.command_timeout,
        ssl=settings.database.ssl if settings.database.ssl else None,
    )

    try:
        assert _pool is not None
        async with _pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        logger.info("Database connection established successfully")
    except asyncpg.PostgresError:
        logger.exception("Failed to connect to database")
        raise


async def close_database_pool() -> None:
    """Close the PostgreSQL connection pool.

    Should be called during application shutdown (lifespan).
    """
    global _pool  # noqa: PLW0603

    logger.info("Closing database connection pool")

    if _pool:
        await _pool.close()
        _pool = None

    logger.info("Database connection pool closed")


def get_database_pool() -> Pool:
    """Get the database connection pool.

    Raises:
        RuntimeError: If the pool is not initialized.
    """
    if _pool is None:
        msg = "Database pool not initialized. Call init_database_pool() first."
        raise RuntimeError(msg)
    return _pool


async def check_database_health() -> dict[str, str]:
    """Health of the database connection."""
    if _pool is None:
        return {"database": "not_initialized"}
    try:
        async with _pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
    except (asyncpg.PostgresError, OSError):
        return {"database": "unhealthy"}
    return {"database": "healthy"}
