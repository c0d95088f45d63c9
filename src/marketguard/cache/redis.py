"""Redis client and connection pool management.

Redis holds the PKCE sessions shared by every instance of the service.
The pool is created and closed by the application lifespan.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from marketguard.core.config import get_settings
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from redis.asyncio import Redis

    from marketguard.core.config import Settings

logger = get_logger(__name__)

_session_pool: ConnectionPool[Any] | None = None
_session_client: Redis[Any] | None = None


async def init_redis_pool(settings: Settings | None = None) -> None:
    """Initialize the session Redis pool and verify the connection.

    Should be called during application startup (lifespan).
    """
    global _session_pool, _session_client  # noqa: PLW0603

    settings = settings or get_settings()

    logger.info(
        "Initializing Redis connection",
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.session_db,
    )

    # Sessions are stored as orjson bytes
    _session_pool = ConnectionPool.from_url(
        settings.redis_session_url,
        max_connections=20,
        decode_responses=False,
    )
    _session_client = redis.Redis(connection_pool=_session_pool)

    try:
        await _session_client.ping()
        logger.info("Redis connection established successfully")
    except redis.ConnectionError:
        logger.exception("Failed to connect to Redis")
        raise


async def close_redis_pool() -> None:
    """Close the session Redis pool.

    Should be called during application shutdown (lifespan).
    """
    global _session_pool, _session_client  # noqa: PLW0603

    logger.info("Closing Redis connection")

    if _session_client:
        await _session_client.aclose()
        _session_client = None

    if _session_pool:
        await _session_pool.disconnect()
        _session_pool = None

    logger.info("Redis connection closed")


def get_session_client() -> Redis[Any]:
    """Get the session Redis client.

    Raises:
        RuntimeError: If Redis is not initialized.
    """
    if _session_client is None:
        msg = "Redis session client not initialized. Call init_redis_pool() first."
        raise RuntimeError(msg)
    return _session_client


async def check_redis_health() -> dict[str, str]:
    """Health of the session Redis connection."""
    if _session_client is None:
        return {"redis": "not_initialized"}
    try:
        await _session_client.ping()
    except redis.RedisError:
        return {"redis": "unhealthy"}
    return {"redis": "healthy"}
