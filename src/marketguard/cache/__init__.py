"""Redis connection management."""

from marketguard.cache.redis import (
    check_redis_health,
    close_redis_pool,
    get_session_client,
    init_redis_pool,
)


__all__ = [
    "check_redis_health",
    "close_redis_pool",
    "get_session_client",
    "init_redis_pool",
]
