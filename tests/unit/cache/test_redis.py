"""Unit tests for the session Redis pool."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis

import marketguard.cache.redis as redis_module
from marketguard.cache.redis import (
    check_redis_health,
    close_redis_pool,
    get_session_client,
    init_redis_pool,
)


if TYPE_CHECKING:
    from collections.abc import Generator

    from marketguard.core.config import Settings

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def reset_redis_globals() -> Generator[None]:
    """Reset Redis global state before and after each test."""
    redis_module._session_pool = None
    redis_module._session_client = None
    yield
    redis_module._session_pool = None
    redis_module._session_client = None


class TestInitRedisPool:
    """Tests for init_redis_pool."""

    async def test_creates_binary_pool_and_pings(self, test_settings: Settings) -> None:
        mock_client = MagicMock()
        mock_client.ping = AsyncMock(return_value=True)

        with (
            patch(
                "marketguard.cache.redis.ConnectionPool.from_url"
            ) as mock_from_url,
            patch("marketguard.cache.redis.redis.Redis", return_value=mock_client),
        ):
            await init_redis_pool(test_settings)

        mock_from_url.assert_called_once_with(
            "redis://localhost:6379/0", max_connections=20, decode_responses=False
        )
        mock_client.ping.assert_awaited_once()
        assert get_session_client() is mock_client

    async def test_raises_when_unreachable(self, test_settings: Settings) -> None:
        mock_client = MagicMock()
        mock_client.ping = AsyncMock(side_effect=redis.ConnectionError("refused"))

        with (
            patch("marketguard.cache.redis.ConnectionPool.from_url"),
            patch("marketguard.cache.redis.redis.Redis", return_value=mock_client),
            pytest.raises(redis.ConnectionError),
        ):
            await init_redis_pool(test_settings)


class TestCloseRedisPool:
    async def test_closes_client_and_pool(self) -> None:
        client = MagicMock(aclose=AsyncMock())
        pool = MagicMock(disconnect=AsyncMock())
        redis_module._session_client = client
        redis_module._session_pool = pool

        await close_redis_pool()

        client.aclose.assert_awaited_once()
        pool.disconnect.assert_awaited_once()
        assert redis_module._session_client is None


class TestGetSessionClient:
    def test_raises_when_not_initialized(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session_client()


class TestCheckRedisHealth:
    """Tests for check_redis_health."""

    async def test_not_initialized(self) -> None:
        assert await check_redis_health() == {"redis": "not_initialized"}

    async def test_healthy(self) -> None:
        redis_module._session_client = MagicMock(ping=AsyncMock(return_value=True))

        assert await check_redis_health() == {"redis": "healthy"}

    async def test_unhealthy(self) -> None:
        redis_module._session_client = MagicMock(
            ping=AsyncMock(side_effect=redis.ConnectionError("gone"))
        )

        assert await check_redis_health() == {"redis": "unhealthy"}
