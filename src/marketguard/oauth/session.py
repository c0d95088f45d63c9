"""PKCE session storage.

A PKCE session holds the secrets generated by ``initiate_flow`` until the
provider redirects back to the callback. Sessions are one-shot: the flow
engine clears them on every callback outcome.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import orjson
from pydantic import BaseModel, ValidationError

from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from typing import Any

    from redis.asyncio import Redis

logger = get_logger(__name__)

SESSION_KEY_PREFIX = "oauth:pkce:"
SESSION_VALIDITY = timedelta(minutes=10)


class PKCESession(BaseModel):
    """Secrets of one in-flight authorization request."""

    code_verifier: str
    state: str
    nonce: str
    provider: str
    redirect_uri: str
    created_at: datetime

    model_config = {"frozen": True}

    def is_expired(self, now: datetime, validity: timedelta = SESSION_VALIDITY) -> bool:
        """True once more than ``validity`` has elapsed since creation."""
        return now - self.created_at > validity


def namespaced_key(session_key: str) -> str:
    """Storage key for a browser session key."""
    return f"{SESSION_KEY_PREFIX}{session_key}"


@runtime_checkable
class SessionStore(Protocol):
    """Storage for PKCE sessions keyed by the browser session key."""

    async def get(self, key: str) -> PKCESession | None:
        """Return the stored session, or None."""
        ...

    async def set(self, key: str, session: PKCESession) -> None:
        """Store ``session``, replacing any session under the same key."""
        ...

    async def clear(self, key: str) -> None:
        """Remove the session for ``key``; a missing session is not an error."""
        ...


class InMemorySessionStore:
    """Process-local session store for development and tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, PKCESession] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> PKCESession | None:
        async with self._lock:
            return self._sessions.get(namespaced_key(key))

    async def set(self, key: str, session: PKCESession) -> None:
        async with self._lock:
            self._sessions[namespaced_key(key)] = session

    async def clear(self, key: str) -> None:
        async with self._lock:
            self._sessions.pop(namespaced_key(key), None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore:
    """Session store shared by all service instances.

    Entries carry a Redis TTL equal to the validity window. The TTL only
    reclaims space; the flow engine still checks ``created_at``.
    """

    def __init__(
        self,
        client: Redis[Any],
        ttl: timedelta = SESSION_VALIDITY,
    ) -> None:
        self._client = client
        self._ttl = ttl

    async def get(self, key: str) -> PKCESession | None:
        raw = await self._client.get(namespaced_key(key))
        if raw is None:
            return None
        try:
            return PKCESession.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError):
            logger.warning("Discarding unreadable PKCE session")
            await self.clear(key)
            return None

    async def set(self, key: str, session: PKCESession) -> None:
        payload = orjson.dumps(session.model_dump(mode="json"))
        await self._client.set(
            namespaced_key(key),
            payload,
            ex=int(self._ttl.total_seconds()),
        )

    async def clear(self, key: str) -> None:
        await self._client.delete(namespaced_key(key))


def utc_now() -> datetime:
    """Default clock for the flow engine."""
    return datetime.now(UTC)


__all__ = [
    "SESSION_KEY_PREFIX",
    "SESSION_VALIDITY",
    "InMemorySessionStore",
    "PKCESession",
    "RedisSessionStore",
    "SessionStore",
    "namespaced_key",
    "utc_now",
]
