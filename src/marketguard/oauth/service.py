"""OAuth service owning the HTTP client shared by all provider flows."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import httpx

from marketguard.oauth.flow import PKCEOAuthFlow
from marketguard.oauth.providers import (
    configured_providers,
    load_provider_registry,
    resolve_client_config,
)
from marketguard.oauth.session import utc_now
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from marketguard.auth.audit import SecurityAuditLogger
    from marketguard.core.config import Settings
    from marketguard.oauth.session import SessionStore

logger = get_logger(__name__)


class OAuthService:
    """Builds ``PKCEOAuthFlow`` engines for the configured providers.

    Example:
        ```python
        service = OAuthService(settings, store, audit=audit_logger)
        await service.initialize()
        flow = service.flow("google")
        ...
        await service.shutdown()
        ```
    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        *,
        audit: SecurityAuditLogger | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._audit = audit
        self._clock = clock
        self._registry = load_provider_registry(settings)
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def store(self) -> SessionStore:
        """Session store shared by every flow."""
        return self._store

    async def initialize(self) -> None:
        """Create the HTTP client used for token and userinfo requests."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.oauth.token_exchange_timeout),
                follow_redirects=False,
            )
        logger.info("OAuthService initialized", providers=self.providers())

    async def shutdown(self) -> None:
        """Release resources."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("OAuthService shutdown")

    def providers(self) -> list[str]:
        """Providers a user can sign in with on this deployment."""
        return configured_providers(self._settings)

    def flow(self, provider: str) -> PKCEOAuthFlow:
        """Return the flow engine for ``provider``.

        Raises:
            OAuthError: ``unknown_provider`` for unconfigured providers.
            RuntimeError: If the service is not initialized.
        """
        client_config = resolve_client_config(provider, self._settings, self._registry)
        if self._http_client is None:
            msg = "OAuthService not initialized. Call initialize() first."
            raise RuntimeError(msg)

        oauth = self._settings.oauth
        return PKCEOAuthFlow(
            client_config,
            self._store,
            self._http_client,
            audit=self._audit,
            clock=self._clock,
            session_validity=timedelta(seconds=oauth.session_ttl),
            token_exchange_timeout=oauth.token_exchange_timeout,
            fetch_user_info=oauth.fetch_user_info,
        )


__all__ = ["OAuthService"]
