"""Unit tests for lifespan events.

Tests cover:
- Service graph stored on app.state
- Audit sink selection and its configuration errors
- Audit flush on shutdown
- Auth provider initialization failures
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI

from marketguard.auth.audit import HttpBeaconSink, InMemoryAuditSink
from marketguard.auth.pipeline import AccessControlPipeline
from marketguard.core.config import Settings
from marketguard.core.events.lifespan import lifespan
from marketguard.database.repositories import InMemoryOwnershipStore
from marketguard.oauth.service import OAuthService
from marketguard.oauth.session import InMemorySessionStore


pytestmark = pytest.mark.unit


def make_app(settings: Settings) -> FastAPI:
    app = FastAPI()
    app.state.settings = settings
    return app


def with_audit(settings: Settings, **changes: object) -> Settings:
    audit = settings.audit.model_copy(update=changes)
    return settings.model_copy(update={"audit": audit})


class TestLifespan:
    """Tests for startup and shutdown."""

    async def test_builds_service_graph(self, test_settings: Settings) -> None:
        """Should store every service on app.state."""
        app = make_app(test_settings)

        async with lifespan(app):
            assert isinstance(app.state.audit_sink, InMemoryAuditSink)
            assert app.state.audit_beacon_sink is None
            assert isinstance(app.state.ownership_store, InMemoryOwnershipStore)
            assert isinstance(app.state.access_pipeline, AccessControlPipeline)
            assert isinstance(app.state.session_store, InMemorySessionStore)
            assert isinstance(app.state.oauth_service, OAuthService)
            assert app.state.auth_provider.provider_name == "header"

    async def test_flushes_audit_trail_on_shutdown(
        self, test_settings: Settings
    ) -> None:
        """Should write buffered events before the app stops."""
        app = make_app(with_audit(test_settings, flush_interval=60.0))

        async with lifespan(app):
            app.state.audit_logger.log_auth_violation(route="/orders/o-1")
            assert app.state.audit_sink.records == []

        assert len(app.state.audit_sink.records) == 1

    async def test_postgres_sink_requires_database(
        self, test_settings: Settings
    ) -> None:
        app = make_app(with_audit(test_settings, sink="postgres"))

        with pytest.raises(RuntimeError, match="requires database.enabled"):
            async with lifespan(app):
                pass

    async def test_beacon_sink_requires_url(self, test_settings: Settings) -> None:
        app = make_app(with_audit(test_settings, sink="beacon"))

        with pytest.raises(RuntimeError, match="requires audit.beacon_url"):
            async with lifespan(app):
                pass

    async def test_beacon_sink(self, test_settings: Settings) -> None:
        settings = with_audit(
            test_settings,
            sink="beacon",
            beacon_url="https://audit.example.com/security-audit",
        )
        app = make_app(settings)

        async with lifespan(app):
            assert isinstance(app.state.audit_sink, HttpBeaconSink)
            assert app.state.audit_beacon_sink is app.state.audit_sink

    async def test_auth_provider_failure_is_raised(
        self, test_settings: Settings
    ) -> None:
        app = make_app(test_settings)
        provider = AsyncMock()
        provider.initialize.side_effect = RuntimeError("no keys")

        with (
            patch(
                "marketguard.core.events.lifespan.create_auth_provider",
                return_value=provider,
            ),
            pytest.raises(RuntimeError, match="no keys"),
        ):
            async with lifespan(app):
                pass
