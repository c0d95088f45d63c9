"""Unit tests for the access control FastAPI dependencies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from marketguard.auth.dependencies import RequireAccess, RequireAuthenticated
from marketguard.auth.ownership import OwnableResource, OwnershipVerifier
from marketguard.auth.permissions import Permission
from marketguard.auth.pipeline import (
    AccessControlPipeline,
    AccessRequirement,
    Principal,
)
from marketguard.auth.providers import HeaderAuthProvider
from marketguard.core.exceptions import setup_exception_handlers
from marketguard.database.repositories.ownership import InMemoryOwnershipStore


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from marketguard.auth.audit import SecurityAuditLogger
    from marketguard.core.config import Settings

pytestmark = pytest.mark.unit

view_order = RequireAccess(
    AccessRequirement(
        permission=Permission.ORDERS_OWN_VIEW,
        resource_type=OwnableResource.ORDER,
    ),
    resource_param="order_id",
)


def build_app(settings: Settings, audit: SecurityAuditLogger) -> FastAPI:
    store = InMemoryOwnershipStore()
    store.add("orders", "o-1", buyer_id="buyer-1", seller_id="seller-1")

    app = FastAPI()
    app.state.settings = settings
    app.state.auth_provider = HeaderAuthProvider()
    app.state.access_pipeline = AccessControlPipeline(OwnershipVerifier(store), audit)
    setup_exception_handlers(app)

    @app.get("/me")
    async def me(
        principal: Annotated[Principal, Depends(RequireAuthenticated)],
    ) -> dict[str, str]:
        return {"user_id": principal.user_id}

    @app.get("/orders/{order_id}")
    async def get_order(
        order_id: str,
        principal: Annotated[Principal, Depends(view_order)],
    ) -> dict[str, str]:
        return {"order_id": order_id, "viewer": principal.user_id}

    return app


@pytest.fixture
async def client(
    test_settings: Settings, audit_logger: SecurityAuditLogger
) -> AsyncGenerator[AsyncClient]:
    app = build_app(test_settings, audit_logger)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


class TestRequireAccess:
    """Tests for RequireAccess."""

    async def test_anonymous_gets_login_redirect(self, client: AsyncClient) -> None:
        response = await client.get("/orders/o-1?tab=items")

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "AUTHENTICATION_REQUIRED"
        assert body["login_url"] == "/auth?redirect=%2Forders%2Fo-1%3Ftab%3Ditems"
        assert response.headers["Location"] == body["login_url"]

    async def test_owner_allowed(self, client: AsyncClient) -> None:
        response = await client.get(
            "/orders/o-1",
            headers={"X-User-ID": "buyer-1", "X-User-Roles": "buyer"},
        )

        assert response.status_code == 200
        assert response.json() == {"order_id": "o-1", "viewer": "buyer-1"}

    async def test_non_owner_gets_generic_denial(
        self, client: AsyncClient, audit_logger: SecurityAuditLogger
    ) -> None:
        response = await client.get(
            "/orders/o-1",
            headers={"X-User-ID": "buyer-2", "X-User-Roles": "buyer"},
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "ACCESS_DENIED"
        assert body["message"] == "Access denied"
        assert body["redirect_to"] == "/"
        assert "ownership" not in response.text.lower()
        assert audit_logger.buffered == 1

    async def test_missing_permission_is_denied_the_same_way(
        self, client: AsyncClient
    ) -> None:
        response = await client.get("/orders/o-1", headers={"X-User-ID": "buyer-1"})

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied"

    async def test_authenticated_only(self, client: AsyncClient) -> None:
        assert (await client.get("/me")).status_code == 401

        response = await client.get("/me", headers={"X-User-ID": "u-7"})

        assert response.status_code == 200
        assert response.json() == {"user_id": "u-7"}
