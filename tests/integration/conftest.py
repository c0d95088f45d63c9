"""Integration test fixtures.

The application runs with the test environment configuration: header
identity, in-memory PKCE sessions, an in-memory audit sink and an
in-memory ownership store seeded per test.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from marketguard.core.config import Settings
from marketguard.factory import create_app


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI


pytestmark = pytest.mark.integration


@pytest.fixture
async def app() -> AsyncGenerator[FastAPI]:
    """Application with startup and shutdown run around each test."""
    application = create_app(Settings())
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

