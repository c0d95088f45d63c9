"""Shared test fixtures and configuration for the marketguard tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest


# Must be set before settings are loaded anywhere
os.environ["APP_ENV"] = "test"

from marketguard.auth.audit import InMemoryAuditSink, SecurityAuditLogger  # noqa: E402
from marketguard.core.config import Settings, get_settings  # noqa: E402
from marketguard.observability.logging import clear_context  # noqa: E402


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reload settings for every test so environment patches take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_log_context() -> Generator[None]:
    """Start every test without request-scoped logging context."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def test_settings() -> Settings:
    """Settings from config/environments/test."""
    return Settings()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
async def audit_logger(
    audit_sink: InMemoryAuditSink,
) -> AsyncGenerator[SecurityAuditLogger]:
    """Audit logger without a periodic flusher; tests flush explicitly."""
    audit = SecurityAuditLogger(audit_sink, flush_interval=60.0)
    yield audit
    await audit.aclose(timeout=1.0)
