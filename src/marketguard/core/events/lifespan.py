"""Application lifespan event handlers.

Startup builds the service graph and stores it on ``app.state``:

- ``auth_provider``: layer 1 identity provider
- ``audit_logger``: buffered security audit trail
- ``ownership_verifier`` and ``access_pipeline``: layers 2 to 4
- ``session_store`` and ``oauth_service``: PKCE sign-in flows

Shutdown flushes the audit trail within ``audit.shutdown_deadline`` before
closing connections.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from marketguard.auth.audit import (
    HttpBeaconSink,
    InMemoryAuditSink,
    SecurityAuditLogger,
)
from marketguard.auth.ownership import OwnershipVerifier
from marketguard.auth.pipeline import AccessControlPipeline
from marketguard.auth.providers import create_auth_provider
from marketguard.cache.redis import (
    close_redis_pool,
    get_session_client,
    init_redis_pool,
)
from marketguard.core.config import (
    AuditSinkBackend,
    SessionStoreBackend,
    get_settings,
)
from marketguard.database.connection import close_database_pool, init_database_pool
from marketguard.database.repositories import (
    InMemoryOwnershipStore,
    PostgresAuditSink,
    PostgresOwnershipStore,
)
from marketguard.oauth.service import OAuthService
from marketguard.oauth.session import InMemorySessionStore, RedisSessionStore
from marketguard.observability.logging import get_logger, setup_logging


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI

    from marketguard.auth.audit import AuditSink
    from marketguard.auth.ownership import OwnershipStore
    from marketguard.core.config import Settings
    from marketguard.oauth.session import SessionStore

logger = get_logger(__name__)


async def _startup(app: FastAPI, settings: Settings) -> None:
    """Initialize all application services.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.
    """
    setup_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        is_development=settings.is_development,
    )

    logger.info(
        "Starting application",
        app_name=settings.app.name,
        environment=settings.APP_ENV,
        debug=settings.app.debug,
    )

    if settings.session_store_enum == SessionStoreBackend.REDIS:
        await init_redis_pool(settings)

    if settings.database.enabled:
        await init_database_pool(settings)

    audit_logger = await _init_audit(app, settings)
    _init_access_control(app, settings, audit_logger)
    await _init_oauth(app, settings, audit_logger)
    await _init_auth(app, settings)

    logger.info("Application startup complete")


async def _init_audit(app: FastAPI, settings: Settings) -> SecurityAuditLogger:
    """Create the audit sink and start the buffered audit logger."""
    config = settings.audit
    backend = settings.audit_sink_enum

    beacon_sink: HttpBeaconSink | None = None
    if config.beacon_url:
        beacon_sink = HttpBeaconSink(config.beacon_url, timeout=config.beacon_timeout)
        await beacon_sink.initialize()

    sink: AuditSink
    if backend == AuditSinkBackend.POSTGRES:
        if not settings.database.enabled:
            msg = "audit.sink=postgres requires database.enabled"
            raise RuntimeError(msg)
        sink = PostgresAuditSink(table=config.table, schema=settings.database.db_schema)
    elif backend == AuditSinkBackend.BEACON:
        if beacon_sink is None:
            msg = "audit.sink=beacon requires audit.beacon_url"
            raise RuntimeError(msg)
        sink = beacon_sink
    else:
        sink = InMemoryAuditSink()

    audit_logger = SecurityAuditLogger(
        sink,
        beacon_sink=beacon_sink,
        flush_interval=config.flush_interval,
        max_buffer_size=config.max_buffer_size,
        max_queue_size=config.max_queue_size,
        write_timeout=config.write_timeout,
    )
    await audit_logger.start()

    app.state.audit_sink = sink
    app.state.audit_beacon_sink = beacon_sink
    app.state.audit_logger = audit_logger
    logger.info("Security audit initialized", sink=backend.value)
    return audit_logger


def _init_access_control(
    app: FastAPI,
    settings: Settings,
    audit_logger: SecurityAuditLogger,
) -> None:
    store: OwnershipStore
    if settings.database.enabled:
        store = PostgresOwnershipStore(schema=settings.database.db_schema)
    else:
        logger.warning("Database disabled - ownership checks use an in-memory store")
        store = InMemoryOwnershipStore()

    verifier = OwnershipVerifier(store, audit=audit_logger)
    app.state.ownership_store = store
    app.state.ownership_verifier = verifier
    app.state.access_pipeline = AccessControlPipeline(verifier, audit_logger)


async def _init_oauth(
    app: FastAPI,
    settings: Settings,
    audit_logger: SecurityAuditLogger,
) -> None:
    store: SessionStore
    if settings.session_store_enum == SessionStoreBackend.REDIS:
        store = RedisSessionStore(get_session_client(), ttl=_session_ttl(settings))
    else:
        store = InMemorySessionStore()

    oauth_service = OAuthService(settings, store, audit=audit_logger)
    await oauth_service.initialize()
    app.state.session_store = store
    app.state.oauth_service = oauth_service


def _session_ttl(settings: Settings) -> timedelta:
    return timedelta(seconds=settings.oauth.session_ttl)


async def _init_auth(app: FastAPI, settings: Settings) -> None:
    """Initialize the identity provider (critical - raises on failure)."""
    try:
        provider = create_auth_provider(settings)
        await provider.initialize()
    except Exception:
        logger.exception("Failed to initialize auth provider")
        raise
    app.state.auth_provider = provider
    logger.info("Auth provider initialized", mode=settings.auth.mode)


async def _shutdown(app: FastAPI, settings: Settings) -> None:
    """Shutdown all application services.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.
    """
    logger.info("Shutting down application")

    if getattr(app.state, "oauth_service", None) is not None:
        await app.state.oauth_service.shutdown()

    if getattr(app.state, "auth_provider", None) is not None:
        await app.state.auth_provider.shutdown()

    # Flush before the database pool and beacon client go away
    if getattr(app.state, "audit_logger", None) is not None:
        await app.state.audit_logger.aclose(settings.audit.shutdown_deadline)

    if getattr(app.state, "audit_beacon_sink", None) is not None:
        await app.state.audit_beacon_sink.shutdown()

    if settings.database.enabled:
        await close_database_pool()

    if settings.session_store_enum == SessionStoreBackend.REDIS:
        await close_redis_pool()

    logger.info("Application shutdown complete")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifespan events.

    Uses ``app.state.settings`` when the factory set it, so tests can run
    the app with their own settings.

    Yields:
        None - control returns to the application to handle requests.
    """
    settings = getattr(app.state, "settings", None) or get_settings()
    await _startup(app, settings)
    try:
        yield
    finally:
        await _shutdown(app, settings)
