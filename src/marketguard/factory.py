"""Application factory for creating FastAPI instances.

This module provides the create_app factory function that:
- Configures the FastAPI application with appropriate settings
- Sets up middleware stack in the correct order
- Registers exception handlers
- Mounts API routers
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketguard.api.v1.router import router as v1_router
from marketguard.core.config import Settings, get_settings
from marketguard.core.events.lifespan import lifespan
from marketguard.core.exceptions import setup_exception_handlers
from marketguard.core.middleware import LoggingMiddleware, RequestIDMiddleware
from marketguard.observability.metrics import setup_metrics


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional settings override. If not provided, uses get_settings().

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app.name,
        version=settings.app.version,
        description="Marketplace sign-in (OAuth PKCE) and access control service",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        debug=settings.app.debug,
    )

    # Read by the lifespan and by routes
    app.state.settings = settings

    setup_exception_handlers(app)

    # Setup middleware (order matters - first added = last executed)
    _setup_middleware(app, settings)

    app.include_router(v1_router, prefix=settings.api.v1_prefix)

    # Setup observability (after routes are mounted)
    setup_metrics(app, settings)

    return app


def _setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure middleware stack.

    Order from request perspective:
    1. RequestIDMiddleware (fresh logging context, request ID)
    2. LoggingMiddleware (binds route and client, logs requests/responses)
    3. CORSMiddleware (handles CORS)
    """
    if settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )

    prefix = settings.api.v1_prefix
    app.add_middleware(
        LoggingMiddleware,
        exclude_paths={
            f"{prefix}/health",
            f"{prefix}/ready",
            f"{prefix}/metrics",
            "/favicon.ico",
        },
    )

    app.add_middleware(RequestIDMiddleware)
