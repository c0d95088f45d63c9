"""Health check endpoints.

Provides liveness and readiness probes for Kubernetes and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from marketguard.cache.redis import check_redis_health
from marketguard.core.config import SessionStoreBackend
from marketguard.database.connection import check_database_health
from marketguard.schemas.health import HealthResponse, ReadinessResponse


router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Basic health check to verify the service is running.",
)
async def health_check(request: Request) -> HealthResponse:
    """Check if the service is alive. External dependencies are not checked."""
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=settings.app.version,
        environment=settings.APP_ENV,
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Readiness check verifying session and database backends.",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Check if the service is ready to handle requests."""
    settings = request.app.state.settings
    dependencies: dict[str, str] = {}

    if settings.session_store_enum == SessionStoreBackend.REDIS:
        dependencies.update(await check_redis_health())
    else:
        dependencies["redis"] = "not_configured"

    if settings.database.enabled:
        dependencies.update(await check_database_health())
    else:
        dependencies["database"] = "not_configured"

    all_healthy = all(
        status in ("healthy", "not_configured") for status in dependencies.values()
    )

    return ReadinessResponse(
        status="ready" if all_healthy else "degraded",
        version=settings.app.version,
        environment=settings.APP_ENV,
        dependencies=dependencies,
    )
