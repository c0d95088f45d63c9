"""Prometheus metrics instrumentation.

This module provides:
- FastAPI automatic request metrics
- Security event and OAuth flow counters
- Metrics endpoint configuration
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator, metrics

from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from fastapi import FastAPI

    from marketguard.core.config import Settings

logger = get_logger(__name__)

METRIC_NAMESPACE = "marketguard"

SECURITY_EVENTS = Counter(
    "security_events_total",
    "Security events recorded by the access control pipeline",
    labelnames=("type", "severity", "layer"),
    namespace=METRIC_NAMESPACE,
)

AUDIT_EVENTS_DROPPED = Counter(
    "audit_events_dropped_total",
    "Security events dropped after a failed audit flush",
    namespace=METRIC_NAMESPACE,
)

OAUTH_CALLBACKS = Counter(
    "oauth_callbacks_total",
    "OAuth callbacks processed, by provider and outcome",
    labelnames=("provider", "outcome"),
    namespace=METRIC_NAMESPACE,
)

OAUTH_REFRESHES = Counter(
    "oauth_refreshes_total",
    "OAuth token refreshes, by provider and outcome",
    labelnames=("provider", "outcome"),
    namespace=METRIC_NAMESPACE,
)


def setup_metrics(app: FastAPI, settings: Settings) -> Instrumentator:
    """Configure Prometheus metrics instrumentation.

    Sets up automatic HTTP request metrics collection (request count,
    duration histogram, in-progress gauge) and exposes ``<prefix>/metrics``.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.

    Returns:
        Configured Instrumentator instance.
    """
    if not settings.observability.metrics.enabled:
        logger.info("Metrics collection disabled")
        return Instrumentator()

    prefix = settings.api.v1_prefix

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=[
            f"{prefix}/health",
            f"{prefix}/ready",
            f"{prefix}/metrics",
        ],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace=METRIC_NAMESPACE,
            metric_subsystem="http",
            should_only_respect_2xx_for_highr=False,
        )
    )

    instrumentator.instrument(app)

    metrics_endpoint = f"{prefix}/metrics"
    instrumentator.expose(
        app,
        endpoint=metrics_endpoint,
        include_in_schema=True,
        tags=["Monitoring"],
    )

    logger.info("Prometheus metrics configured", endpoint=metrics_endpoint)

    return instrumentator


__all__ = [
    "AUDIT_EVENTS_DROPPED",
    "OAUTH_CALLBACKS",
    "OAUTH_REFRESHES",
    "SECURITY_EVENTS",
    "setup_metrics",
]
