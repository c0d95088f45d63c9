"""Unit tests for Prometheus metrics."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from prometheus_client import REGISTRY

from marketguard.auth.audit import InMemoryAuditSink, SecurityAuditLogger
from marketguard.core.config import Settings
from marketguard.observability.metrics import setup_metrics


pytestmark = pytest.mark.unit


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestSecurityEventCounter:
    def test_counts_events_by_type_severity_and_layer(self) -> None:
        labels = {"type": "ownership_denied", "severity": "medium", "layer": "3"}
        before = sample("marketguard_security_events_total", labels)
        audit = SecurityAuditLogger(InMemoryAuditSink())

        audit.log_ownership_violation("order", "o-1", "u-1")

        assert sample("marketguard_security_events_total", labels) == before + 1


class TestSetupMetrics:
    """Tests for setup_metrics."""

    def test_disabled(self, test_settings: Settings) -> None:
        app = FastAPI()

        setup_metrics(app, test_settings)

        paths = {getattr(route, "path", None) for route in app.routes}
        assert "/api/v1/marketguard/metrics" not in paths

    def test_enabled_exposes_endpoint(self) -> None:
        settings = Settings(observability={"metrics": {"enabled": True}})
        app = FastAPI()

        setup_metrics(app, settings)

        paths = {getattr(route, "path", None) for route in app.routes}
        assert "/api/v1/marketguard/metrics" in paths
