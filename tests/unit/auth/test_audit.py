"""Unit tests for the buffered security audit logger."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx
import orjson
import pytest
import respx
from prometheus_client import REGISTRY

from marketguard.auth.audit import (
    AuditRecord,
    AuditSinkError,
    HttpBeaconSink,
    InMemoryAuditSink,
    SecurityAuditLogger,
    SecurityEventType,
    SecuritySeverity,
)
from marketguard.observability.logging import bind_context, clear_context


if TYPE_CHECKING:
    from collections.abc import Sequence

pytestmark = pytest.mark.unit

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=UTC)
BEACON_URL = "https://collector.market.example.com/audit"


class FlakySink:
    """Fails the first ``failures`` writes."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.records: list[AuditRecord] = []

    async def write(self, records: Sequence[AuditRecord]) -> None:
        if self.failures:
            self.failures -= 1
            msg = "database unavailable"
            raise AuditSinkError(msg)
        self.records.extend(records)


class StuckSink:
    async def write(self, records: Sequence[AuditRecord]) -> None:
        await asyncio.Event().wait()


def dropped_total() -> float:
    value = REGISTRY.get_sample_value("marketguard_audit_events_dropped_total")
    return value or 0.0


def make_logger(sink: object, **kwargs: object) -> SecurityAuditLogger:
    return SecurityAuditLogger(
        sink,  # type: ignore[arg-type]
        flush_interval=60.0,
        clock=lambda: NOW,
        **kwargs,  # type: ignore[arg-type]
    )


class TestLogEvent:
    """Tests for recording events."""

    async def test_builds_audit_record(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)

        event = audit.log_ownership_violation(
            "order",
            "o-1",
            "u-1",
            route="/orders/o-1",
            attempted_action="view",
        )
        await audit.flush()

        assert event.severity == SecuritySeverity.MEDIUM
        record = audit_sink.records[0]
        assert record.user_id == "u-1"
        assert record.event_type == "ownership_denied"
        assert record.event_category == "security_layer_3"
        assert record.severity == SecuritySeverity.MEDIUM
        assert record.created_at == NOW
        assert record.event_details == {
            "layer": 3,
            "resourceType": "order",
            "resourceId": "o-1",
            "route": "/orders/o-1",
            "details": {"attemptedAction": "view"},
        }

    async def test_request_context_fills_route_ip_and_user_agent(
        self, audit_sink: InMemoryAuditSink
    ) -> None:
        audit = make_logger(audit_sink)
        bind_context(path="/api/orders", client_ip="203.0.113.7", user_agent="curl")
        try:
            audit.log_auth_violation()
        finally:
            clear_context()
        await audit.flush()

        details = audit_sink.records[0].event_details
        assert details["route"] == "/api/orders"
        assert details["ip"] == "203.0.113.7"
        assert details["userAgent"] == "curl"

    def test_default_severities(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)

        assert audit.log_auth_violation().severity == SecuritySeverity.LOW
        assert (
            audit.log_permission_violation("admin.dashboard", "u").severity
            == SecuritySeverity.MEDIUM
        )
        assert (
            audit.log_oauth_violation(
                SecurityEventType.OAUTH_STATE_MISMATCH, provider="google", reason="x"
            ).severity
            == SecuritySeverity.HIGH
        )

    def test_explicit_severity_wins(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)

        event = audit.log_event("auth_failed", 1, severity="high")

        assert event.severity == SecuritySeverity.HIGH

    def test_access_granted_only_for_sensitive_resources(
        self, audit_sink: InMemoryAuditSink
    ) -> None:
        audit = make_logger(audit_sink)

        assert audit.log_access_granted(3, "u", resource_type="listing") is None
        assert audit.log_access_granted(3, "u", resource_type="order") is not None
        assert audit.buffered == 1

    def test_records_without_running_loop(self, audit_sink: InMemoryAuditSink) -> None:
        """Should buffer critical events even when no flush can be scheduled."""
        audit = make_logger(audit_sink)

        audit.log_privilege_escalation("u", attempted_role="admin")

        assert audit.buffered == 1


class TestFlushing:
    """Tests for batch writes."""

    async def test_flush_writes_one_batch(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)
        for _ in range(3):
            audit.log_auth_violation()

        assert await audit.flush() == 3
        assert audit_sink.batches == 1
        assert audit.buffered == 0
        assert await audit.flush() == 0

    async def test_full_buffer_flushes(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink, max_buffer_size=3)

        for _ in range(3):
            audit.log_auth_violation()
        await audit.wait_for_pending()

        assert len(audit_sink.records) == 3

    async def test_critical_event_flushes_immediately(
        self, audit_sink: InMemoryAuditSink
    ) -> None:
        audit = make_logger(audit_sink)

        audit.log_privilege_escalation("u-1", attempted_role="admin")
        await audit.wait_for_pending()

        assert [r.severity for r in audit_sink.records] == [SecuritySeverity.CRITICAL]

    async def test_failed_write_is_requeued(self) -> None:
        sink = FlakySink(failures=1)
        audit = make_logger(sink)
        audit.log_auth_violation(user_id="first")
        audit.log_auth_violation(user_id="second")

        assert await audit.flush() == 0
        assert audit.buffered == 2

        assert await audit.flush() == 2
        assert [r.user_id for r in sink.records] == ["first", "second"]

    async def test_failed_write_dropped_past_retry_limit(self) -> None:
        sink = FlakySink(failures=1)
        audit = make_logger(sink, max_buffer_size=10, retry_buffer_limit=2)
        for _ in range(3):
            audit.log_auth_violation()

        assert await audit.flush() == 0
        assert audit.buffered == 0

    async def test_enqueue_records(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)
        record = AuditRecord(
            user_id="u",
            event_type="permission_denied",
            event_category="security_layer_2",
            severity=SecuritySeverity.MEDIUM,
            created_at=NOW,
        )

        assert audit.enqueue_records([record, record]) == 2
        assert await audit.flush() == 2

    async def test_enqueued_critical_record_flushes_immediately(
        self, audit_sink: InMemoryAuditSink
    ) -> None:
        audit = make_logger(audit_sink)
        record = AuditRecord(
            event_type="privilege_escalation_attempt",
            event_category="security_layer_2",
            severity=SecuritySeverity.CRITICAL,
            created_at=NOW,
        )

        audit.enqueue_records([record])
        await audit.wait_for_pending()

        assert audit_sink.records == [record]

    async def test_stuck_write_times_out(self) -> None:
        """Should give up on a hanging sink and keep the batch."""
        audit = make_logger(StuckSink(), write_timeout=0.05)
        audit.log_auth_violation(user_id="u-1")

        assert await asyncio.wait_for(audit.flush(), timeout=1.0) == 0
        assert audit.buffered == 1
        assert await asyncio.wait_for(audit.flush(), timeout=1.0) == 0

    async def test_queue_is_bounded_while_sink_hangs(self) -> None:
        """Should keep the newest events once the queue is full."""
        dropped_before = dropped_total()
        audit = make_logger(
            StuckSink(), max_buffer_size=5, max_queue_size=20, write_timeout=0.05
        )

        for i in range(100):
            audit.log_auth_violation(user_id=f"u-{i}")

        assert audit.buffered == 20
        assert dropped_total() - dropped_before == 80

        await audit.aclose(timeout=0.5)
        assert audit.buffered <= 20

    async def test_periodic_flush(self, audit_sink: InMemoryAuditSink) -> None:
        audit = SecurityAuditLogger(audit_sink, flush_interval=0.01)
        await audit.start()
        try:
            audit.log_auth_violation()
            await asyncio.sleep(0.1)
            assert len(audit_sink.records) == 1
        finally:
            await audit.aclose()


class TestShutdown:
    """Tests for aclose."""

    async def test_final_flush(self, audit_sink: InMemoryAuditSink) -> None:
        audit = make_logger(audit_sink)
        await audit.start()
        audit.log_auth_violation()

        await audit.aclose()

        assert len(audit_sink.records) == 1

    async def test_final_flush_is_bounded(self) -> None:
        audit = make_logger(StuckSink())
        audit.log_auth_violation()

        await asyncio.wait_for(audit.aclose(timeout=0.05), timeout=1.0)

    @respx.mock
    async def test_final_flush_goes_to_beacon(
        self, audit_sink: InMemoryAuditSink
    ) -> None:
        route = respx.post(BEACON_URL).mock(return_value=httpx.Response(204))
        beacon = HttpBeaconSink(BEACON_URL)
        await beacon.initialize()
        audit = make_logger(audit_sink, beacon_sink=beacon)
        audit.log_auth_violation(user_id="u-1")

        await audit.aclose()
        await beacon.shutdown()

        assert audit_sink.records == []
        payload = orjson.loads(route.calls.last.request.content)
        assert payload[0]["user_id"] == "u-1"
        assert payload[0]["event_category"] == "security_layer_1"


class TestHttpBeaconSink:
    """Tests for HttpBeaconSink."""

    @respx.mock
    async def test_write_raises_on_http_error(self) -> None:
        respx.post(BEACON_URL).mock(return_value=httpx.Response(503))
        async with httpx.AsyncClient() as client:
            sink = HttpBeaconSink(BEACON_URL, http_client=client)
            record = AuditRecord(
                event_type="auth_required",
                event_category="security_layer_1",
                severity=SecuritySeverity.LOW,
                created_at=NOW,
            )

            with pytest.raises(AuditSinkError):
                await sink.write([record])
            assert await sink.send([record]) is False

    async def test_write_requires_initialize(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            await HttpBeaconSink(BEACON_URL).write([])
