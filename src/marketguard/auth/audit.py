"""Security audit trail for access control decisions.

Events from every access control layer are buffered in memory and written
to an ``AuditSink`` in batches:

- every ``flush_interval`` seconds by a background task,
- as soon as ``max_buffer_size`` events are waiting,
- immediately for critical events.

A failed write re-queues the batch while the buffer stays under
``retry_buffer_limit``; past that the batch is dropped and counted. On
shutdown the remaining events get one last write bounded by a deadline.
Events still buffered when the process dies abruptly are lost.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx
import orjson
from pydantic import BaseModel, Field

from marketguard.oauth.session import utc_now
from marketguard.observability.logging import get_context, get_logger
from marketguard.observability.metrics import AUDIT_EVENTS_DROPPED, SECURITY_EVENTS


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

logger = get_logger(__name__)

DEFAULT_FLUSH_INTERVAL = 5.0
DEFAULT_MAX_BUFFER_SIZE = 50
DEFAULT_WRITE_TIMEOUT = 5.0


class SecurityEventType(StrEnum):
    """Kinds of security events."""

    AUTH_REQUIRED = "auth_required"
    AUTH_FAILED = "auth_failed"
    PERMISSION_DENIED = "permission_denied"
    OWNERSHIP_DENIED = "ownership_denied"
    ROLE_INSUFFICIENT = "role_insufficient"
    RESOURCE_NOT_FOUND = "resource_not_found"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    SESSION_EXPIRED = "session_expired"
    MFA_REQUIRED = "mfa_required"
    MFA_FAILED = "mfa_failed"
    ACCESS_GRANTED = "access_granted"
    PRIVILEGE_ESCALATION_ATTEMPT = "privilege_escalation_attempt"
    OAUTH_STATE_MISMATCH = "oauth_state_mismatch"
    OAUTH_NONCE_MISMATCH = "oauth_nonce_mismatch"
    OAUTH_PROVIDER_MISMATCH = "oauth_provider_mismatch"


class SecuritySeverity(StrEnum):
    """Severity of a security event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


EVENT_SEVERITY: dict[SecurityEventType, SecuritySeverity] = {
    SecurityEventType.AUTH_REQUIRED: SecuritySeverity.LOW,
    SecurityEventType.AUTH_FAILED: SecuritySeverity.MEDIUM,
    SecurityEventType.PERMISSION_DENIED: SecuritySeverity.MEDIUM,
    SecurityEventType.OWNERSHIP_DENIED: SecuritySeverity.MEDIUM,
    SecurityEventType.ROLE_INSUFFICIENT: SecuritySeverity.MEDIUM,
    SecurityEventType.RESOURCE_NOT_FOUND: SecuritySeverity.LOW,
    SecurityEventType.SUSPICIOUS_ACTIVITY: SecuritySeverity.HIGH,
    SecurityEventType.RATE_LIMIT_EXCEEDED: SecuritySeverity.MEDIUM,
    SecurityEventType.SESSION_EXPIRED: SecuritySeverity.LOW,
    SecurityEventType.MFA_REQUIRED: SecuritySeverity.LOW,
    SecurityEventType.MFA_FAILED: SecuritySeverity.HIGH,
    SecurityEventType.ACCESS_GRANTED: SecuritySeverity.LOW,
    SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT: SecuritySeverity.CRITICAL,
    SecurityEventType.OAUTH_STATE_MISMATCH: SecuritySeverity.HIGH,
    SecurityEventType.OAUTH_NONCE_MISMATCH: SecuritySeverity.HIGH,
    SecurityEventType.OAUTH_PROVIDER_MISMATCH: SecuritySeverity.HIGH,
}

_LOG_LEVELS = {
    SecuritySeverity.LOW: "INFO",
    SecuritySeverity.MEDIUM: "WARNING",
    SecuritySeverity.HIGH: "ERROR",
    SecuritySeverity.CRITICAL: "CRITICAL",
}

# Only these resource types leave a trail when access is granted
SENSITIVE_RESOURCES = frozenset({"order", "dispute", "support_ticket"})


class SecurityEvent(BaseModel):
    """A security-relevant fact. Append-only once recorded."""

    type: SecurityEventType
    severity: SecuritySeverity
    layer: int = Field(ge=1, le=4)
    user_id: str | None = None
    session_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    permission: str | None = None
    route: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    model_config = {"frozen": True}

    def to_record(self) -> AuditRecord:
        """Row of the ``security_audit_log`` table."""
        event_details = {
            "layer": self.layer,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "permission": self.permission,
            "route": self.route,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "sessionId": self.session_id,
            "details": self.details or None,
        }
        return AuditRecord(
            user_id=self.user_id,
            event_type=self.type.value,
            event_category=f"security_layer_{self.layer}",
            event_details={k: v for k, v in event_details.items() if v is not None},
            severity=self.severity.value,
            created_at=self.timestamp,
        )


class AuditRecord(BaseModel):
    """Persisted form of a security event."""

    user_id: str | None = None
    event_type: str
    event_category: str
    event_details: dict[str, Any] = Field(default_factory=dict)
    severity: SecuritySeverity
    created_at: datetime


# =============================================================================
# Sinks
# =============================================================================


class AuditSinkError(Exception):
    """Raised by a sink when a batch could not be written."""


@runtime_checkable
class AuditSink(Protocol):
    """Destination of audit record batches."""

    async def write(self, records: Sequence[AuditRecord]) -> None:
        """Persist ``records``; raise on failure so the batch can be retried."""
        ...


class InMemoryAuditSink:
    """Keeps written records in a list. For development and tests."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self.batches = 0

    async def write(self, records: Sequence[AuditRecord]) -> None:
        self.records.extend(records)
        self.batches += 1


class HttpBeaconSink:
    """Posts record batches as JSON to a collector endpoint.

    ``write`` raises ``AuditSinkError`` so the logger can retry;
    ``send`` is fire-and-forget and only logs failures, for use on shutdown.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 2.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def initialize(self) -> None:
        """Create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))

    async def shutdown(self) -> None:
        """Release resources."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def write(self, records: Sequence[AuditRecord]) -> None:
        if self._http_client is None:
            msg = "HttpBeaconSink not initialized. Call initialize() first."
            raise RuntimeError(msg)

        payload = orjson.dumps([r.model_dump(mode="json") for r in records])
        try:
            response = await self._http_client.post(
                self._url,
                content=payload,
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Audit beacon to {self._url} failed: {type(e).__name__}"
            raise AuditSinkError(msg) from e

    async def send(self, records: Sequence[AuditRecord]) -> bool:
        """Best-effort write; returns False instead of raising."""
        try:
            await self.write(records)
        except (AuditSinkError, RuntimeError) as e:
            logger.warning(
                "Audit beacon not delivered", count=len(records), error=str(e)
            )
            return False
        return True


# =============================================================================
# Logger
# =============================================================================


class SecurityAuditLogger:
    """Buffered security event logger.

    ``log_event`` and the helpers are synchronous and never wait on I/O;
    writes happen in background tasks on the running event loop.

    Args:
        sink: Where batches are written.
        beacon_sink: Non-blocking sink used for the final flush on shutdown.
        flush_interval: Seconds between periodic flushes.
        max_buffer_size: Buffered events that trigger an immediate flush.
        retry_buffer_limit: Buffer size above which a failed batch is
            dropped instead of re-queued. Defaults to twice
            ``max_buffer_size``.
        max_queue_size: Hard cap on buffered events; the oldest are dropped
            beyond it. Defaults to twenty times ``max_buffer_size``.
        write_timeout: Seconds a single sink write may take before the
            batch is treated as failed.
        clock: Source of event timestamps.
    """

    def __init__(
        self,
        sink: AuditSink,
        *,
        beacon_sink: HttpBeaconSink | None = None,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE,
        retry_buffer_limit: int | None = None,
        max_queue_size: int | None = None,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._sink = sink
        self._beacon_sink = beacon_sink
        self._flush_interval = flush_interval
        self._max_buffer_size = max_buffer_size
        self._retry_buffer_limit = retry_buffer_limit or max_buffer_size * 2
        self._max_queue_size = max(
            max_queue_size or max_buffer_size * 20, self._retry_buffer_limit
        )
        self._write_timeout = write_timeout
        self._clock = clock

        self._buffer: list[AuditRecord] = []
        self._flush_lock = asyncio.Lock()
        self._pending: set[asyncio.Task[int]] = set()
        self._periodic: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def buffered(self) -> int:
        """Number of events waiting to be written."""
        return len(self._buffer)

    # =========================================================================
    # Recording
    # =========================================================================

    def log_event(
        self,
        event_type: SecurityEventType | str,
        layer: int,
        *,
        severity: SecuritySeverity | str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        permission: str | None = None,
        route: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Record a security event.

        Route, client IP and user agent default to the values bound to the
        current request's logging context.
        """
        event_type = SecurityEventType(event_type)
        request_context = get_context()
        event = SecurityEvent(
            type=event_type,
            severity=SecuritySeverity(severity or EVENT_SEVERITY[event_type]),
            layer=layer,
            user_id=user_id,
            session_id=session_id,
            resource_type=str(resource_type) if resource_type else None,
            resource_id=resource_id,
            permission=str(permission) if permission else None,
            route=route or request_context.get("path"),
            ip=ip or request_context.get("client_ip"),
            user_agent=user_agent or request_context.get("user_agent"),
            details={k: v for k, v in (details or {}).items() if v is not None},
            timestamp=self._clock(),
        )

        SECURITY_EVENTS.labels(
            type=event.type.value,
            severity=event.severity.value,
            layer=str(event.layer),
        ).inc()
        logger.log(
            _LOG_LEVELS[event.severity],
            "Security event",
            event_type=event.type.value,
            severity=event.severity.value,
            layer=event.layer,
            user_id=event.user_id,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            permission=event.permission,
        )

        self._append([event.to_record()])
        return event

    def enqueue_records(self, records: Iterable[AuditRecord]) -> int:
        """Queue already-built records, e.g. a batch posted by a browser."""
        batch = list(records)
        self._append(batch)
        return len(batch)

    def _append(self, records: list[AuditRecord]) -> None:
        self._buffer.extend(records)

        overflow = len(self._buffer) - self._max_queue_size
        if overflow > 0:
            del self._buffer[:overflow]
            AUDIT_EVENTS_DROPPED.inc(overflow)
            logger.error(
                "Security audit queue full, oldest events dropped", count=overflow
            )

        if any(r.severity == SecuritySeverity.CRITICAL for r in records):
            self._schedule_flush(force=True)
        elif len(self._buffer) >= self._max_buffer_size:
            self._schedule_flush()

    def log_auth_violation(
        self,
        event_type: SecurityEventType | str = SecurityEventType.AUTH_REQUIRED,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
        route: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 1: missing, failed or expired authentication."""
        return self.log_event(
            event_type,
            1,
            user_id=user_id,
            session_id=session_id,
            route=route,
            details=details,
        )

    def log_permission_violation(
        self,
        permission: str | None,
        user_id: str,
        *,
        route: str | None = None,
        required_level: int | None = None,
        actual_level: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 2: the caller lacks a permission."""
        return self.log_event(
            SecurityEventType.PERMISSION_DENIED,
            2,
            user_id=user_id,
            permission=permission,
            route=route,
            details={
                "requiredLevel": required_level,
                "actualLevel": actual_level,
                **(details or {}),
            },
        )

    def log_role_insufficient(
        self,
        user_id: str,
        *,
        required_level: int | None = None,
        actual_level: int | None = None,
        route: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 2: the caller's role is below the required level."""
        return self.log_event(
            SecurityEventType.ROLE_INSUFFICIENT,
            2,
            user_id=user_id,
            route=route,
            details={
                "requiredLevel": required_level,
                "actualLevel": actual_level,
                **(details or {}),
            },
        )

    def log_ownership_violation(
        self,
        resource_type: str,
        resource_id: str,
        user_id: str,
        *,
        route: str | None = None,
        attempted_action: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 3: the caller does not own the record."""
        return self.log_event(
            SecurityEventType.OWNERSHIP_DENIED,
            3,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            route=route,
            details={"attemptedAction": attempted_action, **(details or {})},
        )

    def log_rls_violation(
        self,
        resource_type: str,
        *,
        user_id: str | None = None,
        resource_id: str | None = None,
        operation: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 4: the database refused the operation."""
        return self.log_event(
            SecurityEventType.PERMISSION_DENIED,
            4,
            user_id=user_id,
            resource_type=resource_type,
            resource_id=resource_id,
            details={
                "operation": operation,
                "errorCode": error_code,
                **(details or {}),
            },
        )

    def log_privilege_escalation(
        self,
        user_id: str,
        *,
        attempted_role: str | None = None,
        attempted_permission: str | None = None,
        route: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        """Layer 2: an attempt to gain a role or permission. Always critical."""
        return self.log_event(
            SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT,
            2,
            severity=SecuritySeverity.CRITICAL,
            user_id=user_id,
            permission=attempted_permission,
            route=route,
            details={"attemptedRole": attempted_role, **(details or {})},
        )

    def log_access_granted(
        self,
        layer: int,
        user_id: str,
        *,
        permission: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        route: str | None = None,
    ) -> SecurityEvent | None:
        """Record granted access to sensitive resources; others are skipped."""
        if resource_type and str(resource_type) not in SENSITIVE_RESOURCES:
            return None
        return self.log_event(
            SecurityEventType.ACCESS_GRANTED,
            layer,
            user_id=user_id,
            permission=permission,
            resource_type=resource_type,
            resource_id=resource_id,
            route=route,
        )

    def log_oauth_violation(
        self,
        event_type: SecurityEventType | str,
        *,
        provider: str,
        reason: str,
        **details: Any,
    ) -> SecurityEvent:
        """Layer 1: a sign-in callback failed a binding check."""
        return self.log_event(
            event_type,
            1,
            details={"provider": provider, "reason": reason, **details},
        )

    # =========================================================================
    # Flushing
    # =========================================================================

    async def flush(self) -> int:
        """Write buffered records to the sink.

        Returns:
            Number of records written.
        """
        async with self._flush_lock:
            batch, self._buffer = self._buffer, []
            if not batch:
                return 0

            try:
                async with asyncio.timeout(self._write_timeout):
                    await self._sink.write(batch)
            except Exception:
                self._requeue(batch)
                return 0

        logger.debug("Flushed security events", count=len(batch))
        return len(batch)

    def _requeue(self, batch: list[AuditRecord]) -> None:
        if len(self._buffer) + len(batch) <= self._retry_buffer_limit:
            logger.opt(exception=True).warning(
                "Failed to write security events, re-queued", count=len(batch)
            )
            self._buffer[:0] = batch
            return

        AUDIT_EVENTS_DROPPED.inc(len(batch))
        logger.opt(exception=True).error(
            "Failed to write security events, dropped", count=len(batch)
        )

    def _schedule_flush(self, *, force: bool = False) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the periodic flush or shutdown picks the events up
            return
        if self._pending and not force:
            return
        task = loop.create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_for_pending(self) -> None:
        """Wait for flushes triggered by ``log_event`` to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            await self.flush()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the periodic flush task."""
        if self._periodic is None:
            self._closed = False
            self._periodic = asyncio.create_task(self._run_periodic())
            logger.info(
                "Security audit logger started",
                flush_interval=self._flush_interval,
                max_buffer_size=self._max_buffer_size,
            )

    async def aclose(self, timeout: float = 2.0) -> None:
        """Stop the periodic task and flush what is left within ``timeout``."""
        if self._closed:
            return
        self._closed = True

        if self._periodic is not None:
            self._periodic.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic
            self._periodic = None

        try:
            async with asyncio.timeout(timeout):
                await self.wait_for_pending()
                await self._final_flush()
        except TimeoutError:
            logger.error(
                "Security audit flush timed out on shutdown, events lost",
                count=len(self._buffer),
            )

    async def _final_flush(self) -> None:
        if self._beacon_sink is None:
            await self.flush()
            return

        async with self._flush_lock:
            batch, self._buffer = self._buffer, []
        if batch and not await self._beacon_sink.send(batch):
            logger.error("Security events lost on shutdown", count=len(batch))


__all__ = [
    "EVENT_SEVERITY",
    "SENSITIVE_RESOURCES",
    "AuditRecord",
    "AuditSink",
    "AuditSinkError",
    "HttpBeaconSink",
    "InMemoryAuditSink",
    "SecurityAuditLogger",
    "SecurityEvent",
    "SecurityEventType",
    "SecuritySeverity",
]
