"""Security audit beacon intake.

Browser clients batch the denials they observe and post them here, usually
with ``navigator.sendBeacon`` while the page unloads.

Events are recorded under the caller's own identity (or none for anonymous
callers) with a server timestamp; the client's values are kept in the
event details. Clients cannot report critical events.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Request, status

from marketguard.auth.audit import AuditRecord, SecuritySeverity
from marketguard.auth.dependencies import get_principal
from marketguard.auth.pipeline import Principal
from marketguard.oauth.session import utc_now
from marketguard.observability.logging import get_logger
from marketguard.schemas.audit import BeaconAcceptedResponse, BeaconBatch


if TYPE_CHECKING:
    from marketguard.auth.audit import SecurityAuditLogger
    from marketguard.schemas.audit import BeaconEvent

logger = get_logger(__name__)

router = APIRouter(tags=["security-audit"])

# Highest severity a browser may report
MAX_CLIENT_SEVERITY = SecuritySeverity.HIGH


def _client_record(event: BeaconEvent, principal: Principal | None) -> AuditRecord:
    details = {**event.event_details, "source": "client"}
    if event.created_at is not None:
        details["clientCreatedAt"] = event.created_at.isoformat()
    if event.user_id is not None and (
        principal is None or event.user_id != principal.user_id
    ):
        details["reportedUserId"] = event.user_id

    severity = SecuritySeverity(event.severity)
    if severity is SecuritySeverity.CRITICAL:
        details["reportedSeverity"] = severity.value
        severity = MAX_CLIENT_SEVERITY

    return AuditRecord(
        user_id=principal.user_id if principal else None,
        event_type=event.event_type,
        event_category=event.event_category,
        event_details=details,
        severity=severity,
        created_at=utc_now(),
    )


@router.post(
    "/security-audit",
    response_model=BeaconAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Accept browser security events",
)
async def accept_security_events(
    batch: BeaconBatch,
    request: Request,
    principal: Annotated[Principal | None, Depends(get_principal)],
) -> BeaconAcceptedResponse:
    audit: SecurityAuditLogger = request.app.state.audit_logger
    records = [_client_record(event, principal) for event in batch.events]
    accepted = audit.enqueue_records(records)
    logger.debug(
        "Accepted client security events",
        count=accepted,
        user_id=principal.user_id if principal else None,
    )
    return BeaconAcceptedResponse(accepted=accepted)
