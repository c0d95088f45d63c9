"""Security audit beacon schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from marketguard.auth.audit import SecurityEventType, SecuritySeverity
from marketguard.schemas.base import APIRequest, APIResponse


MAX_BEACON_EVENTS = 100


class BeaconEvent(APIRequest):
    """One security event reported by a browser client."""

    user_id: str | None = None
    event_type: SecurityEventType
    event_category: str = Field(..., pattern=r"^security_layer_[1-4]$")
    event_details: dict[str, Any] = Field(default_factory=dict)
    severity: SecuritySeverity
    created_at: datetime | None = None


class BeaconBatch(APIRequest):
    """A batch of browser-reported security events."""

    events: list[BeaconEvent] = Field(..., max_length=MAX_BEACON_EVENTS)


class BeaconAcceptedResponse(APIResponse):
    """How many events were queued."""

    accepted: int
