"""API request and response schemas."""

from marketguard.schemas.access import (
    AccessCheckRequest,
    AccessCheckResponse,
    BulkOwnershipRequest,
    BulkOwnershipResponse,
    OwnedResourcesResponse,
    OwnershipResponse,
)
from marketguard.schemas.audit import BeaconAcceptedResponse, BeaconBatch, BeaconEvent
from marketguard.schemas.base import APIRequest, APIResponse
from marketguard.schemas.health import HealthResponse, ReadinessResponse
from marketguard.schemas.oauth import (
    OAuthCallbackResponse,
    ProvidersResponse,
    RefreshTokenRequest,
)


__all__ = [
    "APIRequest",
    "APIResponse",
    "AccessCheckRequest",
    "AccessCheckResponse",
    "BeaconAcceptedResponse",
    "BeaconBatch",
    "BeaconEvent",
    "BulkOwnershipRequest",
    "BulkOwnershipResponse",
    "HealthResponse",
    "OAuthCallbackResponse",
    "OwnedResourcesResponse",
    "OwnershipResponse",
    "ProvidersResponse",
    "ReadinessResponse",
    "RefreshTokenRequest",
]
