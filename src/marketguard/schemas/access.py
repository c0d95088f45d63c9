"""Access control schemas."""

from __future__ import annotations

from pydantic import Field

from marketguard.auth.ownership import AccessLevel, OwnableResource
from marketguard.auth.permissions import Permission, RoleLevel
from marketguard.schemas.base import APIRequest, APIResponse


# Bulk checks go to the database in one query; keep it bounded
MAX_BULK_IDS = 500


class AccessCheckRequest(APIRequest):
    """An access requirement to evaluate for the caller."""

    require_auth: bool = True
    require_admin: bool = False
    require_seller: bool = False
    min_role_level: RoleLevel | None = None
    permission: Permission | None = None
    all_permissions: list[Permission] = Field(default_factory=list)
    any_permissions: list[Permission] = Field(default_factory=list)
    resource_type: OwnableResource | None = None
    resource_id: str | None = None
    require_ownership: bool | None = None
    required_access_level: AccessLevel = AccessLevel.READ
    log_success: bool = False


class AccessCheckResponse(APIResponse):
    """Outcome of an access check.

    The denying layer and audit code are returned to trusted callers of
    this endpoint; routes protected by ``RequireAccess`` never expose them.
    """

    allowed: bool
    layer: int | None = None
    code: str | None = None
    reason: str | None = None
    access_level: AccessLevel | None = None


class OwnershipResponse(APIResponse):
    """The caller's relation to one record."""

    resource_type: OwnableResource
    resource_id: str
    is_owner: bool
    is_participant: bool | None = None
    access_level: AccessLevel
    reason: str | None = None


class BulkOwnershipRequest(APIRequest):
    """Records of one type to check for the caller."""

    resource_type: OwnableResource
    resource_ids: list[str] = Field(..., max_length=MAX_BULK_IDS)


class BulkOwnershipResponse(APIResponse):
    """Ownership result for every requested id."""

    resource_type: OwnableResource
    results: dict[str, OwnershipResponse]


class OwnedResourcesResponse(APIResponse):
    """Ids of the records the caller owns."""

    resource_type: OwnableResource
    resource_ids: list[str]
