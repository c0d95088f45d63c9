"""Access control endpoints.

Lets UIs and other marketplace services ask the pipeline for a decision
without performing the operation themselves.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Query, Request

from marketguard.auth.dependencies import RequireAuthenticated, get_principal
from marketguard.auth.ownership import OwnableResource
from marketguard.auth.pipeline import AccessRequirement, Principal
from marketguard.schemas.access import (
    AccessCheckRequest,
    AccessCheckResponse,
    BulkOwnershipRequest,
    BulkOwnershipResponse,
    OwnedResourcesResponse,
    OwnershipResponse,
)


if TYPE_CHECKING:
    from marketguard.auth.ownership import OwnershipResult, OwnershipVerifier
    from marketguard.auth.pipeline import AccessControlPipeline

router = APIRouter(prefix="/access", tags=["access"])

MAX_OWNED_IDS = 1000


def _verifier(request: Request) -> OwnershipVerifier:
    return request.app.state.ownership_verifier


def _ownership_response(
    resource_type: OwnableResource,
    resource_id: str,
    result: OwnershipResult,
) -> OwnershipResponse:
    return OwnershipResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        is_owner=result.is_owner,
        is_participant=result.is_participant,
        access_level=result.access_level,
        reason=result.reason,
    )


@router.post(
    "/check",
    response_model=AccessCheckResponse,
    response_model_exclude_none=True,
    summary="Evaluate an access requirement",
    description=(
        "Runs the access control pipeline for the caller and returns the "
        "decision instead of redirecting. Denials are audited as usual."
    ),
)
async def check_access(
    body: AccessCheckRequest,
    request: Request,
    principal: Annotated[Principal | None, Depends(get_principal)],
) -> AccessCheckResponse:
    pipeline: AccessControlPipeline = request.app.state.access_pipeline
    requirement = AccessRequirement(
        require_auth=body.require_auth,
        require_admin=body.require_admin,
        require_seller=body.require_seller,
        min_role_level=body.min_role_level,
        permission=body.permission,
        all_permissions=tuple(body.all_permissions),
        any_permissions=tuple(body.any_permissions),
        resource_type=body.resource_type,
        resource_id=body.resource_id,
        require_ownership=body.require_ownership,
        required_access_level=body.required_access_level,
        log_success=body.log_success,
    )
    decision = await pipeline.evaluate(principal, requirement, route=request.url.path)

    return AccessCheckResponse(
        allowed=decision.allowed,
        layer=decision.layer,
        code=decision.code.value if decision.code else None,
        reason=decision.reason,
        access_level=decision.ownership.access_level if decision.ownership else None,
    )


@router.get(
    "/resources/{resource_type}",
    response_model=OwnedResourcesResponse,
    summary="List the caller's records",
)
async def list_owned_resources(
    resource_type: OwnableResource,
    request: Request,
    principal: Annotated[Principal, Depends(RequireAuthenticated)],
    include_participant: bool = False,
    limit: Annotated[int, Query(ge=1, le=MAX_OWNED_IDS)] = 100,
) -> OwnedResourcesResponse:
    ids = await _verifier(request).get_owned_resource_ids(
        resource_type,
        principal.user_id,
        include_participant=include_participant,
        limit=limit,
    )
    return OwnedResourcesResponse(resource_type=resource_type, resource_ids=ids)


@router.get(
    "/resources/{resource_type}/{resource_id}",
    response_model=OwnershipResponse,
    response_model_exclude_none=True,
    summary="Check the caller's relation to a record",
)
async def get_resource_ownership(
    resource_type: OwnableResource,
    resource_id: str,
    request: Request,
    principal: Annotated[Principal, Depends(RequireAuthenticated)],
) -> OwnershipResponse:
    result = await _verifier(request).verify_ownership(
        resource_type, resource_id, principal.user_id
    )
    return _ownership_response(resource_type, resource_id, result)


@router.post(
    "/ownership/bulk",
    response_model=BulkOwnershipResponse,
    response_model_exclude_none=True,
    summary="Check the caller's relation to many records",
)
async def bulk_ownership(
    body: BulkOwnershipRequest,
    request: Request,
    principal: Annotated[Principal, Depends(RequireAuthenticated)],
) -> BulkOwnershipResponse:
    resource_type = OwnableResource(body.resource_type)
    results = await _verifier(request).verify_bulk_ownership(
        resource_type, body.resource_ids, principal.user_id
    )
    return BulkOwnershipResponse(
        resource_type=resource_type,
        results={
            rid: _ownership_response(resource_type, rid, result)
            for rid, result in results.items()
        },
    )
