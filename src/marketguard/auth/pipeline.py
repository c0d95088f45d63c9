"""Defense-in-depth access control pipeline.

An access decision runs through the layers in order and stops at the
first denial; a later layer never compensates for an earlier one:

1. Authentication: is there a caller at all?
2. Authorization: do the caller's roles and permissions allow the operation?
3. Ownership: does the caller own (or take part in) the record?
4. Row-level security: enforced by the database, see ``marketguard.auth.rls``.

Every denial is recorded in the security audit trail.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from marketguard.auth.audit import SecurityEventType
from marketguard.auth.ownership import AccessLevel, OwnableResource, OwnershipResult
from marketguard.auth.permissions import (
    Permission,
    Role,
    RoleLevel,
    get_admin_override_permission,
    get_highest_role_level,
    has_permission,
    parse_permission,
    requires_ownership_check,
)
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from marketguard.auth.audit import SecurityAuditLogger
    from marketguard.auth.ownership import OwnershipVerifier
    from marketguard.auth.providers.models import AuthResult

logger = get_logger(__name__)


class Principal(BaseModel):
    """The authenticated caller."""

    user_id: str
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()
    session_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_auth_result(cls, result: AuthResult) -> Principal:
        """Create a Principal from an identity provider result."""
        return cls(
            user_id=result.user_id,
            roles=tuple(result.roles),
            permissions=tuple(result.permissions),
            session_id=result.session_id,
        )

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_seller(self) -> bool:
        return Role.SELLER in self.roles

    @property
    def role_level(self) -> RoleLevel:
        """Highest role level; a signed-in caller is at least AUTHENTICATED."""
        return max(get_highest_role_level(self.roles), RoleLevel.AUTHENTICATED)

    def has_permission(self, permission: Permission | str) -> bool:
        """Check a permission from roles or direct grants."""
        return has_permission(self.roles, permission, self.permissions)


class AccessRequirement(BaseModel):
    """What an operation demands of its caller."""

    require_auth: bool = True

    # Layer 2
    require_admin: bool = False
    require_seller: bool = False
    min_role_level: RoleLevel | None = None
    permission: Permission | None = None
    all_permissions: tuple[Permission, ...] = ()
    any_permissions: tuple[Permission, ...] = ()

    # Layer 3
    resource_type: OwnableResource | None = None
    resource_id: str | None = None
    require_ownership: bool | None = None
    required_access_level: AccessLevel = AccessLevel.READ

    log_success: bool = False

    model_config = {"frozen": True}

    @property
    def has_authorization_checks(self) -> bool:
        return bool(
            self.require_admin
            or self.require_seller
            or self.min_role_level is not None
            or self.permission
            or self.all_permissions
            or self.any_permissions
        )

    @property
    def needs_ownership_check(self) -> bool:
        """Explicitly required, or implied by an ``own``-scoped permission.

        An ``own`` permission without a ``resource_type`` (e.g. listing the
        caller's own orders) does not target a single record.
        """
        if self.require_ownership:
            return True
        return (
            self.resource_type is not None
            and self.permission is not None
            and requires_ownership_check(self.permission)
        )


class AccessDecision(BaseModel):
    """Outcome of an access evaluation.

    ``layer``, ``reason`` and ``code`` identify the denying check and are
    meant for the audit trail and internal callers, not for end users.
    """

    allowed: bool
    layer: int | None = Field(default=None, ge=1, le=4)
    reason: str | None = None
    code: SecurityEventType | None = None
    ownership: OwnershipResult | None = None

    @classmethod
    def allow(cls, ownership: OwnershipResult | None = None) -> AccessDecision:
        return cls(allowed=True, ownership=ownership)

    @classmethod
    def deny(
        cls,
        layer: int,
        code: SecurityEventType,
        reason: str,
        ownership: OwnershipResult | None = None,
    ) -> AccessDecision:
        return cls(
            allowed=False, layer=layer, code=code, reason=reason, ownership=ownership
        )


class AccessControlPipeline:
    """Evaluates access requirements layer by layer.

    Args:
        verifier: Ownership lookups for layer 3.
        audit: Security audit trail.
    """

    def __init__(
        self,
        verifier: OwnershipVerifier,
        audit: SecurityAuditLogger,
    ) -> None:
        self._verifier = verifier
        self._audit = audit

    @property
    def verifier(self) -> OwnershipVerifier:
        return self._verifier

    async def evaluate(
        self,
        principal: Principal | None,
        requirement: AccessRequirement,
        *,
        route: str | None = None,
    ) -> AccessDecision:
        """Decide whether ``principal`` may perform the operation.

        Args:
            principal: The caller, or None for anonymous requests.
            requirement: What the operation demands.
            route: Request path recorded with audit events.

        Returns:
            The decision; denials carry the layer and audit code.
        """
        decision = self._check_authentication(principal, requirement, route)
        if decision is not None:
            return decision
        if principal is None:
            return AccessDecision.allow()

        decision = self._check_authorization(principal, requirement, route)
        if decision is not None:
            return decision

        if requirement.needs_ownership_check:
            return await self._check_ownership(principal, requirement, route)

        if requirement.log_success and requirement.permission:
            self._audit.log_access_granted(
                2,
                principal.user_id,
                permission=requirement.permission,
                route=route,
            )
        return AccessDecision.allow()

    # =========================================================================
    # Layer 1
    # =========================================================================

    def _check_authentication(
        self,
        principal: Principal | None,
        requirement: AccessRequirement,
        route: str | None,
    ) -> AccessDecision | None:
        if principal is not None:
            return None

        # Any authorization or ownership check presupposes an identity
        needs_identity = (
            requirement.require_auth
            or requirement.has_authorization_checks
            or requirement.needs_ownership_check
        )
        if not needs_identity:
            return None

        self._audit.log_auth_violation(SecurityEventType.AUTH_REQUIRED, route=route)
        return AccessDecision.deny(
            1, SecurityEventType.AUTH_REQUIRED, "Authentication required"
        )

    # =========================================================================
    # Layer 2
    # =========================================================================

    def _check_authorization(
        self,
        principal: Principal,
        requirement: AccessRequirement,
        route: str | None,
    ) -> AccessDecision | None:
        level = principal.role_level

        if requirement.require_admin and not principal.is_admin:
            return self._deny_role(principal, RoleLevel.ADMIN, route, "Admin required")

        is_seller = principal.is_seller or principal.is_admin
        if requirement.require_seller and not is_seller:
            return self._deny_role(
                principal, RoleLevel.SELLER, route, "Seller required"
            )

        minimum = requirement.min_role_level
        if minimum is not None and level < minimum:
            return self._deny_role(
                principal,
                minimum,
                route,
                f"Insufficient role level (required: {int(minimum)}, "
                f"actual: {int(level)})",
            )

        permission = requirement.permission
        if permission is not None and not self._holds(principal, permission):
            return self._deny_permission(principal, permission, route)

        for required in requirement.all_permissions:
            if not principal.has_permission(required):
                return self._deny_permission(principal, required, route)

        if requirement.any_permissions and not any(
            principal.has_permission(p) for p in requirement.any_permissions
        ):
            self._audit.log_permission_violation(
                None,
                principal.user_id,
                route=route,
                details={"anyOf": [str(p) for p in requirement.any_permissions]},
            )
            return AccessDecision.deny(
                2,
                SecurityEventType.PERMISSION_DENIED,
                "Permission denied: none of "
                + ", ".join(str(p) for p in requirement.any_permissions),
            )

        return None

    @staticmethod
    def _holds(principal: Principal, permission: Permission) -> bool:
        # Admins satisfy an "own" permission through its "all" counterpart
        if principal.is_admin:
            override = get_admin_override_permission(permission)
            if override is not None and principal.has_permission(override):
                return True
        return principal.has_permission(permission)

    def _deny_role(
        self,
        principal: Principal,
        required: RoleLevel,
        route: str | None,
        reason: str,
    ) -> AccessDecision:
        self._audit.log_role_insufficient(
            principal.user_id,
            required_level=int(required),
            actual_level=int(principal.role_level),
            route=route,
        )
        return AccessDecision.deny(2, SecurityEventType.ROLE_INSUFFICIENT, reason)

    def _deny_permission(
        self,
        principal: Principal,
        permission: Permission,
        route: str | None,
    ) -> AccessDecision:
        self._audit.log_permission_violation(
            permission,
            principal.user_id,
            route=route,
            actual_level=int(principal.role_level),
        )
        return AccessDecision.deny(
            2, SecurityEventType.PERMISSION_DENIED, f"Permission denied: {permission}"
        )

    # =========================================================================
    # Layer 3
    # =========================================================================

    async def _check_ownership(
        self,
        principal: Principal,
        requirement: AccessRequirement,
        route: str | None,
    ) -> AccessDecision:
        resource_type = requirement.resource_type
        resource_id = requirement.resource_id
        if not (resource_type and resource_id):
            self._audit.log_event(
                SecurityEventType.OWNERSHIP_DENIED,
                3,
                user_id=principal.user_id,
                resource_type=resource_type,
                permission=requirement.permission,
                route=route,
                details={"reason": "Resource not specified"},
            )
            return AccessDecision.deny(
                3, SecurityEventType.OWNERSHIP_DENIED, "Resource not specified"
            )

        if principal.is_admin:
            logger.debug(
                "Admin bypassed ownership check",
                resource_type=str(resource_type),
                resource_id=resource_id,
            )
            decision = AccessDecision.allow()
        else:
            ownership = await self._verifier.verify_ownership(
                resource_type, resource_id, principal.user_id
            )
            if not ownership.access_level.satisfies(requirement.required_access_level):
                self._audit.log_ownership_violation(
                    resource_type,
                    resource_id,
                    principal.user_id,
                    route=route,
                    attempted_action=(
                        parse_permission(requirement.permission).action
                        if requirement.permission
                        else None
                    ),
                    details={
                        "requiredAccess": requirement.required_access_level.value,
                        "actualAccess": ownership.access_level.value,
                    },
                )
                return AccessDecision.deny(
                    3,
                    SecurityEventType.OWNERSHIP_DENIED,
                    ownership.reason or "Resource ownership denied",
                    ownership,
                )
            decision = AccessDecision.allow(ownership)

        if requirement.log_success:
            self._audit.log_access_granted(
                3,
                principal.user_id,
                permission=requirement.permission,
                resource_type=resource_type,
                resource_id=resource_id,
                route=route,
            )
        return decision


__all__ = [
    "AccessControlPipeline",
    "AccessDecision",
    "AccessRequirement",
    "Principal",
]
