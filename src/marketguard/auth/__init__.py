"""Access control for the marketplace.

This module provides:
- Role-based access control (RBAC) and the role hierarchy
- Resource ownership verification
- The layered access control pipeline and its FastAPI dependencies
- The buffered security audit trail
"""

from marketguard.auth.audit import SecurityAuditLogger, SecurityEventType
from marketguard.auth.dependencies import RequireAccess, get_principal
from marketguard.auth.ownership import AccessLevel, OwnableResource, OwnershipVerifier
from marketguard.auth.permissions import Permission, Role, RoleLevel
from marketguard.auth.pipeline import (
    AccessControlPipeline,
    AccessDecision,
    AccessRequirement,
    Principal,
)


__all__ = [
    # Pipeline
    "AccessControlPipeline",
    "AccessDecision",
    "AccessRequirement",
    "Principal",
    # RBAC
    "Permission",
    "Role",
    "RoleLevel",
    # Ownership
    "AccessLevel",
    "OwnableResource",
    "OwnershipVerifier",
    # Audit
    "SecurityAuditLogger",
    "SecurityEventType",
    # Dependencies
    "RequireAccess",
    "get_principal",
]
