"""Role-Based Access Control (RBAC) for the marketplace.

Permissions are granular capabilities named ``resource.action`` or
``resource.scope.action`` where scope is ``own`` (the caller's own records,
needs an ownership check) or ``all`` (every record). Roles bundle
permissions, sit at a level of the role hierarchy and may inherit the
permissions of lower roles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from functools import cache
from typing import TYPE_CHECKING, Literal, NamedTuple


if TYPE_CHECKING:
    from collections.abc import Iterable


class Permission(StrEnum):
    """Marketplace permissions."""

    # Listings
    LISTINGS_CREATE = "listings.create"
    LISTINGS_OWN_VIEW = "listings.own.view"
    LISTINGS_OWN_EDIT = "listings.own.edit"
    LISTINGS_OWN_DELETE = "listings.own.delete"
    LISTINGS_ALL_VIEW = "listings.all.view"
    LISTINGS_ALL_EDIT = "listings.all.edit"
    LISTINGS_ALL_DELETE = "listings.all.delete"
    LISTINGS_MODERATE = "listings.moderate"
    LISTINGS_FEATURE = "listings.feature"

    # Orders
    ORDERS_OWN_VIEW = "orders.own.view"
    ORDERS_OWN_MANAGE = "orders.own.manage"
    ORDERS_ALL_VIEW = "orders.all.view"
    ORDERS_ALL_MANAGE = "orders.all.manage"
    ORDERS_REFUND = "orders.refund"

    # Users and profiles
    PROFILE_OWN_VIEW = "profile.own.view"
    PROFILE_OWN_EDIT = "profile.own.edit"
    PROFILE_ALL_VIEW = "profile.all.view"
    PROFILE_ALL_EDIT = "profile.all.edit"
    USERS_MANAGE = "users.manage"
    USERS_ROLES_ASSIGN = "users.roles.assign"
    USERS_SUSPEND = "users.suspend"

    # Messages
    MESSAGES_OWN_VIEW = "messages.own.view"
    MESSAGES_OWN_SEND = "messages.own.send"
    MESSAGES_ALL_VIEW = "messages.all.view"
    MESSAGES_MODERATE = "messages.moderate"

    # Reviews
    REVIEWS_CREATE = "reviews.create"
    REVIEWS_OWN_EDIT = "reviews.own.edit"
    REVIEWS_MODERATE = "reviews.moderate"
    REVIEWS_RESPOND = "reviews.respond"

    # Collections
    COLLECTIONS_OWN_MANAGE = "collections.own.manage"
    COLLECTIONS_ALL_MANAGE = "collections.all.manage"
    COLLECTIONS_FEATURE = "collections.feature"

    # Analytics
    ANALYTICS_OWN_VIEW = "analytics.own.view"
    ANALYTICS_ALL_VIEW = "analytics.all.view"
    ANALYTICS_EXPORT = "analytics.export"

    # Administration
    ADMIN_DASHBOARD = "admin.dashboard"
    ADMIN_SETTINGS = "admin.settings"
    ADMIN_AUDIT_VIEW = "admin.audit.view"
    ADMIN_SUPPORT_MANAGE = "admin.support.manage"

    # Blog content
    BLOG_CREATE = "blog.create"
    BLOG_EDIT = "blog.edit"
    BLOG_PUBLISH = "blog.publish"
    BLOG_DELETE = "blog.delete"

    # Money movement
    PAYOUTS_OWN_VIEW = "payouts.own.view"
    PAYOUTS_ALL_VIEW = "payouts.all.view"
    PAYOUTS_PROCESS = "payouts.process"
    REFUNDS_PROCESS = "refunds.process"

    # Buyer protection claims
    DISPUTES_OWN_CREATE = "disputes.own.create"
    DISPUTES_OWN_VIEW = "disputes.own.view"
    DISPUTES_ALL_VIEW = "disputes.all.view"
    DISPUTES_RESOLVE = "disputes.resolve"

    # Support tickets
    SUPPORT_TICKETS_OWN_CREATE = "support.tickets.own.create"
    SUPPORT_TICKETS_OWN_VIEW = "support.tickets.own.view"
    SUPPORT_TICKETS_ALL_VIEW = "support.tickets.all.view"
    SUPPORT_TICKETS_MANAGE = "support.tickets.manage"

    # Seller tools
    SELLER_DASHBOARD = "seller.dashboard"
    SELLER_ANALYTICS = "seller.analytics"
    SELLER_PAYOUTS = "seller.payouts"
    SELLER_TAX_INFO = "seller.tax_info"

    # Moderation queue
    MODERATION_QUEUE_VIEW = "moderation.queue.view"
    MODERATION_QUEUE_PROCESS = "moderation.queue.process"
    MODERATION_REPORTS_VIEW = "moderation.reports.view"

    # City moderators
    CITY_MODERATE = "city.moderate"
    CITY_EVENTS_MANAGE = "city.events.manage"
    CITY_MAKERS_FEATURE = "city.makers.feature"


class RoleLevel(IntEnum):
    """Ordered role hierarchy; higher levels satisfy lower requirements."""

    ANONYMOUS = 0
    AUTHENTICATED = 1
    BUYER = 2
    SELLER = 3
    CITY_MODERATOR = 4
    ADMIN = 5
    SUPER_ADMIN = 6


class Role(StrEnum):
    """Marketplace roles as stored in the user_roles table."""

    BUYER = "buyer"
    SELLER = "seller"
    CITY_MODERATOR = "city_moderator"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class RoleConfig:
    """Level, own permissions and parents of a role."""

    level: RoleLevel
    permissions: frozenset[Permission]
    inherits_from: tuple[Role, ...] = field(default=())


ROLE_PERMISSIONS: dict[Role, RoleConfig] = {
    Role.BUYER: RoleConfig(
        level=RoleLevel.BUYER,
        permissions=frozenset(
            {
                Permission.PROFILE_OWN_VIEW,
                Permission.PROFILE_OWN_EDIT,
                Permission.LISTINGS_OWN_VIEW,
                Permission.ORDERS_OWN_VIEW,
                Permission.ORDERS_OWN_MANAGE,
                Permission.MESSAGES_OWN_VIEW,
                Permission.MESSAGES_OWN_SEND,
                Permission.REVIEWS_CREATE,
                Permission.REVIEWS_OWN_EDIT,
                Permission.COLLECTIONS_OWN_MANAGE,
                Permission.DISPUTES_OWN_CREATE,
                Permission.DISPUTES_OWN_VIEW,
                Permission.SUPPORT_TICKETS_OWN_CREATE,
                Permission.SUPPORT_TICKETS_OWN_VIEW,
            }
        ),
    ),
    Role.SELLER: RoleConfig(
        level=RoleLevel.SELLER,
        inherits_from=(Role.BUYER,),
        permissions=frozenset(
            {
                Permission.LISTINGS_CREATE,
                Permission.LISTINGS_OWN_EDIT,
                Permission.LISTINGS_OWN_DELETE,
                Permission.ANALYTICS_OWN_VIEW,
                Permission.REVIEWS_RESPOND,
                Permission.SELLER_DASHBOARD,
                Permission.SELLER_ANALYTICS,
                Permission.SELLER_PAYOUTS,
                Permission.SELLER_TAX_INFO,
                Permission.PAYOUTS_OWN_VIEW,
            }
        ),
    ),
    Role.CITY_MODERATOR: RoleConfig(
        level=RoleLevel.CITY_MODERATOR,
        inherits_from=(Role.SELLER,),
        permissions=frozenset(
            {
                Permission.LISTINGS_MODERATE,
                Permission.MESSAGES_MODERATE,
                Permission.REVIEWS_MODERATE,
                Permission.MODERATION_QUEUE_VIEW,
                Permission.MODERATION_QUEUE_PROCESS,
                Permission.CITY_MODERATE,
                Permission.CITY_EVENTS_MANAGE,
                Permission.CITY_MAKERS_FEATURE,
            }
        ),
    ),
    Role.ADMIN: RoleConfig(
        level=RoleLevel.ADMIN,
        inherits_from=(Role.CITY_MODERATOR,),
        permissions=frozenset(
            {
                Permission.LISTINGS_ALL_VIEW,
                Permission.LISTINGS_ALL_EDIT,
                Permission.LISTINGS_ALL_DELETE,
                Permission.LISTINGS_FEATURE,
                Permission.ORDERS_ALL_VIEW,
                Permission.ORDERS_ALL_MANAGE,
                Permission.ORDERS_REFUND,
                Permission.PROFILE_ALL_VIEW,
                Permission.PROFILE_ALL_EDIT,
                Permission.USERS_MANAGE,
                Permission.USERS_ROLES_ASSIGN,
                Permission.USERS_SUSPEND,
                Permission.MESSAGES_ALL_VIEW,
                Permission.COLLECTIONS_ALL_MANAGE,
                Permission.COLLECTIONS_FEATURE,
                Permission.ANALYTICS_ALL_VIEW,
                Permission.ANALYTICS_EXPORT,
                Permission.ADMIN_DASHBOARD,
                Permission.ADMIN_SETTINGS,
                Permission.ADMIN_AUDIT_VIEW,
                Permission.ADMIN_SUPPORT_MANAGE,
                Permission.BLOG_CREATE,
                Permission.BLOG_EDIT,
                Permission.BLOG_PUBLISH,
                Permission.BLOG_DELETE,
                Permission.PAYOUTS_ALL_VIEW,
                Permission.PAYOUTS_PROCESS,
                Permission.REFUNDS_PROCESS,
                Permission.DISPUTES_ALL_VIEW,
                Permission.DISPUTES_RESOLVE,
                Permission.SUPPORT_TICKETS_ALL_VIEW,
                Permission.SUPPORT_TICKETS_MANAGE,
                Permission.MODERATION_REPORTS_VIEW,
            }
        ),
    ),
}


Scope = Literal["own", "all"]


class ParsedPermission(NamedTuple):
    """A permission split into its parts."""

    resource: str
    scope: Scope | None
    action: str


def _to_role(role: Role | str) -> Role | None:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


@cache
def _role_permissions(role: Role) -> frozenset[Permission]:
    config = ROLE_PERMISSIONS[role]
    permissions = set(config.permissions)
    for parent in config.inherits_from:
        permissions |= _role_permissions(parent)
    return frozenset(permissions)


def get_role_permissions(role: Role | str) -> frozenset[Permission]:
    """Get the permissions of a role, including inherited ones.

    Unknown roles have no permissions.
    """
    known = _to_role(role)
    if known is None:
        return frozenset()
    return _role_permissions(known)


def get_role_level(role: Role | str | None) -> RoleLevel:
    """Get the level of a role.

    ``None`` is anonymous; a role name the system does not know still
    belongs to a signed-in user and counts as ``AUTHENTICATED``.
    """
    if not role:
        return RoleLevel.ANONYMOUS
    known = _to_role(role)
    if known is None:
        return RoleLevel.AUTHENTICATED
    return ROLE_PERMISSIONS[known].level


def get_highest_role_level(roles: Iterable[Role | str]) -> RoleLevel:
    """Highest level among ``roles``; ``ANONYMOUS`` for no roles."""
    return max((get_role_level(role) for role in roles), default=RoleLevel.ANONYMOUS)


def meets_role_level(roles: Iterable[Role | str], minimum_level: RoleLevel) -> bool:
    """Check if any of ``roles`` is at or above ``minimum_level``."""
    return get_highest_role_level(roles) >= minimum_level


def has_permission(
    roles: Iterable[Role | str],
    permission: Permission | str,
    direct_permissions: Iterable[str] = (),
) -> bool:
    """Check if a permission is granted by a role or directly.

    Args:
        roles: The caller's roles.
        permission: The permission to check.
        direct_permissions: Permissions granted to the caller outside of
            roles (e.g. carried in the session token).

    Returns:
        True if the caller holds the permission.
    """
    required = str(permission)
    if required in {str(p) for p in direct_permissions}:
        return True
    return any(required in get_role_permissions(role) for role in roles)


def has_all_permissions(
    roles: Iterable[Role | str],
    permissions: Iterable[Permission | str],
    direct_permissions: Iterable[str] = (),
) -> bool:
    """Check if every one of ``permissions`` is held."""
    roles = list(roles)
    direct = list(direct_permissions)
    return all(has_permission(roles, p, direct) for p in permissions)


def has_any_permission(
    roles: Iterable[Role | str],
    permissions: Iterable[Permission | str],
    direct_permissions: Iterable[str] = (),
) -> bool:
    """Check if at least one of ``permissions`` is held."""
    roles = list(roles)
    direct = list(direct_permissions)
    return any(has_permission(roles, p, direct) for p in permissions)


def parse_permission(permission: Permission | str) -> ParsedPermission:
    """Split a permission into resource, scope and action.

    The scope is the segment before the action when it is ``own`` or
    ``all``; everything in front of it is the resource::

        "profile.own.view"           -> ("profile", "own", "view")
        "support.tickets.all.view"   -> ("support.tickets", "all", "view")
        "users.roles.assign"         -> ("users", None, "roles.assign")
    """
    parts = str(permission).split(".")
    if len(parts) >= 3 and parts[-2] in ("own", "all"):
        scope: Scope = "own" if parts[-2] == "own" else "all"
        return ParsedPermission(".".join(parts[:-2]), scope, parts[-1])
    return ParsedPermission(parts[0], None, ".".join(parts[1:]))


def requires_ownership_check(permission: Permission | str) -> bool:
    """``own``-scoped permissions only apply to records the caller owns."""
    return parse_permission(permission).scope == "own"


def get_admin_override_permission(permission: Permission | str) -> Permission | None:
    """The ``all``-scoped counterpart of an ``own`` permission, if it exists."""
    parsed = parse_permission(permission)
    if parsed.scope != "own":
        return None
    try:
        return Permission(f"{parsed.resource}.all.{parsed.action}")
    except ValueError:
        return None


__all__ = [
    "ROLE_PERMISSIONS",
    "ParsedPermission",
    "Permission",
    "Role",
    "RoleConfig",
    "RoleLevel",
    "get_admin_override_permission",
    "get_highest_role_level",
    "get_role_level",
    "get_role_permissions",
    "has_all_permissions",
    "has_any_permission",
    "has_permission",
    "meets_role_level",
    "parse_permission",
    "requires_ownership_check",
]
