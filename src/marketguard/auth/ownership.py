"""Resource ownership verification (access control layer 3).

Each ownable resource type maps to the table and columns that say who owns
a record and who else takes part in it (the seller of an order, the
receiver of a message). Lookups go through an ``OwnershipStore`` so the
verifier works against PostgreSQL in production and memory in tests.

Every failure resolves to ``AccessLevel.NONE``: an ownership check that
cannot be answered denies access.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel

from marketguard.auth.rls import rls_guard
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence

    from marketguard.auth.audit import SecurityAuditLogger

logger = get_logger(__name__)

REASON_NOT_FOUND = "Resource not found"
REASON_ERROR = "Error verifying ownership"


class OwnableResource(StrEnum):
    """Resource types that support ownership checks."""

    LISTING = "listing"
    ORDER = "order"
    MESSAGE = "message"
    REVIEW = "review"
    COLLECTION = "collection"
    DISPUTE = "dispute"
    SUPPORT_TICKET = "support_ticket"
    PROFILE = "profile"
    CART = "cart"
    FAVORITE = "favorite"
    NOTIFICATION = "notification"


class AccessLevel(StrEnum):
    """Access a caller has to a record, from nothing to full control."""

    NONE = "none"
    READ = "read"
    WRITE = "write"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def satisfies(self, required: AccessLevel) -> bool:
        """True if this level is at or above ``required``."""
        return self.rank >= required.rank


_ACCESS_RANK = {
    AccessLevel.NONE: 0,
    AccessLevel.READ: 1,
    AccessLevel.WRITE: 2,
    AccessLevel.FULL: 3,
}


@dataclass(frozen=True, slots=True)
class OwnershipDescriptor:
    """Where the ownership of a resource type is recorded."""

    table: str
    owner_column: str
    participant_columns: tuple[str, ...] = ()
    id_column: str = "id"

    @property
    def columns(self) -> tuple[str, ...]:
        """Owner column followed by participant columns."""
        return (self.owner_column, *self.participant_columns)


OWNERSHIP_DESCRIPTORS: Mapping[OwnableResource, OwnershipDescriptor] = {
    OwnableResource.LISTING: OwnershipDescriptor("listings", "seller_id"),
    OwnableResource.ORDER: OwnershipDescriptor("orders", "buyer_id", ("seller_id",)),
    OwnableResource.MESSAGE: OwnershipDescriptor(
        "messages", "sender_id", ("receiver_id",)
    ),
    OwnableResource.REVIEW: OwnershipDescriptor(
        "reviews", "reviewer_id", ("reviewed_user_id",)
    ),
    OwnableResource.COLLECTION: OwnershipDescriptor("collections", "creator_id"),
    OwnableResource.DISPUTE: OwnershipDescriptor(
        "protection_claims", "buyer_id", ("seller_id",)
    ),
    OwnableResource.SUPPORT_TICKET: OwnershipDescriptor(
        "support_tickets", "user_id", ("assigned_to",)
    ),
    OwnableResource.PROFILE: OwnershipDescriptor("profiles", "user_id"),
    OwnableResource.CART: OwnershipDescriptor("carts", "user_id"),
    OwnableResource.FAVORITE: OwnershipDescriptor("listing_favorites", "user_id"),
    OwnableResource.NOTIFICATION: OwnershipDescriptor("notifications", "user_id"),
}

_missing = set(OwnableResource) - set(OWNERSHIP_DESCRIPTORS)
if _missing:
    msg = f"No ownership descriptor for: {', '.join(sorted(_missing))}"
    raise RuntimeError(msg)


class OwnershipResult(BaseModel):
    """Outcome of an ownership check; computed per request, never cached.

    ``is_participant`` is only set for resource types that have participants.
    """

    is_owner: bool
    is_participant: bool | None = None
    access_level: AccessLevel
    reason: str | None = None

    @classmethod
    def denied(cls, reason: str) -> OwnershipResult:
        return cls(is_owner=False, access_level=AccessLevel.NONE, reason=reason)


class OwnershipFilter(BaseModel):
    """One ``column = value`` condition of an ownership filter."""

    column: str
    value: str


# =============================================================================
# Store interface
# =============================================================================


class RowNotFoundError(LookupError):
    """Raised by ``OwnershipStore.fetch_row`` when no row has the given id."""


@runtime_checkable
class OwnershipStore(Protocol):
    """Row lookups needed by the verifier.

    Table and column names always come from ``OWNERSHIP_DESCRIPTORS``.
    """

    async def fetch_row(
        self,
        table: str,
        id_column: str,
        row_id: str,
        columns: Sequence[str],
    ) -> Mapping[str, Any]:
        """Return ``columns`` of the row with ``id_column = row_id``.

        Raises:
            RowNotFoundError: If no such row exists.
        """
        ...

    async def fetch_rows(
        self,
        table: str,
        id_column: str,
        row_ids: Sequence[str],
        columns: Sequence[str],
    ) -> list[Mapping[str, Any]]:
        """Return ``id_column`` and ``columns`` of every existing row in ``row_ids``."""
        ...

    async def list_ids(
        self,
        table: str,
        id_column: str,
        filters: Sequence[OwnershipFilter],
        limit: int | None = None,
    ) -> list[str]:
        """Return ids of rows matching any of ``filters``."""
        ...


# =============================================================================
# Verifier
# =============================================================================


def get_descriptor(resource_type: OwnableResource | str) -> OwnershipDescriptor:
    """Descriptor of a resource type.

    Raises:
        ValueError: If ``resource_type`` is not an ownable resource.
    """
    return OWNERSHIP_DESCRIPTORS[OwnableResource(resource_type)]


def _matches(value: Any, user_id: str) -> bool:
    # asyncpg returns uuid columns as UUID objects
    return value is not None and str(value) == user_id


def _evaluate_row(
    descriptor: OwnershipDescriptor,
    row: Mapping[str, Any],
    user_id: str,
) -> OwnershipResult:
    is_owner = _matches(row.get(descriptor.owner_column), user_id)
    is_participant = any(
        _matches(row.get(column), user_id)
        for column in descriptor.participant_columns
    )

    if is_owner:
        access_level = AccessLevel.FULL
    elif is_participant:
        access_level = AccessLevel.WRITE
    else:
        access_level = AccessLevel.NONE

    return OwnershipResult(
        is_owner=is_owner,
        is_participant=is_participant if descriptor.participant_columns else None,
        access_level=access_level,
    )


def build_ownership_filter(
    resource_type: OwnableResource | str,
    user_id: str,
    *,
    include_participant: bool = False,
) -> list[OwnershipFilter]:
    """Conditions selecting the records a user owns (or takes part in).

    The conditions are meant to be OR-combined.
    """
    descriptor = get_descriptor(resource_type)
    columns = descriptor.columns if include_participant else (descriptor.owner_column,)
    return [OwnershipFilter(column=column, value=user_id) for column in columns]


class OwnershipVerifier:
    """Answers "may this user touch this record?" for ownable resources.

    Args:
        store: Row lookup backend.
        audit: When given, lookups run under ``rls_guard`` so row-level
            security rejections are recorded as layer 4 events.
    """

    def __init__(
        self,
        store: OwnershipStore,
        audit: SecurityAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._audit = audit

    async def verify_ownership(
        self,
        resource_type: OwnableResource | str,
        resource_id: str,
        user_id: str,
    ) -> OwnershipResult:
        """Check a user's relation to one record with a single lookup.

        Returns:
            ``full`` for the owner, ``write`` for a participant, otherwise
            ``none``. Missing rows and lookup errors also give ``none``.
        """
        descriptor = get_descriptor(resource_type)
        try:
            async with self._guard(resource_type, user_id, "select", resource_id):
                row = await self._store.fetch_row(
                    descriptor.table,
                    descriptor.id_column,
                    resource_id,
                    descriptor.columns,
                )
        except RowNotFoundError:
            return OwnershipResult.denied(REASON_NOT_FOUND)
        except Exception as e:
            logger.warning(
                "Error verifying ownership",
                resource_type=str(resource_type),
                resource_id=resource_id,
                error=type(e).__name__,
            )
            return OwnershipResult.denied(REASON_ERROR)

        return _evaluate_row(descriptor, row, user_id)

    async def verify_bulk_ownership(
        self,
        resource_type: OwnableResource | str,
        resource_ids: Sequence[str],
        user_id: str,
    ) -> dict[str, OwnershipResult]:
        """Check many records of one type with a single lookup.

        Every requested id gets a result. Ids with no row are
        ``Resource not found``; a failed lookup fails every id.
        """
        descriptor = get_descriptor(resource_type)
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}

        try:
            async with self._guard(resource_type, user_id, "select"):
                rows = await self._store.fetch_rows(
                    descriptor.table,
                    descriptor.id_column,
                    ids,
                    descriptor.columns,
                )
        except Exception as e:
            logger.warning(
                "Error verifying bulk ownership",
                resource_type=str(resource_type),
                count=len(ids),
                error=type(e).__name__,
            )
            return {rid: OwnershipResult.denied(REASON_ERROR) for rid in ids}

        results = {rid: OwnershipResult.denied(REASON_NOT_FOUND) for rid in ids}
        for row in rows:
            rid = str(row[descriptor.id_column])
            if rid in results:
                results[rid] = _evaluate_row(descriptor, row, user_id)
        return results

    async def check_resource_access(
        self,
        resource_type: OwnableResource | str,
        resource_id: str,
        user_id: str,
        required_level: AccessLevel = AccessLevel.READ,
    ) -> bool:
        """True if the user's access level reaches ``required_level``."""
        result = await self.verify_ownership(resource_type, resource_id, user_id)
        return result.access_level.satisfies(AccessLevel(required_level))

    async def get_owned_resource_ids(
        self,
        resource_type: OwnableResource | str,
        user_id: str,
        *,
        include_participant: bool = False,
        limit: int | None = None,
    ) -> list[str]:
        """Ids of the records a user owns; empty on lookup errors."""
        descriptor = get_descriptor(resource_type)
        filters = build_ownership_filter(
            resource_type, user_id, include_participant=include_participant
        )
        try:
            async with self._guard(resource_type, user_id, "select"):
                return await self._store.list_ids(
                    descriptor.table, descriptor.id_column, filters, limit
                )
        except Exception as e:
            logger.warning(
                "Error getting owned resources",
                resource_type=str(resource_type),
                error=type(e).__name__,
            )
            return []

    def _guard(
        self,
        resource_type: OwnableResource | str,
        user_id: str,
        operation: str,
        resource_id: str | None = None,
    ) -> Any:
        return rls_guard(
            self._audit,
            resource_type=str(resource_type),
            user_id=user_id,
            operation=operation,
            resource_id=resource_id,
        )


__all__ = [
    "OWNERSHIP_DESCRIPTORS",
    "REASON_ERROR",
    "REASON_NOT_FOUND",
    "AccessLevel",
    "OwnableResource",
    "OwnershipDescriptor",
    "OwnershipFilter",
    "OwnershipResult",
    "OwnershipStore",
    "OwnershipVerifier",
    "RowNotFoundError",
    "build_ownership_filter",
    "get_descriptor",
]
