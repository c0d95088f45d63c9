"""Row-level security interception (access control layer 4).

Row-level security is enforced by the database. The application only sees
its effect: a query on behalf of a user fails with an authorization error.
``rls_guard`` turns those failures into ``RowSecurityDenied`` and records
them in the security audit trail.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import asyncpg

from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from marketguard.auth.audit import SecurityAuditLogger

logger = get_logger(__name__)

# insufficient_privilege, plus the PostgREST code for a JWT-derived role
# that may not run the request
RLS_ERROR_CODES = frozenset({"42501", "PGRST301"})


class RowSecurityDenied(Exception):
    """The database refused an operation under row-level security."""

    def __init__(
        self,
        resource_type: str,
        operation: str,
        error_code: str | None,
    ) -> None:
        self.resource_type = resource_type
        self.operation = operation
        self.error_code = error_code
        super().__init__(f"Row-level security denied {operation} on {resource_type}")


def rls_error_code(exc: BaseException) -> str | None:
    """SQLSTATE-like code of an authorization failure, or None.

    Recognises asyncpg's ``InsufficientPrivilegeError`` and any error that
    carries a ``sqlstate`` or ``code`` attribute with an RLS code.
    """
    if isinstance(exc, asyncpg.InsufficientPrivilegeError):
        return exc.sqlstate
    for attribute in ("sqlstate", "code"):
        code = getattr(exc, attribute, None)
        if isinstance(code, str) and code in RLS_ERROR_CODES:
            return code
    return None


@asynccontextmanager
async def rls_guard(
    audit: SecurityAuditLogger | None,
    resource_type: str,
    user_id: str | None,
    operation: str,
    resource_id: str | None = None,
) -> AsyncIterator[None]:
    """Wrap data access performed on behalf of ``user_id``.

    Authorization-shaped errors raised inside the block are logged as
    layer 4 ``permission_denied`` events and re-raised as
    ``RowSecurityDenied``. Every other error propagates unchanged.

    Example:
        ```python
        async with rls_guard(audit, "order", user_id, "update", order_id):
            await repo.update_order(order_id, changes)
        ```
    """
    try:
        yield
    except Exception as e:
        code = rls_error_code(e)
        if code is None:
            raise

        logger.warning(
            "Row-level security denied operation",
            resource_type=resource_type,
            operation=operation,
            error_code=code,
        )
        if audit is not None:
            audit.log_rls_violation(
                resource_type=resource_type,
                operation=operation,
                error_code=code,
                user_id=user_id,
                resource_id=resource_id,
            )
        raise RowSecurityDenied(resource_type, operation, code) from e


__all__ = ["RLS_ERROR_CODES", "RowSecurityDenied", "rls_error_code", "rls_guard"]
