"""Security audit log persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING

import asyncpg
import orjson

from marketguard.auth.audit import AuditSinkError
from marketguard.database.connection import get_database_pool
from marketguard.database.repositories.ownership import quote_ident
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence

    from asyncpg import Pool

    from marketguard.auth.audit import AuditRecord

logger = get_logger(__name__)


class PostgresAuditSink:
    """Writes audit record batches to the ``security_audit_log`` table.

    A batch is inserted in one ``executemany`` call; any database error is
    raised as ``AuditSinkError`` so the logger keeps the batch for retry.
    """

    def __init__(
        self,
        pool: Pool | None = None,
        table: str = "security_audit_log",
        schema: str = "public",
    ) -> None:
        self._pool = pool
        self._query = (
            f"INSERT INTO {quote_ident(schema)}.{quote_ident(table)} "
            "(user_id, event_type, event_category, event_details, severity, "
            "created_at) VALUES ($1, $2, $3, $4::jsonb, $5, $6)"
        )

    @property
    def pool(self) -> Pool:
        """Get the database connection pool."""
        if self._pool is not None:
            return self._pool
        return get_database_pool()

    async def write(self, records: Sequence[AuditRecord]) -> None:
        if not records:
            return

        args = [
            (
                record.user_id,
                record.event_type,
                record.event_category,
                orjson.dumps(record.event_details).decode(),
                record.severity.value,
                record.created_at,
            )
            for record in records
        ]
        try:
            async with self.pool.acquire() as conn:
                await conn.executemany(self._query, args)
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(
                "Failed to write security audit batch",
                count=len(records),
                error=type(e).__name__,
            )
            msg = f"Audit insert failed: {type(e).__name__}"
            raise AuditSinkError(msg) from e
