"""Ownership row lookups.

``PostgresOwnershipStore`` runs the verifier's lookups against the
marketplace database; ``InMemoryOwnershipStore`` serves development and
tests. Table and column names come from the ownership descriptors, never
from requests, and are still quoted; values are always bind parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from marketguard.auth.ownership import RowNotFoundError
from marketguard.database.connection import get_database_pool
from marketguard.observability.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from asyncpg import Pool

    from marketguard.auth.ownership import OwnershipFilter

logger = get_logger(__name__)


def quote_ident(name: str) -> str:
    """Quote a SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


class PostgresOwnershipStore:
    """Ownership lookups with raw asyncpg queries.

    Ids are compared as text so the same store serves uuid and integer keys.
    """

    def __init__(self, pool: Pool | None = None, schema: str = "public") -> None:
        self._pool = pool
        self._schema = schema

    @property
    def pool(self) -> Pool:
        """Get the database connection pool."""
        if self._pool is not None:
            return self._pool
        return get_database_pool()

    def _table(self, table: str) -> str:
        return f"{quote_ident(self._schema)}.{quote_ident(table)}"

    @staticmethod
    def _select_list(id_column: str, columns: Sequence[str]) -> str:
        names = dict.fromkeys((id_column, *columns))
        return ", ".join(quote_ident(name) for name in names)

    async def fetch_row(
        self,
        table: str,
        id_column: str,
        row_id: str,
        columns: Sequence[str],
    ) -> Mapping[str, Any]:
        query = (
            f"SELECT {self._select_list(id_column, columns)} "
            f"FROM {self._table(table)} "
            f"WHERE {quote_ident(id_column)}::text = $1"
        )
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, row_id)

        if row is None:
            msg = f"No row in {table} with {id_column}={row_id}"
            raise RowNotFoundError(msg)
        return dict(row)

    async def fetch_rows(
        self,
        table: str,
        id_column: str,
        row_ids: Sequence[str],
        columns: Sequence[str],
    ) -> list[Mapping[str, Any]]:
        if not row_ids:
            return []

        query = (
            f"SELECT {self._select_list(id_column, columns)} "
            f"FROM {self._table(table)} "
            f"WHERE {quote_ident(id_column)}::text = ANY($1::text[])"
        )
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, list(row_ids))
        return [dict(row) for row in rows]

    async def list_ids(
        self,
        table: str,
        id_column: str,
        filters: Sequence[OwnershipFilter],
        limit: int | None = None,
    ) -> list[str]:
        if not filters:
            return []

        conditions = " OR ".join(
            f"{quote_ident(f.column)}::text = ${i}" for i, f in enumerate(filters, 1)
        )
        args: list[Any] = [f.value for f in filters]
        query = (
            f"SELECT {quote_ident(id_column)} FROM {self._table(table)} "
            f"WHERE {conditions}"
        )
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [str(row[id_column]) for row in rows]


class InMemoryOwnershipStore:
    """Ownership rows held in dictionaries, keyed by table and id.

    Example:
        ```python
        store = InMemoryOwnershipStore()
        store.add("orders", "o-1", buyer_id="u-1", seller_id="u-2")
        ```
    """

    def __init__(self, id_column: str = "id") -> None:
        self._id_column = id_column
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}

    def add(self, table: str, row_id: str, **columns: Any) -> None:
        """Insert or replace a row."""
        self._tables.setdefault(table, {})[str(row_id)] = {
            self._id_column: str(row_id),
            **columns,
        }

    def remove(self, table: str, row_id: str) -> None:
        self._tables.get(table, {}).pop(str(row_id), None)

    async def fetch_row(
        self,
        table: str,
        id_column: str,
        row_id: str,
        columns: Sequence[str],
    ) -> Mapping[str, Any]:
        row = self._tables.get(table, {}).get(str(row_id))
        if row is None:
            msg = f"No row in {table} with {id_column}={row_id}"
            raise RowNotFoundError(msg)
        return {name: row.get(name) for name in (id_column, *columns)}

    async def fetch_rows(
        self,
        table: str,
        id_column: str,
        row_ids: Sequence[str],
        columns: Sequence[str],
    ) -> list[Mapping[str, Any]]:
        rows = self._tables.get(table, {})
        return [
            {name: rows[rid].get(name) for name in (id_column, *columns)}
            for rid in row_ids
            if rid in rows
        ]

    async def list_ids(
        self,
        table: str,
        id_column: str,
        filters: Sequence[OwnershipFilter],
        limit: int | None = None,
    ) -> list[str]:
        ids = [
            str(row[id_column])
            for row in self._tables.get(table, {}).values()
            if any(str(row.get(f.column)) == f.value for f in filters)
        ]
        return ids if limit is None else ids[:limit]
