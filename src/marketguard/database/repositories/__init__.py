"""Database repositories."""

from marketguard.database.repositories.audit import PostgresAuditSink
from marketguard.database.repositories.ownership import (
    InMemoryOwnershipStore,
    PostgresOwnershipStore,
)


__all__ = ["InMemoryOwnershipStore", "PostgresAuditSink", "PostgresOwnershipStore"]
