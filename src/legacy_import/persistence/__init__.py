"""Persistence layer for the legacy import service.

Provides tenant-scoped units of work over an in-memory store for
development/testing and a Postgres store for production.
"""

from legacy_import.persistence.memory import InMemoryImportStore
from legacy_import.persistence.store import (
    DocumentQuery,
    ImportStore,
    StoreUnit,
    cluster_lock_key,
    document_lock_key,
    recluster_lock_key,
)

__all__ = [
    "DocumentQuery",
    "ImportStore",
    "InMemoryImportStore",
    "StoreUnit",
    "cluster_lock_key",
    "document_lock_key",
    "recluster_lock_key",
    "get_import_store",
]


def get_import_store() -> ImportStore:
    """Return the Postgres store if configured, otherwise a fresh in-memory store."""
    from legacy_import.persistence.db import is_postgres_configured

    if is_postgres_configured():
        from legacy_import.persistence.postgres import PostgresImportStore

        return PostgresImportStore()
    return InMemoryImportStore()
