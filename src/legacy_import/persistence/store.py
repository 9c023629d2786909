"""Store protocol shared by the in-memory and Postgres implementations.

All reads and writes happen inside a unit of work scoped to one tenant and one
import session. A unit holds a set of keyed locks for its whole lifetime and
applies its writes atomically on successful exit; an exception discards them.

Lock keys are plain strings built with the helpers below. Units acquire their
keys in sorted order, so two units can never deadlock on each other.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from legacy_import.models import (
    Cluster,
    Document,
    ImportSession,
    ReclusterJob,
    TriageStatus,
    ValidationStatus,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def cluster_lock_key(cluster_id: str) -> str:
    """Return the lock key guarding a cluster and its member documents."""
    return f"cluster:{cluster_id}"


def document_lock_key(document_id: str) -> str:
    """Return the lock key guarding a document that belongs to no cluster."""
    return f"document:{document_id}"


def recluster_lock_key(session_id: str) -> str:
    """Return the lock key guarding a session's re-cluster job slot."""
    return f"recluster:{session_id}"


def document_sort_key(document: Document) -> tuple[datetime, str]:
    """Stable listing order: creation time, then id."""
    return (document.created_at or _EPOCH, document.id)


def cluster_sort_key(cluster: Cluster) -> tuple[datetime, str]:
    """Stable listing order: creation time, then id."""
    return (cluster.created_at or _EPOCH, cluster.id)


@dataclass(frozen=True)
class DocumentQuery:
    """Filter over a session's documents. Unset fields do not filter."""

    cluster_id: str | None = None
    triage_status: TriageStatus | None = None
    validation_status: ValidationStatus | None = None
    search: str | None = None
    document_ids: frozenset[str] | None = None

    def matches(self, document: Document) -> bool:
        """Return True if the document passes every set filter."""
        if self.cluster_id is not None and document.cluster_id != self.cluster_id:
            return False
        if self.triage_status is not None and document.triage_status != self.triage_status:
            return False
        if (
            self.validation_status is not None
            and document.validation_status != self.validation_status
        ):
            return False
        if self.document_ids is not None and document.id not in self.document_ids:
            return False
        if self.search:
            needle = self.search.casefold()
            haystacks = (document.file_name, document.email_subject or "")
            if not any(needle in h.casefold() for h in haystacks):
                return False
        return True


class StoreUnit(Protocol):
    """Unit of work over one tenant's import session."""

    tenant_id: str
    session_id: str

    def get_session(self) -> ImportSession | None:
        """Return the session, or None if it does not exist for this tenant."""
        ...

    def save_session(self, session: ImportSession) -> None:
        """Insert or replace the session record."""
        ...

    def get_document(self, document_id: str) -> Document | None:
        """Return a document of this session, or None."""
        ...

    def find_documents(
        self, query: DocumentQuery, *, offset: int = 0, limit: int | None = None
    ) -> list[Document]:
        """Return matching documents in stable order."""
        ...

    def count_documents(self, query: DocumentQuery) -> int:
        """Return the number of matching documents."""
        ...

    def save_documents(self, documents: Iterable[Document]) -> None:
        """Insert or replace documents."""
        ...

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        """Return a cluster of this session (retired ones included), or None."""
        ...

    def list_clusters(self, *, include_retired: bool = False) -> list[Cluster]:
        """Return the session's clusters in stable order."""
        ...

    def save_clusters(self, clusters: Iterable[Cluster]) -> None:
        """Insert or replace clusters."""
        ...

    def get_job(self) -> ReclusterJob | None:
        """Return the session's re-cluster job record, or None if never triggered."""
        ...

    def save_job(self, job: ReclusterJob) -> None:
        """Insert or replace the session's re-cluster job record."""
        ...


class ImportStore(Protocol):
    """Factory for units of work plus tenant-wide id lookups."""

    def unit(
        self,
        tenant_id: str,
        session_id: str,
        *,
        lock_keys: Iterable[str] = (),
    ) -> AbstractContextManager[StoreUnit]:
        """Open a unit of work holding the given lock keys."""
        ...

    def locate_cluster(self, tenant_id: str, cluster_id: str) -> str | None:
        """Return the session id owning a cluster, or None."""
        ...

    def locate_document(self, tenant_id: str, document_id: str) -> str | None:
        """Return the session id owning a document, or None."""
        ...

    def processing_jobs(self) -> list[tuple[str, str]]:
        """Return (tenant_id, session_id) of every re-cluster job still processing."""
        ...
