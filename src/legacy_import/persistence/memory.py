"""In-memory import store for development and testing.

Used when Postgres is not configured. Writes made inside a unit are staged on
the unit and applied to the shared state under a single data lock when the
unit exits cleanly, so readers never observe a half-applied mutation. An
exception inside the unit discards the staged writes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator, Iterable
from contextlib import ExitStack, contextmanager

from legacy_import.models import Cluster, Document, ImportSession, ReclusterJob
from legacy_import.persistence.store import (
    DocumentQuery,
    cluster_sort_key,
    document_sort_key,
)

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    """Hands out one re-entrant lock per key and acquires key sets in sorted order."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Generator[None, None, None]:
        """Hold every lock in ``keys`` for the duration of the block."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                stack.callback(lock.release)
            yield


class _SessionData:
    """Committed state of one session."""

    def __init__(self) -> None:
        self.session: ImportSession | None = None
        self.documents: dict[str, Document] = {}
        self.clusters: dict[str, Cluster] = {}
        self.job: ReclusterJob | None = None


class InMemoryStoreUnit:
    """Unit of work over the in-memory store with staged writes."""

    def __init__(self, store: InMemoryImportStore, tenant_id: str, session_id: str) -> None:
        self._store = store
        self.tenant_id = tenant_id
        self.session_id = session_id
        self._session: ImportSession | None = None
        self._documents: dict[str, Document] = {}
        self._clusters: dict[str, Cluster] = {}
        self._job: ReclusterJob | None = None

    def _committed(self) -> _SessionData | None:
        return self._store._data.get((self.tenant_id, self.session_id))

    def get_session(self) -> ImportSession | None:
        if self._session is not None:
            return self._session
        with self._store._data_lock:
            data = self._committed()
            return data.session if data is not None else None

    def save_session(self, session: ImportSession) -> None:
        self._session = session

    def get_document(self, document_id: str) -> Document | None:
        if document_id in self._documents:
            return self._documents[document_id]
        with self._store._data_lock:
            data = self._committed()
            return data.documents.get(document_id) if data is not None else None

    def _all_documents(self) -> list[Document]:
        with self._store._data_lock:
            data = self._committed()
            merged = dict(data.documents) if data is not None else {}
        merged.update(self._documents)
        return list(merged.values())

    def find_documents(
        self, query: DocumentQuery, *, offset: int = 0, limit: int | None = None
    ) -> list[Document]:
        documents = sorted(
            (d for d in self._all_documents() if query.matches(d)),
            key=document_sort_key,
        )
        end = None if limit is None else offset + limit
        return documents[offset:end]

    def count_documents(self, query: DocumentQuery) -> int:
        return sum(1 for d in self._all_documents() if query.matches(d))

    def save_documents(self, documents: Iterable[Document]) -> None:
        for document in documents:
            self._documents[document.id] = document

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        if cluster_id in self._clusters:
            return self._clusters[cluster_id]
        with self._store._data_lock:
            data = self._committed()
            return data.clusters.get(cluster_id) if data is not None else None

    def list_clusters(self, *, include_retired: bool = False) -> list[Cluster]:
        with self._store._data_lock:
            data = self._committed()
            merged = dict(data.clusters) if data is not None else {}
        merged.update(self._clusters)
        clusters = [c for c in merged.values() if include_retired or not c.is_retired]
        return sorted(clusters, key=cluster_sort_key)

    def save_clusters(self, clusters: Iterable[Cluster]) -> None:
        for cluster in clusters:
            self._clusters[cluster.id] = cluster

    def get_job(self) -> ReclusterJob | None:
        if self._job is not None:
            return self._job
        with self._store._data_lock:
            data = self._committed()
            return data.job if data is not None else None

    def save_job(self, job: ReclusterJob) -> None:
        self._job = job

    def commit(self) -> None:
        """Apply staged writes to the shared state in one step."""
        if (
            self._session is None
            and not self._documents
            and not self._clusters
            and self._job is None
        ):
            return
        key = (self.tenant_id, self.session_id)
        with self._store._data_lock:
            data = self._store._data.setdefault(key, _SessionData())
            if self._session is not None:
                data.session = self._session
            data.documents.update(self._documents)
            data.clusters.update(self._clusters)
            if self._job is not None:
                data.job = self._job
            for document_id in self._documents:
                self._store._document_index[(self.tenant_id, document_id)] = self.session_id
            for cluster_id in self._clusters:
                self._store._cluster_index[(self.tenant_id, cluster_id)] = self.session_id
        logger.debug(
            "Committed unit for session %s: %d documents, %d clusters",
            self.session_id,
            len(self._documents),
            len(self._clusters),
        )


class InMemoryImportStore:
    """Thread-safe in-memory store keyed by (tenant_id, session_id).

    Tenant isolation: a unit only ever sees its own tenant's session, so
    cross-tenant ids read as missing (no existence oracle).
    """

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], _SessionData] = {}
        self._data_lock = threading.RLock()
        self._document_index: dict[tuple[str, str], str] = {}
        self._cluster_index: dict[tuple[str, str], str] = {}
        self._locks = KeyedLockRegistry()

    @contextmanager
    def unit(
        self,
        tenant_id: str,
        session_id: str,
        *,
        lock_keys: Iterable[str] = (),
    ) -> Generator[InMemoryStoreUnit, None, None]:
        """Open a unit of work holding ``lock_keys`` (namespaced by tenant)."""
        keys = [f"{tenant_id}/{key}" for key in lock_keys]
        with self._locks.hold(keys):
            unit = InMemoryStoreUnit(self, tenant_id, session_id)
            yield unit
            unit.commit()

    def locate_cluster(self, tenant_id: str, cluster_id: str) -> str | None:
        with self._data_lock:
            return self._cluster_index.get((tenant_id, cluster_id))

    def locate_document(self, tenant_id: str, document_id: str) -> str | None:
        with self._data_lock:
            return self._document_index.get((tenant_id, document_id))

    def processing_jobs(self) -> list[tuple[str, str]]:
        with self._data_lock:
            return sorted(
                key
                for key, data in self._data.items()
                if data.job is not None and data.job.is_processing
            )

    def clear(self) -> None:
        """Drop all data. For testing only."""
        with self._data_lock:
            self._data.clear()
            self._document_index.clear()
            self._cluster_index.clear()
