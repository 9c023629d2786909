"""Postgres import store.

Each unit of work is one transaction. Lock keys map to transaction-scoped
advisory locks taken in sorted order, so a unit's writes and the locks that
guard them are released together at commit or rollback.

Rows keep the full model as JSONB in ``data`` plus the columns needed for
filtering and ordering.
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

from legacy_import.models import Cluster, Document, ImportSession, ReclusterJob
from legacy_import.persistence.db import get_app_engine
from legacy_import.persistence.store import DocumentQuery

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine

logger = logging.getLogger(__name__)


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so search terms match literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _document_filters(query: DocumentQuery) -> tuple[str, dict[str, Any]]:
    """Build the WHERE fragment and parameters for a document query."""
    clauses: list[str] = []
    params: dict[str, Any] = {}
    if query.cluster_id is not None:
        clauses.append("cluster_id = :cluster_id")
        params["cluster_id"] = query.cluster_id
    if query.triage_status is not None:
        clauses.append("triage_status = :triage_status")
        params["triage_status"] = query.triage_status.value
    if query.validation_status is not None:
        clauses.append("validation_status = :validation_status")
        params["validation_status"] = query.validation_status.value
    if query.document_ids is not None:
        clauses.append("document_id = ANY(:document_ids)")
        params["document_ids"] = sorted(query.document_ids)
    if query.search:
        clauses.append("(file_name ILIKE :pattern OR COALESCE(email_subject, '') ILIKE :pattern)")
        params["pattern"] = f"%{_escape_like(query.search)}%"
    fragment = "".join(f" AND {clause}" for clause in clauses)
    return fragment, params


class PostgresStoreUnit:
    """Unit of work bound to an open transaction."""

    def __init__(self, conn: Connection, tenant_id: str, session_id: str) -> None:
        self._conn = conn
        self.tenant_id = tenant_id
        self.session_id = session_id

    def _scope(self) -> dict[str, Any]:
        return {"tenant_id": self.tenant_id, "session_id": self.session_id}

    def get_session(self) -> ImportSession | None:
        row = self._conn.execute(
            text(
                """
                SELECT data FROM import_sessions
                WHERE tenant_id = :tenant_id AND session_id = :session_id
                """
            ),
            self._scope(),
        ).fetchone()
        return ImportSession.model_validate(row.data) if row is not None else None

    def save_session(self, session: ImportSession) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO import_sessions
                    (tenant_id, session_id, pipeline_status, created_at, data)
                VALUES
                    (:tenant_id, :session_id, :pipeline_status, :created_at,
                     CAST(:data AS JSONB))
                ON CONFLICT (tenant_id, session_id) DO UPDATE
                SET pipeline_status = EXCLUDED.pipeline_status, data = EXCLUDED.data
                """
            ),
            {
                **self._scope(),
                "pipeline_status": session.pipeline_status.value,
                "created_at": session.created_at,
                "data": session.model_dump_json(),
            },
        )

    def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            text(
                """
                SELECT data FROM import_documents
                WHERE tenant_id = :tenant_id AND session_id = :session_id
                  AND document_id = :document_id
                """
            ),
            {**self._scope(), "document_id": document_id},
        ).fetchone()
        return Document.model_validate(row.data) if row is not None else None

    def find_documents(
        self, query: DocumentQuery, *, offset: int = 0, limit: int | None = None
    ) -> list[Document]:
        fragment, params = _document_filters(query)
        sql = (
            "SELECT data FROM import_documents "
            "WHERE tenant_id = :tenant_id AND session_id = :session_id"
            f"{fragment} ORDER BY created_at NULLS FIRST, document_id OFFSET :offset"
        )
        params.update(self._scope(), offset=offset)
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = self._conn.execute(text(sql), params).fetchall()
        return [Document.model_validate(row.data) for row in rows]

    def count_documents(self, query: DocumentQuery) -> int:
        fragment, params = _document_filters(query)
        params.update(self._scope())
        result = self._conn.execute(
            text(
                "SELECT COUNT(*) FROM import_documents "
                f"WHERE tenant_id = :tenant_id AND session_id = :session_id{fragment}"
            ),
            params,
        )
        return int(result.scalar_one())

    def save_documents(self, documents: Iterable[Document]) -> None:
        rows = [
            {
                **self._scope(),
                "document_id": d.id,
                "cluster_id": d.cluster_id,
                "triage_status": d.triage_status.value if d.triage_status else None,
                "validation_status": d.validation_status.value,
                "file_name": d.file_name,
                "email_subject": d.email_subject,
                "created_at": d.created_at,
                "data": d.model_dump_json(),
            }
            for d in documents
        ]
        if not rows:
            return
        self._conn.execute(
            text(
                """
                INSERT INTO import_documents
                    (tenant_id, document_id, session_id, cluster_id, triage_status,
                     validation_status, file_name, email_subject, created_at, data)
                VALUES
                    (:tenant_id, :document_id, :session_id, :cluster_id, :triage_status,
                     :validation_status, :file_name, :email_subject, :created_at,
                     CAST(:data AS JSONB))
                ON CONFLICT (tenant_id, document_id) DO UPDATE
                SET cluster_id = EXCLUDED.cluster_id,
                    triage_status = EXCLUDED.triage_status,
                    validation_status = EXCLUDED.validation_status,
                    data = EXCLUDED.data
                """
            ),
            rows,
        )

    def get_cluster(self, cluster_id: str) -> Cluster | None:
        row = self._conn.execute(
            text(
                """
                SELECT data FROM document_clusters
                WHERE tenant_id = :tenant_id AND session_id = :session_id
                  AND cluster_id = :cluster_id
                """
            ),
            {**self._scope(), "cluster_id": cluster_id},
        ).fetchone()
        return Cluster.model_validate(row.data) if row is not None else None

    def list_clusters(self, *, include_retired: bool = False) -> list[Cluster]:
        retired_filter = "" if include_retired else " AND retired_at IS NULL"
        rows = self._conn.execute(
            text(
                "SELECT data FROM document_clusters "
                f"WHERE tenant_id = :tenant_id AND session_id = :session_id{retired_filter} "
                "ORDER BY created_at NULLS FIRST, cluster_id"
            ),
            self._scope(),
        ).fetchall()
        return [Cluster.model_validate(row.data) for row in rows]

    def save_clusters(self, clusters: Iterable[Cluster]) -> None:
        rows = [
            {
                **self._scope(),
                "cluster_id": c.id,
                "status": c.status.value,
                "retired_at": c.retired_at,
                "created_at": c.created_at,
                "data": c.model_dump_json(),
            }
            for c in clusters
        ]
        if not rows:
            return
        self._conn.execute(
            text(
                """
                INSERT INTO document_clusters
                    (tenant_id, cluster_id, session_id, status, retired_at, created_at, data)
                VALUES
                    (:tenant_id, :cluster_id, :session_id, :status, :retired_at, :created_at,
                     CAST(:data AS JSONB))
                ON CONFLICT (tenant_id, cluster_id) DO UPDATE
                SET status = EXCLUDED.status,
                    retired_at = EXCLUDED.retired_at,
                    data = EXCLUDED.data
                """
            ),
            rows,
        )

    def get_job(self) -> ReclusterJob | None:
        row = self._conn.execute(
            text(
                """
                SELECT data FROM recluster_jobs
                WHERE tenant_id = :tenant_id AND session_id = :session_id
                """
            ),
            self._scope(),
        ).fetchone()
        return ReclusterJob.model_validate(row.data) if row is not None else None

    def save_job(self, job: ReclusterJob) -> None:
        self._conn.execute(
            text(
                """
                INSERT INTO recluster_jobs (tenant_id, session_id, status, data)
                VALUES (:tenant_id, :session_id, :status, CAST(:data AS JSONB))
                ON CONFLICT (tenant_id, session_id) DO UPDATE
                SET status = EXCLUDED.status, data = EXCLUDED.data
                """
            ),
            {**self._scope(), "status": job.status.value, "data": job.model_dump_json()},
        )


class PostgresImportStore:
    """Postgres-backed import store.

    Args:
        engine: SQLAlchemy engine. Defaults to the application engine built from
            LEGACY_IMPORT_DATABASE_URL.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def _get_engine(self) -> Engine:
        return self._engine if self._engine is not None else get_app_engine()

    @contextmanager
    def unit(
        self,
        tenant_id: str,
        session_id: str,
        *,
        lock_keys: Iterable[str] = (),
    ) -> Generator[PostgresStoreUnit, None, None]:
        """Open a transaction holding advisory locks for ``lock_keys``."""
        with self._get_engine().connect() as conn, conn.begin():
            for key in sorted(set(lock_keys)):
                conn.execute(
                    text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
                    {"key": f"{tenant_id}/{key}"},
                )
            yield PostgresStoreUnit(conn, tenant_id, session_id)

    def _locate(self, table: str, id_column: str, tenant_id: str, entity_id: str) -> str | None:
        with self._get_engine().connect() as conn:
            row = conn.execute(
                text(
                    f"SELECT session_id FROM {table} "
                    f"WHERE tenant_id = :tenant_id AND {id_column} = :entity_id"
                ),
                {"tenant_id": tenant_id, "entity_id": entity_id},
            ).fetchone()
        return str(row.session_id) if row is not None else None

    def locate_cluster(self, tenant_id: str, cluster_id: str) -> str | None:
        return self._locate("document_clusters", "cluster_id", tenant_id, cluster_id)

    def locate_document(self, tenant_id: str, document_id: str) -> str | None:
        return self._locate("import_documents", "document_id", tenant_id, document_id)

    def processing_jobs(self) -> list[tuple[str, str]]:
        with self._get_engine().connect() as conn:
            rows = conn.execute(
                text(
                    """
                    SELECT tenant_id, session_id FROM recluster_jobs
                    WHERE status = 'processing'
                    ORDER BY tenant_id, session_id
                    """
                )
            ).fetchall()
        return [(str(row.tenant_id), str(row.session_id)) for row in rows]
