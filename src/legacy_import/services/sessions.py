"""SessionService - import sessions, document ingestion and clustering passes.

Triage classification and the initial clustering run outside this service.
Their output arrives here: documents are ingested already triaged, and a
clustering pass replaces the session's live clusters with a new set.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Callable, Sequence
from datetime import datetime

from pydantic import Field, field_validator

from legacy_import.audit import AuditSink, InMemoryAuditSink
from legacy_import.errors import ConflictError, NotFoundError, ValidationError
from legacy_import.models import (
    CamelModel,
    Cluster,
    Document,
    ImportSession,
    PipelineStatus,
    TriageStatus,
)
from legacy_import.persistence import (
    DocumentQuery,
    ImportStore,
    StoreUnit,
    cluster_lock_key,
    document_lock_key,
    recluster_lock_key,
)
from legacy_import.services.common import (
    Actor,
    emit_audit_event,
    locked_unit,
    recount_cluster,
    require_session,
    retire_cluster,
    utc_now,
)

logger = logging.getLogger(__name__)


class DocumentDraft(CamelModel):
    """A triaged document as delivered by the ingestion pipeline."""

    id: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    file_extension: str = ""
    text_preview: str | None = None
    email_subject: str | None = None
    email_sender: str | None = None
    email_date: datetime | None = None
    has_file: bool = True
    triage_status: TriageStatus | None = None
    triage_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    triage_reason: str | None = None
    suggested_doc_type: str | None = None


class ClusterDraft(CamelModel):
    """One cluster produced by a clustering pass."""

    suggested_name: str = Field(..., min_length=1)
    suggested_name_en: str = ""
    description: str | None = None
    document_ids: list[str] = Field(default_factory=list)

    @field_validator("suggested_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("suggestedName must not be blank")
        return v.strip()


class SessionService:
    """Service for session lifecycle and pipeline output within one tenant.

    Args:
        store: Import store the sessions live in.
        tenant_id: Tenant owning new sessions.
        actor: Caller recorded in audit events.
        audit_sink: Sink for pipeline events. Defaults to an in-memory sink.
        clock: Time source for createdAt and lastClusteredAt.
    """

    def __init__(
        self,
        store: ImportStore,
        tenant_id: str,
        actor: Actor,
        audit_sink: AuditSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._actor = actor
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._clock = clock

    def create_session(self, name: str = "", session_id: str | None = None) -> ImportSession:
        """Create a new import session in the Importing state.

        Raises:
            ConflictError: If ``session_id`` is given and already exists.
        """
        session_id = session_id or str(uuid.uuid4())
        with self._store.unit(
            self._tenant_id, session_id, lock_keys=[recluster_lock_key(session_id)]
        ) as unit:
            if unit.get_session() is not None:
                raise ConflictError(
                    "Session already exists", details={"session_id": session_id}
                )
            session = ImportSession(
                id=session_id,
                tenant_id=self._tenant_id,
                name=name.strip(),
                created_at=self._clock(),
            )
            unit.save_session(session)
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="session.created",
                resource_type="session",
                resource_id=session_id,
                actor=self._actor,
                summary=f"Import session {session_id} created",
            )
        logger.info("Created import session %s", session_id, extra={"tenant_id": self._tenant_id})
        return session

    def get_session(self, session_id: str) -> ImportSession:
        """Return a session.

        Raises:
            NotFoundError: If the session does not exist for this tenant.
        """
        with self._store.unit(self._tenant_id, session_id) as unit:
            return require_session(unit)

    def ingest_documents(
        self, session_id: str, drafts: Sequence[DocumentDraft]
    ) -> list[Document]:
        """Register triaged documents: Pending validation, no cluster yet.

        Raises:
            ValidationError: Empty batch, an id repeated in the batch, or an id
                that already exists in the tenant.
            NotFoundError: If the session does not exist.
        """
        if not drafts:
            raise ValidationError("documents must not be empty")
        repeated = sorted(doc_id for doc_id, n in Counter(d.id for d in drafts).items() if n > 1)
        if repeated:
            raise ValidationError("Duplicate document ids in batch", details={"ids": repeated})

        lock_keys = [document_lock_key(d.id) for d in drafts]
        with self._store.unit(self._tenant_id, session_id, lock_keys=lock_keys) as unit:
            require_session(unit)
            existing = sorted(
                d.id for d in drafts if self._store.locate_document(self._tenant_id, d.id)
            )
            if existing:
                raise ValidationError("Documents already exist", details={"ids": existing})
            now = self._clock()
            documents = [
                Document(session_id=session_id, created_at=now, **draft.model_dump())
                for draft in drafts
            ]
            unit.save_documents(documents)
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="session.documents_ingested",
                resource_type="session",
                resource_id=session_id,
                actor=self._actor,
                summary=f"{len(documents)} documents ingested",
                details={"count": len(documents)},
            )
        logger.info("Ingested %d documents into session %s", len(documents), session_id)
        return documents

    def apply_clustering_pass(
        self, session_id: str, drafts: Sequence[ClusterDraft]
    ) -> list[Cluster]:
        """Replace the session's live clusters with the output of a clustering pass.

        Every live cluster is retired. Listed documents move into the new
        Pending clusters and keep their validation status; documents not
        listed lose their cluster.

        Returns:
            The new clusters, in draft order.

        Raises:
            ValidationError: A document is listed in more than one draft.
            NotFoundError: Unknown session or document.
            ConflictError: A re-cluster job is processing.
        """
        listed = [doc_id for draft in drafts for doc_id in draft.document_ids]
        repeated = sorted(doc_id for doc_id, n in Counter(listed).items() if n > 1)
        if repeated:
            raise ValidationError(
                "Documents listed in more than one cluster", details={"ids": repeated}
            )

        def resolve(unit: StoreUnit) -> set[str]:
            require_session(unit)
            keys = {recluster_lock_key(session_id)}
            keys.update(cluster_lock_key(c.id) for c in unit.list_clusters())
            keys.update(
                document_lock_key(d.id)
                for d in unit.find_documents(DocumentQuery())
                if d.cluster_id is None
            )
            return keys

        with locked_unit(self._store, self._tenant_id, session_id, resolve) as unit:
            session = require_session(unit)
            job = unit.get_job()
            if job is not None and job.is_processing:
                raise ConflictError(
                    "A re-clustering job is processing for this session",
                    details={"session_id": session_id, "job_id": job.job_id},
                )
            documents = {d.id: d for d in unit.find_documents(DocumentQuery())}
            for doc_id in listed:
                if doc_id not in documents:
                    raise NotFoundError("document", doc_id)

            now = self._clock()
            retired = [retire_cluster(c, at=now, superseded_by=None) for c in unit.list_clusters()]
            unit.save_clusters(retired)

            new_clusters = [
                Cluster(
                    id=str(uuid.uuid4()),
                    session_id=session_id,
                    suggested_name=draft.suggested_name,
                    suggested_name_en=draft.suggested_name_en or draft.suggested_name,
                    description=draft.description,
                    created_at=now,
                )
                for draft in drafts
            ]
            assignment = {
                doc_id: cluster.id
                for cluster, draft in zip(new_clusters, drafts, strict=True)
                for doc_id in draft.document_ids
            }
            unit.save_documents(
                d.model_copy(update={"cluster_id": assignment.get(d.id)})
                for d in documents.values()
                if d.cluster_id != assignment.get(d.id)
            )
            new_clusters = [recount_cluster(unit, c) for c in new_clusters]

            unit.save_session(
                session.model_copy(
                    update={
                        "pipeline_status": PipelineStatus.READY_FOR_VALIDATION,
                        "pipeline_error": None,
                        "pipeline_progress": None,
                        "pipeline_completed_at": now,
                        "last_clustered_at": now,
                    }
                )
            )
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="session.clustering_pass_applied",
                resource_type="session",
                resource_id=session_id,
                actor=self._actor,
                summary=f"Clustering pass created {len(new_clusters)} clusters",
                details={"retired": len(retired), "created": len(new_clusters)},
            )

        logger.info(
            "Clustering pass for session %s: %d clusters retired, %d created",
            session_id,
            len(retired),
            len(new_clusters),
        )
        return new_clusters
