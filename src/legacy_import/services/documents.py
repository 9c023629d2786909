"""DocumentValidationService - reviewer decisions on individual documents.

Documents are addressed either through their cluster (cluster document
browser) or through the session-wide Uncertain queue. Each decision updates
the document and recomputes its cluster's counters in the same unit of work,
so counters always sum to the cluster's document count.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from legacy_import.audit import AuditSink, InMemoryAuditSink
from legacy_import.errors import NotFoundError, ValidationError
from legacy_import.models import (
    ACTION_TO_VALIDATION_STATUS,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    BulkDocumentAction,
    Document,
    DocumentAction,
    DocumentPage,
    Pagination,
    TriageStatus,
    ValidationCounts,
    ValidationStatus,
)
from legacy_import.persistence import DocumentQuery, ImportStore, StoreUnit
from legacy_import.services.common import (
    Actor,
    document_keys,
    emit_audit_event,
    locked_unit,
    parse_action,
    recount_cluster,
    require_cluster,
    require_document,
    require_session,
    utc_now,
)

logger = logging.getLogger(__name__)


def clamp_page(page: int, page_size: int) -> tuple[int, int]:
    """Return (page, page_size) clamped to page >= 1 and 1 <= page_size <= MAX_PAGE_SIZE."""
    return max(page, 1), min(max(page_size, 1), MAX_PAGE_SIZE)


class DocumentValidationService:
    """Service for reading and deciding on a session's documents.

    Args:
        store: Import store the session lives in.
        tenant_id: Tenant of the caller; other tenants' data reads as missing.
        actor: Reviewer recorded as validatedBy.
        audit_sink: Sink for decision events. Defaults to an in-memory sink.
        clock: Time source for validatedAt.
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

    def get_documents(
        self,
        session_id: str,
        *,
        cluster_id: str | None = None,
        uncertain: bool = False,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: str | None = None,
        status: ValidationStatus | None = None,
    ) -> DocumentPage:
        """Return one page of a cluster's documents or of the Uncertain queue.

        ``stats`` counts validation statuses over the whole cluster (or queue),
        ignoring the search and status filters.

        Raises:
            NotFoundError: If the session or cluster does not exist.
        """
        page, page_size = clamp_page(page, page_size)
        base = DocumentQuery(
            cluster_id=cluster_id,
            triage_status=TriageStatus.UNCERTAIN if uncertain else None,
        )
        filtered = DocumentQuery(
            cluster_id=base.cluster_id,
            triage_status=base.triage_status,
            validation_status=status,
            search=search.strip() if search and search.strip() else None,
        )

        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)
            if cluster_id is not None:
                require_cluster(unit, cluster_id)
            total_count = unit.count_documents(filtered)
            documents = unit.find_documents(
                filtered, offset=(page - 1) * page_size, limit=page_size
            )
            stats = ValidationCounts(
                **{
                    s.value.lower(): unit.count_documents(
                        DocumentQuery(
                            cluster_id=base.cluster_id,
                            triage_status=base.triage_status,
                            validation_status=s,
                        )
                    )
                    for s in ValidationStatus
                }
            )

        return DocumentPage(
            documents=documents,
            stats=stats,
            pagination=Pagination.for_page(page, page_size, total_count),
        )

    def set_validation_status(
        self,
        session_id: str,
        document_id: str,
        action: DocumentAction | str,
        note: str | None = None,
        *,
        cluster_id: str | None = None,
        uncertain_only: bool = False,
    ) -> Document:
        """Record a reviewer decision on one document.

        Args:
            session_id: Session owning the document.
            document_id: Document to decide on.
            action: accept, delete or reclassify.
            note: Reclassification note; required and non-blank for reclassify.
            cluster_id: When set, the document must belong to this cluster.
            uncertain_only: When True, the document must be triaged Uncertain.

        Returns:
            The updated document.

        Raises:
            ValidationError: Unknown action or missing reclassification note.
            NotFoundError: Unknown session or document, or the document is not
                addressable through the given cluster or queue.
        """
        action = parse_action(DocumentAction, action)
        note = note.strip() if note and note.strip() else None
        if action == DocumentAction.RECLASSIFY and note is None:
            raise ValidationError(
                "A reclassification note is required",
                details={"document_id": document_id},
            )
        status = ACTION_TO_VALIDATION_STATUS[action]

        def resolve(unit: StoreUnit) -> set[str]:
            require_session(unit)
            return document_keys([self._addressable(unit, document_id, cluster_id, uncertain_only)])

        with locked_unit(self._store, self._tenant_id, session_id, resolve) as unit:
            document = self._addressable(unit, document_id, cluster_id, uncertain_only)
            updated = document.with_decision(
                status, actor_id=self._actor.actor_id, at=self._clock(), note=note
            )
            unit.save_documents([updated])
            if updated.cluster_id is not None:
                recount_cluster(unit, require_cluster(unit, updated.cluster_id))
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type=f"document.{action.value}",
                resource_type="document",
                resource_id=document_id,
                actor=self._actor,
                summary=f"Document {document_id} marked {status.value}",
                details={"cluster_id": updated.cluster_id, "previous": document.validation_status},
            )

        logger.info(
            "Document %s marked %s by %s",
            document_id,
            status.value,
            self._actor.actor_id,
            extra={"session_id": session_id, "cluster_id": updated.cluster_id},
        )
        return updated

    def bulk_set_validation_status(
        self,
        session_id: str,
        document_ids: Sequence[str],
        action: BulkDocumentAction | str,
        *,
        cluster_id: str | None = None,
        uncertain_only: bool = False,
    ) -> int:
        """Apply accept or delete to a set of documents, all or nothing.

        Returns:
            Number of documents updated.

        Raises:
            ValidationError: Empty id list or an action other than accept/delete.
            NotFoundError: Any id is unknown or not addressable; nothing is applied.
        """
        action = parse_action(BulkDocumentAction, action)
        unique_ids = list(dict.fromkeys(document_ids))
        if not unique_ids:
            raise ValidationError("documentIds must not be empty")
        status = ACTION_TO_VALIDATION_STATUS[action]

        def resolve(unit: StoreUnit) -> set[str]:
            require_session(unit)
            return document_keys(
                self._addressable(unit, doc_id, cluster_id, uncertain_only)
                for doc_id in unique_ids
            )

        with locked_unit(self._store, self._tenant_id, session_id, resolve) as unit:
            documents = [
                self._addressable(unit, doc_id, cluster_id, uncertain_only)
                for doc_id in unique_ids
            ]
            now = self._clock()
            updated = [
                d.with_decision(status, actor_id=self._actor.actor_id, at=now) for d in documents
            ]
            unit.save_documents(updated)
            for affected_id in sorted({d.cluster_id for d in updated if d.cluster_id}):
                recount_cluster(unit, require_cluster(unit, affected_id))
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type=f"document.bulk_{action.value}",
                resource_type="document",
                resource_id=unique_ids[0],
                actor=self._actor,
                summary=f"{len(updated)} documents marked {status.value}",
                details={"document_ids": unique_ids, "cluster_id": cluster_id},
            )

        logger.info(
            "Bulk %s applied to %d documents by %s",
            action.value,
            len(unique_ids),
            self._actor.actor_id,
            extra={"session_id": session_id},
        )
        return len(unique_ids)

    @staticmethod
    def _addressable(
        unit: StoreUnit,
        document_id: str,
        cluster_id: str | None,
        uncertain_only: bool,
    ) -> Document:
        document = require_document(unit, document_id)
        if cluster_id is not None and document.cluster_id != cluster_id:
            raise NotFoundError("document", document_id)
        if uncertain_only and not document.is_uncertain:
            raise NotFoundError("document", document_id)
        return document
