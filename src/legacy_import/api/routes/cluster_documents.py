"""Cluster document browser routes.

Provides:
- GET /api/clusters/{clusterId}/documents (Paged documents of a cluster)
- POST /api/clusters/{clusterId}/documents (Accept / Delete / Reclassify one document)
- PUT /api/clusters/{clusterId}/documents (Bulk Accept / Delete)

Only documents currently in the addressed cluster can be acted on here.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from pydantic import Field

from legacy_import.api.auth import RequireTenantContext
from legacy_import.api.dependencies import (
    cluster_service,
    document_service,
    session_for_cluster,
)
from legacy_import.models import (
    DEFAULT_PAGE_SIZE,
    BulkDocumentAction,
    CamelModel,
    ClusterView,
    Document,
    DocumentAction,
    Pagination,
    ValidationCounts,
    ValidationStatus,
)

router = APIRouter(prefix="/api", tags=["Documents"])


class DocumentActionRequest(CamelModel):
    """Request model for a decision on one document."""

    document_id: str = Field(..., min_length=1)
    action: DocumentAction
    reclassification_note: str | None = None
    session_id: str | None = None


class BulkDocumentActionRequest(CamelModel):
    """Request model for a decision on several documents."""

    document_ids: list[str]
    action: BulkDocumentAction
    session_id: str | None = None


class DocumentActionResponse(CamelModel):
    success: bool = True
    document: Document


class BulkDocumentActionResponse(CamelModel):
    success: bool = True
    updated: int


class ClusterDocumentsResponse(CamelModel):
    """A page of a cluster's documents together with the cluster itself."""

    cluster: ClusterView
    documents: list[Document]
    stats: ValidationCounts
    pagination: Pagination


@router.get("/clusters/{cluster_id}/documents", response_model=ClusterDocumentsResponse)
def list_cluster_documents(
    cluster_id: str,
    request: Request,
    ctx: RequireTenantContext,
    session_id: str | None = Query(default=None, alias="sessionId"),
    page: int = Query(default=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, alias="pageSize"),
    status: ValidationStatus | None = Query(default=None),
    search: str | None = Query(default=None),
) -> ClusterDocumentsResponse:
    """List a cluster's documents; stats ignore the search and status filters."""
    session_id = session_for_cluster(request, ctx, cluster_id, session_id)
    cluster = cluster_service(request, ctx).get_cluster(session_id, cluster_id)
    result = document_service(request, ctx).get_documents(
        session_id,
        cluster_id=cluster_id,
        page=page,
        page_size=page_size,
        search=search,
        status=status,
    )
    return ClusterDocumentsResponse(
        cluster=cluster,
        documents=result.documents,
        stats=result.stats,
        pagination=result.pagination,
    )


@router.post("/clusters/{cluster_id}/documents", response_model=DocumentActionResponse)
def set_cluster_document_status(
    cluster_id: str,
    body: DocumentActionRequest,
    request: Request,
    ctx: RequireTenantContext,
) -> DocumentActionResponse:
    """Accept, delete or reclassify one document of the cluster."""
    session_id = session_for_cluster(request, ctx, cluster_id, body.session_id)
    document = document_service(request, ctx).set_validation_status(
        session_id,
        body.document_id,
        body.action,
        body.reclassification_note,
        cluster_id=cluster_id,
    )
    return DocumentActionResponse(document=document)


@router.put("/clusters/{cluster_id}/documents", response_model=BulkDocumentActionResponse)
def bulk_set_cluster_document_status(
    cluster_id: str,
    body: BulkDocumentActionRequest,
    request: Request,
    ctx: RequireTenantContext,
) -> BulkDocumentActionResponse:
    """Accept or delete several documents of the cluster, all or nothing."""
    session_id = session_for_cluster(request, ctx, cluster_id, body.session_id)
    updated = document_service(request, ctx).bulk_set_validation_status(
        session_id, body.document_ids, body.action, cluster_id=cluster_id
    )
    return BulkDocumentActionResponse(updated=updated)
