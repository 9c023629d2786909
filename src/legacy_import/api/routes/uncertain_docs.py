"""Uncertain document review routes.

Provides:
- GET /api/uncertain-docs (Paged documents the triage classifier could not decide)
- POST /api/uncertain-docs (Accept / Delete / Reclassify one document)
- PUT /api/uncertain-docs (Bulk Accept / Delete)
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from legacy_import.api.auth import RequireTenantContext
from legacy_import.api.dependencies import document_service, session_for_document
from legacy_import.api.routes.cluster_documents import (
    BulkDocumentActionRequest,
    BulkDocumentActionResponse,
    DocumentActionRequest,
    DocumentActionResponse,
)
from legacy_import.models import DEFAULT_PAGE_SIZE, DocumentPage, ValidationStatus

router = APIRouter(prefix="/api", tags=["Documents"])


@router.get("/uncertain-docs", response_model=DocumentPage)
def list_uncertain_documents(
    request: Request,
    ctx: RequireTenantContext,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    page: int = Query(default=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, alias="pageSize"),
    status: ValidationStatus | None = Query(default=None),
    search: str | None = Query(default=None),
) -> DocumentPage:
    """List the session's Uncertain documents."""
    return document_service(request, ctx).get_documents(
        session_id,
        uncertain=True,
        page=page,
        page_size=page_size,
        search=search,
        status=status,
    )


@router.post("/uncertain-docs", response_model=DocumentActionResponse)
def set_uncertain_document_status(
    body: DocumentActionRequest, request: Request, ctx: RequireTenantContext
) -> DocumentActionResponse:
    """Accept, delete or reclassify one Uncertain document."""
    session_id = session_for_document(request, ctx, body.document_id, body.session_id)
    document = document_service(request, ctx).set_validation_status(
        session_id,
        body.document_id,
        body.action,
        body.reclassification_note,
        uncertain_only=True,
    )
    return DocumentActionResponse(document=document)


@router.put("/uncertain-docs", response_model=BulkDocumentActionResponse)
def bulk_set_uncertain_document_status(
    body: BulkDocumentActionRequest, request: Request, ctx: RequireTenantContext
) -> BulkDocumentActionResponse:
    """Accept or delete several Uncertain documents, all or nothing."""
    session_id = body.session_id or ""
    if not session_id and body.document_ids:
        session_id = session_for_document(request, ctx, body.document_ids[0], None)
    updated = document_service(request, ctx).bulk_set_validation_status(
        session_id, body.document_ids, body.action, uncertain_only=True
    )
    return BulkDocumentActionResponse(updated=updated)
