"""Import session routes.

Provides:
- POST /api/sessions (Create Session)
- GET /api/sessions/{sessionId} (Get Session)
- POST /api/sessions/{sessionId}/documents (Ingest Triaged Documents)
- POST /api/sessions/{sessionId}/clustering-passes (Apply Clustering Pass)
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import Field

from legacy_import.api.auth import RequireTenantContext
from legacy_import.api.dependencies import session_service
from legacy_import.models import CamelModel, Cluster, ImportSession
from legacy_import.services import ClusterDraft, DocumentDraft

router = APIRouter(prefix="/api", tags=["Sessions"])


class CreateSessionRequest(CamelModel):
    """Request model for creating an import session."""

    name: str = ""
    session_id: str | None = Field(default=None, min_length=1)


class IngestDocumentsRequest(CamelModel):
    """Request model for ingesting triaged documents."""

    documents: list[DocumentDraft]


class IngestDocumentsResponse(CamelModel):
    ingested: int
    document_ids: list[str]


class ClusteringPassRequest(CamelModel):
    """Request model for applying a clustering pass."""

    clusters: list[ClusterDraft]


class ClusteringPassResponse(CamelModel):
    clusters: list[Cluster]


@router.post("/sessions", response_model=ImportSession, status_code=201)
def create_session(
    body: CreateSessionRequest, request: Request, ctx: RequireTenantContext
) -> ImportSession:
    """Create an import session owned by the caller's tenant."""
    return session_service(request, ctx).create_session(body.name, session_id=body.session_id)


@router.get("/sessions/{session_id}", response_model=ImportSession)
def get_session(session_id: str, request: Request, ctx: RequireTenantContext) -> ImportSession:
    """Get an import session including its pipeline status."""
    return session_service(request, ctx).get_session(session_id)


@router.post(
    "/sessions/{session_id}/documents",
    response_model=IngestDocumentsResponse,
    status_code=201,
)
def ingest_documents(
    session_id: str,
    body: IngestDocumentsRequest,
    request: Request,
    ctx: RequireTenantContext,
) -> IngestDocumentsResponse:
    """Register documents already triaged by the classifier."""
    documents = session_service(request, ctx).ingest_documents(session_id, body.documents)
    return IngestDocumentsResponse(
        ingested=len(documents), document_ids=[d.id for d in documents]
    )


@router.post(
    "/sessions/{session_id}/clustering-passes",
    response_model=ClusteringPassResponse,
    status_code=201,
)
def apply_clustering_pass(
    session_id: str,
    body: ClusteringPassRequest,
    request: Request,
    ctx: RequireTenantContext,
) -> ClusteringPassResponse:
    """Replace the session's live clusters with a clustering pass result."""
    clusters = session_service(request, ctx).apply_clustering_pass(session_id, body.clusters)
    return ClusteringPassResponse(clusters=clusters)
