"""Per-request service construction and session resolution.

The application holds one store, audit sink, merge analyzer and re-cluster
coordinator on ``app.state``; services are cheap and built per request for
the caller's tenant and actor.
"""

from __future__ import annotations

from fastapi import Request

from legacy_import.api.auth import TenantContext
from legacy_import.audit import AuditSink
from legacy_import.errors import NotFoundError
from legacy_import.persistence import ImportStore
from legacy_import.services import (
    ClusterService,
    DocumentValidationService,
    MergeAnalyzer,
    SessionService,
)
from legacy_import.services.recluster import ReclusterCoordinator


def get_store(request: Request) -> ImportStore:
    store: ImportStore = request.app.state.store
    return store


def get_audit_sink(request: Request) -> AuditSink:
    sink: AuditSink = request.app.state.audit_sink
    return sink


def get_coordinator(request: Request) -> ReclusterCoordinator:
    coordinator: ReclusterCoordinator = request.app.state.coordinator
    return coordinator


def get_merge_analyzer(request: Request) -> MergeAnalyzer:
    analyzer: MergeAnalyzer = request.app.state.merge_analyzer
    return analyzer


def document_service(request: Request, ctx: TenantContext) -> DocumentValidationService:
    return DocumentValidationService(
        get_store(request), ctx.tenant_id, ctx.actor, audit_sink=get_audit_sink(request)
    )


def cluster_service(request: Request, ctx: TenantContext) -> ClusterService:
    return ClusterService(
        get_store(request),
        ctx.tenant_id,
        ctx.actor,
        audit_sink=get_audit_sink(request),
        merge_analyzer=get_merge_analyzer(request),
    )


def session_service(request: Request, ctx: TenantContext) -> SessionService:
    return SessionService(
        get_store(request), ctx.tenant_id, ctx.actor, audit_sink=get_audit_sink(request)
    )


def session_for_cluster(
    request: Request, ctx: TenantContext, cluster_id: str, session_id: str | None
) -> str:
    """Return ``session_id`` if given, else the session owning the cluster.

    Raises:
        NotFoundError: If the cluster is unknown to the tenant.
    """
    if session_id:
        return session_id
    located = get_store(request).locate_cluster(ctx.tenant_id, cluster_id)
    if located is None:
        raise NotFoundError("cluster", cluster_id)
    return located


def session_for_document(
    request: Request, ctx: TenantContext, document_id: str, session_id: str | None
) -> str:
    """Return ``session_id`` if given, else the session owning the document.

    Raises:
        NotFoundError: If the document is unknown to the tenant.
    """
    if session_id:
        return session_id
    located = get_store(request).locate_document(ctx.tenant_id, document_id)
    if located is None:
        raise NotFoundError("document", document_id)
    return located
