"""Cluster review routes.

Provides:
- GET /api/clusters (List Clusters with stats)
- POST /api/clusters (Approve / Reject / Delete a cluster)
- POST /api/clusters/merge (Merge Clusters)
- GET /api/clusters/merge-suggestions (Pattern-based merge suggestions)
- POST /api/clusters/merge-analysis (Propose merge groups, changes nothing)
- POST /api/clusters/execute-merges (Apply a list of merge groups)
- POST /api/clusters/quick-merge (Apply every pattern-based suggestion)
- GET /api/clusters/{clusterId} (Get Cluster, retired ones included)

When a write body omits sessionId, the session is resolved from the cluster id.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from pydantic import Field

from legacy_import.api.auth import RequireTenantContext
from legacy_import.api.dependencies import cluster_service, session_for_cluster
from legacy_import.models import (
    CamelModel,
    Cluster,
    ClusterAction,
    ClusterListing,
    ClusterStatus,
    ClusterView,
)
from legacy_import.services import MergeAnalysis, MergeGroup, MergeResult, MergeSuggestion

router = APIRouter(prefix="/api", tags=["Clusters"])


class ClusterActionRequest(CamelModel):
    """Request model for a review action on one cluster."""

    cluster_id: str = Field(..., min_length=1)
    action: ClusterAction
    approved_name: str | None = None
    session_id: str | None = None


class MergeClustersRequest(CamelModel):
    """Request model for merging clusters."""

    cluster_ids: list[str]
    new_name: str
    new_name_en: str | None = None
    description: str | None = None
    session_id: str | None = None


class MergeSuggestionsResponse(CamelModel):
    suggestions: list[MergeSuggestion]


class SessionRequest(CamelModel):
    """Request model for session-wide cluster operations."""

    session_id: str = Field(..., min_length=1)


class ExecuteMergesRequest(CamelModel):
    """Request model for applying merge groups, e.g. from a merge analysis."""

    session_id: str = Field(..., min_length=1)
    merge_groups: list[MergeGroup]


@router.get("/clusters", response_model=ClusterListing)
def list_clusters(
    request: Request,
    ctx: RequireTenantContext,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    status: ClusterStatus | None = Query(default=None),
    include_deleted: bool = Query(default=False, alias="includeDeleted"),
) -> ClusterListing:
    """List a session's clusters and stats; Deleted ones only on request."""
    return cluster_service(request, ctx).list_clusters(
        session_id, status=status, include_deleted=include_deleted
    )


@router.post("/clusters", response_model=Cluster)
def apply_cluster_action(
    body: ClusterActionRequest, request: Request, ctx: RequireTenantContext
) -> Cluster:
    """Approve, reject or delete a Pending cluster."""
    session_id = session_for_cluster(request, ctx, body.cluster_id, body.session_id)
    return cluster_service(request, ctx).apply_cluster_action(
        session_id, body.cluster_id, body.action, approved_name=body.approved_name
    )


@router.post("/clusters/merge", response_model=Cluster, status_code=201)
def merge_clusters(
    body: MergeClustersRequest, request: Request, ctx: RequireTenantContext
) -> Cluster:
    """Merge two or more clusters into a new Pending cluster."""
    distinct = list(dict.fromkeys(body.cluster_ids))
    session_id = body.session_id or ""
    if not session_id and len(distinct) >= 2:
        session_id = session_for_cluster(request, ctx, distinct[0], None)
    return cluster_service(request, ctx).merge_clusters(
        session_id,
        body.cluster_ids,
        body.new_name,
        new_name_en=body.new_name_en,
        description=body.description,
    )


@router.get("/clusters/merge-suggestions", response_model=MergeSuggestionsResponse)
def get_merge_suggestions(
    request: Request,
    ctx: RequireTenantContext,
    session_id: str = Query(..., alias="sessionId", min_length=1),
) -> MergeSuggestionsResponse:
    """Suggest merges of clusters sharing a document category."""
    return MergeSuggestionsResponse(
        suggestions=cluster_service(request, ctx).suggest_merges(session_id)
    )


@router.post("/clusters/merge-analysis", response_model=MergeAnalysis)
def analyze_merges(
    body: SessionRequest, request: Request, ctx: RequireTenantContext
) -> MergeAnalysis:
    """Propose merge groups over the session's live clusters."""
    return cluster_service(request, ctx).analyze_merges(body.session_id)


@router.post("/clusters/execute-merges", response_model=MergeResult)
def execute_merges(
    body: ExecuteMergesRequest, request: Request, ctx: RequireTenantContext
) -> MergeResult:
    """Apply merge groups; failed groups are reported, the rest applied."""
    return cluster_service(request, ctx).execute_merges(body.session_id, body.merge_groups)


@router.post("/clusters/quick-merge", response_model=MergeResult)
def quick_merge(body: SessionRequest, request: Request, ctx: RequireTenantContext) -> MergeResult:
    """Apply every pattern-based merge suggestion of the session."""
    return cluster_service(request, ctx).quick_merge(body.session_id)


@router.get("/clusters/{cluster_id}", response_model=ClusterView)
def get_cluster(
    cluster_id: str,
    request: Request,
    ctx: RequireTenantContext,
    session_id: str | None = Query(default=None, alias="sessionId"),
) -> ClusterView:
    """Get one cluster, including retired ones."""
    session_id = session_for_cluster(request, ctx, cluster_id, session_id)
    return cluster_service(request, ctx).get_cluster(session_id, cluster_id)
