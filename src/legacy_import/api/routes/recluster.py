"""Re-cluster job routes.

Provides:
- GET /api/recluster (Poll job status and canTrigger)
- POST /api/recluster (Trigger a job; 202 once it is processing)
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from pydantic import Field

from legacy_import.api.auth import RequireTenantContext
from legacy_import.api.dependencies import get_coordinator
from legacy_import.models import CamelModel, ReclusterJobStatus, ReclusterStatusView

router = APIRouter(prefix="/api", tags=["Recluster"])


class TriggerReclusterRequest(CamelModel):
    """Request model for triggering a re-cluster job."""

    session_id: str = Field(..., min_length=1)


class TriggerReclusterResponse(CamelModel):
    accepted: bool = True
    job_id: str
    status: ReclusterJobStatus


@router.get("/recluster", response_model=ReclusterStatusView)
def get_recluster_status(
    request: Request,
    ctx: RequireTenantContext,
    session_id: str = Query(..., alias="sessionId", min_length=1),
) -> ReclusterStatusView:
    """Return the session's job status; safe to poll."""
    return get_coordinator(request).get_status(ctx.tenant_id, session_id)


@router.post("/recluster", response_model=TriggerReclusterResponse, status_code=202)
def trigger_recluster(
    body: TriggerReclusterRequest, request: Request, ctx: RequireTenantContext
) -> TriggerReclusterResponse:
    """Start a re-cluster job.

    The job is already ``processing`` when this returns, so an immediate
    status poll observes it. Rejected with 409 INVALID_STATE when nothing is
    eligible and 409 CONFLICT when a job is processing.
    """
    job = get_coordinator(request).trigger(ctx.tenant_id, body.session_id, actor=ctx.actor)
    return TriggerReclusterResponse(job_id=job.job_id or "", status=job.status)
