"""Audit event construction."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any


def make_audit_event(
    *,
    tenant_id: str,
    session_id: str,
    event_type: str,
    resource_type: str,
    resource_id: str,
    actor_id: str | None,
    summary: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build an audit event envelope.

    Args:
        tenant_id: Tenant owning the session.
        session_id: Import session the resource belongs to.
        event_type: Dotted event name, e.g. "cluster.approved".
        resource_type: "document", "cluster" or "recluster_job".
        resource_id: Identifier of the affected resource.
        actor_id: Reviewer or service that caused the event.
        summary: One-line human-readable summary.
        details: Optional JSON-serializable payload.
    """
    event: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "occurred_at": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "tenant_id": tenant_id,
        "session_id": session_id,
        "event_type": event_type,
        "resource": {"resource_type": resource_type, "resource_id": resource_id},
        "actor": {"actor_id": actor_id or "system"},
        "summary": summary,
    }
    if details:
        event["details"] = details
    return event
