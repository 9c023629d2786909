"""Re-cluster job models.

One job record exists per session. Lifecycle:

    idle -> processing (trigger) -> completed | error -> processing (trigger) ...

At most one job per session is ``processing`` at any time.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from legacy_import.models.base import CamelModel


class ReclusterJobStatus(StrEnum):
    """Status values reported to pollers."""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ReclusterProgress(CamelModel):
    """Progress of a processing job; ``current`` never decreases."""

    current: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    message: str | None = None


class ReclusterStats(CamelModel):
    """Outcome counters of a completed job."""

    total_reclassified: int = 0
    matched_to_existing: int = 0
    new_clusters_created: int = 0
    unmatched_docs: int = 0

    def summary(self) -> str:
        """Return a human-readable completion message."""
        return (
            f"Re-clustering complete: {self.matched_to_existing} matched to existing clusters, "
            f"{self.new_clusters_created} new clusters created"
        )


class ReclusterJob(CamelModel):
    """Persistent state of a session's re-cluster job."""

    session_id: str
    job_id: str | None = None
    status: ReclusterJobStatus = ReclusterJobStatus.IDLE
    progress: ReclusterProgress | None = None
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    triggered_by: str | None = None
    stats: ReclusterStats | None = None

    @classmethod
    def idle(cls, session_id: str) -> ReclusterJob:
        """Return the implicit job state of a session that never re-clustered."""
        return cls(session_id=session_id)

    @property
    def is_processing(self) -> bool:
        """Return True while the job holds the session's re-cluster slot."""
        return self.status == ReclusterJobStatus.PROCESSING


class ReclusterStatusView(CamelModel):
    """Poll-compatible snapshot returned by the status endpoint."""

    status: ReclusterJobStatus
    can_trigger: bool
    progress: ReclusterProgress | None = None
    message: str | None = None
