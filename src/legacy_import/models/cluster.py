"""Cluster model for groups of documents produced by a clustering pass.

Cluster.status is one-way terminal:

    Pending --approve--> Approved
    Pending --reject-->  Rejected
    Pending --delete-->  Deleted

A cluster of any status can be retired as a merge source or by a later
clustering pass. Retired clusters own no documents and never change again.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum

from pydantic import Field

from legacy_import.models.base import CamelModel
from legacy_import.models.document import ValidationStatus

SAMPLE_DOCUMENT_LIMIT = 5


class ClusterStatus(StrEnum):
    """Review status of a cluster."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DELETED = "Deleted"


class ClusterAction(StrEnum):
    """Reviewer actions on a cluster."""

    APPROVE = "approve"
    REJECT = "reject"
    DELETE = "delete"


ACTION_TO_CLUSTER_STATUS: dict[str, ClusterStatus] = {
    ClusterAction.APPROVE: ClusterStatus.APPROVED,
    ClusterAction.REJECT: ClusterStatus.REJECTED,
    ClusterAction.DELETE: ClusterStatus.DELETED,
}

TERMINAL_CLUSTER_STATUSES = frozenset(
    {ClusterStatus.APPROVED, ClusterStatus.REJECTED, ClusterStatus.DELETED}
)


class ValidationCounts(CamelModel):
    """Per-status document counts over a cluster's members."""

    accepted: int = Field(default=0, ge=0)
    deleted: int = Field(default=0, ge=0)
    reclassified: int = Field(default=0, ge=0)
    pending: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        """Return the number of documents counted."""
        return self.accepted + self.deleted + self.reclassified + self.pending

    @classmethod
    def from_statuses(cls, statuses: Iterable[ValidationStatus]) -> ValidationCounts:
        """Aggregate counts from member document statuses."""
        counts = {"accepted": 0, "deleted": 0, "reclassified": 0, "pending": 0}
        for status in statuses:
            counts[ValidationStatus(status).value.lower()] += 1
        return cls(**counts)


class Cluster(CamelModel):
    """A group of documents suggested to share a document type."""

    id: str = Field(..., description="Cluster identifier")
    session_id: str = Field(..., description="Import session the cluster belongs to")
    suggested_name: str = Field(..., min_length=1)
    suggested_name_en: str = Field(default="")
    description: str | None = Field(default=None)
    document_count: int = Field(default=0, ge=0)
    status: ClusterStatus = Field(default=ClusterStatus.PENDING)
    approved_name: str | None = Field(default=None)
    validated_by: str | None = Field(default=None)
    validated_at: datetime | None = Field(default=None)
    validator_name: str | None = Field(default=None)
    validation_counts: ValidationCounts = Field(default_factory=ValidationCounts)
    sample_document_ids: list[str] = Field(default_factory=list)
    superseded_by: str | None = Field(default=None, description="Cluster that absorbed this one")
    retired_at: datetime | None = Field(default=None)
    created_at: datetime | None = Field(default=None)

    @property
    def is_retired(self) -> bool:
        """Return True once the cluster was merged away or replaced by a pass."""
        return self.retired_at is not None

    @property
    def display_name(self) -> str:
        """Return the approved name if any, else the suggested name."""
        return self.approved_name or self.suggested_name


class ClusterStats(CamelModel):
    """Summary counters over the listed cluster population."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    deleted: int = 0
    total_documents: int = 0

    @classmethod
    def from_clusters(cls, clusters: Iterable[Cluster]) -> ClusterStats:
        """Compute stats over the given clusters."""
        stats = cls()
        for cluster in clusters:
            stats.total += 1
            stats.total_documents += cluster.document_count
            if cluster.status == ClusterStatus.PENDING:
                stats.pending += 1
            elif cluster.status == ClusterStatus.APPROVED:
                stats.approved += 1
            elif cluster.status == ClusterStatus.REJECTED:
                stats.rejected += 1
            elif cluster.status == ClusterStatus.DELETED:
                stats.deleted += 1
        return stats
