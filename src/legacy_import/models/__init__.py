"""Domain models for the legacy import validation service."""

from legacy_import.models.base import CamelModel
from legacy_import.models.cluster import (
    ACTION_TO_CLUSTER_STATUS,
    SAMPLE_DOCUMENT_LIMIT,
    TERMINAL_CLUSTER_STATUSES,
    Cluster,
    ClusterAction,
    ClusterStats,
    ClusterStatus,
    ValidationCounts,
)
from legacy_import.models.document import (
    ACTION_TO_VALIDATION_STATUS,
    BulkDocumentAction,
    Document,
    DocumentAction,
    TriageStatus,
    ValidationStatus,
)
from legacy_import.models.recluster import (
    ReclusterJob,
    ReclusterJobStatus,
    ReclusterProgress,
    ReclusterStats,
    ReclusterStatusView,
)
from legacy_import.models.session import ImportSession, PipelineProgress, PipelineStatus
from legacy_import.models.views import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ClusterListing,
    ClusterView,
    DocumentPage,
    DocumentSample,
    Pagination,
)

__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "SAMPLE_DOCUMENT_LIMIT",
    "ClusterListing",
    "ClusterView",
    "DocumentPage",
    "DocumentSample",
    "Pagination",
    "ACTION_TO_CLUSTER_STATUS",
    "ACTION_TO_VALIDATION_STATUS",
    "BulkDocumentAction",
    "CamelModel",
    "Cluster",
    "ClusterAction",
    "ClusterStats",
    "ClusterStatus",
    "Document",
    "DocumentAction",
    "ImportSession",
    "PipelineProgress",
    "PipelineStatus",
    "ReclusterJob",
    "ReclusterJobStatus",
    "ReclusterProgress",
    "ReclusterStats",
    "ReclusterStatusView",
    "TERMINAL_CLUSTER_STATUSES",
    "TriageStatus",
    "ValidationCounts",
    "ValidationStatus",
]
