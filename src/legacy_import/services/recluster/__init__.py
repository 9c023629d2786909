"""Re-clustering of reclassified documents."""

from legacy_import.services.recluster.coordinator import (
    ReclusterCoordinator,
    ReclusterSettings,
)
from legacy_import.services.recluster.engine import (
    AnnotationReclusterEngine,
    ClusterCandidate,
    ClusterGroup,
    LLMReclusterEngine,
    ReclassifiedDocument,
    ReclusterEngine,
    build_recluster_engine,
)
from legacy_import.services.recluster.watchdog import ReclusterWatchdog

__all__ = [
    "AnnotationReclusterEngine",
    "ClusterCandidate",
    "ClusterGroup",
    "LLMReclusterEngine",
    "ReclassifiedDocument",
    "ReclusterCoordinator",
    "ReclusterEngine",
    "ReclusterSettings",
    "ReclusterWatchdog",
    "build_recluster_engine",
]
