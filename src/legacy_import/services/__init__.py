"""Business services of the legacy import validation service."""

from legacy_import.services.clusters import ClusterService
from legacy_import.services.common import SYSTEM_ACTOR, Actor
from legacy_import.services.documents import DocumentValidationService
from legacy_import.services.merge_analysis import (
    ClusterInfo,
    LLMMergeAnalyzer,
    MergeAnalysis,
    MergeAnalyzer,
    MergeGroup,
    MergeResult,
    PatternMergeAnalyzer,
    build_merge_analyzer,
)
from legacy_import.services.merge_suggestions import MergeSuggestion
from legacy_import.services.sessions import ClusterDraft, DocumentDraft, SessionService

__all__ = [
    "SYSTEM_ACTOR",
    "Actor",
    "ClusterDraft",
    "ClusterInfo",
    "ClusterService",
    "DocumentDraft",
    "DocumentValidationService",
    "LLMMergeAnalyzer",
    "MergeAnalysis",
    "MergeAnalyzer",
    "MergeGroup",
    "MergeResult",
    "MergeSuggestion",
    "PatternMergeAnalyzer",
    "SessionService",
    "build_merge_analyzer",
]
