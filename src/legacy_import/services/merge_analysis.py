"""Merge analysis: which clusters of a session should be consolidated.

Clustering passes over a large import leave many near-duplicate clusters. A
merge analyzer proposes merge groups over the session's live clusters. The
proposals change nothing; a reviewer applies the groups they accept through
ClusterService.execute_merges.

Backends (LEGACY_IMPORT_MERGE_BACKEND):
- pattern: the category patterns of merge_suggestions. No external calls.
- anthropic: the LLM reads every cluster name and proposes groups. When the
  call fails or the reply is unusable, the pattern groups are returned.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from typing import Protocol

from pydantic import Field

from legacy_import.models import CamelModel, Cluster, ClusterStatus
from legacy_import.services.llm import LLMClient, parse_json_reply
from legacy_import.services.merge_suggestions import MergeSuggestion, suggest_merges

logger = logging.getLogger(__name__)

MERGE_BACKEND_ENV = "LEGACY_IMPORT_MERGE_BACKEND"

MAX_TARGET_NAME_LENGTH = 60


class ClusterInfo(CamelModel):
    """What merge analysis sees of a cluster."""

    id: str
    name: str
    name_en: str = ""
    description: str | None = None
    document_count: int = 0
    status: ClusterStatus

    @classmethod
    def from_cluster(cls, cluster: Cluster) -> ClusterInfo:
        return cls(
            id=cluster.id,
            name=cluster.display_name,
            name_en=cluster.suggested_name_en,
            description=cluster.description,
            document_count=cluster.document_count,
            status=cluster.status,
        )


class MergeGroup(CamelModel):
    """Clusters proposed to become one, and the name of the result."""

    target_name: str = Field(..., min_length=1)
    target_name_en: str | None = None
    description: str | None = None
    reasoning: str = ""
    cluster_ids: list[str]
    cluster_names: list[str] = Field(default_factory=list)
    total_documents: int = 0

    @classmethod
    def from_suggestion(cls, suggestion: MergeSuggestion) -> MergeGroup:
        return cls(
            target_name=suggestion.suggested_name,
            target_name_en=suggestion.suggested_name_en,
            reasoning=f"Pattern match: {suggestion.suggested_name}",
            cluster_ids=list(suggestion.cluster_ids),
            cluster_names=list(suggestion.cluster_names),
            total_documents=suggestion.document_count,
        )


class MergeAnalysis(CamelModel):
    """Proposed consolidation of a session's clusters."""

    session_id: str
    original_cluster_count: int
    suggested_cluster_count: int
    merge_groups: list[MergeGroup]
    keep_separate: list[ClusterInfo]
    estimated_reduction: int


class MergeResult(CamelModel):
    """Outcome of applying a list of merge groups."""

    success: bool
    merged_count: int
    new_cluster_count: int
    merged_cluster_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class MergeAnalyzer(Protocol):
    """Proposes merge groups over a session's live clusters."""

    def propose_merges(self, clusters: Sequence[Cluster]) -> list[MergeGroup]:
        """Return merge groups of two or more distinct clusters each."""
        ...


class PatternMergeAnalyzer:
    """Analyzer grouping clusters that match the same category pattern."""

    def propose_merges(self, clusters: Sequence[Cluster]) -> list[MergeGroup]:
        return [MergeGroup.from_suggestion(s) for s in suggest_merges(clusters)]


class LLMMergeAnalyzer:
    """Analyzer asking an LLM which clusters name the same document type."""

    def __init__(self, client: LLMClient, fallback: MergeAnalyzer | None = None) -> None:
        self._client = client
        self._fallback = fallback or PatternMergeAnalyzer()

    def propose_merges(self, clusters: Sequence[Cluster]) -> list[MergeGroup]:
        if len(clusters) < 2:
            return []

        payload = [
            {
                "id": c.id,
                "name": c.display_name,
                "nameEn": c.suggested_name_en,
                "description": c.description,
                "documentCount": c.document_count,
            }
            for c in clusters
        ]
        prompt = (
            "These document clusters come from a Romanian law firm's archive. Suggest "
            "which clusters hold the same type of document and should be merged. Keep "
            "genuinely different document types separate.\n"
            'Reply as {"mergeGroups": [{"targetName": "...", "targetNameEn": "...", '
            '"description": "...", "reasoning": "...", "clusterIds": ["..."]}], '
            '"keepSeparate": ["..."]}.\n\n'
            f"Clusters:\n{json.dumps(payload, ensure_ascii=False, sort_keys=True)}"
        )
        try:
            reply = parse_json_reply(self._client.call(prompt, json_mode=True))
            entries = reply["mergeGroups"]
            if not isinstance(entries, list):
                raise TypeError("'mergeGroups' must be a list")
            groups = self._parse_groups(entries, clusters)
        except (RuntimeError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("LLM merge analysis failed, using pattern groups: %s", e)
            return self._fallback.propose_merges(clusters)
        return groups

    @staticmethod
    def _parse_groups(entries: list[object], clusters: Sequence[Cluster]) -> list[MergeGroup]:
        by_id = {c.id: c for c in clusters}
        claimed: set[str] = set()
        groups: list[MergeGroup] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("targetName") or "").strip()[:MAX_TARGET_NAME_LENGTH]
            ids = [
                str(i)
                for i in dict.fromkeys(entry.get("clusterIds") or [])
                if str(i) in by_id and str(i) not in claimed
            ]
            if not name or len(ids) < 2:
                continue
            claimed.update(ids)
            members = [by_id[i] for i in ids]
            groups.append(
                MergeGroup(
                    target_name=name,
                    target_name_en=str(entry.get("targetNameEn") or name).strip(),
                    description=str(entry["description"]) if entry.get("description") else None,
                    reasoning=str(entry.get("reasoning") or ""),
                    cluster_ids=ids,
                    cluster_names=[c.display_name for c in members],
                    total_documents=sum(c.document_count for c in members),
                )
            )
        return groups


def build_merge_analysis(
    session_id: str, clusters: Sequence[Cluster], groups: Sequence[MergeGroup]
) -> MergeAnalysis:
    """Summarize proposed groups against the clusters they were drawn from."""
    grouped = {cid for g in groups for cid in g.cluster_ids}
    keep_separate = [ClusterInfo.from_cluster(c) for c in clusters if c.id not in grouped]
    suggested = len(groups) + len(keep_separate)
    return MergeAnalysis(
        session_id=session_id,
        original_cluster_count=len(clusters),
        suggested_cluster_count=suggested,
        merge_groups=list(groups),
        keep_separate=keep_separate,
        estimated_reduction=len(clusters) - suggested,
    )


def build_merge_analyzer(backend: str | None = None) -> MergeAnalyzer:
    """Build the analyzer named by ``backend`` or LEGACY_IMPORT_MERGE_BACKEND.

    Raises:
        ValueError: Unknown backend, or anthropic without ANTHROPIC_API_KEY.
    """
    name = (backend or os.environ.get(MERGE_BACKEND_ENV) or "pattern").strip().lower()
    if name == "pattern":
        return PatternMergeAnalyzer()
    if name == "anthropic":
        from legacy_import.services.llm.anthropic_client import AnthropicLLMClient

        return LLMMergeAnalyzer(AnthropicLLMClient())
    raise ValueError(f"Unknown {MERGE_BACKEND_ENV} value: {name!r}")
