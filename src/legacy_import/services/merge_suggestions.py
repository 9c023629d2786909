"""Pattern-based merge suggestions.

Clustering passes often split one document category into several clusters
("Factura client X", "Facturi 2019", ...). Clusters whose display name matches
the same category pattern are suggested for merging. Only categories with at
least two matching clusters produce a suggestion.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from legacy_import.models import CamelModel, Cluster, ClusterStatus


@dataclass(frozen=True)
class MergePattern:
    """A document category and the regex recognising its cluster names."""

    name: str
    name_en: str
    pattern: re.Pattern[str]


def _p(name: str, name_en: str, regex: str) -> MergePattern:
    return MergePattern(name=name, name_en=name_en, pattern=re.compile(regex, re.IGNORECASE))


MERGE_PATTERNS: tuple[MergePattern, ...] = (
    _p("Facturi", "Invoices", r"^factur"),
    _p(
        "Contracte de Asistență Juridică",
        "Legal Assistance Contracts",
        r"^contract.*asisten[țţt][aă] juridic[aă]",
    ),
    _p("Opinii Juridice", "Legal Opinions", r"^opini[ei].*juridic"),
    _p("Declarații de Renunțare", "Waiver Declarations", r"^declara[țţt]i.*renun[țţt]are"),
    _p("Neclasificate", "Unclassified", r"^neclasificate$"),
    _p("Împuterniciri", "Powers of Attorney", r"^[îi]mputernicir"),
    _p(
        "Documente Academice",
        "Academic Documents",
        r"documente academice|reflec[țţt]ie juridic[aă]|teorie.*juridic",
    ),
    _p("Confirmări", "Confirmations", r"^confirm[aă]r"),
    _p("Cereri de Executare", "Enforcement Requests", r"^cereri.*executare"),
    _p("Studii Juridice", "Legal Studies", r"^studii"),
)


class MergeSuggestion(CamelModel):
    """A proposed merge of clusters that share a category."""

    suggested_name: str
    suggested_name_en: str
    cluster_ids: list[str]
    cluster_names: list[str]
    document_count: int
    reason: str


def match_pattern(name: str) -> MergePattern | None:
    """Return the first category pattern matching a cluster name, if any."""
    candidate = name.strip()
    for merge_pattern in MERGE_PATTERNS:
        if merge_pattern.pattern.search(candidate):
            return merge_pattern
    return None


def suggest_merges(clusters: Iterable[Cluster]) -> list[MergeSuggestion]:
    """Group live, non-deleted clusters by category pattern.

    Args:
        clusters: Candidate clusters; retired and Deleted ones are ignored.

    Returns:
        One suggestion per category with two or more clusters, in pattern order.
    """
    groups: dict[str, list[Cluster]] = {}
    for cluster in clusters:
        if cluster.is_retired or cluster.status == ClusterStatus.DELETED:
            continue
        merge_pattern = match_pattern(cluster.display_name)
        if merge_pattern is not None:
            groups.setdefault(merge_pattern.name, []).append(cluster)

    suggestions: list[MergeSuggestion] = []
    for merge_pattern in MERGE_PATTERNS:
        members = groups.get(merge_pattern.name, [])
        if len(members) < 2:
            continue
        suggestions.append(
            MergeSuggestion(
                suggested_name=merge_pattern.name,
                suggested_name_en=merge_pattern.name_en,
                cluster_ids=[c.id for c in members],
                cluster_names=[c.display_name for c in members],
                document_count=sum(c.document_count for c in members),
                reason=f"{len(members)} clusters match the '{merge_pattern.name}' category",
            )
        )
    return suggestions
