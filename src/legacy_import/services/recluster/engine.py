"""Re-cluster engines: decide where reclassified documents belong.

A reviewer reclassifies a document by writing a note saying what it really is
("contract de asistenta juridica", "invoice", ...). The engine then

1. matches each note against the names of the session's candidate clusters, and
2. groups the documents that matched nothing into new clusters.

The coordinator owns everything else (locking, progress, persistence). Engines
are pure functions of their inputs plus whatever model they call.

Backends (LEGACY_IMPORT_RECLUSTER_BACKEND):
- deterministic: token overlap between note and cluster name, grouping by
  normalized note. No external calls.
- anthropic: LLM matching and grouping through AnthropicLLMClient. Matching
  failures fall back to "nothing matched"; grouping failures fall back to a
  single review cluster.
"""

from __future__ import annotations

import json
import logging
import os
import re
import unicodedata
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from legacy_import.services.llm import LLMClient, parse_json_reply

logger = logging.getLogger(__name__)

RECLUSTER_BACKEND_ENV = "LEGACY_IMPORT_RECLUSTER_BACKEND"

REVIEW_GROUP_NAME = "De revizuit"
REVIEW_GROUP_NAME_EN = "Needs Review"
REVIEW_GROUP_DESCRIPTION = "Documente reclasificate care necesită revizuire manuală"

# At or below this many unmatched documents, grouping is skipped.
REVIEW_GROUP_THRESHOLD = 3

MATCH_THRESHOLD = 0.5
MIN_TOKEN_LENGTH = 3
MAX_GROUP_NAME_LENGTH = 80


@dataclass(frozen=True)
class ReclassifiedDocument:
    """What the engine sees of a reclassified document."""

    id: str
    file_name: str
    note: str
    text_preview: str | None = None
    suggested_doc_type: str | None = None


@dataclass(frozen=True)
class ClusterCandidate:
    """An existing cluster documents may be matched to."""

    id: str
    name: str
    name_en: str = ""
    description: str | None = None


@dataclass(frozen=True)
class ClusterGroup:
    """A new cluster proposed for unmatched documents."""

    name: str
    name_en: str
    description: str
    document_ids: tuple[str, ...]


class ReclusterEngine(Protocol):
    """Matching and grouping capability used by the re-cluster coordinator."""

    def match_documents(
        self,
        documents: Sequence[ReclassifiedDocument],
        candidates: Sequence[ClusterCandidate],
    ) -> dict[str, str | None]:
        """Return document id -> candidate cluster id, or None when nothing fits."""
        ...

    def group_documents(self, documents: Sequence[ReclassifiedDocument]) -> list[ClusterGroup]:
        """Partition unmatched documents into new cluster groups."""
        ...


def review_group(documents: Sequence[ReclassifiedDocument]) -> ClusterGroup:
    """Return the single catch-all cluster for documents needing manual review."""
    return ClusterGroup(
        name=REVIEW_GROUP_NAME,
        name_en=REVIEW_GROUP_NAME_EN,
        description=REVIEW_GROUP_DESCRIPTION,
        document_ids=tuple(d.id for d in documents),
    )


def tokenize(text: str) -> frozenset[str]:
    """Casefolded, diacritic-free word tokens of at least MIN_TOKEN_LENGTH characters."""
    decomposed = unicodedata.normalize("NFKD", text.casefold())
    plain = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return frozenset(t for t in re.findall(r"\w+", plain) if len(t) >= MIN_TOKEN_LENGTH)


class AnnotationReclusterEngine:
    """Deterministic engine working on the reclassification notes alone."""

    def __init__(self, match_threshold: float = MATCH_THRESHOLD) -> None:
        self._match_threshold = match_threshold

    def match_documents(
        self,
        documents: Sequence[ReclassifiedDocument],
        candidates: Sequence[ClusterCandidate],
    ) -> dict[str, str | None]:
        candidate_tokens = [(c, tokenize(f"{c.name} {c.name_en}")) for c in candidates]
        matches: dict[str, str | None] = {}
        for document in documents:
            note_tokens = tokenize(document.note)
            best_id: str | None = None
            best_score = 0.0
            for candidate, tokens in candidate_tokens:
                if not tokens:
                    continue
                score = len(note_tokens & tokens) / len(tokens)
                if score >= self._match_threshold and score > best_score:
                    best_id, best_score = candidate.id, score
            matches[document.id] = best_id
        return matches

    def group_documents(self, documents: Sequence[ReclassifiedDocument]) -> list[ClusterGroup]:
        groups: dict[frozenset[str], list[ReclassifiedDocument]] = {}
        for document in documents:
            key = tokenize(document.note) or frozenset({document.note.strip().casefold()})
            groups.setdefault(key, []).append(document)

        result = []
        for members in groups.values():
            name = members[0].note.strip()[:MAX_GROUP_NAME_LENGTH]
            result.append(
                ClusterGroup(
                    name=name,
                    name_en=name,
                    description=f"{len(members)} documents reclassified as '{name}'",
                    document_ids=tuple(d.id for d in members),
                )
            )
        return result


class LLMReclusterEngine:
    """Engine asking an LLM to match and group documents by their notes."""

    def __init__(self, client: LLMClient) -> None:
        self._client = client

    def match_documents(
        self,
        documents: Sequence[ReclassifiedDocument],
        candidates: Sequence[ClusterCandidate],
    ) -> dict[str, str | None]:
        unmatched: dict[str, str | None] = {d.id: None for d in documents}
        if not documents or not candidates:
            return unmatched

        payload = {
            "clusters": [
                {"id": c.id, "name": c.name, "nameEn": c.name_en, "description": c.description}
                for c in candidates
            ],
            "documents": [
                {"id": d.id, "fileName": d.file_name, "note": d.note} for d in documents
            ],
        }
        prompt = (
            "Each document below was reclassified by a lawyer, who wrote a note saying "
            "what the document really is. Match each document to the existing cluster "
            "whose name fits the note, or null if none fits.\n"
            'Reply as {"matches": [{"documentId": "...", "clusterId": "..." or null}]}.\n\n'
            f"Input:\n{json.dumps(payload, ensure_ascii=False, sort_keys=True)}"
        )
        try:
            reply = parse_json_reply(self._client.call(prompt, json_mode=True))
            entries = reply["matches"]
            if not isinstance(entries, list):
                raise TypeError("'matches' must be a list")
        except (RuntimeError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("LLM matching failed, treating all documents as unmatched: %s", e)
            return unmatched

        known_clusters = {c.id for c in candidates}
        matches = dict(unmatched)
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            doc_id = entry.get("documentId")
            cluster_id = entry.get("clusterId")
            if doc_id in matches and cluster_id in known_clusters:
                matches[doc_id] = cluster_id
        return matches

    def group_documents(self, documents: Sequence[ReclassifiedDocument]) -> list[ClusterGroup]:
        if not documents:
            return []

        payload = [{"id": d.id, "fileName": d.file_name, "note": d.note} for d in documents]
        prompt = (
            "Group these reclassified documents into document-type clusters based on "
            "the lawyer's note. Name each cluster in Romanian and English.\n"
            'Reply as {"clusters": [{"name": "...", "nameEn": "...", '
            '"description": "...", "documentIds": ["..."]}]}.\n\n'
            f"Documents:\n{json.dumps(payload, ensure_ascii=False, sort_keys=True)}"
        )
        try:
            reply = parse_json_reply(self._client.call(prompt, json_mode=True))
            groups = [
                ClusterGroup(
                    name=str(entry["name"]).strip(),
                    name_en=str(entry.get("nameEn") or entry["name"]).strip(),
                    description=str(entry.get("description") or ""),
                    document_ids=tuple(str(i) for i in entry["documentIds"]),
                )
                for entry in reply["clusters"]
            ]
        except (RuntimeError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("LLM grouping failed, using a single review cluster: %s", e)
            return [review_group(documents)]
        return [g for g in groups if g.name and g.document_ids]


def build_recluster_engine(backend: str | None = None) -> ReclusterEngine:
    """Build the engine named by ``backend`` or LEGACY_IMPORT_RECLUSTER_BACKEND.

    Raises:
        ValueError: Unknown backend, or anthropic without ANTHROPIC_API_KEY.
    """
    name = (backend or os.environ.get(RECLUSTER_BACKEND_ENV) or "deterministic").strip().lower()
    if name == "deterministic":
        return AnnotationReclusterEngine()
    if name == "anthropic":
        from legacy_import.services.llm.anthropic_client import AnthropicLLMClient

        return LLMReclusterEngine(AnthropicLLMClient())
    raise ValueError(f"Unknown {RECLUSTER_BACKEND_ENV} value: {name!r}")
