"""Tests for the re-cluster engines.

Tests cover:
A) Deterministic matching of notes to cluster names (diacritics, threshold)
B) Deterministic grouping by normalized note
C) LLM engine parsing and fallbacks
D) Backend selection
"""

from __future__ import annotations

import json

import pytest

from legacy_import.services.llm import parse_json_reply
from legacy_import.services.recluster import (
    AnnotationReclusterEngine,
    ClusterCandidate,
    LLMReclusterEngine,
    ReclassifiedDocument,
    build_recluster_engine,
)
from legacy_import.services.recluster.engine import (
    RECLUSTER_BACKEND_ENV,
    REVIEW_GROUP_NAME,
    tokenize,
)
from tests.fixtures.builders import FakeLLMClient

CANDIDATES = [
    ClusterCandidate(id="c-facturi", name="Facturi", name_en="Invoices"),
    ClusterCandidate(
        id="c-contracte",
        name="Contracte de asistență juridică",
        name_en="Legal assistance contracts",
    ),
]


def _doc(doc_id: str, note: str) -> ReclassifiedDocument:
    return ReclassifiedDocument(id=doc_id, file_name=f"{doc_id}.pdf", note=note)


class TestTokenize:
    def test_strips_diacritics_and_short_tokens(self) -> None:
        assert tokenize("Contract de Asistență Juridică") == frozenset(
            {"contract", "asistenta", "juridica"}
        )


class TestAnnotationEngine:
    def test_matches_by_token_overlap(self) -> None:
        engine = AnnotationReclusterEngine()
        matches = engine.match_documents(
            [
                _doc("d1", "contracte de asistenta juridica"),
                _doc("d2", "facturi"),
                _doc("d3", "proces verbal"),
            ],
            CANDIDATES,
        )
        assert matches == {"d1": "c-contracte", "d2": "c-facturi", "d3": None}

    def test_below_threshold_is_unmatched(self) -> None:
        engine = AnnotationReclusterEngine()
        matches = engine.match_documents([_doc("d1", "asistenta")], CANDIDATES)
        assert matches == {"d1": None}

    def test_groups_by_note(self) -> None:
        engine = AnnotationReclusterEngine()
        groups = engine.group_documents(
            [
                _doc("d1", "Proces verbal"),
                _doc("d2", "proces-verbal"),
                _doc("d3", "Notificare"),
            ]
        )

        assert [(g.name, g.document_ids) for g in groups] == [
            ("Proces verbal", ("d1", "d2")),
            ("Notificare", ("d3",)),
        ]
        assert groups[0].description == "2 documents reclassified as 'Proces verbal'"


class TestLLMEngine:
    def test_match_parses_reply(self) -> None:
        client = FakeLLMClient(
            [
                json.dumps(
                    {
                        "matches": [
                            {"documentId": "d1", "clusterId": "c-facturi"},
                            {"documentId": "d2", "clusterId": "unknown"},
                            {"documentId": "zz", "clusterId": "c-facturi"},
                        ]
                    }
                )
            ]
        )
        engine = LLMReclusterEngine(client)

        matches = engine.match_documents([_doc("d1", "factura"), _doc("d2", "x")], CANDIDATES)

        assert matches == {"d1": "c-facturi", "d2": None}
        assert "factura" in client.prompts[0]

    def test_match_accepts_code_fence(self) -> None:
        reply = '```json\n{"matches": [{"documentId": "d1", "clusterId": "c-facturi"}]}\n```'
        engine = LLMReclusterEngine(FakeLLMClient([reply]))
        assert engine.match_documents([_doc("d1", "factura")], CANDIDATES) == {"d1": "c-facturi"}

    @pytest.mark.parametrize(
        "reply",
        [RuntimeError("provider down"), "not json", '{"matches": {"d1": "c"}}', "[]"],
    )
    def test_match_failure_leaves_all_unmatched(self, reply: str | Exception) -> None:
        engine = LLMReclusterEngine(FakeLLMClient([reply]))
        matches = engine.match_documents([_doc("d1", "factura")], CANDIDATES)
        assert matches == {"d1": None}

    def test_match_accepts_prose_around_json(self) -> None:
        reply = (
            "Here is the mapping you asked for:\n"
            '{"matches": [{"documentId": "d1", "clusterId": "c-facturi"}]}\n'
            "Let me know if anything is unclear."
        )
        engine = LLMReclusterEngine(FakeLLMClient([reply]))
        assert engine.match_documents([_doc("d1", "factura")], CANDIDATES) == {"d1": "c-facturi"}

    def test_match_without_candidates_skips_call(self) -> None:
        client = FakeLLMClient([])
        engine = LLMReclusterEngine(client)
        assert engine.match_documents([_doc("d1", "factura")], []) == {"d1": None}
        assert client.prompts == []

    def test_group_parses_reply(self) -> None:
        reply = json.dumps(
            {
                "clusters": [
                    {
                        "name": "Procese verbale",
                        "nameEn": "Minutes",
                        "description": "PV",
                        "documentIds": ["d1", "d2"],
                    },
                    {"name": "", "documentIds": ["d3"]},
                ]
            }
        )
        engine = LLMReclusterEngine(FakeLLMClient([reply]))

        groups = engine.group_documents([_doc("d1", "pv"), _doc("d2", "pv"), _doc("d3", "x")])

        assert len(groups) == 1
        assert groups[0].name_en == "Minutes"
        assert groups[0].document_ids == ("d1", "d2")

    def test_group_failure_falls_back_to_review_group(self) -> None:
        engine = LLMReclusterEngine(FakeLLMClient(['{"clusters": [{"nameEn": "x"}]}']))
        docs = [_doc("d1", "pv"), _doc("d2", "pv")]

        (group,) = engine.group_documents(docs)

        assert group.name == REVIEW_GROUP_NAME
        assert group.document_ids == ("d1", "d2")


class TestParseJsonReply:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('{"a": 1}', {"a": 1}),
            ('```json\n{"a": 1}\n```', {"a": 1}),
            ('Sure! ```\n{"a": 1}\n``` Done.', {"a": 1}),
            ('Result: {"a": 1} (end)', {"a": 1}),
            ('\n  {"a": {"b": "}"}}  \n', {"a": {"b": "}"}}),
        ],
    )
    def test_finds_object(self, raw: str, expected: dict[str, object]) -> None:
        assert parse_json_reply(raw) == expected

    @pytest.mark.parametrize("raw", ["", "no json here", "{broken"])
    def test_unparseable_raises_value_error(self, raw: str) -> None:
        with pytest.raises(ValueError):
            parse_json_reply(raw)


class TestBuildEngine:
    def test_default_is_deterministic(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(RECLUSTER_BACKEND_ENV, raising=False)
        assert isinstance(build_recluster_engine(), AnnotationReclusterEngine)

    def test_anthropic_requires_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            build_recluster_engine("anthropic")

    def test_anthropic_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        monkeypatch.setenv(RECLUSTER_BACKEND_ENV, "anthropic")
        assert isinstance(build_recluster_engine(), LLMReclusterEngine)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown"):
            build_recluster_engine("embedding")
