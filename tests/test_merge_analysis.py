"""Tests for merge analysis and batch merge execution.

Tests cover:
A) LLM analyzer parsing, id sanitizing and fallback to pattern groups
B) Analysis summary (keepSeparate, estimatedReduction)
C) ClusterService.execute_merges collecting per-group failures
D) quick_merge applying pattern-based suggestions
E) Backend selection
"""

from __future__ import annotations

import json

import pytest

from legacy_import.audit import InMemoryAuditSink
from legacy_import.errors import NotFoundError
from legacy_import.models import Cluster, ClusterStatus
from legacy_import.persistence import InMemoryImportStore
from legacy_import.services import (
    ClusterService,
    LLMMergeAnalyzer,
    MergeGroup,
    PatternMergeAnalyzer,
    SessionService,
    build_merge_analyzer,
)
from legacy_import.services.merge_analysis import MERGE_BACKEND_ENV, build_merge_analysis
from tests.fixtures.builders import (
    REVIEWER,
    SESSION_ID,
    TENANT_ID,
    FakeClock,
    FakeLLMClient,
    seed_session,
)


def _cluster(cluster_id: str, name: str, count: int = 1) -> Cluster:
    return Cluster.model_validate(
        {"id": cluster_id, "session_id": "s1", "suggested_name": name, "document_count": count}
    )


CLUSTERS = [
    _cluster("c1", "Facturi 2019", 4),
    _cluster("c2", "Factura client", 2),
    _cluster("c3", "Contracte", 3),
    _cluster("c4", "Contract de mandat", 1),
]


def _reply(*groups: dict[str, object]) -> str:
    return json.dumps({"mergeGroups": list(groups), "keepSeparate": []})


@pytest.fixture
def seeded(sessions: SessionService) -> dict[str, str]:
    return seed_session(
        sessions,
        {
            "Facturi 2019": ["d1", "d2"],
            "Factura client": ["d3"],
            "Contracte": ["d4", "d5"],
            "Contract de mandat": ["d6"],
        },
    )


def _service(
    store: InMemoryImportStore,
    audit_sink: InMemoryAuditSink,
    clock: FakeClock,
    client: FakeLLMClient,
) -> ClusterService:
    return ClusterService(
        store,
        TENANT_ID,
        REVIEWER,
        audit_sink=audit_sink,
        clock=clock,
        merge_analyzer=LLMMergeAnalyzer(client),
    )


class TestLLMMergeAnalyzer:
    def test_parses_groups(self) -> None:
        client = FakeLLMClient(
            [
                _reply(
                    {
                        "targetName": "Contracte",
                        "targetNameEn": "Contracts",
                        "description": "Toate contractele",
                        "reasoning": "Same document type",
                        "clusterIds": ["c3", "c4"],
                    }
                )
            ]
        )

        (group,) = LLMMergeAnalyzer(client).propose_merges(CLUSTERS)

        assert group.target_name == "Contracte"
        assert group.target_name_en == "Contracts"
        assert group.description == "Toate contractele"
        assert group.reasoning == "Same document type"
        assert group.cluster_ids == ["c3", "c4"]
        assert group.cluster_names == ["Contracte", "Contract de mandat"]
        assert group.total_documents == 4
        assert "Contract de mandat" in client.prompts[0]

    def test_drops_unknown_repeated_and_claimed_ids(self) -> None:
        reply = _reply(
            {"targetName": "Contracte", "clusterIds": ["c3", "c4", "c4", "ghost"]},
            {"targetName": "Mixte", "clusterIds": ["c3", "c1"]},
            {"targetName": "", "clusterIds": ["c1", "c2"]},
            "not a group",
        )

        groups = LLMMergeAnalyzer(FakeLLMClient([reply])).propose_merges(CLUSTERS)

        assert [(g.target_name, g.cluster_ids) for g in groups] == [("Contracte", ["c3", "c4"])]
        assert groups[0].target_name_en == "Contracte"

    def test_accepts_prose_around_json(self) -> None:
        reply = "Here is my analysis.\n" + _reply(
            {"targetName": "Facturi", "clusterIds": ["c1", "c2"]}
        )
        (group,) = LLMMergeAnalyzer(FakeLLMClient([reply])).propose_merges(CLUSTERS)
        assert group.cluster_ids == ["c1", "c2"]

    @pytest.mark.parametrize(
        "reply",
        [
            RuntimeError("provider down"),
            "no json at all",
            '{"groups": []}',
            '{"mergeGroups": {"c1": "c2"}}',
        ],
    )
    def test_failure_falls_back_to_pattern_groups(self, reply: str | Exception) -> None:
        groups = LLMMergeAnalyzer(FakeLLMClient([reply])).propose_merges(CLUSTERS)

        assert [(g.target_name, g.cluster_ids) for g in groups] == [("Facturi", ["c1", "c2"])]
        assert groups[0].reasoning == "Pattern match: Facturi"

    def test_single_cluster_skips_call(self) -> None:
        client = FakeLLMClient([])
        assert LLMMergeAnalyzer(client).propose_merges(CLUSTERS[:1]) == []
        assert client.prompts == []


class TestBuildMergeAnalysis:
    def test_counts_and_keep_separate(self) -> None:
        groups = PatternMergeAnalyzer().propose_merges(CLUSTERS)

        analysis = build_merge_analysis("s1", CLUSTERS, groups)

        assert analysis.original_cluster_count == 4
        assert analysis.suggested_cluster_count == 3
        assert analysis.estimated_reduction == 1
        assert [c.id for c in analysis.keep_separate] == ["c3", "c4"]
        assert analysis.keep_separate[0].status == ClusterStatus.PENDING

    def test_wire_keys(self) -> None:
        analysis = build_merge_analysis("s1", CLUSTERS, [])
        body = analysis.model_dump(by_alias=True)
        assert set(body) == {
            "sessionId",
            "originalClusterCount",
            "suggestedClusterCount",
            "mergeGroups",
            "keepSeparate",
            "estimatedReduction",
        }
        assert body["estimatedReduction"] == 0


class TestAnalyzeMerges:
    def test_analyzes_live_clusters(
        self,
        seeded: dict[str, str],
        clusters: ClusterService,
        store: InMemoryImportStore,
        audit_sink: InMemoryAuditSink,
        clock: FakeClock,
    ) -> None:
        clusters.apply_cluster_action(SESSION_ID, seeded["Contract de mandat"], "delete")
        client = FakeLLMClient(
            [_reply({"targetName": "Facturi", "clusterIds": list(seeded.values())})]
        )

        analysis = _service(store, audit_sink, clock, client).analyze_merges(SESSION_ID)

        assert "Contract de mandat" not in client.prompts[0]
        assert analysis.original_cluster_count == 3
        (group,) = analysis.merge_groups
        assert group.total_documents == 5
        assert analysis.keep_separate == []
        assert analysis.estimated_reduction == 2

    def test_changes_nothing(self, seeded: dict[str, str], clusters: ClusterService) -> None:
        before = clusters.list_clusters(SESSION_ID)
        clusters.analyze_merges(SESSION_ID)
        assert clusters.list_clusters(SESSION_ID) == before

    def test_unknown_session(self, clusters: ClusterService) -> None:
        with pytest.raises(NotFoundError):
            clusters.analyze_merges("missing")


class TestExecuteMerges:
    def test_applies_groups_and_collects_failures(
        self,
        seeded: dict[str, str],
        clusters: ClusterService,
        audit_sink: InMemoryAuditSink,
    ) -> None:
        groups = [
            MergeGroup(
                target_name="Facturi",
                target_name_en="Invoices",
                cluster_ids=[seeded["Facturi 2019"], seeded["Factura client"]],
            ),
            MergeGroup(
                target_name="Mixte",
                cluster_ids=[seeded["Facturi 2019"], seeded["Contracte"]],
            ),
            MergeGroup(target_name="Fantoma", cluster_ids=[seeded["Contracte"], "ghost"]),
            MergeGroup(target_name="Singur", cluster_ids=[seeded["Contracte"]]),
        ]

        result = clusters.execute_merges(SESSION_ID, groups)

        assert result.success is False
        assert result.merged_count == 1
        assert result.errors == [
            'Failed to merge "Mixte": Cluster was already merged or replaced',
            'Failed to merge "Fantoma": Cluster not found',
        ]
        (merged_id,) = result.merged_cluster_ids
        merged = clusters.get_cluster(SESSION_ID, merged_id)
        assert merged.suggested_name_en == "Invoices"
        assert merged.document_count == 3
        assert result.new_cluster_count == 3
        assert not clusters.get_cluster(SESSION_ID, seeded["Contracte"]).is_retired
        assert audit_sink.event_types().count("cluster.merged") == 1

    def test_all_groups_succeed(self, seeded: dict[str, str], clusters: ClusterService) -> None:
        result = clusters.execute_merges(
            SESSION_ID,
            [
                MergeGroup(
                    target_name="Facturi",
                    cluster_ids=[seeded["Facturi 2019"], seeded["Factura client"]],
                ),
                MergeGroup(
                    target_name="Contracte",
                    cluster_ids=[seeded["Contracte"], seeded["Contract de mandat"]],
                ),
            ],
        )

        assert result.success is True
        assert result.merged_count == 2
        assert result.new_cluster_count == 2
        assert result.errors == []

    def test_unknown_session(self, clusters: ClusterService) -> None:
        with pytest.raises(NotFoundError):
            clusters.execute_merges("missing", [])


class TestQuickMerge:
    def test_merges_pattern_suggestions(
        self, seeded: dict[str, str], clusters: ClusterService
    ) -> None:
        result = clusters.quick_merge(SESSION_ID)

        assert result.success is True
        assert result.merged_count == 1
        assert result.new_cluster_count == 3
        merged = clusters.get_cluster(SESSION_ID, result.merged_cluster_ids[0])
        assert merged.suggested_name == "Facturi"
        assert merged.document_count == 3
        assert clusters.suggest_merges(SESSION_ID) == []

    def test_nothing_to_merge(self, sessions: SessionService, clusters: ClusterService) -> None:
        seed_session(sessions, {"Contracte": ["d1"]})

        result = clusters.quick_merge(SESSION_ID)

        assert result.success is True
        assert result.merged_count == 0
        assert result.new_cluster_count == 1


class TestBuildMergeAnalyzer:
    def test_default_is_pattern(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(MERGE_BACKEND_ENV, raising=False)
        assert isinstance(build_merge_analyzer(), PatternMergeAnalyzer)

    def test_anthropic_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        monkeypatch.setenv(MERGE_BACKEND_ENV, "anthropic")
        assert isinstance(build_merge_analyzer(), LLMMergeAnalyzer)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown"):
            build_merge_analyzer("embedding")
