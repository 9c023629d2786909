"""Tests for audit sinks."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from legacy_import.audit import AuditSinkError, InMemoryAuditSink, JsonlFileAuditSink
from legacy_import.audit.events import make_audit_event
from legacy_import.audit.sink import AUDIT_LOG_PATH_ENV


def _event(resource_id: str = "d1") -> dict[str, object]:
    return make_audit_event(
        tenant_id="tenant-a",
        session_id="session-1",
        event_type="document.accept",
        resource_type="document",
        resource_id=resource_id,
        actor_id="reviewer-1",
        summary="Document d1 marked Accepted",
    )


class TestMakeAuditEvent:
    def test_envelope(self) -> None:
        event = _event()

        assert event["resource"] == {"resource_type": "document", "resource_id": "d1"}
        assert event["actor"] == {"actor_id": "reviewer-1"}
        assert str(event["occurred_at"]).endswith("Z")
        assert "details" not in event

    def test_missing_actor_is_system(self) -> None:
        event = make_audit_event(
            tenant_id="t",
            session_id="s",
            event_type="recluster.failed",
            resource_type="recluster_job",
            resource_id="j1",
            actor_id=None,
            summary="timed out",
            details={"reason": "timeout"},
        )
        assert event["actor"] == {"actor_id": "system"}
        assert event["details"] == {"reason": "timeout"}


class TestJsonlFileAuditSink:
    def test_appends_one_line_per_event(self, tmp_path: Path) -> None:
        path = tmp_path / "audit" / "events.jsonl"
        sink = JsonlFileAuditSink(str(path))

        sink.emit(_event("d1"))
        sink.emit(_event("d2"))

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["resource"]["resource_id"] for line in lines] == ["d1", "d2"]
        assert lines[0] == json.dumps(json.loads(lines[0]), sort_keys=True, separators=(",", ":"))

    def test_path_from_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(AUDIT_LOG_PATH_ENV, str(tmp_path / "env.jsonl"))
        assert JsonlFileAuditSink().file_path == tmp_path / "env.jsonl"

    def test_unwritable_path_raises(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        sink = JsonlFileAuditSink(str(blocker / "events.jsonl"))

        with pytest.raises(AuditSinkError):
            sink.emit(_event())

    def test_unserializable_event_raises(self, tmp_path: Path) -> None:
        sink = JsonlFileAuditSink(str(tmp_path / "events.jsonl"))
        with pytest.raises(AuditSinkError, match="serialize"):
            sink.emit({"bad": object()})


def test_in_memory_sink_records_and_clears() -> None:
    sink = InMemoryAuditSink()
    sink.emit(_event())

    assert sink.event_types() == ["document.accept"]
    sink.clear()
    assert sink.events == []
