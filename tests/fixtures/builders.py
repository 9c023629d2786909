"""Builders and test doubles shared by the legacy import tests."""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future
from datetime import UTC, datetime, timedelta
from typing import Any

from legacy_import.models import TriageStatus
from legacy_import.services import ClusterDraft, DocumentDraft, SessionService
from legacy_import.services.common import Actor

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
SESSION_ID = "session-1"
REVIEWER = Actor(actor_id="reviewer-1", name="Ana Popescu")

API_KEY = "test-key-tenant-a"
OTHER_API_KEY = "test-key-tenant-b"

START_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock passed to services as ``clock``."""

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        future: Future[Any] = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Queues submitted work until the test runs it."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[..., Any], tuple[Any, ...], dict[str, Any]]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_all(self) -> None:
        while self.pending:
            fn, args, kwargs = self.pending.pop(0)
            fn(*args, **kwargs)


class FakeLLMClient:
    """LLMClient returning scripted replies; an Exception entry is raised."""

    def __init__(self, replies: Sequence[str | Exception]) -> None:
        self._replies = list(replies)
        self.prompts: list[str] = []

    def call(self, prompt: str, *, json_mode: bool = False) -> str:
        self.prompts.append(prompt)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_drafts(
    document_ids: Sequence[str], triage_status: TriageStatus = TriageStatus.FIRM_DRAFTED
) -> list[DocumentDraft]:
    return [
        DocumentDraft(
            id=doc_id,
            file_name=f"{doc_id}.pdf",
            file_extension="pdf",
            triage_status=triage_status,
            triage_confidence=0.9,
        )
        for doc_id in document_ids
    ]


def seed_session(
    sessions: SessionService,
    clusters: dict[str, Sequence[str]],
    *,
    session_id: str = SESSION_ID,
    uncertain: Sequence[str] = (),
) -> dict[str, str]:
    """Create a session, ingest documents and apply one clustering pass.

    Returns:
        Cluster suggested name -> cluster id.
    """
    sessions.create_session("Import 2026", session_id=session_id)
    clustered = [doc_id for ids in clusters.values() for doc_id in ids]
    drafts = make_drafts(clustered) + make_drafts(uncertain, TriageStatus.UNCERTAIN)
    sessions.ingest_documents(session_id, drafts)
    created = sessions.apply_clustering_pass(
        session_id,
        [
            ClusterDraft(suggested_name=name, suggested_name_en=name, document_ids=list(ids))
            for name, ids in clusters.items()
        ],
    )
    return {c.suggested_name: c.id for c in created}


def make_api_keys_json() -> str:
    """Create a LEGACY_IMPORT_API_KEYS_JSON value with one key per tenant."""
    return json.dumps(
        {
            API_KEY: {"tenantId": TENANT_ID, "actorId": REVIEWER.actor_id, "name": "Ana Popescu"},
            OTHER_API_KEY: {"tenantId": OTHER_TENANT_ID, "actorId": "reviewer-b"},
        }
    )
