"""Pytest configuration and fixtures for legacy import tests.

Services run against the in-memory store with a fixed clock and an
in-memory audit sink. API tests share one app wired to the same store, so
data can be seeded through the services and read back over HTTP.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from legacy_import.api.auth import API_KEYS_ENV
from legacy_import.api.main import create_app
from legacy_import.audit import InMemoryAuditSink
from legacy_import.persistence import InMemoryImportStore
from legacy_import.services import ClusterService, DocumentValidationService, SessionService
from legacy_import.services.recluster import (
    AnnotationReclusterEngine,
    ReclusterCoordinator,
    ReclusterSettings,
)
from tests.fixtures.builders import (
    API_KEY,
    REVIEWER,
    TENANT_ID,
    FakeClock,
    InlineExecutor,
    make_api_keys_json,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryImportStore:
    return InMemoryImportStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    """Provide in-memory audit sink for testing."""
    return InMemoryAuditSink()


@pytest.fixture
def sessions(
    store: InMemoryImportStore, audit_sink: InMemoryAuditSink, clock: FakeClock
) -> SessionService:
    return SessionService(store, TENANT_ID, REVIEWER, audit_sink=audit_sink, clock=clock)


@pytest.fixture
def clusters(
    store: InMemoryImportStore, audit_sink: InMemoryAuditSink, clock: FakeClock
) -> ClusterService:
    return ClusterService(store, TENANT_ID, REVIEWER, audit_sink=audit_sink, clock=clock)


@pytest.fixture
def documents(
    store: InMemoryImportStore, audit_sink: InMemoryAuditSink, clock: FakeClock
) -> DocumentValidationService:
    return DocumentValidationService(
        store, TENANT_ID, REVIEWER, audit_sink=audit_sink, clock=clock
    )


@pytest.fixture
def inline_coordinator(
    store: InMemoryImportStore, audit_sink: InMemoryAuditSink, clock: FakeClock
) -> ReclusterCoordinator:
    """Coordinator running jobs synchronously inside trigger()."""
    return ReclusterCoordinator(
        store,
        AnnotationReclusterEngine(),
        settings=ReclusterSettings(),
        audit_sink=audit_sink,
        executor=InlineExecutor(),
        clock=clock,
    )


@pytest.fixture
def client(
    store: InMemoryImportStore,
    audit_sink: InMemoryAuditSink,
    inline_coordinator: ReclusterCoordinator,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[TestClient]:
    """Create test client over the shared in-memory store."""
    monkeypatch.setenv(API_KEYS_ENV, make_api_keys_json())
    app = create_app(store=store, audit_sink=audit_sink, coordinator=inline_coordinator)
    yield TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-Api-Key": API_KEY}
