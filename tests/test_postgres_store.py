"""Postgres integration tests for PostgresImportStore.

Runs the service scenarios against a real database:
- Test A: documents, clusters and sessions round-trip through JSONB rows
- Test B: a rolled-back unit leaves no trace
- Test C: tenant isolation for reads and id lookups
- Test D: a re-cluster job runs end to end and is listed while processing

These tests require a real PostgreSQL instance and use:
- LEGACY_IMPORT_DATABASE_ADMIN_URL for migrations and cleanup
- LEGACY_IMPORT_DATABASE_URL for app-role operations

Run with: pytest -q tests/test_postgres_store.py
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import text

from legacy_import.models import ReclusterJobStatus, ValidationStatus
from legacy_import.persistence.db import DATABASE_ADMIN_URL_ENV, DATABASE_URL_ENV
from legacy_import.persistence.store import DocumentQuery
from legacy_import.services import ClusterService, DocumentValidationService, SessionService
from legacy_import.services.recluster import (
    AnnotationReclusterEngine,
    ReclusterCoordinator,
    ReclusterSettings,
)
from tests.fixtures.builders import REVIEWER, ManualExecutor, seed_session

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from legacy_import.persistence.postgres import PostgresImportStore

REQUIRE_POSTGRES_ENV = "LEGACY_IMPORT_REQUIRE_POSTGRES"

TABLES = ("recluster_jobs", "document_clusters", "import_documents", "import_sessions")


def _skip_or_fail_if_no_postgres() -> None:
    """Skip or fail test if PostgreSQL is not configured."""
    admin_url = os.environ.get(DATABASE_ADMIN_URL_ENV)
    app_url = os.environ.get(DATABASE_URL_ENV)
    require_postgres = os.environ.get(REQUIRE_POSTGRES_ENV, "0") == "1"

    if not admin_url or not app_url:
        msg = (
            f"PostgreSQL integration tests require {DATABASE_ADMIN_URL_ENV} "
            f"and {DATABASE_URL_ENV} env vars"
        )
        if require_postgres:
            pytest.fail(f"REQUIRED: {msg} ({REQUIRE_POSTGRES_ENV}=1)")
        else:
            pytest.skip(msg)


@pytest.fixture(scope="module")
def admin_engine() -> Generator[Engine, None, None]:
    """Create admin engine and apply migrations."""
    _skip_or_fail_if_no_postgres()

    from legacy_import.persistence.db import get_admin_engine, reset_engines
    from legacy_import.persistence.migrate import run_upgrade

    engine = get_admin_engine()
    run_upgrade(engine)
    yield engine
    reset_engines()


@pytest.fixture
def pg_store(admin_engine: Engine) -> Generator[PostgresImportStore, None, None]:
    """Postgres store over clean tables."""
    from legacy_import.persistence.db import get_app_engine
    from legacy_import.persistence.postgres import PostgresImportStore

    def truncate() -> None:
        with admin_engine.begin() as conn:
            conn.execute(text(f"TRUNCATE {', '.join(TABLES)}"))

    truncate()
    yield PostgresImportStore(get_app_engine())
    truncate()


@pytest.fixture
def tenant_id() -> str:
    return f"tenant-{uuid.uuid4().hex[:8]}"


def test_round_trip(pg_store: PostgresImportStore, tenant_id: str) -> None:
    sessions = SessionService(pg_store, tenant_id, REVIEWER)
    documents = DocumentValidationService(pg_store, tenant_id, REVIEWER)
    clusters = ClusterService(pg_store, tenant_id, REVIEWER)
    ids = seed_session(sessions, {"Facturi": ["d1", "d2"]}, uncertain=["u1"])

    documents.set_validation_status("session-1", "d1", "reclassify", "contract")

    cluster = clusters.get_cluster("session-1", ids["Facturi"])
    assert cluster.validation_counts.reclassified == 1
    assert [s.id for s in cluster.sample_documents] == ["d1", "d2"]
    page = documents.get_documents("session-1", search="D2")
    assert [d.id for d in page.documents] == ["d2"]
    uncertain = documents.get_documents("session-1", uncertain=True)
    assert [d.id for d in uncertain.documents] == ["u1"]
    assert pg_store.locate_cluster(tenant_id, ids["Facturi"]) == "session-1"
    assert pg_store.locate_document(tenant_id, "u1") == "session-1"


def test_rollback_discards_unit(pg_store: PostgresImportStore, tenant_id: str) -> None:
    sessions = SessionService(pg_store, tenant_id, REVIEWER)
    seed_session(sessions, {"Facturi": ["d1"]})

    with pytest.raises(RuntimeError), pg_store.unit(tenant_id, "session-1") as unit:
        (document,) = unit.find_documents(DocumentQuery(document_ids=frozenset({"d1"})))
        unit.save_documents(
            [document.with_decision(ValidationStatus.DELETED, actor_id="x", at=None)]
        )
        raise RuntimeError("abort")

    with pg_store.unit(tenant_id, "session-1") as unit:
        stored = unit.get_document("d1")
    assert stored is not None
    assert stored.validation_status == ValidationStatus.PENDING


def test_tenant_isolation(pg_store: PostgresImportStore, tenant_id: str) -> None:
    ids = seed_session(SessionService(pg_store, tenant_id, REVIEWER), {"Facturi": ["d1"]})
    other = f"{tenant_id}-other"

    with pg_store.unit(other, "session-1") as unit:
        assert unit.get_session() is None
        assert unit.get_document("d1") is None
    assert pg_store.locate_cluster(other, ids["Facturi"]) is None


def test_recluster_job(pg_store: PostgresImportStore, tenant_id: str) -> None:
    sessions = SessionService(pg_store, tenant_id, REVIEWER)
    ids = seed_session(sessions, {"Facturi": ["d1"], "Contracte": ["d2"]})
    DocumentValidationService(pg_store, tenant_id, REVIEWER).set_validation_status(
        "session-1", "d2", "reclassify", "facturi"
    )

    manual = ManualExecutor()
    queued = ReclusterCoordinator(
        pg_store, AnnotationReclusterEngine(), settings=ReclusterSettings(), executor=manual
    )
    queued.trigger(tenant_id, "session-1")
    assert (tenant_id, "session-1") in pg_store.processing_jobs()
    manual.run_all()

    status = queued.get_status(tenant_id, "session-1")
    assert status.status == ReclusterJobStatus.COMPLETED
    with pg_store.unit(tenant_id, "session-1") as unit:
        moved = unit.get_document("d2")
    assert moved is not None
    assert moved.cluster_id == ids["Facturi"]
    assert pg_store.processing_jobs() == []
