"""Tests for the in-memory import store and the locked unit helper.

Tests cover:
A) Staged writes commit on success and are discarded on exception
B) Tenant isolation of sessions and id lookups
C) Keyed locks serialize units sharing a key
D) locked_unit retries when the key set changes and gives up with ConflictError
"""

from __future__ import annotations

import threading
import time

import pytest

from legacy_import.errors import ConflictError, NotFoundError
from legacy_import.models import Document, ImportSession, ReclusterJob, ReclusterJobStatus
from legacy_import.persistence import (
    DocumentQuery,
    InMemoryImportStore,
    StoreUnit,
    cluster_lock_key,
    document_lock_key,
    recluster_lock_key,
)
from legacy_import.services.common import MAX_LOCK_ATTEMPTS, locked_unit, require_session
from tests.fixtures.builders import OTHER_TENANT_ID, SESSION_ID, START_TIME, TENANT_ID


def _seed(store: InMemoryImportStore, *document_ids: str) -> None:
    with store.unit(TENANT_ID, SESSION_ID) as unit:
        unit.save_session(ImportSession(id=SESSION_ID, tenant_id=TENANT_ID))
        unit.save_documents(
            Document(
                id=doc_id,
                session_id=SESSION_ID,
                file_name=f"{doc_id}.pdf",
                created_at=START_TIME,
            )
            for doc_id in document_ids
        )


class TestUnitOfWork:
    def test_commit_on_clean_exit(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1", "d2")

        with store.unit(TENANT_ID, SESSION_ID) as unit:
            assert unit.get_session() is not None
            assert [d.id for d in unit.find_documents(DocumentQuery())] == ["d1", "d2"]
            assert unit.count_documents(DocumentQuery(document_ids=frozenset({"d2"}))) == 1

    def test_exception_discards_staged_writes(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")

        with pytest.raises(RuntimeError), store.unit(TENANT_ID, SESSION_ID) as unit:
            doc = unit.get_document("d1")
            assert doc is not None
            unit.save_documents([doc.model_copy(update={"cluster_id": "c1"})])
            unit.save_job(ReclusterJob(session_id=SESSION_ID, status=ReclusterJobStatus.PROCESSING))
            raise RuntimeError("boom")

        with store.unit(TENANT_ID, SESSION_ID) as unit:
            doc = unit.get_document("d1")
            assert doc is not None
            assert doc.cluster_id is None
            assert unit.get_job() is None
        assert store.processing_jobs() == []

    def test_unit_reads_its_own_staged_writes(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")

        with store.unit(TENANT_ID, SESSION_ID) as unit:
            doc = unit.get_document("d1")
            assert doc is not None
            unit.save_documents([doc.model_copy(update={"cluster_id": "c1"})])
            assert unit.count_documents(DocumentQuery(cluster_id="c1")) == 1

    def test_search_matches_file_name_case_insensitively(self, store: InMemoryImportStore) -> None:
        _seed(store, "Contract-Alpha", "invoice-7")

        with store.unit(TENANT_ID, SESSION_ID) as unit:
            found = unit.find_documents(DocumentQuery(search="contract"))
        assert [d.id for d in found] == ["Contract-Alpha"]

    def test_find_documents_pages_in_stable_order(self, store: InMemoryImportStore) -> None:
        _seed(store, "d3", "d1", "d2")

        with store.unit(TENANT_ID, SESSION_ID) as unit:
            page = unit.find_documents(DocumentQuery(), offset=1, limit=1)
        assert [d.id for d in page] == ["d2"]


class TestTenantIsolation:
    def test_other_tenant_sees_nothing(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")

        with store.unit(OTHER_TENANT_ID, SESSION_ID) as unit:
            assert unit.get_session() is None
            assert unit.get_document("d1") is None
            with pytest.raises(NotFoundError):
                require_session(unit)

    def test_locate_is_tenant_scoped(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")

        assert store.locate_document(TENANT_ID, "d1") == SESSION_ID
        assert store.locate_document(OTHER_TENANT_ID, "d1") is None
        assert store.locate_cluster(TENANT_ID, "missing") is None

    def test_processing_jobs_lists_tenant_and_session(self, store: InMemoryImportStore) -> None:
        _seed(store)
        with store.unit(TENANT_ID, SESSION_ID) as unit:
            unit.save_job(ReclusterJob(session_id=SESSION_ID, status=ReclusterJobStatus.PROCESSING))

        assert store.processing_jobs() == [(TENANT_ID, SESSION_ID)]

    def test_clear(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")
        store.clear()
        assert store.locate_document(TENANT_ID, "d1") is None


class TestKeyedLocks:
    def test_units_sharing_a_key_are_serialized(self, store: InMemoryImportStore) -> None:
        events: list[str] = []
        first_inside = threading.Event()

        def first() -> None:
            with store.unit(TENANT_ID, SESSION_ID, lock_keys=[recluster_lock_key(SESSION_ID)]):
                first_inside.set()
                time.sleep(0.05)
                events.append("first-done")

        def second() -> None:
            first_inside.wait()
            with store.unit(TENANT_ID, SESSION_ID, lock_keys=[recluster_lock_key(SESSION_ID)]):
                events.append("second-inside")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert events == ["first-done", "second-inside"]

    def test_lock_keys_are_tenant_namespaced(self, store: InMemoryImportStore) -> None:
        key = cluster_lock_key("c1")
        with store.unit(TENANT_ID, SESSION_ID, lock_keys=[key]):
            done = threading.Event()

            def other_tenant() -> None:
                with store.unit(OTHER_TENANT_ID, SESSION_ID, lock_keys=[key]):
                    done.set()

            thread = threading.Thread(target=other_tenant)
            thread.start()
            assert done.wait(timeout=5)
            thread.join(timeout=5)


class TestLockedUnit:
    def test_yields_unit_when_keys_stable(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")
        calls: list[int] = []

        def resolve(unit: StoreUnit) -> set[str]:
            calls.append(1)
            return {document_lock_key("d1")}

        with locked_unit(store, TENANT_ID, SESSION_ID, resolve) as unit:
            assert unit.get_document("d1") is not None
        assert len(calls) == 2

    def test_retries_with_grown_key_set(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")
        answers = iter([{"a"}, {"a", "b"}, {"a", "b"}])

        def resolve(unit: StoreUnit) -> set[str]:
            return next(answers)

        with locked_unit(store, TENANT_ID, SESSION_ID, resolve) as unit:
            assert unit.session_id == SESSION_ID

    def test_gives_up_with_conflict(self, store: InMemoryImportStore) -> None:
        _seed(store, "d1")
        counter = iter(range(100))

        def resolve(unit: StoreUnit) -> set[str]:
            return {f"key-{next(counter)}"}

        with (
            pytest.raises(ConflictError),
            locked_unit(store, TENANT_ID, SESSION_ID, resolve),
        ):
            pass
        assert next(counter) == MAX_LOCK_ATTEMPTS + 1

    def test_resolver_errors_propagate(self, store: InMemoryImportStore) -> None:
        def resolve(unit: StoreUnit) -> set[str]:
            require_session(unit)
            return set()

        with pytest.raises(NotFoundError), locked_unit(store, TENANT_ID, "missing", resolve):
            pass
