"""Tests for the re-cluster watchdog."""

from __future__ import annotations

import asyncio

from legacy_import.models import ReclusterJobStatus
from legacy_import.persistence import InMemoryImportStore
from legacy_import.services import DocumentValidationService, SessionService
from legacy_import.services.recluster import (
    AnnotationReclusterEngine,
    ReclusterCoordinator,
    ReclusterSettings,
    ReclusterWatchdog,
)
from tests.fixtures.builders import SESSION_ID, TENANT_ID, FakeClock, ManualExecutor, seed_session


def _coordinator(store: InMemoryImportStore, clock: FakeClock) -> ReclusterCoordinator:
    return ReclusterCoordinator(
        store,
        AnnotationReclusterEngine(),
        settings=ReclusterSettings(max_duration_seconds=60, watchdog_interval_seconds=5),
        executor=ManualExecutor(),
        clock=clock,
    )


def test_sweep_expires_stale_jobs(
    sessions: SessionService,
    documents: DocumentValidationService,
    store: InMemoryImportStore,
    clock: FakeClock,
) -> None:
    seed_session(sessions, {"Facturi": ["d1", "d2"]})
    documents.set_validation_status(SESSION_ID, "d1", "reclassify", "contract")
    coordinator = _coordinator(store, clock)
    coordinator.trigger(TENANT_ID, SESSION_ID)
    watchdog = ReclusterWatchdog(coordinator)

    assert asyncio.run(watchdog.sweep()) == 0
    clock.advance(61)
    assert asyncio.run(watchdog.sweep()) == 1

    status = coordinator.get_status(TENANT_ID, SESSION_ID)
    assert status.status == ReclusterJobStatus.ERROR
    assert status.message == "Re-clustering timed out after 60 seconds"


def test_start_and_stop(store: InMemoryImportStore, clock: FakeClock) -> None:
    watchdog = ReclusterWatchdog(_coordinator(store, clock), interval_seconds=0.01)

    async def run() -> None:
        await watchdog.start()
        assert watchdog.running
        await watchdog.start()
        await asyncio.sleep(0.05)
        await watchdog.stop()

    asyncio.run(run())

    assert not watchdog.running


def test_interval_defaults_to_settings(store: InMemoryImportStore, clock: FakeClock) -> None:
    watchdog = ReclusterWatchdog(_coordinator(store, clock))
    assert watchdog._interval == 5
