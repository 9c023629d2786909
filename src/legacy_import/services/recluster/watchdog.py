"""Background sweeper failing re-cluster jobs stuck in processing.

Runs in the application event loop; the sweep itself touches the store, so it
is pushed to a worker thread.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from legacy_import.services.recluster.coordinator import ReclusterCoordinator

logger = logging.getLogger(__name__)


class ReclusterWatchdog:
    """Periodically expires stale re-cluster jobs."""

    def __init__(
        self, coordinator: ReclusterCoordinator, interval_seconds: float | None = None
    ) -> None:
        """Initialize the watchdog.

        Args:
            coordinator: Coordinator whose jobs are swept.
            interval_seconds: Seconds between sweeps. Defaults to the
                coordinator's watchdog_interval_seconds setting.
        """
        self._coordinator = coordinator
        self._interval = interval_seconds or coordinator.settings.watchdog_interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            logger.warning("Re-cluster watchdog already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("Re-cluster watchdog started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop the sweep loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("Re-cluster watchdog stopped")

    async def sweep(self) -> int:
        """Run one sweep and return the number of jobs failed."""
        expired = await asyncio.to_thread(self._coordinator.expire_stale_jobs)
        if expired:
            logger.warning("Re-cluster watchdog failed %d stale jobs", expired)
        return expired

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Error in re-cluster watchdog sweep: %s", e, exc_info=True)

            await asyncio.sleep(self._interval)
