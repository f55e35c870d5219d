"""Refresh scheduler: rebuilds each cache store at its own interval.

Uses a simple asyncio loop per store. Each rebuild runs in a thread pool to
avoid blocking the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from session_monitor.usage.store import CacheStore

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Periodically calls ``refresh()`` on registered cache stores."""

    def __init__(self, jobs: list[tuple[CacheStore[Any], float]]) -> None:
        self.jobs = jobs
        self._executor = ThreadPoolExecutor(max_workers=max(1, len(jobs)))
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start one refresh loop per store."""
        if self._running:
            return
        self._running = True

        for store, interval in self.jobs:
            task = asyncio.create_task(
                self._refresh_loop(store, interval),
                name=f"refresh-{store.name}",
            )
            self._tasks.append(task)

        logger.info("Refresh scheduler started: %d caches", len(self.jobs))

    async def stop(self) -> None:
        """Stop all refresh loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._executor.shutdown(wait=False)
        logger.info("Refresh scheduler stopped")

    async def run_all_now(self) -> None:
        """Rebuild every store immediately (manual trigger)."""
        loop = asyncio.get_running_loop()
        for store, _ in self.jobs:
            await loop.run_in_executor(self._executor, store.refresh)

    async def _refresh_loop(self, store: CacheStore[Any], interval: float) -> None:
        """Persistent loop that rebuilds a single store at its interval."""
        loop = asyncio.get_running_loop()

        while self._running:
            try:
                await loop.run_in_executor(self._executor, store.refresh)
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Refresh loop error: %s", store.name)
                await asyncio.sleep(min(interval, 60))
