"""Snapshot holder for rebuilt caches.

A rebuild constructs a complete new snapshot and then publishes it by swapping
a single reference, so readers only ever see a finished snapshot.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheStore(Generic[T]):
    """Holds the latest published snapshot produced by ``build``."""

    def __init__(self, name: str, build: Callable[[], T], initial: T) -> None:
        self.name = name
        self._build = build
        self._snapshot = initial
        self._published_started_at = float("-inf")
        self._lock = threading.Lock()
        self.last_error: str | None = None

    @property
    def snapshot(self) -> T:
        return self._snapshot

    def publish(self, snapshot: T, started_at: float | None = None) -> bool:
        """Replace the published snapshot unless a newer build already landed."""
        started = time.monotonic() if started_at is None else started_at
        with self._lock:
            if started < self._published_started_at:
                logger.debug("Discarding stale %s build", self.name)
                return False
            self._snapshot = snapshot
            self._published_started_at = started
            return True

    def refresh(self) -> T:
        """Run a full build and publish it. Returns the published snapshot."""
        started = time.monotonic()
        try:
            snapshot = self._build()
        except Exception as e:
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception("%s rebuild failed", self.name)
            return self._snapshot
        self.last_error = None
        self.publish(snapshot, started_at=started)
        logger.debug("%s rebuilt in %.0fms", self.name, (time.monotonic() - started) * 1000)
        return self._snapshot
