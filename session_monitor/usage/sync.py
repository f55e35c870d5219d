"""Manual rate-limit sync.

The user can read the real usage percentage off the vendor's UI and enter it
together with the time left until reset. Until that window elapses, the
reported figure is the synced value plus a fixed per-message increment for
every assistant message written since the sync. This increment is an
approximation, not a measurement.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from session_monitor.usage.rate_limit import RateLimitEstimate, RateLimitSnapshot, format_duration

logger = logging.getLogger(__name__)

DEFAULT_PERCENT_PER_MESSAGE = 0.3


class InvalidSyncInput(ValueError):
    """Raised when a sync request is out of range."""


@dataclass(frozen=True)
class SyncSnapshot:
    percent_used: float
    reset_duration: timedelta
    captured_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "percent_used": self.percent_used,
            "reset_duration_ms": int(self.reset_duration.total_seconds() * 1000),
            "captured_at": self.captured_at.isoformat(),
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class RateLimitStatus:
    """What the rate-limit query reports: synced correction or local estimate."""

    synced: bool
    usage_percent: float
    messages_since_sync: int
    additional_percent: int
    remaining_seconds: int
    reset_label: str
    estimate: RateLimitEstimate
    snapshot: SyncSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "estimated": not self.synced,
            "usage_percent": self.usage_percent,
            "messages_since_sync": self.messages_since_sync,
            "additional_percent": self.additional_percent,
            "remaining_seconds": self.remaining_seconds,
            "reset_label": self.reset_label,
            "sync": self.snapshot.to_dict() if self.snapshot else None,
            "estimate": self.estimate.to_dict(),
        }


class SyncReconciler:
    """Holds at most one user-entered sync snapshot.

    States: unsynced (no snapshot) and synced. The only automatic transition
    is synced -> unsynced once the snapshot's reset duration has elapsed.
    """

    def __init__(self, per_message_percent: float = DEFAULT_PERCENT_PER_MESSAGE) -> None:
        self.per_message_percent = per_message_percent
        self._snapshot: SyncSnapshot | None = None
        self._lock = threading.Lock()

    def sync(
        self,
        percent_used: float,
        reset_duration: timedelta,
        now: datetime | None = None,
    ) -> SyncSnapshot:
        """Enter the synced state. Input is validated before anything changes."""
        if isinstance(percent_used, bool) or not isinstance(percent_used, (int, float)):
            raise InvalidSyncInput("percent_used must be a number")
        if math.isnan(percent_used) or not 0 <= percent_used <= 100:
            raise InvalidSyncInput("percent_used must be between 0 and 100")
        if reset_duration <= timedelta(0):
            raise InvalidSyncInput("reset duration must be positive")

        snapshot = SyncSnapshot(
            percent_used=percent_used,
            reset_duration=reset_duration,
            captured_at=now or datetime.now(timezone.utc),
        )
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "Rate limit synced at %.0f%% (resets in %s)",
            percent_used,
            format_duration(int(reset_duration.total_seconds())),
        )
        return snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None

    def current(self, now: datetime) -> SyncSnapshot | None:
        """The live snapshot, discarding it once its window has elapsed."""
        with self._lock:
            snapshot = self._snapshot
            if snapshot is None:
                return None
            if now - snapshot.captured_at >= snapshot.reset_duration:
                logger.info("Rate limit sync expired; falling back to estimate")
                self._snapshot = None
                return None
            return snapshot

    def correct(self, snapshot: SyncSnapshot, messages_since_sync: int) -> tuple[float, int]:
        """Synced percent plus the per-message increment, capped at 100."""
        additional = round_half_up(messages_since_sync * self.per_message_percent)
        return min(100, snapshot.percent_used + additional), additional

    def status(
        self,
        rate_snapshot: RateLimitSnapshot,
        now: datetime,
        limit: int,
    ) -> RateLimitStatus:
        estimate = rate_snapshot.estimate(now, limit)
        snapshot = self.current(now)
        if snapshot is None:
            return RateLimitStatus(
                synced=False,
                usage_percent=estimate.usage_percent,
                messages_since_sync=0,
                additional_percent=0,
                remaining_seconds=estimate.resets_in_seconds,
                reset_label=estimate.reset_label,
                estimate=estimate,
            )

        messages = rate_snapshot.messages_since(snapshot.captured_at, now)
        percent, additional = self.correct(snapshot, messages)
        remaining = snapshot.reset_duration - (now - snapshot.captured_at)
        remaining_seconds = max(0, int(remaining.total_seconds()))
        return RateLimitStatus(
            synced=True,
            usage_percent=percent,
            messages_since_sync=messages,
            additional_percent=additional,
            remaining_seconds=remaining_seconds,
            reset_label=format_duration(remaining_seconds),
            estimate=estimate,
            snapshot=snapshot,
        )
