"""Usage monitor: the query surface over the cost / rate-limit caches.

Owns the two cache stores, the manual sync state, the saved API key and the
vendor client. Queries read the latest published snapshots; only session
listing and todo lookup touch the filesystem directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from session_monitor.config import Settings, settings
from session_monitor.credentials.store import ConfigStore
from session_monitor.usage.cost_cache import CostSnapshot, build_cost_snapshot, summarize
from session_monitor.usage.rate_limit import RateLimitSnapshot, build_rate_limit_snapshot
from session_monitor.usage.scheduler import RefreshScheduler
from session_monitor.usage.sessions import (
    SessionRecord,
    load_sessions,
    session_to_dict,
    sort_by_recency,
    with_usage,
)
from session_monitor.usage.store import CacheStore
from session_monitor.usage.sync import SyncReconciler
from session_monitor.usage.todos import load_session_todos
from session_monitor.vendor.client import VendorClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageMonitor:
    """Reads Claude Code session data from ~/.claude and answers usage queries."""

    def __init__(
        self,
        config: Settings | None = None,
        *,
        claude_dir: Path | None = None,
        config_store: ConfigStore | None = None,
        vendor: VendorClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or settings
        self.claude_dir = Path(claude_dir or self.config.claude_dir)
        self.tz = ZoneInfo(self.config.report_timezone)
        self._clock = clock

        self.cost_store: CacheStore[CostSnapshot] = CacheStore(
            "cost", self._build_cost, CostSnapshot.empty()
        )
        self.rate_store: CacheStore[RateLimitSnapshot] = CacheStore(
            "rate-limit",
            self._build_rate_limit,
            RateLimitSnapshot.empty(self.config.rate_limit_window_hours),
        )
        self.sync = SyncReconciler(self.config.sync_percent_per_message)
        self.config_store = config_store or ConfigStore(self.config.config_path)
        self.vendor = vendor or VendorClient(
            self.config_store,
            base_url=self.config.vendor_base_url,
            timeout=self.config.vendor_timeout_seconds,
            ratelimit_ttl=self.config.vendor_ratelimit_ttl_seconds,
            usage_ttl=self.config.vendor_usage_ttl_seconds,
        )

    def now(self) -> datetime:
        return self._clock()

    # -- Cache builds ----------------------------------------------------------

    def sessions(self) -> list[SessionRecord]:
        return load_sessions(self.claude_dir)

    def _build_cost(self) -> CostSnapshot:
        return build_cost_snapshot(self.sessions(), self.tz, self.now())

    def _build_rate_limit(self, messages_since: datetime | None = None) -> RateLimitSnapshot:
        now = self.now()
        live = self.sync.current(now)
        if live is not None and (messages_since is None or live.captured_at < messages_since):
            messages_since = live.captured_at
        return build_rate_limit_snapshot(
            self.sessions(),
            now=now,
            window_hours=self.config.rate_limit_window_hours,
            lookback_hours=self.config.sync_lookback_hours,
            messages_since=messages_since,
        )

    def _messages_snapshot(self, since: datetime) -> RateLimitSnapshot:
        """The cached snapshot, or a fresh scan when its stamps start after ``since``."""
        snapshot = self.rate_store.snapshot
        if not snapshot.is_ready or snapshot.covers_messages_since(since):
            return snapshot
        logger.debug("Rate-limit cache starts after %s; rescanning logs", since.isoformat())
        return self._build_rate_limit(messages_since=since)

    def refresh(self) -> None:
        """Rebuild both caches now."""
        self.rate_store.refresh()
        self.cost_store.refresh()

    def scheduler(self) -> RefreshScheduler:
        return RefreshScheduler(
            [
                (self.rate_store, float(self.config.rate_limit_refresh_seconds)),
                (self.cost_store, float(self.config.cost_refresh_seconds)),
            ]
        )

    # -- Queries ---------------------------------------------------------------

    def list_sessions(self) -> list[dict[str, Any]]:
        """Merged sessions, newest first, with status, cost and token usage."""
        now = self.now()
        cached = self.cost_store.snapshot
        records = [
            with_usage(
                s,
                cached.session_costs.get(s.session_id),
                cached.session_tokens.get(s.session_id),
            )
            for s in self.sessions()
        ]
        return [
            session_to_dict(
                s,
                now,
                active_minutes=self.config.active_minutes,
                recent_minutes=self.config.recent_minutes,
                output_limit=self.config.estimated_output_token_limit,
            )
            for s in sort_by_recency(records)
        ]

    def get_todos(self, session_id: str) -> list[dict[str, Any]]:
        return load_session_todos(self.claude_dir / "todos", session_id)

    def get_stats(self) -> dict[str, Any]:
        return summarize(self.cost_store.snapshot, self.now(), self.tz)

    def get_rate_limit_status(self, synced_at: datetime | None = None) -> dict[str, Any]:
        """Current rate-limit figure: synced correction or local estimate.

        ``synced_at`` lets a client that keeps its own sync timestamp get the
        count of assistant messages written since then.
        """
        now = self.now()
        snapshot = self.rate_store.snapshot
        live = self.sync.current(now)
        if live is not None:
            snapshot = self._messages_snapshot(live.captured_at)
        status = self.sync.status(snapshot, now, self.config.estimated_output_token_limit)
        result = status.to_dict()
        if synced_at is not None and not status.synced:
            result["messages_since_sync"] = self._messages_snapshot(synced_at).messages_since(
                synced_at, now
            )
        return result

    def sync_rate_limit(self, percent_used: float, reset_duration: timedelta) -> dict[str, Any]:
        self.sync.sync(percent_used, reset_duration, now=self.now())
        return self.get_rate_limit_status()

    def clear_rate_limit_sync(self) -> dict[str, Any]:
        self.sync.clear()
        return self.get_rate_limit_status()

    # -- Config ----------------------------------------------------------------

    def get_config(self) -> dict[str, Any]:
        return self.config_store.public_view()

    def set_config(self, api_key: str) -> dict[str, Any]:
        self.config_store.save(api_key)
        self.vendor.invalidate()
        return self.config_store.public_view()

    def delete_config(self) -> dict[str, Any]:
        self.config_store.delete()
        self.vendor.invalidate()
        return self.config_store.public_view()

    # -- Vendor API ------------------------------------------------------------

    def vendor_rate_limits(self) -> dict[str, Any]:
        return self.vendor.rate_limits().model_dump()

    def vendor_usage(self) -> dict[str, Any]:
        return self.vendor.usage_summary(self.now()).model_dump()
