"""Rolling-window rate-limit estimation from local session logs.

The vendor does not expose plan limits for subscription use, so consumption is
estimated from output tokens written inside the rolling window against a fixed
estimated cap. The snapshot is rebuilt from scratch on every refresh because
log writers can append events out of order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from session_monitor.usage.log_reader import SYNTHETIC_MODEL, AssistantRecord, iter_records
from session_monitor.usage.sessions import SessionRecord

logger = logging.getLogger(__name__)

NO_LIMIT_LABEL = "No active limit"


@dataclass(frozen=True)
class OutputTokenEvent:
    timestamp: datetime
    output_tokens: int


@dataclass(frozen=True)
class MessageStamp:
    message_id: str
    timestamp: datetime


@dataclass(frozen=True)
class RateLimitEstimate:
    """Estimated consumption of the rolling window at a point in time."""

    output_tokens: int
    limit: int
    usage_percent: float  # 0..100, capped at 100
    active: bool
    reset_at: datetime | None
    resets_in_seconds: int
    reset_label: str
    event_count: int
    window_hours: float
    is_ready: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_tokens": self.output_tokens,
            "limit": self.limit,
            "usage_percent": self.usage_percent,
            "active": self.active,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "resets_in_seconds": self.resets_in_seconds,
            "reset_label": self.reset_label,
            "event_count": self.event_count,
            "window_hours": self.window_hours,
            "is_ready": self.is_ready,
        }


def format_duration(seconds: int) -> str:
    """Format seconds into a human-readable duration like '2h 13m' or '6d 4h'."""
    if seconds <= 0:
        return "now"
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m"


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Output-token events and assistant message stamps near ``built_at``."""

    events: tuple[OutputTokenEvent, ...] = ()
    messages: tuple[MessageStamp, ...] = ()
    window: timedelta = timedelta(hours=5)
    built_at: datetime | None = None
    message_cutoff: datetime | None = None  # oldest instant with message stamps kept

    @property
    def is_ready(self) -> bool:
        return self.built_at is not None

    @classmethod
    def empty(cls, window_hours: float = 5) -> RateLimitSnapshot:
        return cls(window=timedelta(hours=window_hours))

    def window_events(self, now: datetime) -> list[OutputTokenEvent]:
        """Events inside ``[now - window, now]``; both ends inclusive."""
        cutoff = now - self.window
        return [e for e in self.events if cutoff <= e.timestamp <= now]

    def estimate(self, now: datetime, limit: int) -> RateLimitEstimate:
        events = self.window_events(now)
        tokens = sum(e.output_tokens for e in events)
        pct = min(100.0, round(tokens / limit * 100, 1)) if limit > 0 else 0.0
        window_hours = self.window.total_seconds() / 3600

        if not events:
            return RateLimitEstimate(
                output_tokens=0,
                limit=limit,
                usage_percent=0.0,
                active=False,
                reset_at=None,
                resets_in_seconds=0,
                reset_label=NO_LIMIT_LABEL,
                event_count=0,
                window_hours=window_hours,
                is_ready=self.is_ready,
            )

        # The window resets once its oldest event slides out.
        reset_at = events[0].timestamp + self.window
        reset_seconds = max(0, int((reset_at - now).total_seconds()))
        return RateLimitEstimate(
            output_tokens=tokens,
            limit=limit,
            usage_percent=pct,
            active=True,
            reset_at=reset_at,
            resets_in_seconds=reset_seconds,
            reset_label=format_duration(reset_seconds),
            event_count=len(events),
            window_hours=window_hours,
            is_ready=self.is_ready,
        )

    def messages_since(self, captured_at: datetime, now: datetime) -> int:
        """Distinct assistant messages written after ``captured_at``."""
        return sum(1 for m in self.messages if captured_at < m.timestamp <= now)

    def covers_messages_since(self, since: datetime) -> bool:
        """True when every message written after ``since`` is in ``messages``."""
        return self.message_cutoff is not None and since >= self.message_cutoff


def build_rate_limit_snapshot(
    sessions: list[SessionRecord],
    now: datetime | None = None,
    window_hours: float = 5,
    lookback_hours: float = 24,
    messages_since: datetime | None = None,
) -> RateLimitSnapshot:
    """Scan session logs for recent output tokens and assistant messages.

    Message stamps go back ``max(window, lookback_hours)``, or to
    ``messages_since`` when that is older.
    """
    now = now or datetime.now(timezone.utc)
    window = timedelta(hours=window_hours)
    cutoff = now - window
    message_cutoff = now - max(window, timedelta(hours=lookback_hours))
    if messages_since is not None and messages_since < message_cutoff:
        message_cutoff = messages_since

    events: list[OutputTokenEvent] = []
    stamps: dict[str, datetime] = {}

    for session in sessions:
        path = session.log_path
        if path is None:
            continue
        # Quick stat check: a file untouched since the cutoff has nothing recent
        try:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            continue
        if mtime < message_cutoff:
            continue

        for index, record in enumerate(iter_records(path)):
            if not isinstance(record, AssistantRecord) or record.model == SYNTHETIC_MODEL:
                continue
            ts = record.timestamp
            if ts is None or ts > now:
                continue

            if ts >= message_cutoff:
                key = record.message_id or f"{session.session_id}:{index}"
                if key not in stamps or ts < stamps[key]:
                    stamps[key] = ts

            if record.usage is not None and record.usage.output_tokens > 0 and ts >= cutoff:
                events.append(OutputTokenEvent(timestamp=ts, output_tokens=record.usage.output_tokens))

    events.sort(key=lambda e: e.timestamp)
    messages = sorted(
        (MessageStamp(message_id=k, timestamp=v) for k, v in stamps.items()),
        key=lambda m: m.timestamp,
    )
    return RateLimitSnapshot(
        events=tuple(events),
        messages=tuple(messages),
        window=window,
        built_at=now,
        message_cutoff=message_cutoff,
    )
