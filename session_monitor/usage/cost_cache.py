"""Per-day and per-month cost aggregates built from every session log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

from session_monitor.usage.log_reader import TokenCounts, usage_by_date
from session_monitor.usage.pricing import cost_of
from session_monitor.usage.sessions import SessionRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailyCostEntry:
    date: str  # YYYY-MM-DD
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cost: float = 0.0
    messages: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_creation_tokens
        )


@dataclass(frozen=True)
class MonthlyCostEntry:
    month: str  # YYYY-MM
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cost: float = 0.0
    days: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_creation_tokens
        )


@dataclass(frozen=True)
class CostSnapshot:
    """An immutable, fully built cost aggregate."""

    daily: dict[str, DailyCostEntry] = field(default_factory=dict)
    monthly: dict[str, MonthlyCostEntry] = field(default_factory=dict)
    session_costs: dict[str, float] = field(default_factory=dict)
    session_tokens: dict[str, TokenCounts] = field(default_factory=dict)
    built_at: datetime | None = None

    @property
    def is_ready(self) -> bool:
        return self.built_at is not None

    @classmethod
    def empty(cls) -> CostSnapshot:
        return cls()


def _daily_entry(day: str, counts: TokenCounts, cost: float) -> DailyCostEntry:
    return DailyCostEntry(
        date=day,
        input_tokens=counts.input_tokens,
        output_tokens=counts.output_tokens,
        cache_read_tokens=counts.cache_read_tokens,
        cache_creation_tokens=counts.cache_creation_tokens,
        cost=cost,
        messages=counts.requests,
    )


def monthly_from_daily(daily: dict[str, DailyCostEntry]) -> dict[str, MonthlyCostEntry]:
    """Sum daily entries into months, counting distinct active days."""
    months: dict[str, MonthlyCostEntry] = {}
    for day in sorted(daily):
        d = daily[day]
        key = day[:7]
        m = months.get(key, MonthlyCostEntry(month=key))
        months[key] = MonthlyCostEntry(
            month=key,
            input_tokens=m.input_tokens + d.input_tokens,
            output_tokens=m.output_tokens + d.output_tokens,
            cache_read_tokens=m.cache_read_tokens + d.cache_read_tokens,
            cache_creation_tokens=m.cache_creation_tokens + d.cache_creation_tokens,
            cost=m.cost + d.cost,
            days=m.days + 1,
        )
    return months


def build_cost_snapshot(
    sessions: list[SessionRecord],
    tz: tzinfo = timezone.utc,
    now: datetime | None = None,
) -> CostSnapshot:
    """Fold every session's per-day usage into a new snapshot."""
    day_counts: dict[str, TokenCounts] = {}
    day_costs: dict[str, float] = {}
    session_costs: dict[str, float] = {}
    session_tokens: dict[str, TokenCounts] = {}

    for session in sessions:
        if session.log_path is None:
            continue
        try:
            partition = usage_by_date(session.log_path, tz)
        except (OSError, ValueError) as e:
            logger.warning("Skipping session %s in cost build: %s", session.session_id, e)
            continue

        session_total = 0.0
        session_counts = TokenCounts()
        for day, by_model in partition.items():
            for model, counts in by_model.items():
                increment = cost_of(counts, model)
                day_counts[day] = day_counts.get(day, TokenCounts()) + counts
                day_costs[day] = day_costs.get(day, 0.0) + increment
                session_total += increment
                session_counts = session_counts + counts
        session_costs[session.session_id] = session_total
        session_tokens[session.session_id] = session_counts

    daily = {day: _daily_entry(day, day_counts[day], day_costs[day]) for day in sorted(day_counts)}
    return CostSnapshot(
        daily=daily,
        monthly=monthly_from_daily(daily),
        session_costs=session_costs,
        session_tokens=session_tokens,
        built_at=now or datetime.now(timezone.utc),
    )


# -- Queries -------------------------------------------------------------------


def _previous_month(today: date) -> str:
    first = today.replace(day=1)
    return (first - timedelta(days=1)).strftime("%Y-%m")


def _daily_to_dict(d: DailyCostEntry) -> dict[str, Any]:
    return {
        "date": d.date,
        "input_tokens": d.input_tokens,
        "output_tokens": d.output_tokens,
        "cache_read_tokens": d.cache_read_tokens,
        "cache_creation_tokens": d.cache_creation_tokens,
        "total_tokens": d.total_tokens,
        "messages": d.messages,
        "cost": round(d.cost, 4),
    }


def _monthly_to_dict(m: MonthlyCostEntry) -> dict[str, Any]:
    return {
        "month": m.month,
        "input_tokens": m.input_tokens,
        "output_tokens": m.output_tokens,
        "cache_read_tokens": m.cache_read_tokens,
        "cache_creation_tokens": m.cache_creation_tokens,
        "total_tokens": m.total_tokens,
        "days": m.days,
        "cost": round(m.cost, 4),
    }


def summarize(
    snapshot: CostSnapshot,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> dict[str, Any]:
    """Today / week / month / last-month totals plus history.

    A snapshot that was never built reports zeros with ``is_ready`` False.
    """
    today = now.astimezone(tz).date()
    today_key = today.strftime("%Y-%m-%d")
    week_start = (today - timedelta(days=6)).strftime("%Y-%m-%d")
    month_key = today.strftime("%Y-%m")
    last_month_key = _previous_month(today)

    today_entry = snapshot.daily.get(today_key)
    week = [d for k, d in snapshot.daily.items() if week_start <= k <= today_key]
    month = snapshot.monthly.get(month_key)
    last_month = snapshot.monthly.get(last_month_key)

    return {
        "is_ready": snapshot.is_ready,
        "built_at": snapshot.built_at.isoformat() if snapshot.built_at else None,
        "today_message_count": today_entry.messages if today_entry else 0,
        "tokens": {
            "today_cost": round(today_entry.cost, 4) if today_entry else 0.0,
            "week_cost": round(sum(d.cost for d in week), 4),
            "month_cost": round(month.cost, 4) if month else 0.0,
            "last_month_cost": round(last_month.cost, 4) if last_month else 0.0,
            "today_tokens": today_entry.total_tokens if today_entry else 0,
            "week_tokens": sum(d.total_tokens for d in week),
            "month_tokens": month.total_tokens if month else 0,
            "last_month_tokens": last_month.total_tokens if last_month else 0,
        },
        "daily_history": [_daily_to_dict(snapshot.daily[k]) for k in sorted(snapshot.daily)],
        "monthly_summary": [_monthly_to_dict(snapshot.monthly[k]) for k in sorted(snapshot.monthly)],
    }
