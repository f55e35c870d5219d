from session_monitor.usage.cost_cache import CostSnapshot, DailyCostEntry, MonthlyCostEntry
from session_monitor.usage.log_reader import TokenCounts, UsageEvent, read_usage_events
from session_monitor.usage.rate_limit import RateLimitEstimate, RateLimitSnapshot
from session_monitor.usage.sessions import SessionRecord, SessionStatus
from session_monitor.usage.sync import InvalidSyncInput, SyncReconciler, SyncSnapshot
from session_monitor.usage.todos import merge_todos

__all__ = [
    "CostSnapshot",
    "DailyCostEntry",
    "InvalidSyncInput",
    "MonthlyCostEntry",
    "RateLimitEstimate",
    "RateLimitSnapshot",
    "SessionRecord",
    "SessionStatus",
    "SyncReconciler",
    "SyncSnapshot",
    "TokenCounts",
    "UsageEvent",
    "merge_todos",
    "read_usage_events",
]
