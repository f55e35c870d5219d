"""Parse Claude Code session logs (JSONL) into typed records and usage events.

Each line of a session log is one JSON object. Only three shapes matter here:
user records, assistant records (which carry ``message.usage``) and everything
else. A corrupt line is skipped rather than discarding the file, and missing
token fields count as zero.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Iterator, Union

logger = logging.getLogger(__name__)

SYNTHETIC_MODEL = "<synthetic>"


@dataclass(frozen=True)
class TokenCounts:
    """Sums of the four token categories plus the number of usage events."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    requests: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_creation_tokens
        )

    def __add__(self, other: TokenCounts) -> TokenCounts:
        return TokenCounts(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            requests=self.requests + other.requests,
        )


@dataclass(frozen=True)
class UsageEvent:
    """Token usage of one accounted model invocation."""

    timestamp: datetime | None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model: str = ""
    message_id: str | None = None

    @property
    def counts(self) -> TokenCounts:
        return TokenCounts(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_read_tokens=self.cache_read_tokens,
            cache_creation_tokens=self.cache_creation_tokens,
            requests=1,
        )


# -- Record kinds --------------------------------------------------------------


@dataclass(frozen=True)
class UserRecord:
    timestamp: datetime | None
    text: str | None  # None when the content holds no text block (tool results)
    is_meta: bool = False


@dataclass(frozen=True)
class AssistantRecord:
    timestamp: datetime | None
    message_id: str | None
    model: str
    usage: TokenCounts | None


@dataclass(frozen=True)
class OtherRecord:
    kind: str
    timestamp: datetime | None


LogRecord = Union[UserRecord, AssistantRecord, OtherRecord]


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return 0


def _parse_usage(usage: Any) -> TokenCounts | None:
    if not isinstance(usage, dict):
        return None
    return TokenCounts(
        input_tokens=_int(usage.get("input_tokens")),
        output_tokens=_int(usage.get("output_tokens")),
        cache_read_tokens=_int(usage.get("cache_read_input_tokens")),
        cache_creation_tokens=_int(usage.get("cache_creation_input_tokens")),
        requests=1,
    )


def _content_text(content: Any) -> str | None:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text = block.get("text")
                if isinstance(text, str):
                    return text
    return None


def parse_record(entry: dict[str, Any]) -> LogRecord:
    """Classify one decoded log line into its record kind."""
    kind = entry.get("type")
    timestamp = parse_timestamp(entry.get("timestamp"))
    message = entry.get("message")
    if not isinstance(message, dict):
        message = {}

    if kind == "user":
        return UserRecord(
            timestamp=timestamp,
            text=_content_text(message.get("content")),
            is_meta=bool(entry.get("isMeta")),
        )
    if kind == "assistant":
        message_id = message.get("id")
        return AssistantRecord(
            timestamp=timestamp,
            message_id=message_id if isinstance(message_id, str) else None,
            model=str(message.get("model") or ""),
            usage=_parse_usage(message.get("usage")),
        )
    return OtherRecord(kind=str(kind or ""), timestamp=timestamp)


def iter_records(path: Path) -> Iterator[LogRecord]:
    """Yield records from a JSONL log, skipping malformed lines."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except (json.JSONDecodeError, ValueError):
                    logger.debug("Skipping malformed line %d in %s", line_no, path)
                    continue
                if not isinstance(entry, dict):
                    logger.debug("Skipping non-object line %d in %s", line_no, path)
                    continue
                yield parse_record(entry)
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)


def read_records(path: Path) -> list[LogRecord]:
    return list(iter_records(path))


# -- Usage views ---------------------------------------------------------------


def usage_events(records: list[LogRecord]) -> list[UsageEvent]:
    """Assistant records carrying usage, in read order."""
    events: list[UsageEvent] = []
    for record in records:
        if not isinstance(record, AssistantRecord) or record.usage is None:
            continue
        if record.model == SYNTHETIC_MODEL:
            continue
        u = record.usage
        events.append(
            UsageEvent(
                timestamp=record.timestamp,
                input_tokens=u.input_tokens,
                output_tokens=u.output_tokens,
                cache_read_tokens=u.cache_read_tokens,
                cache_creation_tokens=u.cache_creation_tokens,
                model=record.model,
                message_id=record.message_id,
            )
        )
    return events


def read_usage_events(path: Path) -> list[UsageEvent]:
    """Parse a log file into usage events (empty if unreadable)."""
    return usage_events(read_records(path))


def sum_counts(events: list[UsageEvent]) -> TokenCounts:
    total = TokenCounts()
    for event in events:
        total = total + event.counts
    return total


def bulk_usage(path: Path) -> TokenCounts:
    """Token totals for a whole log, ignoring timestamps."""
    return sum_counts(read_usage_events(path))


def bulk_usage_by_model(path: Path) -> dict[str, TokenCounts]:
    """Token totals for a whole log, split by model."""
    by_model: dict[str, TokenCounts] = defaultdict(TokenCounts)
    for event in read_usage_events(path):
        by_model[event.model] = by_model[event.model] + event.counts
    return dict(by_model)


def partition_by_date(
    events: list[UsageEvent], tz: tzinfo = timezone.utc
) -> dict[str, dict[str, TokenCounts]]:
    """Group events into ``{YYYY-MM-DD: {model: TokenCounts}}``.

    Events without a timestamp cannot be placed on a calendar and are left out.
    """
    days: dict[str, dict[str, TokenCounts]] = {}
    for event in events:
        if event.timestamp is None:
            continue
        date = event.timestamp.astimezone(tz).strftime("%Y-%m-%d")
        models = days.setdefault(date, {})
        models[event.model] = models.get(event.model, TokenCounts()) + event.counts
    return days


def usage_by_date(path: Path, tz: tzinfo = timezone.utc) -> dict[str, dict[str, TokenCounts]]:
    return partition_by_date(read_usage_events(path), tz)


# -- Session metadata helpers --------------------------------------------------


def _is_command_text(text: str) -> bool:
    return text.startswith("<local-command") or text.startswith("<command-")


def first_user_prompt(records: list[LogRecord]) -> str | None:
    """Text of the first user-authored record (meta and slash commands skipped)."""
    for record in records:
        if not isinstance(record, UserRecord) or record.is_meta:
            continue
        if not record.text or not record.text.strip():
            continue
        if _is_command_text(record.text.lstrip()):
            continue
        return record.text
    return None


def count_messages(records: list[LogRecord]) -> int:
    """Conversation turns: user + assistant records, halved."""
    n = sum(1 for r in records if isinstance(r, (UserRecord, AssistantRecord)))
    return n // 2


def first_timestamp(records: list[LogRecord]) -> datetime | None:
    return next((r.timestamp for r in records if r.timestamp is not None), None)
