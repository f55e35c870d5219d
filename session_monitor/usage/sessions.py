"""Session index reconciliation.

Claude Code keeps a per-project manifest (``sessions-index.json``) but it lags
behind the session logs on disk. The merged session list is the manifest plus
a synthetic record for every session-id-shaped entry in the project directory
that the manifest does not know about.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from session_monitor.usage.log_reader import (
    count_messages,
    first_timestamp,
    TokenCounts,
    first_user_prompt,
    parse_timestamp,
    partition_by_date,
    read_records,
    usage_events,
)
from session_monitor.usage.pricing import cost_of

logger = logging.getLogger(__name__)

MANIFEST_NAME = "sessions-index.json"
SUBTASK_DIR = "subagents"
SESSION_ID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

_TAG_RE = re.compile(r"<[^>]+>")
NAME_MAX_CHARS = 100


class SessionStatus(str, Enum):
    ACTIVE = "active"
    RECENT = "recent"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SessionRecord:
    """One logical session, from the manifest or discovered on disk."""

    session_id: str
    log_path: Path | None
    created_at: datetime | None
    last_modified_at: datetime | None
    message_count: int
    first_prompt: str
    project: str = ""
    project_path: str = ""
    is_unindexed: bool = False
    estimated_cost: float | None = None
    token_usage: TokenCounts | None = None


def is_session_id(name: str) -> bool:
    return bool(SESSION_ID_RE.match(name))


def _mtime(path: Path) -> datetime | None:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


# -- Manifest ------------------------------------------------------------------


def read_manifest(project_dir: Path) -> list[dict[str, Any]]:
    """Entries of ``sessions-index.json``; empty when absent or unreadable."""
    path = project_dir / MANIFEST_NAME
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return []
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.warning("Could not read session manifest %s: %s", path, e)
        return []
    entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        return []
    return [e for e in entries if isinstance(e, dict)]


def manifest_record(entry: dict[str, Any], project_dir: Path) -> SessionRecord | None:
    """Build a SessionRecord from a manifest entry (None if it has no id)."""
    session_id = entry.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        logger.debug("Skipping manifest entry without sessionId in %s", project_dir)
        return None

    log_path: Path | None = None
    full_path = entry.get("fullPath")
    if isinstance(full_path, str) and full_path:
        log_path = Path(full_path)
    if log_path is None or not log_path.is_file():
        sibling = project_dir / f"{session_id}.jsonl"
        if sibling.is_file():
            log_path = sibling

    # Prefer the real file mtime; the manifest's value goes stale.
    modified = _mtime(log_path) if log_path is not None else None
    if modified is None:
        modified = parse_timestamp(entry.get("modified"))

    try:
        message_count = int(entry.get("messageCount") or 0)
    except (TypeError, ValueError):
        message_count = 0

    first_prompt = entry.get("firstPrompt")
    return SessionRecord(
        session_id=session_id,
        log_path=log_path,
        created_at=parse_timestamp(entry.get("created")),
        last_modified_at=modified,
        message_count=message_count,
        first_prompt=first_prompt if isinstance(first_prompt, str) else "",
        project=project_dir.name,
        project_path=str(entry.get("projectPath") or ""),
    )


# -- Discovery -----------------------------------------------------------------


def locate_log(project_dir: Path, session_id: str) -> Path | None:
    """Find the log backing a session directory entry.

    Order: sibling ``<id>.jsonl``, a log inside ``<id>/``, then the most
    recently modified log under ``<id>/subagents/``.
    """
    sibling = project_dir / f"{session_id}.jsonl"
    if sibling.is_file():
        return sibling

    session_dir = project_dir / session_id
    if not session_dir.is_dir():
        return None

    own = session_dir / f"{session_id}.jsonl"
    if own.is_file():
        return own
    inner = sorted(p for p in session_dir.glob("*.jsonl") if p.is_file())
    if inner:
        return inner[0]

    subtask_dir = session_dir / SUBTASK_DIR
    if subtask_dir.is_dir():
        candidates = [p for p in subtask_dir.glob("*.jsonl") if p.is_file()]
        if candidates:
            return max(candidates, key=lambda p: p.stat().st_mtime)
    return None


def discover_session(project_dir: Path, session_id: str) -> SessionRecord | None:
    """Synthesize a record for a session missing from the manifest."""
    log_path = locate_log(project_dir, session_id)
    if log_path is None:
        return None

    records = read_records(log_path)
    cost, tokens = session_usage(partition_by_date(usage_events(records)))

    modified = _mtime(log_path)
    return SessionRecord(
        session_id=session_id,
        log_path=log_path,
        created_at=first_timestamp(records) or modified,
        last_modified_at=modified,
        message_count=count_messages(records),
        first_prompt=first_user_prompt(records) or "",
        project=project_dir.name,
        is_unindexed=True,
        estimated_cost=cost,
        token_usage=tokens,
    )


def session_usage(partition: dict[str, dict[str, TokenCounts]]) -> tuple[float, TokenCounts]:
    """Cost and token totals of one session's dated usage partition."""
    cost = 0.0
    tokens = TokenCounts()
    for by_model in partition.values():
        for model, counts in by_model.items():
            cost += cost_of(counts, model)
            tokens = tokens + counts
    return cost, tokens


def candidate_session_ids(project_dir: Path) -> list[str]:
    """Session-id-shaped directories and ``<id>.jsonl`` files in a project."""
    ids: set[str] = set()
    try:
        entries = list(project_dir.iterdir())
    except OSError as e:
        logger.warning("Could not list %s: %s", project_dir, e)
        return []
    for entry in entries:
        if entry.is_dir() and is_session_id(entry.name):
            ids.add(entry.name)
        elif entry.suffix == ".jsonl" and is_session_id(entry.stem):
            ids.add(entry.stem)
    return sorted(ids)


def reconcile(entries: list[dict[str, Any]], project_dir: Path) -> list[SessionRecord]:
    """Merge manifest entries with sessions discovered in ``project_dir``.

    Manifest records are kept as-is and win any id collision; each discovered
    session appears once, flagged ``is_unindexed``.
    """
    merged: dict[str, SessionRecord] = {}
    for entry in entries:
        record = manifest_record(entry, project_dir)
        if record is not None and record.session_id not in merged:
            merged[record.session_id] = record

    for session_id in candidate_session_ids(project_dir):
        if session_id in merged:
            continue
        try:
            record = discover_session(project_dir, session_id)
        except OSError as e:
            logger.warning("Skipping session %s: %s", session_id, e)
            continue
        if record is not None:
            merged[session_id] = record

    return list(merged.values())


def project_dirs(claude_dir: Path) -> list[Path]:
    projects = claude_dir / "projects"
    try:
        return sorted(d for d in projects.iterdir() if d.is_dir())
    except OSError:
        return []


def load_sessions(claude_dir: Path) -> list[SessionRecord]:
    """Reconciled sessions across every project directory."""
    sessions: list[SessionRecord] = []
    seen: set[str] = set()
    for project_dir in project_dirs(claude_dir):
        for record in reconcile(read_manifest(project_dir), project_dir):
            if record.session_id in seen:
                continue
            seen.add(record.session_id)
            sessions.append(record)
    return sessions


# -- Listing -------------------------------------------------------------------


def display_name(first_prompt: str) -> str:
    """Readable session title from its first prompt."""
    name = _TAG_RE.sub("", first_prompt or "").strip()
    if len(name) > NAME_MAX_CHARS:
        name = name[:NAME_MAX_CHARS] + "..."
    return name or "Untitled Session"


def session_status(
    last_modified_at: datetime | None,
    now: datetime,
    active_minutes: int = 5,
    recent_minutes: int = 60,
) -> tuple[SessionStatus, float | None]:
    """Status by recency, plus minutes since the last write."""
    if last_modified_at is None:
        return SessionStatus.COMPLETED, None
    minutes_ago = (now - last_modified_at).total_seconds() / 60
    if minutes_ago < active_minutes:
        return SessionStatus.ACTIVE, minutes_ago
    if minutes_ago < recent_minutes:
        return SessionStatus.RECENT, minutes_ago
    return SessionStatus.COMPLETED, minutes_ago


def with_usage(
    record: SessionRecord, cost: float | None, tokens: TokenCounts | None = None
) -> SessionRecord:
    """Apply the cost cache's figures; without them the record keeps its own."""
    if cost is None:
        return record
    return replace(record, estimated_cost=cost, token_usage=tokens or record.token_usage)


def token_usage_to_dict(tokens: TokenCounts | None, output_limit: int) -> dict[str, Any]:
    tokens = tokens or TokenCounts()
    percent = 0.0
    if output_limit > 0:
        percent = min(100.0, round(tokens.output_tokens / output_limit * 100, 1))
    return {
        "input_tokens": tokens.input_tokens,
        "output_tokens": tokens.output_tokens,
        "cache_read_tokens": tokens.cache_read_tokens,
        "cache_creation_tokens": tokens.cache_creation_tokens,
        "total_tokens": tokens.total_tokens,
        "output_percent": percent,
    }


def session_to_dict(
    record: SessionRecord,
    now: datetime,
    active_minutes: int = 5,
    recent_minutes: int = 60,
    output_limit: int = 200_000,
) -> dict[str, Any]:
    status, minutes_ago = session_status(
        record.last_modified_at, now, active_minutes, recent_minutes
    )
    return {
        "id": record.session_id,
        "name": display_name(record.first_prompt),
        "message_count": record.message_count,
        "created": record.created_at.isoformat() if record.created_at else None,
        "modified": record.last_modified_at.isoformat() if record.last_modified_at else None,
        "project": record.project,
        "project_path": record.project_path,
        "status": status.value,
        "minutes_ago": round(minutes_ago) if minutes_ago is not None else None,
        "is_unindexed": record.is_unindexed,
        "estimated_cost": round(record.estimated_cost or 0.0, 4),
        "token_usage": token_usage_to_dict(record.token_usage, output_limit),
    }


def sort_by_recency(sessions: list[SessionRecord]) -> list[SessionRecord]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(sessions, key=lambda s: s.last_modified_at or epoch, reverse=True)
