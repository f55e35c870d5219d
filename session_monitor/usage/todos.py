"""Merge per-session task-list snapshots.

A session's todo list may be written to several files (one per agent), and the
same item can appear in more than one with different statuses. Items are keyed
by their content text and the most advanced status wins.
"""

from __future__ import annotations

import glob
import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATUS_RANK = {"pending": 0, "in_progress": 1, "completed": 2}


def _rank(item: dict[str, Any]) -> int:
    return STATUS_RANK.get(str(item.get("status", "")), 0)


def todo_key(item: dict[str, Any]) -> str | None:
    key = item.get("content") or item.get("activeForm")
    return key if isinstance(key, str) and key else None


def merge_todos(snapshots: list[list[Any]]) -> list[dict[str, Any]]:
    """Deduplicate items across snapshots; completed > in_progress > pending."""
    merged: dict[str, dict[str, Any]] = {}
    for items in snapshots:
        for item in items:
            if not isinstance(item, dict):
                continue
            key = todo_key(item)
            if key is None:
                continue
            current = merged.get(key)
            if current is None or _rank(item) > _rank(current):
                merged[key] = item
    return list(merged.values())


def read_todo_file(path: Path) -> list[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.debug("Could not read todo snapshot %s: %s", path, e)
        return []
    return data if isinstance(data, list) else []


def load_session_todos(todos_dir: Path, session_id: str) -> list[dict[str, Any]]:
    """Merged todos from every snapshot file named after ``session_id``."""
    if not session_id or "/" in session_id or "\\" in session_id or ".." in session_id:
        return []
    try:
        files = sorted(p for p in todos_dir.glob(f"{glob.escape(session_id)}*.json") if p.is_file())
    except OSError:
        return []
    return merge_todos([read_todo_file(p) for p in files])
