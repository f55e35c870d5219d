"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class LogFactory:
    """Builds Claude Code style JSONL entries and writes them to disk."""

    def user(self, text: str, ts: datetime, **extra: Any) -> dict[str, Any]:
        entry = {
            "type": "user",
            "message": {"role": "user", "content": text},
            "timestamp": iso(ts),
        }
        entry.update(extra)
        return entry

    def assistant(
        self,
        ts: datetime,
        output: int = 0,
        *,
        model: str = "claude-haiku-4-5",
        input: int = 0,
        cache_read: int = 0,
        cache_creation: int = 0,
        message_id: str | None = None,
    ) -> dict[str, Any]:
        message: dict[str, Any] = {
            "role": "assistant",
            "model": model,
            "content": [{"type": "text", "text": "ok"}],
            "usage": {
                "input_tokens": input,
                "output_tokens": output,
                "cache_read_input_tokens": cache_read,
                "cache_creation_input_tokens": cache_creation,
            },
        }
        if message_id is not None:
            message["id"] = message_id
        return {"type": "assistant", "message": message, "timestamp": iso(ts)}

    def write(self, path: Path, entries: list[Any], mtime: datetime | None = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for entry in entries:
                line = entry if isinstance(entry, str) else json.dumps(entry)
                f.write(line + "\n")
        if mtime is not None:
            stamp = mtime.timestamp()
            os.utime(path, (stamp, stamp))
        return path

    def manifest(self, project_dir: Path, entries: list[dict[str, Any]]) -> Path:
        path = project_dir / "sessions-index.json"
        project_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"version": 1, "entries": entries}), encoding="utf-8")
        return path


@pytest.fixture
def logs() -> LogFactory:
    return LogFactory()


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    """A fake ~/.claude with an empty projects/ and todos/ tree."""
    root = tmp_path / ".claude"
    (root / "projects").mkdir(parents=True)
    (root / "todos").mkdir()
    return root


@pytest.fixture
def project_dir(claude_dir: Path) -> Path:
    path = claude_dir / "projects" / "-home-user-app"
    path.mkdir()
    return path
