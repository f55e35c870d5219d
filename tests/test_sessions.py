"""Tests for session index reconciliation."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from session_monitor.usage.cost_cache import build_cost_snapshot
from session_monitor.usage.log_reader import TokenCounts
from session_monitor.usage.sessions import (
    SessionStatus,
    candidate_session_ids,
    discover_session,
    display_name,
    load_sessions,
    locate_log,
    read_manifest,
    reconcile,
    session_status,
    session_to_dict,
    with_usage,
)

INDEXED = "aaaaaaaa-1111-4111-8111-111111111111"
FLAT = "bbbbbbbb-2222-4222-8222-222222222222"
NESTED = "cccccccc-3333-4333-8333-333333333333"
SUBTASKS = "dddddddd-4444-4444-8444-444444444444"
EMPTY = "eeeeeeee-5555-4555-8555-555555555555"

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def populated_project(project_dir: Path, logs) -> Path:
    """A project with one indexed session and several the manifest misses."""
    logs.write(
        project_dir / f"{INDEXED}.jsonl",
        [logs.user("Prompt on disk", T0), logs.assistant(T0, 10)],
    )
    logs.manifest(
        project_dir,
        [
            {
                "sessionId": INDEXED,
                "fullPath": str(project_dir / f"{INDEXED}.jsonl"),
                "firstPrompt": "Prompt from manifest",
                "messageCount": 7,
                "created": "2026-03-10T11:00:00.000Z",
                "modified": "2026-03-10T11:30:00.000Z",
                "projectPath": "/home/user/app",
            }
        ],
    )

    # Flat log plus a same-named directory: still one session
    logs.write(
        project_dir / f"{FLAT}.jsonl",
        [logs.user("Flat session", T0), logs.assistant(T0, 200_000)],
    )
    (project_dir / FLAT).mkdir()

    logs.write(
        project_dir / NESTED / f"{NESTED}.jsonl",
        [logs.user("Nested session", T0), logs.assistant(T0, 1)],
    )

    logs.write(
        project_dir / SUBTASKS / "subagents" / "agent-old.jsonl",
        [logs.user("Old subtask", T0)],
        mtime=T0 - timedelta(hours=2),
    )
    logs.write(
        project_dir / SUBTASKS / "subagents" / "agent-new.jsonl",
        [logs.user("New subtask", T0)],
        mtime=T0 - timedelta(minutes=5),
    )

    (project_dir / EMPTY).mkdir()
    (project_dir / "memory").mkdir()
    (project_dir / "not-a-session.jsonl").write_text("", encoding="utf-8")
    return project_dir


# -- Manifest ------------------------------------------------------------------


class TestManifest:
    def test_missing_manifest(self, project_dir: Path) -> None:
        assert read_manifest(project_dir) == []

    def test_corrupt_manifest(self, project_dir: Path) -> None:
        (project_dir / "sessions-index.json").write_text("{broken", encoding="utf-8")
        assert read_manifest(project_dir) == []

    def test_entries_without_id_skipped(self, project_dir: Path, logs) -> None:
        logs.manifest(project_dir, [{"firstPrompt": "no id"}, {"sessionId": INDEXED}])
        sessions = reconcile(read_manifest(project_dir), project_dir)
        assert [s.session_id for s in sessions] == [INDEXED]


# -- Discovery -----------------------------------------------------------------


class TestDiscovery:
    def test_candidates(self, populated_project: Path) -> None:
        ids = candidate_session_ids(populated_project)
        assert ids == sorted([INDEXED, FLAT, NESTED, SUBTASKS, EMPTY])

    def test_locate_log_order(self, populated_project: Path) -> None:
        assert locate_log(populated_project, FLAT) == populated_project / f"{FLAT}.jsonl"
        assert locate_log(populated_project, NESTED) == populated_project / NESTED / f"{NESTED}.jsonl"
        newest = populated_project / SUBTASKS / "subagents" / "agent-new.jsonl"
        assert locate_log(populated_project, SUBTASKS) == newest
        assert locate_log(populated_project, EMPTY) is None


class TestReconcile:
    def test_merges_manifest_and_disk(self, populated_project: Path) -> None:
        sessions = reconcile(read_manifest(populated_project), populated_project)
        by_id = {s.session_id: s for s in sessions}

        assert set(by_id) == {INDEXED, FLAT, NESTED, SUBTASKS}
        assert len(sessions) == 4
        assert not by_id[INDEXED].is_unindexed
        assert all(by_id[i].is_unindexed for i in (FLAT, NESTED, SUBTASKS))

    def test_manifest_wins_collision(self, populated_project: Path) -> None:
        sessions = reconcile(read_manifest(populated_project), populated_project)
        indexed = next(s for s in sessions if s.session_id == INDEXED)
        assert indexed.first_prompt == "Prompt from manifest"
        assert indexed.message_count == 7
        assert indexed.project_path == "/home/user/app"

    def test_discovered_metadata(self, populated_project: Path) -> None:
        sessions = reconcile([], populated_project)
        flat = next(s for s in sessions if s.session_id == FLAT)
        assert flat.first_prompt == "Flat session"
        assert flat.message_count == 1
        assert flat.created_at == T0
        # 200k haiku output tokens at $5/M
        assert flat.estimated_cost == pytest.approx(1.0)
        assert flat.token_usage.output_tokens == 200_000

        sub = next(s for s in sessions if s.session_id == SUBTASKS)
        assert sub.first_prompt == "New subtask"

    def test_discovered_cost_matches_cost_cache(self, project_dir: Path, logs) -> None:
        undated = logs.assistant(T0, 100_000, input=50)
        del undated["timestamp"]
        logs.write(
            project_dir / f"{FLAT}.jsonl",
            [logs.user("Partly undated", T0), logs.assistant(T0, 200_000, input=10), undated],
        )
        record = discover_session(project_dir, FLAT)
        cached = build_cost_snapshot([record], timezone.utc, T0)

        assert record.estimated_cost == pytest.approx(1.0, abs=1e-3)
        assert record.estimated_cost == cached.session_costs[FLAT]
        assert record.token_usage == cached.session_tokens[FLAT]
        assert record.token_usage.input_tokens == 10

    def test_no_manifest_discovers_everything(self, populated_project: Path) -> None:
        (populated_project / "sessions-index.json").unlink()
        sessions = reconcile(read_manifest(populated_project), populated_project)
        assert {s.session_id for s in sessions} == {INDEXED, FLAT, NESTED, SUBTASKS}
        assert all(s.is_unindexed for s in sessions)

    def test_manifest_uses_file_mtime(self, populated_project: Path) -> None:
        log = populated_project / f"{INDEXED}.jsonl"
        stamp = (T0 + timedelta(hours=1)).timestamp()
        os.utime(log, (stamp, stamp))
        sessions = reconcile(read_manifest(populated_project), populated_project)
        indexed = next(s for s in sessions if s.session_id == INDEXED)
        assert indexed.last_modified_at == T0 + timedelta(hours=1)

    def test_load_sessions_across_projects(self, claude_dir: Path, populated_project: Path, logs) -> None:
        other = claude_dir / "projects" / "-home-user-other"
        logs.write(other / f"{FLAT}.jsonl", [logs.user("Duplicate id", T0)])
        logs.write(
            other / "ffffffff-6666-4666-8666-666666666666.jsonl",
            [logs.user("Other project", T0)],
        )

        sessions = load_sessions(claude_dir)
        ids = [s.session_id for s in sessions]
        assert len(ids) == len(set(ids))
        assert "ffffffff-6666-4666-8666-666666666666" in ids

    def test_load_sessions_without_projects(self, tmp_path: Path) -> None:
        assert load_sessions(tmp_path / "missing") == []


# -- Listing -------------------------------------------------------------------


class TestListing:
    def test_display_name(self) -> None:
        assert display_name("<command-message>init</command-message> Set up CI") == "init Set up CI"
        assert display_name("") == "Untitled Session"
        assert display_name("<tag></tag>") == "Untitled Session"
        long = "x" * 150
        assert display_name(long) == "x" * 100 + "..."

    def test_status_thresholds(self) -> None:
        now = T0
        assert session_status(now - timedelta(minutes=2), now)[0] == SessionStatus.ACTIVE
        assert session_status(now - timedelta(minutes=30), now)[0] == SessionStatus.RECENT
        assert session_status(now - timedelta(hours=3), now)[0] == SessionStatus.COMPLETED
        assert session_status(None, now) == (SessionStatus.COMPLETED, None)

    def test_minutes_ago(self) -> None:
        _, minutes = session_status(T0 - timedelta(minutes=30), T0)
        assert minutes == pytest.approx(30)

    def test_cached_usage_overrides_own_figures(self, populated_project: Path) -> None:
        flat = next(s for s in reconcile([], populated_project) if s.session_id == FLAT)
        cached = TokenCounts(output_tokens=100_000, requests=1)

        updated = with_usage(flat, 0.5, cached)
        assert updated.estimated_cost == 0.5
        assert updated.token_usage == cached
        assert with_usage(flat, None) is flat

    def test_session_dict_token_usage(self, populated_project: Path) -> None:
        flat = next(s for s in reconcile([], populated_project) if s.session_id == FLAT)
        data = session_to_dict(flat, T0 + timedelta(hours=2), output_limit=400_000)

        assert data["estimated_cost"] == pytest.approx(1.0)
        assert data["token_usage"] == {
            "input_tokens": 0,
            "output_tokens": 200_000,
            "cache_read_tokens": 0,
            "cache_creation_tokens": 0,
            "total_tokens": 200_000,
            "output_percent": 50.0,
        }

    def test_output_gauge_capped(self, populated_project: Path) -> None:
        flat = next(s for s in reconcile([], populated_project) if s.session_id == FLAT)
        data = session_to_dict(flat, T0, output_limit=100_000)
        assert data["token_usage"]["output_percent"] == 100.0

    def test_session_dict_without_usage(self, populated_project: Path) -> None:
        indexed = next(
            s for s in reconcile(read_manifest(populated_project), populated_project)
            if s.session_id == INDEXED
        )
        data = session_to_dict(indexed, T0)
        assert data["estimated_cost"] == 0.0
        assert data["token_usage"]["total_tokens"] == 0
        assert data["token_usage"]["output_percent"] == 0.0
