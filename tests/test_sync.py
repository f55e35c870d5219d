"""Tests for the manual rate-limit sync reconciler."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from session_monitor.usage.rate_limit import MessageStamp, OutputTokenEvent, RateLimitSnapshot
from session_monitor.usage.sync import InvalidSyncInput, SyncReconciler, round_half_up

T = datetime(2026, 3, 12, 12, 0, tzinfo=timezone.utc)
D = timedelta(hours=2)
LIMIT = 200_000


def _rate_snapshot(*message_times: datetime) -> RateLimitSnapshot:
    return RateLimitSnapshot(
        events=(OutputTokenEvent(timestamp=T - timedelta(hours=1), output_tokens=20_000),),
        messages=tuple(
            MessageStamp(message_id=f"msg_{i}", timestamp=ts) for i, ts in enumerate(message_times)
        ),
        window=timedelta(hours=5),
        built_at=T,
    )


@pytest.fixture
def reconciler() -> SyncReconciler:
    return SyncReconciler(per_message_percent=0.3)


class TestRoundHalfUp:
    def test_halves_round_up(self) -> None:
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(0.6) == 1
        assert round_half_up(0.3) == 0


class TestSyncLifecycle:
    def test_starts_unsynced(self, reconciler) -> None:
        assert reconciler.current(T) is None

    def test_synced_until_duration_elapses(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        assert reconciler.current(T + D - timedelta(milliseconds=1)) is not None

    def test_expires_at_duration(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        assert reconciler.current(T + D) is None
        # Discarded, not just hidden
        assert reconciler.current(T) is None

    def test_clear(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        reconciler.clear()
        assert reconciler.current(T) is None

    def test_resync_replaces(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        reconciler.sync(10, D, now=T + timedelta(minutes=1))
        snap = reconciler.current(T + timedelta(minutes=2))
        assert snap.percent_used == 10


class TestValidation:
    @pytest.mark.parametrize("percent", [-1, 101, float("nan"), True, "50", None])
    def test_invalid_percent(self, reconciler, percent) -> None:
        with pytest.raises(InvalidSyncInput):
            reconciler.sync(percent, D, now=T)
        assert reconciler.current(T) is None

    def test_bounds_accepted(self, reconciler) -> None:
        reconciler.sync(0, D, now=T)
        reconciler.sync(100, D, now=T)
        assert reconciler.current(T).percent_used == 100

    def test_non_positive_duration(self, reconciler) -> None:
        with pytest.raises(InvalidSyncInput):
            reconciler.sync(40, timedelta(0), now=T)

    def test_invalid_input_keeps_previous_state(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        with pytest.raises(InvalidSyncInput):
            reconciler.sync(150, D, now=T)
        assert reconciler.current(T).percent_used == 40


class TestCorrection:
    def test_two_messages(self, reconciler) -> None:
        snap = reconciler.sync(40, D, now=T)
        assert reconciler.correct(snap, 2) == (41, 1)

    def test_zero_messages(self, reconciler) -> None:
        snap = reconciler.sync(40, D, now=T)
        assert reconciler.correct(snap, 0) == (40, 0)

    def test_capped_at_100(self, reconciler) -> None:
        snap = reconciler.sync(99, D, now=T)
        percent, additional = reconciler.correct(snap, 10)
        assert percent == 100
        assert additional == 3


class TestStatus:
    def test_unsynced_reports_estimate(self, reconciler) -> None:
        status = reconciler.status(_rate_snapshot(), T, LIMIT)
        assert status.synced is False
        assert status.usage_percent == 10.0
        assert status.to_dict()["estimated"] is True
        assert status.to_dict()["sync"] is None

    def test_synced_counts_messages_after_capture(self, reconciler) -> None:
        reconciler.sync(40, D, now=T)
        now = T + timedelta(minutes=30)
        rate = _rate_snapshot(
            T - timedelta(minutes=1),
            T + timedelta(minutes=5),
            T + timedelta(minutes=10),
        )
        status = reconciler.status(rate, now, LIMIT)

        assert status.synced is True
        assert status.messages_since_sync == 2
        assert status.usage_percent == 41
        assert status.additional_percent == 1
        assert status.remaining_seconds == 90 * 60
        assert status.reset_label == "1h 30m"
        assert status.estimate.usage_percent == 10.0

    def test_expired_sync_falls_back(self, reconciler) -> None:
        reconciler.sync(80, D, now=T)
        status = reconciler.status(_rate_snapshot(), T + D, LIMIT)
        assert status.synced is False
        assert status.usage_percent == 10.0
