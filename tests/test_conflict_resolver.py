"""Tests for the last-write-wins conflict resolver."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.contact_sync.integrations.conflict import resolve_conflict
from src.contact_sync.integrations.schemas import SyncAction

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestResolveConflict:
    def test_same_inputs_same_result(self):
        a = resolve_conflict(T0 + timedelta(hours=1), T0 + timedelta(hours=2), T0)
        b = resolve_conflict(T0 + timedelta(hours=1), T0 + timedelta(hours=2), T0)
        assert a == b

    def test_no_watermark_never_no_action(self):
        result = resolve_conflict(T0, T0 - timedelta(days=1), None)
        assert result.action != SyncAction.NO_ACTION

    def test_no_watermark_newer_external_wins(self):
        result = resolve_conflict(T0, T0 + timedelta(minutes=5), None)
        assert result.action == SyncAction.PULL_EXTERNAL

    def test_no_watermark_no_external_time_pushes(self):
        result = resolve_conflict(T0, None, None)
        assert result.action == SyncAction.PUSH_LOCAL
        assert "no modification time" in result.reason

    def test_only_local_changed(self):
        result = resolve_conflict(T0 + timedelta(hours=1), T0 - timedelta(hours=1), T0)
        assert result.action == SyncAction.PUSH_LOCAL
        assert result.reason == "Local changed since last sync"

    def test_only_external_changed(self):
        result = resolve_conflict(T0 - timedelta(hours=1), T0 + timedelta(hours=1), T0)
        assert result.action == SyncAction.PULL_EXTERNAL
        assert result.reason == "External changed since last sync"

    def test_external_without_timestamp_counts_as_unchanged(self):
        result = resolve_conflict(T0 - timedelta(hours=1), None, T0)
        assert result.action == SyncAction.NO_ACTION

    def test_neither_changed(self):
        result = resolve_conflict(T0, T0, T0)
        assert result.action == SyncAction.NO_ACTION
        assert result.reason == "No changes since last sync"

    def test_both_changed_local_newer(self):
        result = resolve_conflict(T0 + timedelta(hours=2), T0 + timedelta(hours=1), T0)
        assert result.action == SyncAction.PUSH_LOCAL

    def test_both_changed_external_newer(self):
        result = resolve_conflict(T0 + timedelta(hours=1), T0 + timedelta(hours=2), T0)
        assert result.action == SyncAction.PULL_EXTERNAL

    def test_tie_goes_to_external(self):
        same = T0 + timedelta(hours=1)
        result = resolve_conflict(same, same, T0)
        assert result.action == SyncAction.PULL_EXTERNAL
        assert "equal" in result.reason

    def test_naive_datetimes_treated_as_utc(self):
        naive_local = datetime(2026, 3, 1, 13, 0)
        result = resolve_conflict(naive_local, None, T0)
        assert result.action == SyncAction.PUSH_LOCAL
