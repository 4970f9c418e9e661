"""Unit tests for the RetentionEngine."""

import logging
from datetime import datetime

from tmbackup.marker import BackupMarker, RetentionWindows
from tmbackup.retention import (
    Disposition,
    RetentionEngine,
    classify,
    snapshot_time,
)


HOUR = 3600
DAY = 24 * HOUR


def decisions_by_name(snapshots, now, windows=None):
    return {d.name: d for d in classify(snapshots, now, windows, utc=True)}


class TestTiers:
    """Tests for each retention tier."""

    def test_all_within_all_window_retained(self):
        """Everything younger than the ALL window is kept."""
        snapshots = [
            "2024-01-10-000000",
            "2024-01-10-010000",
            "2024-01-10-020000",
            "2024-01-10-033000",
        ]
        now = datetime(2024, 1, 10, 4, 0, 0)
        decisions = classify(snapshots, now, RetentionWindows(), utc=True)
        assert len(decisions) == 4
        assert all(d.disposition is Disposition.RETAIN for d in decisions)
        assert {d.tier for d in decisions} == {"ALL"}

    def test_hourly_keeps_newest_of_the_hour(self):
        now = datetime(2024, 1, 10, 12, 0, 0)
        decisions = decisions_by_name(["2024-01-10-010000", "2024-01-10-014500"], now)
        assert decisions["2024-01-10-014500"].disposition is Disposition.RETAIN
        assert decisions["2024-01-10-010000"].disposition is Disposition.EXPIRE
        assert decisions["2024-01-10-010000"].tier == "01H"

    def test_hourly_different_hours_retained(self):
        now = datetime(2024, 1, 10, 12, 0, 0)
        decisions = decisions_by_name(["2024-01-10-015900", "2024-01-10-020100"], now)
        assert not any(d.expired for d in decisions.values())

    def test_four_hourly_blocks(self):
        now = datetime(2024, 1, 10, 12, 0, 0)
        decisions = decisions_by_name(
            ["2024-01-08-010000", "2024-01-08-030000", "2024-01-08-050000"], now
        )
        assert decisions["2024-01-08-050000"].tier == "04H"
        assert not decisions["2024-01-08-050000"].expired
        assert not decisions["2024-01-08-030000"].expired
        assert decisions["2024-01-08-010000"].expired

    def test_eight_hourly_blocks(self):
        now = datetime(2024, 1, 20, 0, 0, 0)
        decisions = decisions_by_name(
            ["2024-01-10-090000", "2024-01-10-150000", "2024-01-10-170000"], now
        )
        assert decisions["2024-01-10-150000"].tier == "08H"
        assert not decisions["2024-01-10-170000"].expired
        assert not decisions["2024-01-10-150000"].expired
        assert decisions["2024-01-10-090000"].expired

    def test_daily(self):
        now = datetime(2024, 2, 1, 0, 0, 0)
        decisions = decisions_by_name(
            ["2024-01-10-010000", "2024-01-10-230000", "2024-01-11-010000"], now
        )
        assert decisions["2024-01-10-230000"].tier == "24H"
        assert not decisions["2024-01-11-010000"].expired
        assert not decisions["2024-01-10-230000"].expired
        assert decisions["2024-01-10-010000"].expired

    def test_monthly_beyond_all_windows(self):
        now = datetime(2024, 6, 1, 0, 0, 0)
        decisions = decisions_by_name(
            ["2024-01-05-000000", "2024-01-20-000000", "2024-02-01-000000"], now
        )
        assert decisions["2024-01-20-000000"].tier == "01M"
        assert not decisions["2024-02-01-000000"].expired
        assert not decisions["2024-01-20-000000"].expired
        assert decisions["2024-01-05-000000"].expired

    def test_custom_windows(self):
        windows = RetentionWindows(all=60, hourly=60, four_hourly=60, eight_hourly=60, daily=60)
        now = datetime(2024, 1, 10, 12, 0, 0)
        decisions = decisions_by_name(["2024-01-10-110000", "2024-01-10-115000"], now, windows)
        assert decisions["2024-01-10-110000"].tier == "01M"
        assert decisions["2024-01-10-110000"].expired


class TestOrdering:
    """Tests for the newest-first walk and its baseline."""

    def test_newest_always_retained(self):
        now = datetime(2030, 1, 1, 0, 0, 0)
        decisions = decisions_by_name(["2020-01-01-000000"], now)
        assert not decisions["2020-01-01-000000"].expired

    def test_baseline_advances_past_expired_snapshots(self):
        """Each snapshot is compared with the one examined just before it."""
        now = datetime(2024, 1, 10, 12, 0, 0)
        decisions = decisions_by_name(
            ["2024-01-10-011000", "2024-01-10-013000", "2024-01-10-015000"], now
        )
        assert not decisions["2024-01-10-015000"].expired
        assert decisions["2024-01-10-013000"].expired
        assert decisions["2024-01-10-011000"].expired

    def test_input_order_does_not_matter(self):
        now = datetime(2024, 1, 10, 12, 0, 0)
        names = ["2024-01-10-010000", "2024-01-10-014500", "2024-01-09-010000"]
        forward = classify(names, now, utc=True)
        backward = classify(list(reversed(names)), now, utc=True)
        assert forward == backward
        assert [d.name for d in forward] == sorted(names, reverse=True)

    def test_expired_returns_names(self):
        engine = RetentionEngine(utc=True)
        now = datetime(2024, 1, 10, 12, 0, 0)
        assert engine.expired(["2024-01-10-010000", "2024-01-10-014500"], now) == [
            "2024-01-10-010000"
        ]


class TestUnparseableNames:
    """Tests for snapshot names that are not valid timestamps."""

    def test_invalid_name_skipped_with_warning(self, caplog):
        now = datetime(2024, 1, 10, 12, 0, 0)
        with caplog.at_level(logging.WARNING, logger="tmbackup"):
            decisions = classify(
                ["2024-01-10-014500", "2024-13-45-999999", "2024-01-10-010000"],
                now,
                utc=True,
            )
        assert [d.name for d in decisions] == [
            "2024-01-10-014500",
            "2024-01-10-010000",
        ]
        assert "Could not parse date: 2024-13-45-999999" in caplog.text

    def test_snapshot_time(self):
        assert snapshot_time("2024-01-10-014500") == datetime(2024, 1, 10, 1, 45, 0)


class TestTimeBase:
    """Tests for the default time base of snapshot names."""

    def test_engine_default_matches_marker_default(self):
        assert RetentionEngine().utc is BackupMarker().utc is False

    def test_classify_defaults_to_local_time(self):
        snapshots = ["2024-01-10-110000", "2024-01-09-120000", "2023-12-01-000000"]
        now = datetime(2024, 1, 10, 12, 0, 0)
        assert classify(snapshots, now) == classify(snapshots, now, utc=False)
