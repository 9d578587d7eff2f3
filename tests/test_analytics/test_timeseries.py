"""Tests for dense time-series bucketing."""

from dataclasses import dataclass
from datetime import date, datetime, timezone

import pytest

from rehab_progress.analytics.timeseries import Granularity, bucket, granularity_for, window_days
from rehab_progress.plans.errors import ValidationError


@dataclass
class Event:
    timestamp: datetime


# ------------------------------------------------------------------ windows

class TestGranularity:
    def test_window_is_inclusive(self):
        assert window_days(date(2026, 3, 1), date(2026, 3, 1)) == 1
        assert window_days(date(2026, 3, 1), date(2026, 3, 31)) == 31

    def test_31_days_is_daily(self):
        assert granularity_for(date(2026, 1, 1), date(2026, 1, 31)) == Granularity.DAY

    def test_32_days_is_monthly(self):
        assert granularity_for(date(2026, 1, 1), date(2026, 2, 1)) == Granularity.MONTH


# ------------------------------------------------------------------- daily

class TestDailyBuckets:
    def test_empty_window_is_dense(self):
        result = bucket([], date(2026, 3, 1), date(2026, 3, 10))

        assert result.granularity == Granularity.DAY
        assert len(result.buckets) == 10
        assert all(b.count == 0 for b in result.buckets)
        assert result.total == 0
        assert result.average == 0
        assert result.slope == 0

    def test_labels(self):
        result = bucket([], date(2026, 3, 9), date(2026, 3, 9))
        only = result.buckets[0]
        assert only.key == "2026-03-09"
        assert only.label == "Mar 09"
        assert only.full_label == "Monday, March 09, 2026"

    def test_counts_and_ignores_out_of_window(self):
        records = [
            datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc),
            date(2026, 3, 3),
            Event(datetime(2026, 3, 3, 12, 0, tzinfo=timezone.utc)),
            datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc),
        ]
        result = bucket(records, date(2026, 3, 1), date(2026, 3, 3))

        assert [b.count for b in result.buckets] == [2, 0, 2]
        assert result.total == 4
        assert result.average == 1.33

    def test_timezone_decides_the_day(self):
        late = datetime(2026, 3, 2, 3, 30, tzinfo=timezone.utc)
        utc = bucket([late], date(2026, 3, 1), date(2026, 3, 2), "UTC")
        new_york = bucket([late], date(2026, 3, 1), date(2026, 3, 2), "America/New_York")

        assert [b.count for b in utc.buckets] == [0, 1]
        assert [b.count for b in new_york.buckets] == [1, 0]

    def test_naive_datetimes_are_local(self):
        result = bucket([datetime(2026, 3, 2, 23, 0)], date(2026, 3, 1), date(2026, 3, 2), "Asia/Tokyo")
        assert [b.count for b in result.buckets] == [0, 1]

    def test_trend_line(self):
        records = [date(2026, 3, 2)] + [date(2026, 3, 3)] * 2
        result = bucket(records, date(2026, 3, 1), date(2026, 3, 3))

        assert result.slope == 1.0
        assert [b.trend for b in result.buckets] == [0.0, 1.0, 2.0]


# ----------------------------------------------------------------- monthly

class TestMonthlyBuckets:
    def test_months_cover_the_window(self):
        records = [date(2026, 1, 15), date(2026, 3, 2), date(2026, 3, 20)]
        result = bucket(records, date(2025, 12, 20), date(2026, 3, 25))

        assert result.granularity == Granularity.MONTH
        assert [b.key for b in result.buckets] == ["2025-12", "2026-01", "2026-02", "2026-03"]
        assert [b.count for b in result.buckets] == [0, 1, 0, 2]
        assert result.buckets[0].label == "Dec"
        assert result.buckets[0].full_label == "December 2025"
        assert result.buckets[0].start == date(2025, 12, 1)
        assert result.average == 0.75

    def test_records_before_window_start_in_first_month_are_ignored(self):
        result = bucket([date(2026, 1, 2)], date(2026, 1, 10), date(2026, 3, 1))
        assert result.total == 0


# ------------------------------------------------------------------ errors

class TestErrors:
    def test_end_before_start(self):
        with pytest.raises(ValidationError):
            bucket([], date(2026, 3, 5), date(2026, 3, 1))

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            bucket([], date(2026, 3, 1), date(2026, 3, 5), "Mars/Olympus")

    def test_unreadable_record(self):
        with pytest.raises(ValidationError):
            bucket(["2026-03-01"], date(2026, 3, 1), date(2026, 3, 5))
