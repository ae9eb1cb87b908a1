"""Tests for the rotation calendar."""

from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace

import pytest

from beacon.core.calendar import (
    calendar_days,
    local_today,
    next_rotation,
    on_call_index,
    on_call_member,
)
from beacon.core.exceptions import ConfigurationError


def _schedule(current_index=0, interval=1, anchor=date(2024, 1, 1)):
    return SimpleNamespace(
        current_index=current_index,
        rotation_interval_days=interval,
        anchor_date=anchor,
    )


class TestOnCallIndex:
    def test_example_three_members_daily(self):
        schedule = _schedule()
        members = ["A", "B", "C"]
        assert on_call_member(schedule, members, date(2024, 1, 1)) == "A"
        assert on_call_member(schedule, members, date(2024, 1, 2)) == "B"
        assert on_call_member(schedule, members, date(2024, 1, 3)) == "C"
        assert on_call_member(schedule, members, date(2024, 1, 4)) == "A"

    @pytest.mark.parametrize("k", range(-25, 26))
    def test_shifting_by_interval_advances_by_one(self, k):
        anchor = date(2024, 3, 10)
        schedule = _schedule(current_index=1, interval=7, anchor=anchor)
        day = anchor + timedelta(days=7 * k)
        assert on_call_index(schedule, 4, day) == (1 + k) % 4

    def test_same_member_within_interval(self):
        schedule = _schedule(interval=7)
        week = [on_call_index(schedule, 3, date(2024, 1, 1) + timedelta(days=d)) for d in range(7)]
        assert week == [0] * 7
        assert on_call_index(schedule, 3, date(2024, 1, 8)) == 1

    def test_dates_before_anchor(self):
        schedule = _schedule()
        assert on_call_index(schedule, 3, date(2023, 12, 31)) == 2
        assert on_call_index(schedule, 3, date(2023, 12, 29)) == 0

    def test_partial_interval_before_anchor_floors(self):
        schedule = _schedule(interval=7)
        # One day before the anchor belongs to the previous cycle
        assert on_call_index(schedule, 3, date(2023, 12, 31)) == 2

    def test_far_future_date(self):
        schedule = _schedule()
        day = date(2024, 1, 1) + timedelta(days=3 * 100_000 + 2)
        assert on_call_index(schedule, 3, day) == 2

    def test_no_members(self):
        schedule = _schedule()
        assert on_call_index(schedule, 0, date(2024, 1, 1)) is None
        assert on_call_member(schedule, [], date(2024, 1, 1)) is None

    def test_single_member_always_on_call(self):
        schedule = _schedule(interval=3)
        for offset in range(-10, 10):
            assert on_call_member(schedule, ["solo"], date(2024, 1, 1) + timedelta(days=offset)) == "solo"


class TestNextRotation:
    def test_not_due_within_interval(self):
        schedule = _schedule(interval=7)
        assert next_rotation(schedule, 3, date(2024, 1, 7)) is None

    def test_due_after_interval(self):
        schedule = _schedule(interval=7)
        assert next_rotation(schedule, 3, date(2024, 1, 8)) == (1, date(2024, 1, 8))

    def test_skipped_cycles_are_caught_up(self):
        schedule = _schedule(interval=2)
        # 9 days = 4 full cycles
        assert next_rotation(schedule, 3, date(2024, 1, 10)) == (1, date(2024, 1, 9))

    def test_no_members(self):
        assert next_rotation(_schedule(), 0, date(2024, 2, 1)) is None

    def test_reanchoring_preserves_calendar(self):
        before = _schedule(current_index=2, interval=3, anchor=date(2024, 1, 1))
        index, anchor = next_rotation(before, 5, date(2024, 2, 15))
        after = _schedule(current_index=index, interval=3, anchor=anchor)

        for offset in range(-60, 120):
            day = date(2024, 1, 1) + timedelta(days=offset)
            assert on_call_index(before, 5, day) == on_call_index(after, 5, day)


class TestCalendarDays:
    def test_inclusive_range(self):
        days = list(calendar_days(date(2024, 2, 27), date(2024, 3, 1)))
        assert days == [date(2024, 2, 27), date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]

    def test_single_day(self):
        assert list(calendar_days(date(2024, 1, 1), date(2024, 1, 1))) == [date(2024, 1, 1)]

    def test_reversed_range_rejected(self):
        with pytest.raises(ConfigurationError):
            list(calendar_days(date(2024, 1, 2), date(2024, 1, 1)))


class TestLocalToday:
    def test_timezone_ahead_of_utc(self):
        now = datetime(2024, 1, 1, 23, 30, tzinfo=UTC)
        assert local_today("Asia/Tokyo", now) == date(2024, 1, 2)

    def test_timezone_behind_utc(self):
        now = datetime(2024, 1, 2, 3, 0, tzinfo=UTC)
        assert local_today("America/New_York", now) == date(2024, 1, 1)

    def test_unknown_timezone_falls_back_to_utc(self):
        now = datetime(2024, 1, 1, 23, 30, tzinfo=UTC)
        assert local_today("Mars/Olympus_Mons", now) == date(2024, 1, 1)
