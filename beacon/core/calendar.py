"""Rotation calendar.

Who is on call on a given day is a pure function of the schedule's
rotation settings and the date:

    days   = (day - anchor_date).days
    cycles = days // rotation_interval_days        (floor, also for days < 0)
    index  = ((current_index + cycles) % N + N) % N

No day-by-day iteration is involved, so any past or future date costs
the same. A schedule without members has no assignment (None).
"""

from collections.abc import Iterator, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo

from beacon.core.exceptions import ConfigurationError

M = TypeVar("M")


def on_call_index(schedule, member_count: int, day: date) -> int | None:
    """Index (into the position-ordered member list) on call for ``day``."""
    if member_count <= 0:
        return None

    interval = max(int(schedule.rotation_interval_days or 1), 1)
    days_since_anchor = (day - schedule.anchor_date).days
    cycles = days_since_anchor // interval
    return ((schedule.current_index + cycles) % member_count + member_count) % member_count


def on_call_member(schedule, members: Sequence[M], day: date) -> M | None:
    """Member on call for ``day`` according to the rotation alone."""
    index = on_call_index(schedule, len(members), day)
    if index is None:
        return None
    return members[index]


def next_rotation(schedule, member_count: int, today: date) -> tuple[int, date] | None:
    """Re-anchor a schedule whose rotation interval has elapsed.

    Returns ``(current_index, anchor_date)`` such that the calendar is
    unchanged for every date, or None if no full interval has passed
    since the anchor (or the schedule has no members).
    """
    if member_count <= 0:
        return None

    interval = max(int(schedule.rotation_interval_days or 1), 1)
    cycles = (today - schedule.anchor_date).days // interval
    if cycles <= 0:
        return None

    index = on_call_index(schedule, member_count, today)
    anchor = schedule.anchor_date + timedelta(days=cycles * interval)
    return index, anchor


def calendar_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day in the inclusive range ``[start, end]``."""
    if end < start:
        raise ConfigurationError(f"Date range end {end} is before start {start}")
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def local_today(timezone: str | None, now: datetime | None = None) -> date:
    """Calendar date in the schedule's timezone (UTC if unknown)."""
    try:
        tz = ZoneInfo(timezone or "UTC")
    except (KeyError, ValueError):
        tz = ZoneInfo("UTC")
    return (now or datetime.now(UTC)).astimezone(tz).date()
