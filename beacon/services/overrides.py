"""Day overrides of the on-call rotation and the resolved calendar view."""

import logging
import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from beacon.config import get_settings
from beacon.core.calendar import calendar_days, on_call_member
from beacon.core.exceptions import ConfigurationError, NotFoundError
from beacon.models.oncall import OnCallMember, OnCallOverride, OnCallSchedule
from beacon.services.oncall import get_schedule

logger = logging.getLogger(__name__)

OVERRIDE_SORT_KEYS = ("created_at", "override_date", "member_name")


@dataclass
class Assignment:
    """Who is on call for one day, and whether an override decided it."""

    day: date
    member: OnCallMember | None
    is_override: bool
    nominal_member: OnCallMember | None
    override: OnCallOverride | None = None


def resolve_with(
    schedule: OnCallSchedule, day: date, override: OnCallOverride | None
) -> Assignment:
    """Combine the rotation and an (optional) override for ``day``.

    An override whose member has left the schedule is ignored.
    """
    members = list(schedule.members)
    nominal = on_call_member(schedule, members, day)
    if override is not None:
        member = next((m for m in members if m.id == override.member_id), None)
        if member is not None:
            return Assignment(day, member, True, nominal, override)
        logger.debug(
            f"Override {override.id} names a member no longer in '{schedule.name}', "
            f"using rotation"
        )
    return Assignment(day, nominal, False, nominal)


# ─── Writes ────────────────────────────────────────────────


async def _load_schedule(db: AsyncSession, schedule_id) -> OnCallSchedule:
    schedule = await get_schedule(db, str(schedule_id))
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found")
    return schedule


def _check_member(schedule: OnCallSchedule, member_id) -> None:
    if not any(str(m.id) == str(member_id) for m in schedule.members):
        raise ConfigurationError(
            f"Member {member_id} does not belong to schedule '{schedule.name}'"
        )


def _upsert(rows: list[dict]):
    stmt = pg_insert(OnCallOverride).values(rows)
    return stmt.on_conflict_do_update(
        constraint="uq_oncall_overrides_schedule_date",
        set_={
            "member_id": stmt.excluded.member_id,
            "reason": stmt.excluded.reason,
            "created_by": stmt.excluded.created_by,
            "created_at": func.now(),
        },
    ).returning(OnCallOverride)


def _row(schedule_id, day: date, member_id, reason, created_by) -> dict:
    return {
        "id": uuid.uuid4(),
        "schedule_id": schedule_id,
        "override_date": day,
        "member_id": member_id,
        "reason": reason,
        "created_by": created_by,
    }


async def set_override(
    db: AsyncSession,
    schedule_id,
    day: date,
    member_id,
    reason: str | None = None,
    created_by: str | None = None,
) -> OnCallOverride:
    """Create or replace the override for one day (last write wins)."""
    schedule = await _load_schedule(db, schedule_id)
    _check_member(schedule, member_id)

    result = await db.scalars(
        _upsert([_row(schedule.id, day, member_id, reason, created_by)]),
        execution_options={"populate_existing": True},
    )
    override = result.one()
    logger.info(f"Override set: schedule='{schedule.name}', date={day}, member={member_id}")
    return override


async def set_bulk_override(
    db: AsyncSession,
    schedule_id,
    start: date,
    end: date,
    member_id,
    reason: str | None = None,
    created_by: str | None = None,
) -> list[OnCallOverride]:
    """Override every day in ``[start, end]`` in a single statement.

    Runs in a savepoint: either every day is written or none is.
    """
    days = list(calendar_days(start, end))
    limit = get_settings().max_bulk_override_days
    if len(days) > limit:
        raise ConfigurationError(f"Range covers {len(days)} days, the limit is {limit}")

    schedule = await _load_schedule(db, schedule_id)
    _check_member(schedule, member_id)

    rows = [_row(schedule.id, day, member_id, reason, created_by) for day in days]
    async with db.begin_nested():
        result = await db.scalars(
            _upsert(rows), execution_options={"populate_existing": True}
        )
        overrides = sorted(result.all(), key=lambda o: o.override_date)

    logger.info(
        f"Bulk override set: schedule='{schedule.name}', {start}..{end} "
        f"({len(overrides)} days), member={member_id}"
    )
    return overrides


async def remove_override(db: AsyncSession, override_id) -> bool:
    """Delete one override. The rotation applies again for that day."""
    result = await db.execute(delete(OnCallOverride).where(OnCallOverride.id == override_id))
    return result.rowcount > 0


# ─── Reads ─────────────────────────────────────────────────


async def get_override_for(
    db: AsyncSession, schedule_id, day: date
) -> OnCallOverride | None:
    stmt = select(OnCallOverride).where(
        OnCallOverride.schedule_id == schedule_id,
        OnCallOverride.override_date == day,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def resolve_assignment(
    db: AsyncSession, schedule: OnCallSchedule, day: date
) -> Assignment:
    """Effective on-call member for ``day``: override first, then rotation."""
    override = await get_override_for(db, schedule.id, day)
    return resolve_with(schedule, day, override)


async def resolve_calendar(
    db: AsyncSession, schedule: OnCallSchedule, start: date, end: date
) -> list[Assignment]:
    """Resolved assignment for each day of ``[start, end]``."""
    days = list(calendar_days(start, end))
    stmt = select(OnCallOverride).where(
        OnCallOverride.schedule_id == schedule.id,
        OnCallOverride.override_date >= start,
        OnCallOverride.override_date <= end,
    )
    result = await db.execute(stmt)
    by_day = {o.override_date: o for o in result.scalars().all()}
    return [resolve_with(schedule, day, by_day.get(day)) for day in days]


async def query_overrides(
    db: AsyncSession,
    schedule_id,
    *,
    start: date | None = None,
    end: date | None = None,
    member_id=None,
    reason: str | None = None,
    sort: str = "created_at",
    direction: str = "desc",
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[OnCallOverride], int]:
    """Override audit log with filters, sorting, and pagination."""
    if sort not in OVERRIDE_SORT_KEYS:
        raise ConfigurationError(f"Unknown sort key '{sort}'")

    filters = [OnCallOverride.schedule_id == schedule_id]
    if start:
        filters.append(OnCallOverride.override_date >= start)
    if end:
        filters.append(OnCallOverride.override_date <= end)
    if member_id:
        filters.append(OnCallOverride.member_id == member_id)
    if reason:
        filters.append(OnCallOverride.reason.icontains(reason, autoescape=True))

    count_query = select(func.count(OnCallOverride.id)).where(*filters)
    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    sort_column = {
        "created_at": OnCallOverride.created_at,
        "override_date": OnCallOverride.override_date,
        "member_name": func.lower(OnCallMember.name),
    }[sort]
    ordering = sort_column.asc() if direction == "asc" else sort_column.desc()

    query = (
        select(OnCallOverride)
        .join(OnCallMember, OnCallOverride.member_id == OnCallMember.id)
        .where(*filters)
        .options(selectinload(OnCallOverride.member))
        .order_by(ordering, OnCallOverride.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total
