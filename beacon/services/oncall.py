"""CRUD services for on-call schedules, members, and escalation policies."""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from beacon.core.calendar import local_today, next_rotation
from beacon.core.exceptions import ConfigurationError
from beacon.models import EventType, InAppNotification, Severity
from beacon.models.oncall import (
    EscalationLevel,
    EscalationPolicy,
    NotifyMethod,
    OnCallMember,
    OnCallSchedule,
)

logger = logging.getLogger(__name__)


# ─── Schedules ─────────────────────────────────────────────


async def get_schedules(
    db: AsyncSession,
    owner_id: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[OnCallSchedule], int]:
    """List on-call schedules with pagination."""
    query = select(OnCallSchedule).options(selectinload(OnCallSchedule.members))
    count_query = select(func.count(OnCallSchedule.id))

    if owner_id:
        query = query.where(OnCallSchedule.owner_id == owner_id)
        count_query = count_query.where(OnCallSchedule.owner_id == owner_id)

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = (
        query.order_by(OnCallSchedule.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    schedules = list(result.unique().scalars().all())
    return schedules, total


async def get_schedule(
    db: AsyncSession, schedule_id: str
) -> OnCallSchedule | None:
    """Get a single schedule by ID, members loaded in rotation order."""
    stmt = (
        select(OnCallSchedule)
        .where(OnCallSchedule.id == schedule_id)
        .options(selectinload(OnCallSchedule.members))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.unique().scalar_one_or_none()


def _build_member(data: dict, position: int) -> OnCallMember:
    return OnCallMember(
        user_id=data.get("user_id"),
        name=data["name"],
        email=data.get("email"),
        phone=data.get("phone"),
        position=position,
    )


async def create_schedule(
    db: AsyncSession, members: list[dict] | None = None, **kwargs
) -> OnCallSchedule:
    """Create a new on-call schedule. Member order defines rotation order."""
    schedule = OnCallSchedule(**kwargs)
    schedule.members = [_build_member(m, i) for i, m in enumerate(members or [])]
    db.add(schedule)
    await db.flush()
    # Re-fetch with members eagerly loaded for serialization
    return await get_schedule(db, str(schedule.id)) or schedule


async def replace_members(
    db: AsyncSession, schedule: OnCallSchedule, members: list[dict]
) -> None:
    """Replace the member list, keeping rows (and their overrides) by id.

    Positions are renumbered 0..N-1 in the given order. Existing rows are
    first parked on negative positions so the unique (schedule, position)
    constraint holds at every flush.
    """
    existing = {str(m.id): m for m in schedule.members}
    for i, member in enumerate(schedule.members):
        member.position = -(i + 1)
    await db.flush()

    kept: list[OnCallMember] = []
    for position, data in enumerate(members):
        member_id = data.get("id")
        member = existing.pop(str(member_id), None) if member_id else None
        if member_id and member is None:
            raise ConfigurationError(f"Member {member_id} does not belong to this schedule")
        if member is None:
            member = _build_member(data, position)
        else:
            member.name = data.get("name", member.name)
            member.email = data.get("email", member.email)
            member.phone = data.get("phone", member.phone)
            member.user_id = data.get("user_id", member.user_id)
            member.position = position
        kept.append(member)

    for removed in existing.values():
        await db.delete(removed)
    await db.flush()

    schedule.members = kept
    await db.flush()


async def update_schedule(
    db: AsyncSession, schedule_id: str, members: list[dict] | None = None, **kwargs
) -> OnCallSchedule | None:
    """Update an existing schedule."""
    schedule = await get_schedule(db, schedule_id)
    if not schedule:
        return None

    for key, value in kwargs.items():
        if hasattr(schedule, key):
            setattr(schedule, key, value)

    if members is not None:
        await replace_members(db, schedule, members)

    schedule.updated_at = datetime.now(UTC)
    await db.flush()
    # Re-fetch with members eagerly loaded for serialization
    return await get_schedule(db, schedule_id)


async def delete_schedule(
    db: AsyncSession, schedule_id: str
) -> bool:
    """Delete a schedule. Returns True if found and deleted."""
    schedule = await get_schedule(db, schedule_id)
    if not schedule:
        return False
    await db.delete(schedule)
    await db.flush()
    return True


async def remove_member(
    db: AsyncSession, schedule_id: str, member_id: str
) -> bool:
    """Remove one member and close the gap in positions."""
    schedule = await get_schedule(db, schedule_id)
    if not schedule:
        return False
    remaining = [
        {"id": m.id, "name": m.name} for m in schedule.members if str(m.id) != str(member_id)
    ]
    if len(remaining) == len(schedule.members):
        return False
    await replace_members(db, schedule, remaining)
    return True


# ─── Scheduled rotation ───────────────────────────────────


async def rotate_due_schedules(
    db: AsyncSession, now: datetime | None = None
) -> dict:
    """Re-anchor every schedule whose rotation interval has elapsed.

    The calendar is unchanged by re-anchoring; this only moves
    ``current_index``/``anchor_date`` forward and tells the owner who is
    now on call.
    """
    now = now or datetime.now(UTC)
    stmt = select(OnCallSchedule).options(selectinload(OnCallSchedule.members))
    result = await db.execute(stmt)
    schedules = list(result.unique().scalars().all())

    rotated = 0
    for schedule in schedules:
        members = list(schedule.members)
        today = local_today(schedule.timezone, now)
        rotation = next_rotation(schedule, len(members), today)
        if rotation is None:
            continue

        schedule.current_index, schedule.anchor_date = rotation
        schedule.last_rotated_at = now
        member = members[schedule.current_index]
        db.add(
            InAppNotification(
                owner_id=schedule.owner_id,
                type=EventType.ONCALL.value,
                title=f"On-call rotation: {schedule.name}",
                message=f"{member.name} is now on call.",
                severity=Severity.INFO.value,
                notification_metadata={
                    "schedule_id": str(schedule.id),
                    "member_id": str(member.id),
                },
            )
        )
        rotated += 1
        logger.info(f"Rotated schedule '{schedule.name}': {member.name} is now on call")

    await db.flush()
    return {"rotated": rotated, "total": len(schedules)}


# ─── Escalation Policies ──────────────────────────────────


async def get_policies(
    db: AsyncSession,
    owner_id: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[EscalationPolicy], int]:
    """List escalation policies with pagination."""
    count_query = select(func.count(EscalationPolicy.id))
    query = select(EscalationPolicy).options(selectinload(EscalationPolicy.levels))
    if owner_id:
        count_query = count_query.where(EscalationPolicy.owner_id == owner_id)
        query = query.where(EscalationPolicy.owner_id == owner_id)

    count_result = await db.execute(count_query)
    total = count_result.scalar() or 0

    query = (
        query.order_by(EscalationPolicy.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    policies = list(result.unique().scalars().all())
    return policies, total


async def get_policy(
    db: AsyncSession, policy_id: str
) -> EscalationPolicy | None:
    """Get a single escalation policy with its levels in order."""
    stmt = (
        select(EscalationPolicy)
        .where(EscalationPolicy.id == policy_id)
        .options(selectinload(EscalationPolicy.levels))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.unique().scalar_one_or_none()


async def _build_levels(db: AsyncSession, levels: list[dict]) -> list[EscalationLevel]:
    """Validate level definitions and number them 0..N-1 in the given order."""
    built: list[EscalationLevel] = []
    for order, data in enumerate(levels):
        schedule_id = data.get("schedule_id")
        if schedule_id:
            exists = await db.execute(
                select(OnCallSchedule.id).where(OnCallSchedule.id == schedule_id)
            )
            if exists.scalar_one_or_none() is None:
                raise ConfigurationError(
                    f"Level {order + 1} references unknown schedule {schedule_id}"
                )
        elif not (data.get("contact_name") or data.get("contact_address")):
            raise ConfigurationError(
                f"Level {order + 1} needs a schedule or a static contact"
            )
        built.append(
            EscalationLevel(
                level_order=order,
                notify_method=NotifyMethod(data.get("notify_method") or NotifyMethod.IN_APP),
                timeout_minutes=data.get("timeout_minutes", 15),
                schedule_id=schedule_id,
                contact_name=data.get("contact_name"),
                contact_address=data.get("contact_address"),
            )
        )
    return built


async def create_policy(
    db: AsyncSession, levels: list[dict] | None = None, **kwargs
) -> EscalationPolicy:
    """Create a new escalation policy with its level chain."""
    policy = EscalationPolicy(**kwargs)
    policy.levels = await _build_levels(db, levels or [])
    db.add(policy)
    await db.flush()
    return await get_policy(db, str(policy.id)) or policy


async def update_policy(
    db: AsyncSession, policy_id: str, levels: list[dict] | None = None, **kwargs
) -> EscalationPolicy | None:
    """Update an existing escalation policy. ``levels`` replaces the chain."""
    policy = await get_policy(db, policy_id)
    if not policy:
        return None

    for key, value in kwargs.items():
        if hasattr(policy, key):
            setattr(policy, key, value)

    if levels is not None:
        new_levels = await _build_levels(db, levels)
        # Old rows must be gone before new ones reuse their level_order.
        policy.levels.clear()
        await db.flush()
        policy.levels.extend(new_levels)

    policy.updated_at = datetime.now(UTC)
    await db.flush()
    return await get_policy(db, policy_id)


async def delete_policy(
    db: AsyncSession, policy_id: str
) -> bool:
    """Delete an escalation policy."""
    policy = await get_policy(db, policy_id)
    if not policy:
        return False
    await db.delete(policy)
    await db.flush()
    return True
