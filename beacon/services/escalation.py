"""Escalation runs: trigger, acknowledge, and the periodic timeout tick.

State transitions come from ``beacon.core.escalation``; this module owns
persistence and notification. Runs are advanced with a conditional
UPDATE keyed on the state the tick read, so two workers ticking at the
same time never notify the same level twice.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from beacon.config import get_settings
from beacon.core.calendar import local_today
from beacon.core.dispatcher import NotificationDispatcher
from beacon.core.escalation import (
    Acknowledged,
    Active,
    Exhausted,
    RunState,
    Transition,
    acknowledge,
    evaluate,
    start,
    state_of,
    status_of,
)
from beacon.core.exceptions import NotFoundError
from beacon.core.mailer import format_escalation_email, send_email
from beacon.models import EventType, InAppNotification
from beacon.models.oncall import (
    EscalationLevel,
    EscalationPolicy,
    EscalationRun,
    NotifyMethod,
    RunStatus,
)
from beacon.services.oncall import get_policy, get_schedule
from beacon.services.overrides import resolve_assignment

logger = logging.getLogger(__name__)

UNKNOWN_RECIPIENT = "Unknown"


@dataclass
class Recipient:
    name: str
    address: str | None = None
    member_id: uuid.UUID | None = None
    is_override: bool = False


@dataclass
class TickResult:
    evaluated: int = 0
    advanced: int = 0
    wrapped: int = 0
    exhausted: int = 0
    skipped: int = 0


def _state_values(state: RunState) -> dict:
    """Column values that persist ``state`` on an EscalationRun row."""
    values: dict = {"status": status_of(state)}
    if isinstance(state, Active):
        values.update(
            level_index=state.level_index,
            cycles_remaining=state.cycles_remaining,
            level_started_at=state.level_started_at,
        )
    elif isinstance(state, Acknowledged):
        values.update(
            acknowledged_by=state.by,
            acknowledged_at=state.at,
            finished_at=state.at,
        )
    elif isinstance(state, Exhausted):
        values.update(finished_at=state.at)
    return values


# ─── Queries ───────────────────────────────────────────────


async def get_run(db: AsyncSession, run_id) -> EscalationRun | None:
    stmt = (
        select(EscalationRun)
        .where(EscalationRun.id == run_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_runs(
    db: AsyncSession,
    status: RunStatus | None = None,
    reference_id: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[EscalationRun], int]:
    """List escalation runs, newest first."""
    filters = []
    if status:
        filters.append(EscalationRun.status == status)
    if reference_id:
        filters.append(EscalationRun.reference_id == reference_id)

    count_query = select(func.count(EscalationRun.id))
    query = select(EscalationRun)
    if filters:
        count_query = count_query.where(*filters)
        query = query.where(*filters)

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = (
        query.order_by(EscalationRun.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


# ─── Recipients & notification ─────────────────────────────


async def resolve_level_recipient(
    db: AsyncSession,
    level: EscalationLevel,
    today: date | None = None,
    now: datetime | None = None,
) -> Recipient:
    """Who a level notifies right now. Never raises for missing data.

    Schedule levels use the effective on-call member (overrides
    included); sms picks the member's phone, every other method the
    email. Static levels use their contact fields.
    """
    if level.schedule_id:
        schedule = await get_schedule(db, str(level.schedule_id))
        if schedule is not None:
            day = today or local_today(schedule.timezone, now)
            assignment = await resolve_assignment(db, schedule, day)
            member = assignment.member
            if member is not None:
                address = member.phone if level.notify_method == NotifyMethod.SMS else member.email
                return Recipient(member.name, address, member.id, assignment.is_override)
        logger.warning(
            f"Level {level.level_order + 1} schedule {level.schedule_id} has nobody on call"
        )

    if level.contact_name or level.contact_address:
        return Recipient(level.contact_name or level.contact_address, level.contact_address)
    return Recipient(UNKNOWN_RECIPIENT)


async def notify_level(
    db: AsyncSession,
    run: EscalationRun,
    policy: EscalationPolicy,
    level: EscalationLevel,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> Recipient:
    """Notify one escalation level. Delivery problems are logged, not raised."""
    recipient = await resolve_level_recipient(db, level, now=now)
    level_number = level.level_order + 1
    method = NotifyMethod(level.notify_method)
    subject = run.title or run.reference_id
    title = f"Escalation L{level_number}: {subject}"
    message = f"{recipient.name} is being notified via {method.value}."
    metadata = {
        "run_id": str(run.id),
        "policy_id": str(policy.id),
        "reference_id": run.reference_id,
        "level": level_number,
        "notify_method": method.value,
        "target_name": recipient.name,
    }

    # The in-app record is written for every method.
    db.add(
        InAppNotification(
            owner_id=policy.owner_id,
            type=EventType.ESCALATION.value,
            title=title,
            message=message,
            severity=run.severity,
            notification_metadata={
                **metadata,
                "member_id": str(recipient.member_id) if recipient.member_id else None,
                "is_override": recipient.is_override,
            },
        )
    )

    try:
        if method == NotifyMethod.WEBHOOK:
            dispatcher = dispatcher or NotificationDispatcher(db)
            outcome = await dispatcher.dispatch(
                policy.owner_id,
                EventType.ESCALATION.value,
                title,
                message,
                run.severity,
                metadata,
            )
            logger.info(
                f"Escalation L{level_number} webhook for {run.reference_id}: "
                f"{outcome.delivered}/{outcome.total} delivered"
            )
        elif method == NotifyMethod.EMAIL:
            if not recipient.address:
                logger.warning(f"No email address for {recipient.name}, skipping email")
            elif not get_settings().smtp_host:
                logger.warning("SMTP not configured, escalation email skipped")
            else:
                email_subject, html = format_escalation_email(
                    subject, run.severity, level_number, recipient.name, run.reference_id
                )
                await send_email([recipient.address], email_subject, html)
        elif method == NotifyMethod.SMS:
            logger.warning(
                f"SMS escalation to {recipient.name} ({recipient.address or 'no phone'}): "
                f"no SMS provider configured"
            )
    except Exception as e:
        logger.exception(f"Escalation L{level_number} notification via {method.value} failed: {e}")

    logger.info(
        f"Escalation {run.reference_id}: level {level_number} -> {recipient.name} ({method.value})"
    )
    return recipient


# ─── Lifecycle ─────────────────────────────────────────────


async def trigger_escalation(
    db: AsyncSession,
    policy_id,
    severity: str,
    reference_id: str,
    title: str | None = None,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> EscalationRun:
    """Start a run for ``reference_id`` and notify its first level."""
    now = now or datetime.now(UTC)
    policy = await get_policy(db, str(policy_id))
    if policy is None:
        raise NotFoundError(f"Escalation policy {policy_id} not found")

    levels = list(policy.levels)
    state = start(len(levels), policy.repeat_count, now)
    values = {
        "level_index": 0,
        "cycles_remaining": max(policy.repeat_count, 0),
        "level_started_at": now,
        **_state_values(state),
    }
    run = EscalationRun(
        policy_id=policy.id,
        reference_id=reference_id,
        title=title,
        severity=severity,
        **values,
    )
    db.add(run)
    await db.flush()
    await db.refresh(run)

    if isinstance(state, Active):
        await notify_level(db, run, policy, levels[0], dispatcher, now)
    else:
        logger.warning(
            f"Escalation policy '{policy.name}' has no levels; run for {reference_id} exhausted"
        )
    return run


async def acknowledge_run(
    db: AsyncSession,
    run_id,
    acknowledged_by: str | None = None,
    at: datetime | None = None,
) -> EscalationRun | None:
    """Stop a run. Acknowledging a finished run changes nothing."""
    run = await get_run(db, run_id)
    if run is None:
        return None

    at = at or datetime.now(UTC)
    state = acknowledge(state_of(run), acknowledged_by, at)
    if run.status != RunStatus.ACTIVE:
        return run

    result = await db.execute(
        update(EscalationRun)
        .where(EscalationRun.id == run.id, EscalationRun.status == RunStatus.ACTIVE)
        .values(**_state_values(state))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info(f"Escalation {run.reference_id} acknowledged by {acknowledged_by or 'unknown'}")
    return await get_run(db, run_id)


async def acknowledge_reference(
    db: AsyncSession,
    reference_id: str,
    acknowledged_by: str | None = None,
    at: datetime | None = None,
) -> list[EscalationRun]:
    """Acknowledge every active run for an external reference."""
    stmt = select(EscalationRun.id).where(
        EscalationRun.reference_id == reference_id,
        EscalationRun.status == RunStatus.ACTIVE,
    )
    result = await db.execute(stmt)
    run_ids = list(result.scalars().all())

    runs = []
    for run_id in run_ids:
        run = await acknowledge_run(db, run_id, acknowledged_by, at)
        if run is not None:
            runs.append(run)
    return runs


async def run_escalation_tick(
    db: AsyncSession,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> TickResult:
    """Apply at most one timeout transition to every active run.

    Re-running a tick at the same instant is a no-op. A run another
    worker already moved (conditional UPDATE matched no row) is counted
    as skipped and nothing is notified for it.
    """
    now = now or datetime.now(UTC)
    stmt = (
        select(EscalationRun)
        .where(EscalationRun.status == RunStatus.ACTIVE)
        .options(selectinload(EscalationRun.policy).selectinload(EscalationPolicy.levels))
        .order_by(EscalationRun.created_at.asc())
    )
    result = await db.execute(stmt)
    runs = list(result.scalars().all())

    tick = TickResult()
    for run in runs:
        tick.evaluated += 1
        state = state_of(run)
        levels = list(run.policy.levels)
        new_state, transition = evaluate(state, [lvl.timeout_minutes for lvl in levels], now)
        if transition == Transition.NONE:
            continue

        written = await db.execute(
            update(EscalationRun)
            .where(
                EscalationRun.id == run.id,
                EscalationRun.status == RunStatus.ACTIVE,
                EscalationRun.level_index == state.level_index,
                EscalationRun.level_started_at == state.level_started_at,
                EscalationRun.cycles_remaining == state.cycles_remaining,
            )
            .values(**_state_values(new_state))
            .execution_options(synchronize_session=False)
        )
        if not written.rowcount:
            tick.skipped += 1
            logger.debug(f"Run {run.id} already advanced elsewhere, skipping")
            continue

        if transition == Transition.EXHAUSTED:
            tick.exhausted += 1
            logger.warning(
                f"Escalation {run.reference_id} exhausted all levels of '{run.policy.name}' "
                f"without acknowledgement"
            )
            continue

        if transition == Transition.WRAPPED:
            tick.wrapped += 1
        else:
            tick.advanced += 1
        await notify_level(db, run, run.policy, levels[new_state.level_index], dispatcher, now)

    await db.flush()
    if tick.evaluated:
        logger.info(
            f"Escalation tick: evaluated={tick.evaluated}, advanced={tick.advanced}, "
            f"wrapped={tick.wrapped}, exhausted={tick.exhausted}, skipped={tick.skipped}"
        )
    return tick
