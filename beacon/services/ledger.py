"""Delivery ledger: append-only log of every notification attempt."""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from beacon.models import DeliveryAttempt, NotificationTarget

logger = logging.getLogger(__name__)


async def record_attempt(
    db: AsyncSession,
    *,
    target: NotificationTarget,
    event_type: str,
    payload: dict,
    attempt: int,
    status_code: int | None,
    success: bool,
    error_message: str | None,
) -> DeliveryAttempt:
    """Append one attempt row. Rows are never updated afterwards."""
    row = DeliveryAttempt(
        target_id=target.id,
        owner_id=target.owner_id,
        event_type=event_type,
        payload=payload,
        attempt=attempt,
        status_code=status_code,
        success=success,
        error_message=error_message[:500] if error_message else None,
    )
    db.add(row)
    await db.flush()
    return row


async def get_attempt(
    db: AsyncSession, attempt_id: uuid.UUID | str
) -> DeliveryAttempt | None:
    """Load an attempt together with its target."""
    stmt = (
        select(DeliveryAttempt)
        .where(DeliveryAttempt.id == attempt_id)
        .options(selectinload(DeliveryAttempt.target))
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def next_attempt_number(db: AsyncSession, previous: DeliveryAttempt) -> int:
    """Attempt number that continues the logical delivery of ``previous``.

    A logical delivery is one payload snapshot sent to one target, so
    the highest number already recorded for that (target, event,
    payload timestamp) wins over ``previous.attempt`` when a stale row
    is retried.
    """
    stmt = select(func.max(DeliveryAttempt.attempt)).where(
        DeliveryAttempt.target_id == previous.target_id,
        DeliveryAttempt.event_type == previous.event_type,
    )
    timestamp = (previous.payload or {}).get("timestamp")
    if timestamp:
        stmt = stmt.where(DeliveryAttempt.payload["timestamp"].astext == timestamp)
    result = await db.execute(stmt)
    highest = result.scalar() or 0
    return max(highest, previous.attempt or 1) + 1


async def list_attempts(
    db: AsyncSession,
    owner_id: uuid.UUID | None = None,
    target_id: uuid.UUID | None = None,
    event_type: str | None = None,
    success: bool | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[DeliveryAttempt], int]:
    """Delivery log query, newest first."""
    query = select(DeliveryAttempt)
    count_query = select(func.count(DeliveryAttempt.id))

    filters = []
    if owner_id:
        filters.append(DeliveryAttempt.owner_id == owner_id)
    if target_id:
        filters.append(DeliveryAttempt.target_id == target_id)
    if event_type:
        filters.append(DeliveryAttempt.event_type == event_type)
    if success is not None:
        filters.append(DeliveryAttempt.success.is_(success))

    if filters:
        query = query.where(*filters)
        count_query = count_query.where(*filters)

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = (
        query.order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.attempt.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total
