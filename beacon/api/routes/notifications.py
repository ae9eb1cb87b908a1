"""Notification target, delivery ledger, and in-app inbox API routes."""

import uuid
from dataclasses import asdict
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.api.deps import get_dispatcher
from beacon.core.dispatcher import NotificationDispatcher
from beacon.database import get_db
from beacon.models import InAppNotification, NotificationTarget
from beacon.schemas import (
    DeliveryAttemptListResponse,
    DeliveryAttemptResponse,
    DispatchRequest,
    DispatchResponse,
    InAppNotificationListResponse,
    InAppNotificationResponse,
    NotificationTargetCreate,
    NotificationTargetListResponse,
    NotificationTargetResponse,
    NotificationTargetUpdate,
    TargetResultResponse,
)
from beacon.services.ledger import list_attempts

router = APIRouter(prefix="/notifications", tags=["notifications"])


async def _target_or_404(db: AsyncSession, target_id: uuid.UUID) -> NotificationTarget:
    stmt = select(NotificationTarget).where(NotificationTarget.id == target_id)
    result = await db.execute(stmt)
    target = result.scalar_one_or_none()
    if not target:
        raise HTTPException(404, "Target not found")
    return target


# ─── Targets ──────────────────────────────────────────────


@router.get("/targets", response_model=NotificationTargetListResponse)
async def list_targets(
    owner_id: uuid.UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List notification targets."""
    query = select(NotificationTarget)
    count_query = select(func.count(NotificationTarget.id))
    if owner_id:
        query = query.where(NotificationTarget.owner_id == owner_id)
        count_query = count_query.where(NotificationTarget.owner_id == owner_id)

    count_result = await db.execute(count_query)
    total = count_result.scalar() or 0

    query = (
        query.order_by(NotificationTarget.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    targets = list(result.scalars().all())

    return NotificationTargetListResponse(
        targets=[NotificationTargetResponse.model_validate(t) for t in targets],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/targets", response_model=NotificationTargetResponse, status_code=201)
async def create_target(
    data: NotificationTargetCreate,
    db: AsyncSession = Depends(get_db),
):
    """Register a webhook target."""
    target = NotificationTarget(**data.model_dump())
    db.add(target)
    await db.flush()
    await db.refresh(target)
    return NotificationTargetResponse.model_validate(target)


@router.get("/targets/{target_id}", response_model=NotificationTargetResponse)
async def get_target(
    target_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a single notification target."""
    target = await _target_or_404(db, target_id)
    return NotificationTargetResponse.model_validate(target)


@router.put("/targets/{target_id}", response_model=NotificationTargetResponse)
async def update_target(
    target_id: uuid.UUID,
    data: NotificationTargetUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update a notification target."""
    target = await _target_or_404(db, target_id)

    update_data = data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(target, field, value)

    target.updated_at = datetime.now(UTC)
    await db.flush()
    await db.refresh(target)
    return NotificationTargetResponse.model_validate(target)


@router.delete("/targets/{target_id}", status_code=204)
async def delete_target(
    target_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a target together with its delivery history."""
    target = await _target_or_404(db, target_id)
    await db.delete(target)
    await db.flush()


@router.post("/targets/{target_id}/test", response_model=TargetResultResponse)
async def test_target(
    target_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send a test event to one target, regardless of its subscriptions."""
    target = await _target_or_404(db, target_id)
    result = await dispatcher.send_test(target)
    return TargetResultResponse(**asdict(result))


# ─── Dispatch & Ledger ────────────────────────────────────


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_event(
    data: DispatchRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Deliver an event to every subscribed target of its owner."""
    outcome = await dispatcher.dispatch(
        data.owner_id,
        data.event_type,
        data.title,
        data.message,
        data.severity.value,
        data.metadata,
    )
    return DispatchResponse(
        delivered=outcome.delivered,
        total=outcome.total,
        results=[TargetResultResponse(**asdict(r)) for r in outcome.results],
    )


@router.get("/deliveries", response_model=DeliveryAttemptListResponse)
async def list_deliveries(
    owner_id: uuid.UUID | None = Query(None),
    target_id: uuid.UUID | None = Query(None),
    event_type: str | None = Query(None),
    success: bool | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Delivery ledger, newest first."""
    attempts, total = await list_attempts(
        db,
        owner_id=owner_id,
        target_id=target_id,
        event_type=event_type,
        success=success,
        page=page,
        page_size=page_size,
    )
    return DeliveryAttemptListResponse(
        deliveries=[DeliveryAttemptResponse.model_validate(a) for a in attempts],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/deliveries/{delivery_id}/retry", response_model=TargetResultResponse)
async def retry_delivery(
    delivery_id: uuid.UUID,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Re-send a logged payload to the same target."""
    result = await dispatcher.retry_delivery(delivery_id)
    if result is None:
        raise HTTPException(404, "Delivery or its target not found")
    return TargetResultResponse(**asdict(result))


# ─── Inbox ────────────────────────────────────────────────


@router.get("/inbox", response_model=InAppNotificationListResponse)
async def list_inbox(
    owner_id: uuid.UUID = Query(...),
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """In-app notifications of one owner, newest first."""
    filters = [InAppNotification.owner_id == owner_id]
    if unread_only:
        filters.append(InAppNotification.read.is_(False))

    total_result = await db.execute(select(func.count(InAppNotification.id)).where(*filters))
    total = total_result.scalar() or 0
    unread_result = await db.execute(
        select(func.count(InAppNotification.id)).where(
            InAppNotification.owner_id == owner_id, InAppNotification.read.is_(False)
        )
    )
    unread = unread_result.scalar() or 0

    query = (
        select(InAppNotification)
        .where(*filters)
        .order_by(InAppNotification.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    notifications = list(result.scalars().all())

    return InAppNotificationListResponse(
        notifications=[InAppNotificationResponse.model_validate(n) for n in notifications],
        total=total,
        unread=unread,
        page=page,
        page_size=page_size,
    )


@router.post("/inbox/{notification_id}/read", response_model=InAppNotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Mark one in-app notification as read."""
    stmt = select(InAppNotification).where(InAppNotification.id == notification_id)
    result = await db.execute(stmt)
    notification = result.scalar_one_or_none()
    if not notification:
        raise HTTPException(404, "Notification not found")
    notification.read = True
    await db.flush()
    return InAppNotificationResponse.model_validate(notification)
