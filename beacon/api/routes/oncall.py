"""On-call schedule, calendar, and override API routes."""

import uuid
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.api.deps import http_error
from beacon.config import get_settings
from beacon.core.calendar import local_today
from beacon.core.exceptions import BeaconError
from beacon.database import get_db
from beacon.schemas import (
    AssignmentResponse,
    OnCallBulkOverrideCreate,
    OnCallCalendarResponse,
    OnCallCurrentResponse,
    OnCallMemberResponse,
    OnCallOverrideListResponse,
    OnCallOverrideResponse,
    OnCallOverrideSet,
    OnCallScheduleCreate,
    OnCallScheduleListResponse,
    OnCallScheduleResponse,
    OnCallScheduleUpdate,
    OverrideSortEnum,
    RotationResponse,
    SortDirectionEnum,
)
from beacon.services.oncall import (
    create_schedule,
    delete_schedule,
    get_schedule,
    get_schedules,
    remove_member,
    rotate_due_schedules,
    update_schedule,
)
from beacon.services.overrides import (
    Assignment,
    query_overrides,
    remove_override,
    resolve_assignment,
    resolve_calendar,
    set_bulk_override,
    set_override,
)

router = APIRouter(prefix="/oncall", tags=["oncall"])


def _member(member) -> OnCallMemberResponse | None:
    return OnCallMemberResponse.model_validate(member) if member is not None else None


def _assignment(assignment: Assignment) -> dict:
    override = assignment.override
    return {
        "day": assignment.day,
        "member": _member(assignment.member),
        "is_override": assignment.is_override,
        "nominal_member": _member(assignment.nominal_member),
        "override_id": override.id if override else None,
        "reason": override.reason if override else None,
    }


def _override(override, member_name: str | None = None) -> OnCallOverrideResponse:
    response = OnCallOverrideResponse.model_validate(override)
    return response.model_copy(update={"member_name": member_name})


async def _schedule_or_404(db: AsyncSession, schedule_id: uuid.UUID):
    schedule = await get_schedule(db, str(schedule_id))
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


# ─── Schedules ─────────────────────────────────────────────


@router.get(
    "/schedules",
    response_model=OnCallScheduleListResponse,
    summary="List on-call schedules",
)
async def list_schedules(
    owner_id: uuid.UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> OnCallScheduleListResponse:
    schedules, total = await get_schedules(
        db, owner_id=owner_id, page=page, page_size=page_size
    )
    return OnCallScheduleListResponse(
        schedules=[OnCallScheduleResponse.model_validate(s) for s in schedules],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/schedules",
    response_model=OnCallScheduleResponse,
    status_code=201,
    summary="Create an on-call schedule",
)
async def create_schedule_route(
    body: OnCallScheduleCreate,
    db: AsyncSession = Depends(get_db),
) -> OnCallScheduleResponse:
    data = body.model_dump(exclude_unset=True)
    if data.get("anchor_date") is None:
        data["anchor_date"] = local_today(body.timezone)
    schedule = await create_schedule(db, **data)
    return OnCallScheduleResponse.model_validate(schedule)


@router.get(
    "/schedules/{schedule_id}",
    response_model=OnCallScheduleResponse,
    summary="Get an on-call schedule",
)
async def get_schedule_route(
    schedule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> OnCallScheduleResponse:
    schedule = await _schedule_or_404(db, schedule_id)
    return OnCallScheduleResponse.model_validate(schedule)


@router.put(
    "/schedules/{schedule_id}",
    response_model=OnCallScheduleResponse,
    summary="Update an on-call schedule",
)
async def update_schedule_route(
    schedule_id: uuid.UUID,
    body: OnCallScheduleUpdate,
    db: AsyncSession = Depends(get_db),
) -> OnCallScheduleResponse:
    data = body.model_dump(exclude_unset=True)
    try:
        schedule = await update_schedule(db, str(schedule_id), **data)
    except BeaconError as e:
        raise http_error(e) from e
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return OnCallScheduleResponse.model_validate(schedule)


@router.delete(
    "/schedules/{schedule_id}",
    status_code=204,
    summary="Delete an on-call schedule",
)
async def delete_schedule_route(
    schedule_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    deleted = await delete_schedule(db, str(schedule_id))
    if not deleted:
        raise HTTPException(status_code=404, detail="Schedule not found")


@router.delete(
    "/schedules/{schedule_id}/members/{member_id}",
    status_code=204,
    summary="Remove a member from the rotation",
)
async def remove_member_route(
    schedule_id: uuid.UUID,
    member_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    removed = await remove_member(db, str(schedule_id), str(member_id))
    if not removed:
        raise HTTPException(status_code=404, detail="Member not found")


# ─── Calendar ─────────────────────────────────────────────


@router.get(
    "/schedules/{schedule_id}/current",
    response_model=OnCallCurrentResponse,
    summary="Get who is on call",
)
async def get_current_oncall_route(
    schedule_id: uuid.UUID,
    day: date | None = Query(default=None, description="Defaults to today in the schedule's timezone"),
    db: AsyncSession = Depends(get_db),
) -> OnCallCurrentResponse:
    schedule = await _schedule_or_404(db, schedule_id)
    assignment = await resolve_assignment(db, schedule, day or local_today(schedule.timezone))
    return OnCallCurrentResponse(
        schedule_id=schedule.id,
        schedule_name=schedule.name,
        **_assignment(assignment),
    )


@router.get(
    "/schedules/{schedule_id}/calendar",
    response_model=OnCallCalendarResponse,
    summary="Resolved on-call calendar for a date range",
)
async def get_calendar_route(
    schedule_id: uuid.UUID,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> OnCallCalendarResponse:
    schedule = await _schedule_or_404(db, schedule_id)
    start = start or local_today(schedule.timezone)
    end = end or start + timedelta(days=27)
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if (end - start).days + 1 > get_settings().max_bulk_override_days:
        raise HTTPException(status_code=400, detail="Date range too large")

    days = await resolve_calendar(db, schedule, start, end)
    return OnCallCalendarResponse(
        schedule_id=schedule.id,
        start=start,
        end=end,
        days=[AssignmentResponse(**_assignment(a)) for a in days],
    )


@router.post(
    "/rotate",
    response_model=RotationResponse,
    summary="Advance every schedule whose rotation interval has elapsed",
)
async def rotate_route(
    db: AsyncSession = Depends(get_db),
) -> RotationResponse:
    result = await rotate_due_schedules(db)
    return RotationResponse(**result)


# ─── Overrides ─────────────────────────────────────────────


@router.put(
    "/schedules/{schedule_id}/overrides/{override_date}",
    response_model=OnCallOverrideResponse,
    summary="Set the override for one day",
)
async def set_override_route(
    schedule_id: uuid.UUID,
    override_date: date,
    body: OnCallOverrideSet,
    db: AsyncSession = Depends(get_db),
) -> OnCallOverrideResponse:
    schedule = await _schedule_or_404(db, schedule_id)
    try:
        override = await set_override(
            db,
            schedule.id,
            override_date,
            body.member_id,
            reason=body.reason,
            created_by=body.created_by,
        )
    except BeaconError as e:
        raise http_error(e) from e
    names = {m.id: m.name for m in schedule.members}
    return _override(override, names.get(body.member_id))


@router.post(
    "/schedules/{schedule_id}/overrides/bulk",
    response_model=list[OnCallOverrideResponse],
    status_code=201,
    summary="Override every day in a date range",
)
async def set_bulk_override_route(
    schedule_id: uuid.UUID,
    body: OnCallBulkOverrideCreate,
    db: AsyncSession = Depends(get_db),
) -> list[OnCallOverrideResponse]:
    schedule = await _schedule_or_404(db, schedule_id)
    try:
        overrides = await set_bulk_override(
            db,
            schedule.id,
            body.start,
            body.end,
            body.member_id,
            reason=body.reason,
            created_by=body.created_by,
        )
    except BeaconError as e:
        raise http_error(e) from e
    names = {m.id: m.name for m in schedule.members}
    return [_override(o, names.get(body.member_id)) for o in overrides]


@router.get(
    "/schedules/{schedule_id}/overrides",
    response_model=OnCallOverrideListResponse,
    summary="Override audit log",
)
async def list_overrides_route(
    schedule_id: uuid.UUID,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    member_id: uuid.UUID | None = Query(default=None),
    reason: str | None = Query(default=None, max_length=200),
    sort: OverrideSortEnum = Query(default=OverrideSortEnum.CREATED_AT),
    direction: SortDirectionEnum = Query(default=SortDirectionEnum.DESC),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> OnCallOverrideListResponse:
    await _schedule_or_404(db, schedule_id)
    overrides, total = await query_overrides(
        db,
        schedule_id,
        start=start,
        end=end,
        member_id=member_id,
        reason=reason,
        sort=sort.value,
        direction=direction.value,
        page=page,
        page_size=page_size,
    )
    return OnCallOverrideListResponse(
        overrides=[_override(o, o.member.name if o.member else None) for o in overrides],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.delete(
    "/overrides/{override_id}",
    status_code=204,
    summary="Delete an override",
)
async def delete_override_route(
    override_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    deleted = await remove_override(db, str(override_id))
    if not deleted:
        raise HTTPException(status_code=404, detail="Override not found")
