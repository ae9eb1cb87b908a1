"""Escalation policy and escalation run API routes."""

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.api.deps import get_dispatcher, http_error
from beacon.core.dispatcher import NotificationDispatcher
from beacon.core.exceptions import BeaconError
from beacon.database import get_db
from beacon.schemas import (
    EscalationAckByReferenceRequest,
    EscalationAckByReferenceResponse,
    EscalationAckRequest,
    EscalationPolicyCreate,
    EscalationPolicyResponse,
    EscalationPolicyUpdate,
    EscalationRunListResponse,
    EscalationRunResponse,
    EscalationTriggerRequest,
    PolicyListResponse,
    RunStatusEnum,
    TickResponse,
)
from beacon.services.escalation import (
    acknowledge_reference,
    acknowledge_run,
    get_run,
    get_runs,
    run_escalation_tick,
    trigger_escalation,
)
from beacon.services.oncall import (
    create_policy,
    delete_policy,
    get_policies,
    get_policy,
    update_policy,
)

router = APIRouter(prefix="/escalations", tags=["escalations"])


# ─── Runs ──────────────────────────────────────────────────


@router.post(
    "/trigger",
    response_model=EscalationRunResponse,
    status_code=201,
    summary="Start escalating an incident",
)
async def trigger_route(
    body: EscalationTriggerRequest,
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> EscalationRunResponse:
    try:
        run = await trigger_escalation(
            db,
            body.policy_id,
            body.severity.value,
            body.reference_id,
            title=body.title,
            dispatcher=dispatcher,
        )
    except BeaconError as e:
        raise http_error(e) from e
    return EscalationRunResponse.model_validate(run)


@router.post(
    "/runs/{run_id}/acknowledge",
    response_model=EscalationRunResponse,
    summary="Acknowledge an escalation run",
)
async def acknowledge_run_route(
    run_id: uuid.UUID,
    body: EscalationAckRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> EscalationRunResponse:
    body = body or EscalationAckRequest()
    run = await acknowledge_run(db, str(run_id), body.acknowledged_by, body.timestamp)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return EscalationRunResponse.model_validate(run)


@router.post(
    "/acknowledge",
    response_model=EscalationAckByReferenceResponse,
    summary="Acknowledge all active runs for a reference",
)
async def acknowledge_reference_route(
    body: EscalationAckByReferenceRequest,
    db: AsyncSession = Depends(get_db),
) -> EscalationAckByReferenceResponse:
    runs = await acknowledge_reference(
        db, body.reference_id, body.acknowledged_by, body.timestamp
    )
    return EscalationAckByReferenceResponse(
        reference_id=body.reference_id,
        acknowledged=len(runs),
        runs=[EscalationRunResponse.model_validate(r) for r in runs],
    )


@router.get(
    "/runs",
    response_model=EscalationRunListResponse,
    summary="List escalation runs",
)
async def list_runs(
    status: RunStatusEnum | None = Query(default=None),
    reference_id: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> EscalationRunListResponse:
    runs, total = await get_runs(
        db, status=status, reference_id=reference_id, page=page, page_size=page_size
    )
    return EscalationRunListResponse(
        runs=[EscalationRunResponse.model_validate(r) for r in runs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/runs/{run_id}",
    response_model=EscalationRunResponse,
    summary="Get an escalation run",
)
async def get_run_route(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> EscalationRunResponse:
    run = await get_run(db, str(run_id))
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")
    return EscalationRunResponse.model_validate(run)


@router.post(
    "/tick",
    response_model=TickResponse,
    summary="Evaluate timeouts of all active runs",
)
async def tick_route(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> TickResponse:
    result = await run_escalation_tick(db, dispatcher)
    return TickResponse(**asdict(result))


# ─── Policies ──────────────────────────────────────────────


@router.get(
    "/policies",
    response_model=PolicyListResponse,
    summary="List escalation policies",
)
async def list_policies(
    owner_id: uuid.UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> PolicyListResponse:
    policies, total = await get_policies(
        db, owner_id=owner_id, page=page, page_size=page_size
    )
    return PolicyListResponse(
        policies=[EscalationPolicyResponse.model_validate(p) for p in policies],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/policies",
    response_model=EscalationPolicyResponse,
    status_code=201,
    summary="Create an escalation policy",
)
async def create_policy_route(
    body: EscalationPolicyCreate,
    db: AsyncSession = Depends(get_db),
) -> EscalationPolicyResponse:
    try:
        policy = await create_policy(db, **body.model_dump(exclude_unset=True))
    except BeaconError as e:
        raise http_error(e) from e
    return EscalationPolicyResponse.model_validate(policy)


@router.get(
    "/policies/{policy_id}",
    response_model=EscalationPolicyResponse,
    summary="Get an escalation policy",
)
async def get_policy_route(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> EscalationPolicyResponse:
    policy = await get_policy(db, str(policy_id))
    if not policy:
        raise HTTPException(status_code=404, detail="Policy not found")
    return EscalationPolicyResponse.model_validate(policy)


@router.put(
    "/policies/{policy_id}",
    response_model=EscalationPolicyResponse,
    summary="Update an escalation policy",
)
async def update_policy_route(
    policy_id: uuid.UUID,
    body: EscalationPolicyUpdate,
    db: AsyncSession = Depends(get_db),
) -> EscalationPolicyResponse:
    try:
        policy = await update_policy(db, str(policy_id), **body.model_dump(exclude_unset=True))
    except BeaconError as e:
        raise http_error(e) from e
    if not policy:
        raise HTTPException(status_code=404, detail="Policy not found")
    return EscalationPolicyResponse.model_validate(policy)


@router.delete(
    "/policies/{policy_id}",
    status_code=204,
    summary="Delete an escalation policy",
)
async def delete_policy_route(
    policy_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> None:
    deleted = await delete_policy(db, str(policy_id))
    if not deleted:
        raise HTTPException(status_code=404, detail="Policy not found")
