"""Shared test fixtures.

Mocks at the service/DB boundary: the FastAPI ``get_db`` dependency
yields an ``AsyncMock`` session, and model rows are ``MagicMock(spec=...)``
objects with realistic attributes. Outbound HTTP goes through
``httpx.MockTransport``. No live PostgreSQL is needed.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from beacon.database import get_db
from beacon.models import (
    DeliveryAttempt,
    EscalationLevel,
    EscalationPolicy,
    EscalationRun,
    NotificationTarget,
    NotifyMethod,
    OnCallMember,
    OnCallOverride,
    OnCallSchedule,
    RunStatus,
)

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000aa")


def _fill(mock: MagicMock, defaults: dict, overrides: dict) -> MagicMock:
    defaults.update(overrides)
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_member(**overrides) -> OnCallMember:
    """Create a realistic OnCallMember mock."""
    return _fill(
        MagicMock(spec=OnCallMember),
        {
            "id": uuid.uuid4(),
            "schedule_id": uuid.uuid4(),
            "user_id": None,
            "name": "Alice",
            "email": "alice@example.com",
            "phone": "+15550100",
            "position": 0,
            "created_at": datetime.now(UTC),
        },
        overrides,
    )


def make_schedule(members: list | None = None, **overrides) -> OnCallSchedule:
    """Create a realistic OnCallSchedule mock; members get contiguous positions."""
    now = datetime.now(UTC)
    schedule = _fill(
        MagicMock(spec=OnCallSchedule),
        {
            "id": uuid.uuid4(),
            "owner_id": OWNER_ID,
            "name": "Primary",
            "description": None,
            "timezone": "UTC",
            "rotation_interval_days": 1,
            "current_index": 0,
            "anchor_date": date(2024, 1, 1),
            "last_rotated_at": None,
            "created_at": now,
            "updated_at": now,
        },
        overrides,
    )
    schedule.members = members or []
    for i, member in enumerate(schedule.members):
        member.position = i
        member.schedule_id = schedule.id
    return schedule


def make_override(**overrides) -> OnCallOverride:
    """Create a realistic OnCallOverride mock."""
    return _fill(
        MagicMock(spec=OnCallOverride),
        {
            "id": uuid.uuid4(),
            "schedule_id": uuid.uuid4(),
            "override_date": date(2024, 1, 3),
            "member_id": uuid.uuid4(),
            "reason": None,
            "created_by": None,
            "member": None,
            "created_at": datetime.now(UTC),
        },
        overrides,
    )


def make_level(**overrides) -> EscalationLevel:
    """Create a realistic EscalationLevel mock."""
    return _fill(
        MagicMock(spec=EscalationLevel),
        {
            "id": uuid.uuid4(),
            "policy_id": uuid.uuid4(),
            "level_order": 0,
            "notify_method": NotifyMethod.IN_APP,
            "timeout_minutes": 15,
            "schedule_id": None,
            "contact_name": "Ops Lead",
            "contact_address": "lead@example.com",
            "created_at": datetime.now(UTC),
        },
        overrides,
    )


def make_policy(levels: list | None = None, **overrides) -> EscalationPolicy:
    """Create a realistic EscalationPolicy mock."""
    now = datetime.now(UTC)
    policy = _fill(
        MagicMock(spec=EscalationPolicy),
        {
            "id": uuid.uuid4(),
            "owner_id": OWNER_ID,
            "name": "Default",
            "description": None,
            "repeat_count": 0,
            "created_at": now,
            "updated_at": now,
        },
        overrides,
    )
    policy.levels = levels or []
    return policy


def make_run(**overrides) -> EscalationRun:
    """Create a realistic EscalationRun mock."""
    now = datetime.now(UTC)
    return _fill(
        MagicMock(spec=EscalationRun),
        {
            "id": uuid.uuid4(),
            "policy_id": uuid.uuid4(),
            "policy": None,
            "reference_id": "INC-1",
            "title": "Database down",
            "severity": "critical",
            "status": RunStatus.ACTIVE,
            "level_index": 0,
            "cycles_remaining": 0,
            "level_started_at": now,
            "acknowledged_by": None,
            "acknowledged_at": None,
            "finished_at": None,
            "created_at": now,
            "updated_at": now,
        },
        overrides,
    )


def make_target(**overrides) -> NotificationTarget:
    """Create a realistic NotificationTarget mock."""
    now = datetime.now(UTC)
    return _fill(
        MagicMock(spec=NotificationTarget),
        {
            "id": uuid.uuid4(),
            "owner_id": OWNER_ID,
            "name": "ops-hook",
            "url": "https://hooks.example.com/beacon",
            "enabled": True,
            "events": ["alert", "prediction", "incident", "escalation"],
            "secret": None,
            "created_at": now,
            "updated_at": now,
        },
        overrides,
    )


def make_attempt(**overrides) -> DeliveryAttempt:
    """Create a realistic DeliveryAttempt mock."""
    return _fill(
        MagicMock(spec=DeliveryAttempt),
        {
            "id": uuid.uuid4(),
            "target_id": uuid.uuid4(),
            "target": None,
            "owner_id": OWNER_ID,
            "event_type": "alert",
            "payload": {"event": "alert", "title": "t", "timestamp": "2024-01-01T00:00:00+00:00"},
            "attempt": 1,
            "status_code": 500,
            "success": False,
            "error_message": "HTTP 500",
            "created_at": datetime.now(UTC),
        },
        overrides,
    )


def make_session() -> AsyncMock:
    """AsyncMock session whose ``begin_nested()`` works as a savepoint context."""
    session = AsyncMock()
    session.add = MagicMock()

    @asynccontextmanager
    async def _savepoint():
        yield MagicMock()

    session.begin_nested = MagicMock(side_effect=lambda: _savepoint())
    return session


@pytest.fixture()
def db() -> AsyncMock:
    return make_session()


@pytest.fixture()
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client wired to the FastAPI app with a mock DB session."""
    from beacon.main import app

    mock_session = make_session()

    async def _override_db() -> AsyncGenerator:
        yield mock_session

    app.dependency_overrides[get_db] = _override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        ac.db = mock_session
        yield ac

    app.dependency_overrides.clear()
