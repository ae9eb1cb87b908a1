"""Tests for day overrides and the resolved on-call calendar."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from beacon.core.exceptions import ConfigurationError, NotFoundError
from beacon.models import OnCallOverride
from beacon.services.overrides import (
    query_overrides,
    remove_override,
    resolve_assignment,
    resolve_calendar,
    resolve_with,
    set_bulk_override,
    set_override,
)
from conftest import make_member, make_override, make_schedule


@pytest.fixture()
def abc():
    """[A, B, C], daily rotation anchored 2024-01-01 with A first."""
    members = [make_member(name=n, email=f"{n.lower()}@example.com") for n in ("A", "B", "C")]
    return make_schedule(members=members)


def _execute_result(scalar=None, scalars=None, rowcount=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    result.scalar.return_value = scalar
    result.rowcount = rowcount
    return result


# ─── Resolution ────────────────────────────────────────


class TestResolveWith:
    def test_rotation_only(self, abc):
        assignment = resolve_with(abc, date(2024, 1, 3), None)
        assert assignment.member.name == "C"
        assert assignment.is_override is False
        assert assignment.nominal_member.name == "C"

    def test_override_wins(self, abc):
        b = abc.members[1]
        override = make_override(schedule_id=abc.id, member_id=b.id, reason="PTO")
        assignment = resolve_with(abc, date(2024, 1, 3), override)
        assert assignment.member is b
        assert assignment.is_override is True
        assert assignment.nominal_member.name == "C"
        assert assignment.override.reason == "PTO"

    def test_override_for_departed_member_falls_back(self, abc):
        override = make_override(schedule_id=abc.id, member_id=make_member().id)
        assignment = resolve_with(abc, date(2024, 1, 3), override)
        assert assignment.member.name == "C"
        assert assignment.is_override is False

    def test_empty_schedule(self):
        assignment = resolve_with(make_schedule(members=[]), date(2024, 1, 3), None)
        assert assignment.member is None
        assert assignment.nominal_member is None


class TestResolveAssignment:
    async def test_uses_stored_override(self, db, abc):
        b = abc.members[1]
        db.execute.return_value = _execute_result(
            scalar=make_override(schedule_id=abc.id, member_id=b.id)
        )
        assignment = await resolve_assignment(db, abc, date(2024, 1, 3))
        assert assignment.member is b
        assert assignment.is_override is True

    async def test_removed_override_reverts_to_rotation(self, db, abc):
        db.execute.return_value = _execute_result(scalar=None)
        assignment = await resolve_assignment(db, abc, date(2024, 1, 3))
        assert assignment.member.name == "C"
        assert assignment.is_override is False


class TestResolveCalendar:
    async def test_one_query_for_range(self, db, abc):
        a = abc.members[0]
        db.execute.return_value = _execute_result(
            scalars=[make_override(schedule_id=abc.id, member_id=a.id, override_date=date(2024, 1, 2))]
        )
        days = await resolve_calendar(db, abc, date(2024, 1, 1), date(2024, 1, 4))

        assert db.execute.await_count == 1
        assert [d.member.name for d in days] == ["A", "A", "C", "A"]
        assert [d.is_override for d in days] == [False, True, False, False]
        assert days[1].nominal_member.name == "B"

    async def test_reversed_range(self, db, abc):
        with pytest.raises(ConfigurationError):
            await resolve_calendar(db, abc, date(2024, 1, 4), date(2024, 1, 1))


# ─── Writes ────────────────────────────────────────────


class TestSetOverride:
    async def test_upsert_returns_row(self, db, abc):
        b = abc.members[1]
        stored = make_override(schedule_id=abc.id, member_id=b.id, reason="PTO")
        db.scalars.return_value = MagicMock(one=MagicMock(return_value=stored))

        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            override = await set_override(db, abc.id, date(2024, 1, 3), b.id, reason="PTO")

        assert override is stored
        stmt = db.scalars.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT ON CONSTRAINT uq_oncall_overrides_schedule_date DO UPDATE" in sql

    async def test_member_outside_schedule_rejected(self, db, abc):
        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            with pytest.raises(ConfigurationError):
                await set_override(db, abc.id, date(2024, 1, 3), make_member().id)
        db.scalars.assert_not_called()

    async def test_unknown_schedule(self, db):
        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=None):
            with pytest.raises(NotFoundError):
                await set_override(db, "nope", date(2024, 1, 3), make_member().id)


class TestSetBulkOverride:
    async def test_one_row_per_day_in_savepoint(self, db, abc):
        b = abc.members[1]
        rows = [
            make_override(member_id=b.id, override_date=date(2024, 1, d)) for d in (12, 10, 11)
        ]
        db.scalars.return_value = MagicMock(all=MagicMock(return_value=rows))

        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            overrides = await set_bulk_override(
                db, abc.id, date(2024, 1, 10), date(2024, 1, 12), b.id, reason="Conference"
            )

        db.begin_nested.assert_called_once()
        assert db.scalars.await_count == 1
        assert [o.override_date for o in overrides] == [
            date(2024, 1, 10), date(2024, 1, 11), date(2024, 1, 12)
        ]

    async def test_failure_propagates(self, db, abc):
        db.scalars.side_effect = RuntimeError("constraint violated")
        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            with pytest.raises(RuntimeError):
                await set_bulk_override(
                    db, abc.id, date(2024, 1, 10), date(2024, 1, 12), abc.members[0].id
                )

    async def test_reversed_range(self, db, abc):
        with pytest.raises(ConfigurationError):
            await set_bulk_override(
                db, abc.id, date(2024, 1, 12), date(2024, 1, 10), abc.members[0].id
            )

    async def test_range_limit(self, db, abc):
        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            with pytest.raises(ConfigurationError, match="limit"):
                await set_bulk_override(
                    db, abc.id, date(2024, 1, 1), date(2026, 1, 1), abc.members[0].id
                )

    async def test_member_outside_schedule(self, db, abc):
        with patch("beacon.services.overrides.get_schedule", new_callable=AsyncMock, return_value=abc):
            with pytest.raises(ConfigurationError):
                await set_bulk_override(
                    db, abc.id, date(2024, 1, 1), date(2024, 1, 2), make_member().id
                )


class TestRemoveOverride:
    async def test_deleted(self, db):
        db.execute.return_value = _execute_result(rowcount=1)
        assert await remove_override(db, "some-id") is True

    async def test_missing(self, db):
        db.execute.return_value = _execute_result(rowcount=0)
        assert await remove_override(db, "some-id") is False


# ─── Audit log ─────────────────────────────────────────


class TestQueryOverrides:
    async def test_returns_rows_and_total(self, db, abc):
        rows = [make_override(schedule_id=abc.id)]
        db.execute.side_effect = [_execute_result(scalar=7), _execute_result(scalars=rows)]

        result, total = await query_overrides(
            db, abc.id, reason="pto", sort="member_name", direction="asc", page=2, page_size=5
        )

        assert result == rows
        assert total == 7
        query = db.execute.call_args_list[1].args[0]
        sql = str(query.compile(dialect=postgresql.dialect()))
        assert "lower(oncall_members.name) ASC" in sql
        assert "ILIKE" in sql.upper()

    async def test_unknown_sort_key(self, db, abc):
        with pytest.raises(ConfigurationError):
            await query_overrides(db, abc.id, sort="reason")


# ─── Schema ────────────────────────────────────────────


class TestOverrideSchema:
    def test_removing_member_deletes_their_overrides(self):
        (fk,) = OnCallOverride.__table__.c.member_id.foreign_keys
        assert fk.column.table.name == "oncall_members"
        assert fk.ondelete == "CASCADE"

    def test_override_of_departed_member_uses_rotation(self, abc):
        override = make_override(schedule_id=abc.id, member_id=make_member().id)
        assignment = resolve_with(abc, date(2024, 1, 2), override)
        assert assignment.member is abc.members[1]
        assert assignment.is_override is False
