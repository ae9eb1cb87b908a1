"""Tests for the delivery ledger: appends, retry numbering, log queries."""

from unittest.mock import MagicMock

from sqlalchemy.dialects import postgresql

from beacon.models import DeliveryAttempt
from beacon.services.ledger import list_attempts, next_attempt_number, record_attempt
from conftest import OWNER_ID, make_attempt, make_target


def _execute_result(scalar=None, scalars=None):
    result = MagicMock()
    result.scalar.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    return result


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


# ─── Appends ───────────────────────────────────────────


class TestRecordAttempt:
    async def test_appends_row(self, db):
        target = make_target()

        row = await record_attempt(
            db,
            target=target,
            event_type="alert",
            payload={"event": "alert"},
            attempt=2,
            status_code=503,
            success=False,
            error_message="HTTP 503",
        )

        assert isinstance(row, DeliveryAttempt)
        db.add.assert_called_once_with(row)
        db.flush.assert_awaited_once()
        assert row.target_id == target.id
        assert row.owner_id == OWNER_ID
        assert row.attempt == 2
        assert row.status_code == 503
        assert row.error_message == "HTTP 503"

    async def test_long_error_truncated(self, db):
        row = await record_attempt(
            db,
            target=make_target(),
            event_type="alert",
            payload={},
            attempt=1,
            status_code=None,
            success=False,
            error_message="x" * 2000,
        )
        assert len(row.error_message) == 500


# ─── Retry numbering ───────────────────────────────────


class TestNextAttemptNumber:
    async def test_highest_recorded_attempt_wins(self, db):
        previous = make_attempt(attempt=3)
        db.execute.return_value = _execute_result(scalar=6)

        assert await next_attempt_number(db, previous) == 7

    async def test_previous_attempt_when_nothing_higher(self, db):
        previous = make_attempt(attempt=3)
        db.execute.return_value = _execute_result(scalar=None)

        assert await next_attempt_number(db, previous) == 4

    async def test_stale_max_does_not_go_backwards(self, db):
        previous = make_attempt(attempt=5)
        db.execute.return_value = _execute_result(scalar=2)

        assert await next_attempt_number(db, previous) == 6

    async def test_scoped_to_target_event_and_payload_timestamp(self, db):
        previous = make_attempt(attempt=1)
        db.execute.return_value = _execute_result(scalar=1)

        await next_attempt_number(db, previous)

        stmt = db.execute.call_args.args[0]
        sql = _sql(stmt)
        assert "max(delivery_attempts.attempt)" in sql
        assert "delivery_attempts.target_id = " in sql
        assert "delivery_attempts.event_type = " in sql
        assert "delivery_attempts.payload ->> " in sql
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert previous.target_id in params.values()
        assert "alert" in params.values()
        assert "2024-01-01T00:00:00+00:00" in params.values()

    async def test_payload_without_timestamp_not_scoped_by_it(self, db):
        previous = make_attempt(attempt=2, payload={"event": "alert"})
        db.execute.return_value = _execute_result(scalar=None)

        assert await next_attempt_number(db, previous) == 3
        assert "->>" not in _sql(db.execute.call_args.args[0])


# ─── Log queries ───────────────────────────────────────


class TestListAttempts:
    async def test_filters_and_newest_first(self, db):
        rows = [make_attempt(), make_attempt()]
        db.execute.side_effect = [_execute_result(scalar=12), _execute_result(scalars=rows)]
        target = make_target()

        result, total = await list_attempts(
            db, owner_id=OWNER_ID, target_id=target.id, success=False, page=2, page_size=5
        )

        assert result == rows
        assert total == 12
        sql = _sql(db.execute.call_args_list[1].args[0])
        assert "delivery_attempts.owner_id = " in sql
        assert "delivery_attempts.target_id = " in sql
        assert "delivery_attempts.success IS false" in sql
        assert "ORDER BY delivery_attempts.created_at DESC, delivery_attempts.attempt DESC" in sql

    async def test_no_filters(self, db):
        db.execute.side_effect = [_execute_result(scalar=None), _execute_result()]

        result, total = await list_attempts(db)

        assert result == []
        assert total == 0
        assert "WHERE" not in _sql(db.execute.call_args_list[0].args[0])
