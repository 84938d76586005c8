from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from portal.concerns.models import (
    ConcernAuditLog,
    ConcernFilter,
    ConcernMutation,
    ConcernNote,
)
from portal.concerns.repository import ConcernRepository
from portal.concerns.scope import DepartmentScope, build_scope
from portal.concerns.state import ConcernPriority, ConcernStatus, SubmissionType


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


def _connection() -> AsyncMock:
    connection = AsyncMock()
    connection.transaction = MagicMock(return_value=DummyTransaction())
    return connection


def _row(now: datetime, **overrides):
    row = {
        "id": "AST-20240311-ABC123",
        "submission_type": "assistance",
        "status": "in_progress",
        "department": "NU Shuttle Service",
        "priority": "low",
        "category": "Shuttle",
        "rating": None,
        "subject": "Card not tapping",
        "message": "Reader rejects my card",
        "submitter_name": "Jamie Cruz",
        "submitter_email": "jamie@students.nu.edu",
        "notes": json.dumps(
            [{"admin_name": "Motorpool Admin", "message": "On it", "timestamp": now.isoformat()}]
        ),
        "resolution": None,
        "resolved_by": None,
        "resolved_at": None,
        "in_progress_at": now,
        "submitted_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def _audit(now: datetime) -> ConcernAuditLog:
    return ConcernAuditLog(
        id="audit-1",
        concern_id="AST-20240311-ABC123",
        action="resolved",
        actor="Motorpool Admin",
        from_status=ConcernStatus.IN_PROGRESS,
        to_status=ConcernStatus.RESOLVED,
        metadata={"resolution": "Fixed"},
        created_at=now,
    )


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables():
    connection = _connection()
    repository = ConcernRepository(DummyPool(connection))

    await repository.ensure_schema()

    assert connection.execute.await_count == 3
    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert any("CREATE TABLE IF NOT EXISTS concerns" in stmt for stmt in executed)
    assert any("concern_audit_logs" in stmt for stmt in executed)
    assert any("CONSTRAINT concerns_rating_range" in stmt for stmt in executed)
    assert any("CONSTRAINT concerns_resolution_iff_resolved" in stmt for stmt in executed)


@pytest.mark.asyncio
async def test_create_inserts_concern_and_audit(make_concern, now):
    connection = _connection()
    repository = ConcernRepository(DummyPool(connection))
    concern = make_concern(notes=(ConcernNote(admin_name="A", message="m", timestamp=now),))

    await repository.create(concern, _audit(now))

    assert connection.execute.await_count == 2
    insert_args = connection.execute.await_args_list[0].args
    assert "INSERT INTO concerns" in insert_args[0]
    assert insert_args[1] == concern.id
    assert insert_args[3] == "pending"
    assert json.loads(insert_args[12])[0]["message"] == "m"
    audit_args = connection.execute.await_args_list[1].args
    assert "INSERT INTO concern_audit_logs" in audit_args[0]
    assert json.loads(audit_args[7]) == {"resolution": "Fixed"}
    connection.transaction.assert_called_once()


@pytest.mark.asyncio
async def test_find_by_id_maps_row(now):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_row(now))
    repository = ConcernRepository(DummyPool(connection))

    concern = await repository.find_by_id("AST-20240311-ABC123")

    assert concern is not None
    assert concern.submission_type is SubmissionType.ASSISTANCE
    assert concern.status is ConcernStatus.IN_PROGRESS
    assert concern.priority is ConcernPriority.LOW
    assert concern.notes[0].message == "On it"
    assert concern.notes[0].timestamp == now


@pytest.mark.asyncio
async def test_find_by_id_maps_feedback_row(now):
    connection = _connection()
    connection.fetchrow = AsyncMock(
        return_value=_row(
            now,
            id="FBK-20240311-XYZ789",
            submission_type="feedback",
            status=None,
            priority=None,
            rating=5,
            notes=[],
            submitted_at=now.replace(tzinfo=None),
        )
    )
    repository = ConcernRepository(DummyPool(connection))

    concern = await repository.find_by_id("FBK-20240311-XYZ789")

    assert concern is not None
    assert concern.status is None
    assert concern.priority is None
    assert concern.rating == 5
    assert concern.notes == ()
    assert concern.submitted_at.tzinfo is not None


@pytest.mark.asyncio
async def test_find_by_id_returns_none_for_missing():
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = ConcernRepository(DummyPool(connection))

    assert await repository.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_query_builds_filters_and_paging(now):
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[_row(now)])
    repository = ConcernRepository(DummyPool(connection))

    concerns = await repository.query(
        ConcernFilter(
            department="Merchant Office",
            status=ConcernStatus.IN_PROGRESS,
            search_text="50%_off",
            date_from=now - timedelta(days=7),
            limit=20,
            offset=40,
        )
    )

    assert len(concerns) == 1
    sql, *params = connection.fetch.await_args.args
    assert "lower(department) = lower($1)" in sql
    assert "status = $2" in sql
    assert "subject ILIKE $3" in sql
    assert "submitted_at >= $4" in sql
    assert sql.endswith("ORDER BY submitted_at DESC LIMIT $5 OFFSET $6")
    assert params[2] == "%50\\%\\_off%"
    assert params[-2:] == [20, 40]


@pytest.mark.asyncio
async def test_query_without_filters_has_no_where(now):
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[])
    repository = ConcernRepository(DummyPool(connection))

    await repository.query(ConcernFilter())

    sql = connection.fetch.await_args.args[0]
    assert "WHERE" not in sql
    assert "LIMIT" not in sql


@pytest.mark.asyncio
async def test_count_returns_integer():
    connection = _connection()
    connection.fetchval = AsyncMock(return_value=7)
    repository = ConcernRepository(DummyPool(connection))

    total = await repository.count(ConcernFilter(submission_type=SubmissionType.FEEDBACK))

    assert total == 7
    sql, param = connection.fetchval.await_args.args
    assert "submission_type = $1" in sql
    assert param == "feedback"


@pytest.mark.asyncio
async def test_conditional_update_matches_expected_status(now):
    connection = _connection()
    connection.fetchrow = AsyncMock(
        return_value=_row(now, status="resolved", resolution="Fixed", resolved_by="Motorpool Admin", resolved_at=now)
    )
    repository = ConcernRepository(DummyPool(connection))
    mutation = ConcernMutation(
        status=ConcernStatus.RESOLVED,
        priority=ConcernPriority.LOW,
        resolution="Fixed",
        resolved_by="Motorpool Admin",
        resolved_at=now,
        in_progress_at=now,
        updated_at=now,
    )

    stored = await repository.conditional_update(
        "AST-20240311-ABC123",
        ConcernStatus.IN_PROGRESS,
        mutation,
        _audit(now),
        expected_updated_at=now - timedelta(minutes=5),
    )

    assert stored is not None
    assert stored.status is ConcernStatus.RESOLVED
    sql, *params = connection.fetchrow.await_args.args
    assert "status IS NOT DISTINCT FROM $2 AND updated_at = $11" in sql
    assert "notes = notes || $9::jsonb" in sql
    assert params[1] == "in_progress"
    assert params[2] == "resolved"
    assert json.loads(params[8]) == []
    assert params[10] == now - timedelta(minutes=5)
    connection.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_conditional_update_skips_audit_on_conflict(now):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    repository = ConcernRepository(DummyPool(connection))
    mutation = ConcernMutation(
        status=ConcernStatus.CLOSED,
        priority=ConcernPriority.LOW,
        resolution=None,
        resolved_by=None,
        resolved_at=None,
        in_progress_at=None,
        updated_at=now,
    )

    stored = await repository.conditional_update(
        "AST-1", ConcernStatus.PENDING, mutation, _audit(now), expected_updated_at=now
    )

    assert stored is None
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_status_breakdown_and_audit_log(now):
    connection = _connection()
    connection.fetch = AsyncMock(
        side_effect=[
            [{"submission_type": "assistance", "status": "pending", "department": "Motorpool", "total": 3}],
            [
                {
                    "id": "audit-1",
                    "concern_id": "AST-1",
                    "action": "resolved",
                    "actor": "Motorpool Admin",
                    "from_status": "in_progress",
                    "to_status": "resolved",
                    "metadata": '{"resolution": "Fixed"}',
                    "created_at": now,
                }
            ],
        ]
    )
    repository = ConcernRepository(DummyPool(connection))

    breakdown = await repository.status_breakdown()
    entries = await repository.get_audit_log("AST-1")

    assert breakdown == [{"submission_type": "assistance", "status": "pending", "department": "Motorpool", "total": 3}]
    assert entries[0].to_status is ConcernStatus.RESOLVED
    assert entries[0].metadata == {"resolution": "Fixed"}
    assert entries[0].created_at == datetime(2024, 3, 11, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_query_pushes_department_scope_into_sql(now):
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[])
    repository = ConcernRepository(DummyPool(connection))
    scope = build_scope(exact=["Merchant Office "], contains=["shuttle", "50%"])

    await repository.query(ConcernFilter(status=ConcernStatus.PENDING, limit=10, offset=10), scope)

    sql, *params = connection.fetch.await_args.args
    assert "(lower(btrim(department)) = $1 OR department ILIKE $2 OR department ILIKE $3)" in sql
    assert "status = $4" in sql
    assert sql.endswith("LIMIT $5 OFFSET $6")
    assert params == ["merchant office", "%shuttle%", "%50\\%%", "pending", 10, 10]


@pytest.mark.asyncio
async def test_count_ignores_wildcard_scope():
    connection = _connection()
    connection.fetchval = AsyncMock(return_value=0)
    repository = ConcernRepository(DummyPool(connection))

    await repository.count(ConcernFilter(), DepartmentScope.all())

    assert connection.fetchval.await_args.args == ("SELECT COUNT(*) FROM concerns",)


@pytest.mark.asyncio
async def test_query_filters_by_submitter_email(now):
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[_row(now)])
    repository = ConcernRepository(DummyPool(connection))

    await repository.query(ConcernFilter(submitter_email=" Jamie@Students.nu.edu "))

    sql, param = connection.fetch.await_args.args
    assert "lower(submitter_email) = lower($1)" in sql
    assert param == "Jamie@Students.nu.edu"
