from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import asyncpg

from .models import (
    Concern,
    ConcernAuditLog,
    ConcernFilter,
    ConcernMutation,
    ConcernNote,
    Submitter,
)
from .scope import DepartmentScope, MatchMode
from .state import ConcernPriority, ConcernStatus, SubmissionType

_CONCERN_COLUMNS = (
    "id, submission_type, status, department, priority, category, rating, subject, message, "
    "submitter_name, submitter_email, notes, resolution, resolved_by, resolved_at, in_progress_at, "
    "submitted_at, updated_at"
)

_SEARCH_COLUMNS = ("id", "submitter_name", "submitter_email", "subject", "message", "department")


class ConcernRepository:
    """Persistence helper wrapping the `concerns` and `concern_audit_logs` tables."""

    _CREATE_CONCERNS_SQL = """
    CREATE TABLE IF NOT EXISTS concerns (
        id TEXT PRIMARY KEY,
        submission_type TEXT NOT NULL,
        status TEXT,
        department TEXT,
        priority TEXT,
        category TEXT,
        rating INTEGER,
        subject TEXT NOT NULL DEFAULT '',
        message TEXT NOT NULL DEFAULT '',
        submitter_name TEXT NOT NULL,
        submitter_email TEXT NOT NULL,
        notes JSONB NOT NULL DEFAULT '[]'::jsonb,
        resolution TEXT,
        resolved_by TEXT,
        resolved_at TIMESTAMPTZ,
        in_progress_at TIMESTAMPTZ,
        submitted_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CONSTRAINT concerns_rating_range CHECK (rating IS NULL OR rating BETWEEN 1 AND 5),
        CONSTRAINT concerns_resolution_iff_resolved
            CHECK ((status = 'resolved') = (COALESCE(resolution, '') <> ''))
    )
    """

    _CREATE_CONCERNS_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS concerns_status_submitted_idx
    ON concerns (submission_type, status, submitted_at DESC)
    """

    _CREATE_AUDIT_SQL = """
    CREATE TABLE IF NOT EXISTS concern_audit_logs (
        id TEXT PRIMARY KEY,
        concern_id TEXT NOT NULL REFERENCES concerns(id) ON DELETE CASCADE,
        action TEXT NOT NULL,
        actor TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _INSERT_CONCERN_SQL = f"""
    INSERT INTO concerns ({_CONCERN_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::jsonb, $13, $14, $15, $16, $17, $18)
    """

    _INSERT_AUDIT_SQL = """
    INSERT INTO concern_audit_logs (id, concern_id, action, actor, from_status, to_status, metadata, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
    """

    _SELECT_CONCERN_SQL = f"""
    SELECT {_CONCERN_COLUMNS}
    FROM concerns
    WHERE id = $1
    """

    _CONDITIONAL_UPDATE_SQL = f"""
    UPDATE concerns
    SET status = $3,
        priority = $4,
        resolution = $5,
        resolved_by = $6,
        resolved_at = $7,
        in_progress_at = $8,
        notes = notes || $9::jsonb,
        updated_at = $10
    WHERE id = $1 AND status IS NOT DISTINCT FROM $2 AND updated_at = $11
    RETURNING {_CONCERN_COLUMNS}
    """

    _SELECT_AUDIT_LOGS_SQL = """
    SELECT id, concern_id, action, actor, from_status, to_status, metadata, created_at
    FROM concern_audit_logs
    WHERE concern_id = $1
    ORDER BY created_at ASC
    """

    _COUNT_BY_STATUS_SQL = """
    SELECT submission_type, status, department, COUNT(*) AS total
    FROM concerns
    GROUP BY submission_type, status, department
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_CONCERNS_SQL)
            await connection.execute(self._CREATE_CONCERNS_INDEX_SQL)
            await connection.execute(self._CREATE_AUDIT_SQL)

    async def create(self, concern: Concern, audit: ConcernAuditLog) -> None:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    self._INSERT_CONCERN_SQL,
                    concern.id,
                    concern.submission_type.value,
                    _enum_value(concern.status),
                    concern.department,
                    _enum_value(concern.priority),
                    concern.category,
                    concern.rating,
                    concern.subject,
                    concern.message,
                    concern.submitter.name,
                    concern.submitter.email,
                    _dump_notes(concern.notes),
                    concern.resolution,
                    concern.resolved_by,
                    concern.resolved_at,
                    concern.in_progress_at,
                    concern.submitted_at,
                    concern.updated_at,
                )
                await self._insert_audit(connection, audit)

    async def find_by_id(self, concern_id: str) -> Concern | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_CONCERN_SQL, concern_id)
        if row is None:
            return None
        return self._row_to_concern(row)

    async def query(self, concern_filter: ConcernFilter, scope: DepartmentScope | None = None) -> list[Concern]:
        where, params = self._build_where(concern_filter, scope)
        sql = f"SELECT {_CONCERN_COLUMNS} FROM concerns{where} ORDER BY submitted_at DESC"
        if concern_filter.limit is not None:
            params.append(concern_filter.limit)
            sql += f" LIMIT ${len(params)}"
        if concern_filter.offset:
            params.append(concern_filter.offset)
            sql += f" OFFSET ${len(params)}"
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(sql, *params)
        return [self._row_to_concern(row) for row in rows]

    async def count(self, concern_filter: ConcernFilter, scope: DepartmentScope | None = None) -> int:
        where, params = self._build_where(concern_filter, scope)
        async with self._pool.acquire() as connection:
            total = await connection.fetchval(f"SELECT COUNT(*) FROM concerns{where}", *params)
        return int(total or 0)

    async def status_breakdown(self) -> list[Mapping[str, Any]]:
        """Row counts grouped by submission type, status and department."""

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._COUNT_BY_STATUS_SQL)
        return [
            {
                "submission_type": str(row["submission_type"]),
                "status": row.get("status"),
                "department": row.get("department"),
                "total": int(row["total"]),
            }
            for row in rows
        ]

    async def conditional_update(
        self,
        concern_id: str,
        expected_status: ConcernStatus | None,
        mutation: ConcernMutation,
        audit: ConcernAuditLog,
        *,
        expected_updated_at: datetime,
    ) -> Concern | None:
        """Apply ``mutation`` only if the stored row is still the snapshot it was derived from.

        The snapshot is identified by its status and ``updated_at``; every committed
        mutation moves ``updated_at``. Returns ``None`` when no row matched, either
        because the concern is gone or because a concurrent writer committed first.
        The audit entry is written in the same transaction.
        """

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    self._CONDITIONAL_UPDATE_SQL,
                    concern_id,
                    _enum_value(expected_status),
                    _enum_value(mutation.status),
                    _enum_value(mutation.priority),
                    mutation.resolution,
                    mutation.resolved_by,
                    mutation.resolved_at,
                    mutation.in_progress_at,
                    _dump_notes(mutation.appended_notes),
                    mutation.updated_at,
                    expected_updated_at,
                )
                if row is None:
                    return None
                await self._insert_audit(connection, audit)
        return self._row_to_concern(row)

    async def get_audit_log(self, concern_id: str) -> list[ConcernAuditLog]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_AUDIT_LOGS_SQL, concern_id)
        return [self._row_to_audit(row) for row in rows]

    async def _insert_audit(self, connection: Any, audit: ConcernAuditLog) -> None:
        await connection.execute(
            self._INSERT_AUDIT_SQL,
            audit.id,
            audit.concern_id,
            audit.action,
            audit.actor,
            _enum_value(audit.from_status),
            _enum_value(audit.to_status),
            json.dumps(dict(audit.metadata), default=str),
            audit.created_at,
        )

    @staticmethod
    def _build_where(concern_filter: ConcernFilter, scope: DepartmentScope | None = None) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        if scope is not None and not scope.wildcard:
            scope_clauses: list[str] = []
            for predicate in scope.predicates:
                if predicate.mode is MatchMode.EXACT:
                    params.append(predicate.value.strip().lower())
                    scope_clauses.append(f"lower(btrim(department)) = ${len(params)}")
                else:
                    params.append(f"%{_escape_like(predicate.value.strip())}%")
                    scope_clauses.append(f"department ILIKE ${len(params)}")
            clauses.append("(" + " OR ".join(scope_clauses) + ")")
        if concern_filter.department:
            params.append(concern_filter.department.strip())
            clauses.append(f"lower(department) = lower(${len(params)})")
        if concern_filter.submitter_email:
            params.append(concern_filter.submitter_email.strip())
            clauses.append(f"lower(submitter_email) = lower(${len(params)})")
        if concern_filter.status is not None:
            params.append(concern_filter.status.value)
            clauses.append(f"status = ${len(params)}")
        if concern_filter.submission_type is not None:
            params.append(concern_filter.submission_type.value)
            clauses.append(f"submission_type = ${len(params)}")
        if concern_filter.search_text and concern_filter.search_text.strip():
            params.append(f"%{_escape_like(concern_filter.search_text.strip())}%")
            placeholder = f"${len(params)}"
            clauses.append("(" + " OR ".join(f"{column} ILIKE {placeholder}" for column in _SEARCH_COLUMNS) + ")")
        if concern_filter.date_from is not None:
            params.append(concern_filter.date_from)
            clauses.append(f"submitted_at >= ${len(params)}")
        if concern_filter.date_to is not None:
            params.append(concern_filter.date_to)
            clauses.append(f"submitted_at < ${len(params)}")

        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    @staticmethod
    def _row_to_concern(row: Mapping[str, Any]) -> Concern:
        status = row.get("status")
        priority = row.get("priority")
        resolved_at = row.get("resolved_at")
        in_progress_at = row.get("in_progress_at")
        rating = row.get("rating")
        return Concern(
            id=str(row["id"]),
            submission_type=SubmissionType(str(row["submission_type"])),
            status=ConcernStatus(str(status)) if status else None,
            department=row.get("department"),
            priority=ConcernPriority(str(priority)) if priority else None,
            category=row.get("category"),
            rating=int(rating) if rating is not None else None,
            subject=str(row.get("subject") or ""),
            message=str(row.get("message") or ""),
            submitter=Submitter(name=str(row["submitter_name"]), email=str(row["submitter_email"])),
            submitted_at=_ensure_datetime(row["submitted_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
            notes=_load_notes(row.get("notes")),
            resolution=row.get("resolution") or None,
            resolved_by=row.get("resolved_by"),
            resolved_at=_ensure_datetime(resolved_at) if resolved_at is not None else None,
            in_progress_at=_ensure_datetime(in_progress_at) if in_progress_at is not None else None,
        )

    @staticmethod
    def _row_to_audit(row: Mapping[str, Any]) -> ConcernAuditLog:
        metadata = _load_json(row.get("metadata")) or {}
        from_status = row.get("from_status")
        to_status = row.get("to_status")
        return ConcernAuditLog(
            id=str(row["id"]),
            concern_id=str(row["concern_id"]),
            action=str(row["action"]),
            actor=str(row["actor"]),
            from_status=ConcernStatus(str(from_status)) if from_status else None,
            to_status=ConcernStatus(str(to_status)) if to_status else None,
            metadata=dict(metadata),
            created_at=_ensure_datetime(row["created_at"]),
        )


def _enum_value(value: Any) -> str | None:
    return value.value if value is not None else None


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _dump_notes(notes: Sequence[ConcernNote]) -> str:
    return json.dumps(
        [
            {"admin_name": note.admin_name, "message": note.message, "timestamp": note.timestamp.isoformat()}
            for note in notes
        ]
    )


def _load_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _load_notes(value: Any) -> tuple[ConcernNote, ...]:
    items = _load_json(value) or []
    return tuple(
        ConcernNote(
            admin_name=str(item["admin_name"]),
            message=str(item["message"]),
            timestamp=_ensure_datetime(item["timestamp"]),
        )
        for item in items
    )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
