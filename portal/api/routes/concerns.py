from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from portal.concerns.aging import AgingResult, classify
from portal.concerns.errors import (
    ConcernConflictError,
    ConcernError,
    ConcernNotFoundError,
    ConcernValidationError,
    InvalidTransitionError,
)
from portal.concerns.models import Concern, ConcernAuditLog, ConcernFilter, Submitter
from portal.concerns.service import ActionOutcome, ConcernPage
from portal.concerns.state import ConcernPriority, ConcernStatus, SubmissionType
from portal.core.config import get_settings
from portal.dependencies.concerns import ConcernServiceDep, EditorScope, EditorUser, SubmitterUser, ViewerScope

router = APIRouter(prefix="/concerns", tags=["concerns"])


class AgingModel(BaseModel):
    age_in_days: int
    label: str
    severity: str
    level: int

    @classmethod
    def from_result(cls, result: AgingResult) -> "AgingModel":
        return cls(
            age_in_days=result.age_in_days,
            label=result.bucket_label,
            severity=result.severity.name.lower(),
            level=int(result.severity),
        )


class NoteModel(BaseModel):
    admin_name: str
    message: str
    timestamp: datetime


class SubmitterModel(BaseModel):
    name: str
    email: str


class ConcernModel(BaseModel):
    id: str
    submission_type: SubmissionType
    status: ConcernStatus | None
    department: str | None
    priority: ConcernPriority | None
    category: str | None
    rating: int | None
    subject: str
    message: str
    submitter: SubmitterModel
    submitted_at: datetime
    updated_at: datetime
    notes: list[NoteModel] = Field(default_factory=list)
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    in_progress_at: datetime | None = None
    aging: AgingModel | None = None

    @classmethod
    def from_entity(cls, concern: Concern, *, now: datetime) -> "ConcernModel":
        aging = classify(concern, now)
        return cls(
            id=concern.id,
            submission_type=concern.submission_type,
            status=concern.status,
            department=concern.department,
            priority=concern.priority,
            category=concern.category,
            rating=concern.rating,
            subject=concern.subject,
            message=concern.message,
            submitter=SubmitterModel(name=concern.submitter.name, email=concern.submitter.email),
            submitted_at=concern.submitted_at,
            updated_at=concern.updated_at,
            notes=[
                NoteModel(admin_name=note.admin_name, message=note.message, timestamp=note.timestamp)
                for note in concern.notes
            ],
            resolution=concern.resolution,
            resolved_by=concern.resolved_by,
            resolved_at=concern.resolved_at,
            in_progress_at=concern.in_progress_at,
            aging=AgingModel.from_result(aging) if aging is not None else None,
        )


class ConcernListResponse(BaseModel):
    concerns: list[ConcernModel]
    total: int
    page: int
    limit: int
    pages: int


class ConcernActionResponse(BaseModel):
    concern: ConcernModel
    changed: bool
    notification_sent: bool
    warning: str | None = None


class ConcernAuditModel(BaseModel):
    id: str
    action: str
    actor: str
    from_status: ConcernStatus | None = None
    to_status: ConcernStatus | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ConcernSubmitRequest(BaseModel):
    submission_type: SubmissionType
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    department: str | None = Field(default=None, max_length=255)
    subject: str = Field(default="", max_length=255)
    message: str = Field(default="", max_length=5000)
    category: str | None = Field(default=None, max_length=255)
    rating: int | None = Field(default=None, ge=1, le=5)
    priority: ConcernPriority | None = None


class StatusChangeRequest(BaseModel):
    status: ConcernStatus


class PriorityChangeRequest(BaseModel):
    priority: ConcernPriority


class ResolveRequest(BaseModel):
    resolution: str = Field(default="", max_length=5000)


class NoteRequest(BaseModel):
    message: str = Field(default="", max_length=2000)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_http(exc: ConcernError) -> HTTPException:
    if isinstance(exc, ConcernNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcernValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (InvalidTransitionError, ConcernConflictError)):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _action_response(outcome: ActionOutcome) -> ConcernActionResponse:
    return ConcernActionResponse(
        concern=ConcernModel.from_entity(outcome.concern, now=_now()),
        changed=outcome.changed,
        notification_sent=outcome.delivered,
        warning=outcome.warning,
    )


@router.get("", response_model=ConcernListResponse, summary="List concerns visible to the caller's surface")
async def list_concerns(
    service: ConcernServiceDep,
    scope: ViewerScope,
    status_filter: ConcernStatus | None = Query(default=None, alias="status"),
    type_filter: SubmissionType | None = Query(default=None, alias="type"),
    search: str | None = Query(default=None, max_length=200),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> ConcernListResponse:
    settings = get_settings()
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    concern_filter = ConcernFilter(
        status=status_filter,
        submission_type=type_filter,
        search_text=search,
        date_from=date_from,
        date_to=date_to,
    )
    result = await service.list_concerns(scope, concern_filter, page=page, limit=page_size)
    return _list_response(result)


def _list_response(result: ConcernPage) -> ConcernListResponse:
    now = _now()
    return ConcernListResponse(
        concerns=[ConcernModel.from_entity(item, now=now) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages,
    )


@router.post("", response_model=ConcernModel, status_code=status.HTTP_201_CREATED)
async def submit_concern(payload: ConcernSubmitRequest, service: ConcernServiceDep) -> ConcernModel:
    try:
        concern = await service.submit_concern(
            submission_type=payload.submission_type,
            submitter=Submitter(name=payload.name, email=payload.email),
            department=payload.department,
            subject=payload.subject,
            message=payload.message,
            category=payload.category,
            rating=payload.rating,
            priority=payload.priority,
        )
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return ConcernModel.from_entity(concern, now=_now())


@router.get("/stats", response_model=dict[str, int])
async def concern_stats(service: ConcernServiceDep, scope: ViewerScope) -> dict[str, int]:
    return dict(await service.status_counts(scope))


@router.get("/my-concerns", response_model=ConcernListResponse, summary="Concerns filed by the signed-in user")
async def list_my_concerns(
    service: ConcernServiceDep,
    user: SubmitterUser,
    status_filter: ConcernStatus | None = Query(default=None, alias="status"),
    type_filter: SubmissionType | None = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> ConcernListResponse:
    settings = get_settings()
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    try:
        result = await service.list_for_submitter(
            user.email or "",
            ConcernFilter(status=status_filter, submission_type=type_filter),
            page=page,
            limit=page_size,
        )
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _list_response(result)


@router.get("/{concern_id}", response_model=ConcernModel)
async def get_concern(concern_id: str, service: ConcernServiceDep, scope: ViewerScope) -> ConcernModel:
    try:
        concern = await service.get_concern(concern_id, scope=scope)
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return ConcernModel.from_entity(concern, now=_now())


@router.post("/{concern_id}/review", response_model=ConcernActionResponse)
async def open_for_review(
    concern_id: str, service: ConcernServiceDep, user: EditorUser, scope: EditorScope
) -> ConcernActionResponse:
    try:
        outcome = await service.open_for_review(concern_id, actor=user.display_name, scope=scope)
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _action_response(outcome)


@router.patch("/{concern_id}/status", response_model=ConcernActionResponse)
async def change_status(
    concern_id: str,
    payload: StatusChangeRequest,
    service: ConcernServiceDep,
    user: EditorUser,
    scope: EditorScope,
) -> ConcernActionResponse:
    try:
        outcome = await service.set_status(
            concern_id, new_status=payload.status, actor=user.display_name, scope=scope
        )
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _action_response(outcome)


@router.patch("/{concern_id}/priority", response_model=ConcernActionResponse)
async def change_priority(
    concern_id: str,
    payload: PriorityChangeRequest,
    service: ConcernServiceDep,
    user: EditorUser,
    scope: EditorScope,
) -> ConcernActionResponse:
    try:
        outcome = await service.set_priority(
            concern_id, priority=payload.priority, actor=user.display_name, scope=scope
        )
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _action_response(outcome)


@router.post("/{concern_id}/resolve", response_model=ConcernActionResponse)
async def resolve_concern(
    concern_id: str,
    payload: ResolveRequest,
    service: ConcernServiceDep,
    user: EditorUser,
    scope: EditorScope,
) -> ConcernActionResponse:
    try:
        outcome = await service.resolve(
            concern_id, resolution=payload.resolution, actor=user.display_name, scope=scope
        )
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _action_response(outcome)


@router.post("/{concern_id}/notes", response_model=ConcernActionResponse, status_code=status.HTTP_201_CREATED)
async def add_note(
    concern_id: str,
    payload: NoteRequest,
    service: ConcernServiceDep,
    user: EditorUser,
    scope: EditorScope,
) -> ConcernActionResponse:
    try:
        outcome = await service.add_note(concern_id, message=payload.message, actor=user.display_name, scope=scope)
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return _action_response(outcome)


@router.get("/{concern_id}/audit", response_model=list[ConcernAuditModel])
async def get_concern_audit(
    concern_id: str, service: ConcernServiceDep, scope: ViewerScope
) -> list[ConcernAuditModel]:
    try:
        entries = await service.get_audit_log(concern_id, scope=scope)
    except ConcernError as exc:
        raise _to_http(exc) from exc
    return [_audit_model(entry) for entry in entries]


def _audit_model(entry: ConcernAuditLog) -> ConcernAuditModel:
    return ConcernAuditModel(
        id=entry.id,
        action=entry.action,
        actor=entry.actor,
        from_status=entry.from_status,
        to_status=entry.to_status,
        metadata=dict(entry.metadata),
        created_at=entry.created_at,
    )
