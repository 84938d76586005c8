from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .state import ConcernPriority, ConcernStatus, SubmissionType


@dataclass(frozen=True, slots=True)
class Submitter:
    """User who filed the concern and receives its notifications."""

    name: str
    email: str


@dataclass(frozen=True, slots=True)
class ConcernNote:
    """Single admin note. Notes are only ever appended."""

    admin_name: str
    message: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class Concern:
    """Immutable snapshot of a concern (assistance request or feedback)."""

    id: str
    submission_type: SubmissionType
    status: ConcernStatus | None
    department: str | None
    priority: ConcernPriority | None
    category: str | None
    rating: int | None
    subject: str
    message: str
    submitter: Submitter
    submitted_at: datetime
    updated_at: datetime
    notes: tuple[ConcernNote, ...] = ()
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    in_progress_at: datetime | None = None

    @property
    def is_assistance(self) -> bool:
        return self.submission_type is SubmissionType.ASSISTANCE

    @property
    def display_subject(self) -> str:
        return self.subject or self.category or "Your Concern"


class NotificationKind(str, Enum):
    STATUS_CHANGED = "status_changed"
    RESOLVED = "resolved"
    NOTE_ADDED = "note_added"


@dataclass(frozen=True, slots=True)
class NotificationIntent:
    """Request to tell the submitter that something happened to their concern.

    Intents are produced by the lifecycle engine and delivered by a dispatcher
    only after the matching state change has been persisted.
    """

    kind: NotificationKind
    concern_id: str
    recipient: Submitter
    payload: Mapping[str, Any]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class LifecycleResult:
    """Outcome of a lifecycle operation: the new snapshot and at most one intent."""

    concern: Concern
    intent: NotificationIntent | None = None
    action: str | None = None

    @property
    def changed(self) -> bool:
        return self.action is not None


@dataclass(frozen=True, slots=True)
class ConcernAuditLog:
    """Audit information describing a committed concern action."""

    id: str
    concern_id: str
    action: str
    actor: str
    from_status: ConcernStatus | None
    to_status: ConcernStatus | None
    metadata: Mapping[str, Any]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ConcernMutation:
    """Field changes to apply to a stored concern in a single conditional update."""

    status: ConcernStatus | None
    priority: ConcernPriority | None
    resolution: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    in_progress_at: datetime | None
    updated_at: datetime
    appended_notes: tuple[ConcernNote, ...] = ()

    @classmethod
    def between(cls, before: Concern, after: Concern) -> "ConcernMutation":
        if len(after.notes) < len(before.notes) or after.notes[: len(before.notes)] != before.notes:
            raise ValueError(f"Notes of concern {before.id} were rewritten")
        return cls(
            status=after.status,
            priority=after.priority,
            resolution=after.resolution,
            resolved_by=after.resolved_by,
            resolved_at=after.resolved_at,
            in_progress_at=after.in_progress_at,
            updated_at=after.updated_at,
            appended_notes=after.notes[len(before.notes) :],
        )


@dataclass(frozen=True, slots=True)
class ConcernFilter:
    """Store-side filter for listing concerns."""

    department: str | None = None
    submitter_email: str | None = None
    status: ConcernStatus | None = None
    submission_type: SubmissionType | None = None
    search_text: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int | None = None
    offset: int = 0
