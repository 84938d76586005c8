"""Concern lifecycle engine.

Every operation is a pure transformation: it takes a concern snapshot plus
explicit actor and clock arguments and returns a :class:`LifecycleResult`
holding the new snapshot and at most one :class:`NotificationIntent`. Nothing
here touches storage or delivery; callers persist the snapshot first and
dispatch the intent only once the write has committed.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping

from .errors import ConcernValidationError, InvalidTransitionError
from .models import Concern, ConcernNote, LifecycleResult, NotificationIntent, NotificationKind
from .state import ConcernPriority, ConcernStateMachine, ConcernStatus

SETTABLE_STATUSES: frozenset[ConcernStatus] = frozenset({ConcernStatus.IN_PROGRESS, ConcernStatus.CLOSED})


def _require_text(value: str | None, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ConcernValidationError(f"A {field_name} is required")
    return text


class LifecycleEngine:
    """Single authority over concern status, notes and resolution."""

    def __init__(self, state_machine: ConcernStateMachine | None = None) -> None:
        self._state_machine = state_machine or ConcernStateMachine()

    def open_for_review(self, concern: Concern, actor: str, now: datetime) -> LifecycleResult:
        """Move a pending concern to ``in_progress`` when an admin opens it.

        Any other state is left untouched, so repeated views never re-notify.
        """

        if not concern.is_assistance or concern.status is not ConcernStatus.PENDING:
            return LifecycleResult(concern=concern)
        return self._move(concern, ConcernStatus.IN_PROGRESS, actor, now, action="opened_for_review")

    def set_status(
        self,
        concern: Concern,
        new_status: ConcernStatus,
        actor: str,
        now: datetime,
    ) -> LifecycleResult:
        if new_status not in SETTABLE_STATUSES:
            raise InvalidTransitionError(
                f"Status {new_status.value} cannot be set directly; use resolve for resolutions"
            )
        self._ensure_assistance(concern, "change the status of")
        if concern.status is ConcernStatus.RESOLVED:
            raise InvalidTransitionError(f"Concern {concern.id} is already resolved")
        if concern.status is new_status:
            return LifecycleResult(concern=concern)
        if concern.status is None or not self._state_machine.can_transition(concern.status, new_status):
            raise InvalidTransitionError(
                f"Cannot transition concern {concern.id} from {_status_value(concern.status)} to {new_status.value}"
            )
        return self._move(concern, new_status, actor, now, action="status_changed")

    def resolve(self, concern: Concern, resolution_message: str, actor: str, now: datetime) -> LifecycleResult:
        message = _require_text(resolution_message, "resolution message")
        self._ensure_assistance(concern, "resolve")
        if concern.status is ConcernStatus.RESOLVED:
            raise InvalidTransitionError(f"Concern {concern.id} is already resolved")
        if concern.status is None or not self._state_machine.can_transition(concern.status, ConcernStatus.RESOLVED):
            raise InvalidTransitionError(
                f"Cannot resolve concern {concern.id} from {_status_value(concern.status)}"
            )

        resolved = replace(
            concern,
            status=ConcernStatus.RESOLVED,
            resolution=message,
            resolved_by=actor,
            resolved_at=now,
            updated_at=now,
        )
        intent = self._intent(
            resolved,
            NotificationKind.RESOLVED,
            now,
            {"message": message, "admin_name": actor},
        )
        return LifecycleResult(concern=resolved, intent=intent, action="resolved")

    def add_note(self, concern: Concern, message: str, actor: str, now: datetime) -> LifecycleResult:
        text = _require_text(message, "note message")
        self._ensure_assistance(concern, "add notes to")
        if concern.status is ConcernStatus.RESOLVED:
            raise InvalidTransitionError(f"Concern {concern.id} is resolved; the resolution is final")

        note = ConcernNote(admin_name=actor, message=text, timestamp=now)
        noted = replace(concern, notes=(*concern.notes, note), updated_at=now)
        intent = self._intent(
            noted,
            NotificationKind.NOTE_ADDED,
            now,
            {"message": text, "admin_name": actor},
        )
        return LifecycleResult(concern=noted, intent=intent, action="note_added")

    def set_priority(
        self,
        concern: Concern,
        priority: ConcernPriority,
        actor: str,
        now: datetime,
    ) -> LifecycleResult:
        """Re-prioritise an open assistance concern. Triage is internal and never notifies."""

        self._ensure_assistance(concern, "prioritise")
        if self._state_machine.is_terminal(concern.status):
            raise InvalidTransitionError(
                f"Concern {concern.id} is {_status_value(concern.status)}; priority is frozen"
            )
        if concern.priority is priority:
            return LifecycleResult(concern=concern)
        return LifecycleResult(concern=replace(concern, priority=priority, updated_at=now), action="priority_changed")

    def _move(
        self,
        concern: Concern,
        new_status: ConcernStatus,
        actor: str,
        now: datetime,
        *,
        action: str,
    ) -> LifecycleResult:
        in_progress_at = concern.in_progress_at
        if new_status is ConcernStatus.IN_PROGRESS and in_progress_at is None:
            in_progress_at = now
        moved = replace(concern, status=new_status, in_progress_at=in_progress_at, updated_at=now)
        intent = self._intent(
            moved,
            NotificationKind.STATUS_CHANGED,
            now,
            {"old_status": _status_value(concern.status), "new_status": new_status.value, "admin_name": actor},
        )
        return LifecycleResult(concern=moved, intent=intent, action=action)

    @staticmethod
    def _ensure_assistance(concern: Concern, verb: str) -> None:
        if not concern.is_assistance:
            raise InvalidTransitionError(f"Cannot {verb} feedback {concern.id}; feedback is read-only")

    @staticmethod
    def _intent(
        concern: Concern,
        kind: NotificationKind,
        now: datetime,
        payload: Mapping[str, Any],
    ) -> NotificationIntent:
        return NotificationIntent(
            kind=kind,
            concern_id=concern.id,
            recipient=concern.submitter,
            payload={"subject": concern.display_subject, "department": concern.department, **payload},
            created_at=now,
        )


def _status_value(status: ConcernStatus | None) -> str:
    return status.value if status is not None else "none"


_default_engine = LifecycleEngine()

open_for_review = _default_engine.open_for_review
set_status = _default_engine.set_status
resolve = _default_engine.resolve
add_note = _default_engine.add_note
set_priority = _default_engine.set_priority
