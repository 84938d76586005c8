from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


class SubmissionType(str, Enum):
    """Kind of user submission."""

    ASSISTANCE = "assistance"
    FEEDBACK = "feedback"


class ConcernStatus(str, Enum):
    """States of an assistance concern."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ConcernPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


TERMINAL_STATUSES: frozenset[ConcernStatus] = frozenset({ConcernStatus.RESOLVED, ConcernStatus.CLOSED})


class ConcernStateMachine:
    """Validate concern status transitions.

    Statuses only move forward. ``closed`` is the administrative escape hatch and
    cannot be entered once a concern is resolved. A closed concern can still
    receive its final resolution.
    """

    _DEFAULT_TRANSITIONS: Mapping[ConcernStatus, Sequence[ConcernStatus]] = {
        ConcernStatus.PENDING: (ConcernStatus.IN_PROGRESS, ConcernStatus.RESOLVED, ConcernStatus.CLOSED),
        ConcernStatus.IN_PROGRESS: (ConcernStatus.RESOLVED, ConcernStatus.CLOSED),
        ConcernStatus.RESOLVED: (),
        ConcernStatus.CLOSED: (ConcernStatus.RESOLVED,),
    }

    def __init__(self, transitions: Mapping[ConcernStatus, Sequence[ConcernStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state(submission_type: SubmissionType) -> ConcernStatus | None:
        if submission_type is SubmissionType.ASSISTANCE:
            return ConcernStatus.PENDING
        return None

    def can_transition(self, current: ConcernStatus, target: ConcernStatus) -> bool:
        allowed = self._transitions.get(current, ())
        return target in allowed

    def is_terminal(self, status: ConcernStatus | None) -> bool:
        return status in TERMINAL_STATUSES
