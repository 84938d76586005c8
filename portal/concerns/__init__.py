"""Concern/feedback lifecycle: state machine, aging, scoping and notifications."""

from .aging import AgingResult, AgingSeverity, classify
from .engine import LifecycleEngine
from .errors import (
    ConcernConflictError,
    ConcernError,
    ConcernNotFoundError,
    ConcernValidationError,
    DeliveryError,
    InvalidTransitionError,
)
from .models import (
    Concern,
    ConcernAuditLog,
    ConcernFilter,
    ConcernNote,
    LifecycleResult,
    NotificationIntent,
    NotificationKind,
    Submitter,
)
from .scope import DepartmentMatch, DepartmentScope, MatchMode, is_visible_to
from .service import ActionOutcome, ConcernPage, ConcernService
from .state import ConcernPriority, ConcernStateMachine, ConcernStatus, SubmissionType

__all__ = [
    "ActionOutcome",
    "AgingResult",
    "AgingSeverity",
    "Concern",
    "ConcernAuditLog",
    "ConcernConflictError",
    "ConcernError",
    "ConcernFilter",
    "ConcernNote",
    "ConcernNotFoundError",
    "ConcernPage",
    "ConcernPriority",
    "ConcernService",
    "ConcernStateMachine",
    "ConcernStatus",
    "ConcernValidationError",
    "DeliveryError",
    "DepartmentMatch",
    "DepartmentScope",
    "InvalidTransitionError",
    "LifecycleEngine",
    "LifecycleResult",
    "MatchMode",
    "NotificationIntent",
    "NotificationKind",
    "SubmissionType",
    "Submitter",
    "classify",
    "is_visible_to",
]
