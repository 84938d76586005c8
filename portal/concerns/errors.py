from __future__ import annotations


class ConcernError(RuntimeError):
    """Base error for concern lifecycle issues."""


class ConcernNotFoundError(ConcernError):
    """Raised when an operation targets a non-existent concern."""


class ConcernValidationError(ConcernError):
    """Raised when required text (resolution, note, submission fields) is missing."""


class InvalidTransitionError(ConcernError):
    """Raised when the concern's current state forbids the requested operation."""


class ConcernConflictError(ConcernError):
    """Raised when a conditional update lost against a concurrent writer."""

    def __init__(self, concern_id: str, expected_status: object) -> None:
        super().__init__(f"Concern {concern_id} changed concurrently (expected status {expected_status!s})")
        self.concern_id = concern_id
        self.expected_status = expected_status


class DeliveryError(ConcernError):
    """Raised by a notification dispatcher when a message could not be delivered."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{super().__str__()}"
