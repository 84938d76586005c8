"""Age-based escalation buckets for open assistance concerns."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum
from typing import Sequence

from .models import Concern
from .state import ConcernStatus

_ONE_DAY = timedelta(days=1)


class AgingSeverity(IntEnum):
    """Ordered urgency level. Mapping to colours is left to the presentation layer."""

    LOWEST = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass(frozen=True, slots=True)
class AgingResult:
    age_in_days: int
    bucket_label: str
    severity: AgingSeverity


@dataclass(frozen=True, slots=True)
class AgingBucket:
    """Half-open ``[lower, upper)`` range of whole days; ``upper=None`` is unbounded."""

    lower: int
    upper: int | None
    severity: AgingSeverity
    label: str | None = None

    def contains(self, age_in_days: int) -> bool:
        if age_in_days < self.lower:
            return False
        return self.upper is None or age_in_days < self.upper

    def render_label(self, age_in_days: int) -> str:
        if self.label is not None:
            return self.label
        return f"{age_in_days}d old"


DEFAULT_BUCKETS: tuple[AgingBucket, ...] = (
    AgingBucket(0, 1, AgingSeverity.LOWEST, label="New"),
    AgingBucket(1, 3, AgingSeverity.LOW),
    AgingBucket(3, 5, AgingSeverity.MEDIUM),
    AgingBucket(5, 7, AgingSeverity.HIGH),
    AgingBucket(7, None, AgingSeverity.CRITICAL),
)


def age_in_days(submitted_at: datetime, now: datetime) -> int:
    """Whole days elapsed, truncated. Timestamps in the future count as age 0."""

    elapsed = now - submitted_at
    if elapsed < timedelta(0):
        return 0
    return elapsed // _ONE_DAY


def classify(
    concern: Concern,
    now: datetime,
    *,
    buckets: Sequence[AgingBucket] = DEFAULT_BUCKETS,
) -> AgingResult | None:
    """Return the aging bucket of an open assistance concern.

    Feedback and resolved concerns do not age and yield ``None``.
    """

    if not concern.is_assistance or concern.status is ConcernStatus.RESOLVED:
        return None

    days = age_in_days(concern.submitted_at, now)
    for bucket in buckets:
        if bucket.contains(days):
            return AgingResult(age_in_days=days, bucket_label=bucket.render_label(days), severity=bucket.severity)
    raise ValueError(f"No aging bucket covers {days} days")
