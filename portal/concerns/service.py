from __future__ import annotations

import logging
import secrets
import string
import uuid
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from opentelemetry import trace

from portal.metrics import MetricsRegistry, metrics_registry, track_duration
from portal.metrics import definitions as metric_names

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
    ConcernMutation,
    LifecycleResult,
    NotificationIntent,
    Submitter,
)
from .notifications import LoggingNotificationDispatcher, NotificationDispatcher
from .repository import ConcernRepository
from .scope import DepartmentScope, department_visible, is_visible_to
from .state import ConcernPriority, ConcernStateMachine, ConcernStatus, SubmissionType

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_concern_id(submission_type: SubmissionType, now: datetime) -> str:
    """Build ``AST-YYYYMMDD-XXXXXX`` / ``FBK-YYYYMMDD-XXXXXX`` identifiers."""

    prefix = "AST" if submission_type is SubmissionType.ASSISTANCE else "FBK"
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Result of a persisted lifecycle action.

    ``warning`` is set when the change committed but its notification could not
    be delivered.
    """

    concern: Concern
    intent: NotificationIntent | None = None
    changed: bool = False
    delivered: bool = False
    warning: str | None = None


@dataclass(frozen=True, slots=True)
class ConcernPage:
    items: Sequence[Concern]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)


class ConcernService:
    """High level orchestration: read snapshot, apply the engine, write conditionally, notify."""

    def __init__(
        self,
        repository: ConcernRepository,
        *,
        dispatcher: NotificationDispatcher | None = None,
        engine: LifecycleEngine | None = None,
        metrics: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._engine = engine or LifecycleEngine()
        self._metrics = metrics or metrics_registry
        self._clock = clock

    async def submit_concern(
        self,
        *,
        submission_type: SubmissionType,
        submitter: Submitter,
        department: str | None,
        subject: str = "",
        message: str = "",
        category: str | None = None,
        rating: int | None = None,
        priority: ConcernPriority | None = None,
    ) -> Concern:
        if not submitter.email.strip():
            raise ConcernValidationError("A submitter email is required")
        if submission_type is SubmissionType.FEEDBACK:
            if rating is None or not 1 <= rating <= 5:
                raise ConcernValidationError("Feedback needs a rating between 1 and 5")
            if priority is not None:
                raise ConcernValidationError("Feedback does not carry a priority")
        else:
            if rating is not None:
                raise ConcernValidationError("Only feedback can be rated")
            if not (subject.strip() or (category or "").strip()):
                raise ConcernValidationError("An assistance request needs a subject or category")

        now = self._clock()
        concern = Concern(
            id=generate_concern_id(submission_type, now),
            submission_type=submission_type,
            status=ConcernStateMachine.initial_state(submission_type),
            department=department.strip() if department else None,
            priority=(priority or ConcernPriority.LOW) if submission_type is SubmissionType.ASSISTANCE else None,
            category=category,
            rating=rating,
            subject=subject.strip(),
            message=message.strip(),
            submitter=submitter,
            submitted_at=now,
            updated_at=now,
        )
        audit = self._audit(concern, "submitted", submitter.name or submitter.email, None, concern.status, {}, now)
        await self._repository.create(concern, audit)
        self._metrics.counter(metric_names.CONCERNS_SUBMITTED_TOTAL, label_names=("submission_type",)).inc(
            labels={"submission_type": submission_type.value}
        )
        logger.info("Concern %s submitted to %s", concern.id, concern.department or "unassigned")
        return concern

    async def get_concern(self, concern_id: str, *, scope: DepartmentScope | None = None) -> Concern:
        concern = await self._repository.find_by_id(concern_id)
        if concern is None or (scope is not None and not is_visible_to(concern, scope)):
            raise ConcernNotFoundError(f"Concern {concern_id} not found")
        return concern

    async def list_concerns(
        self,
        scope: DepartmentScope,
        concern_filter: ConcernFilter | None = None,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> ConcernPage:
        return await self._page(concern_filter or ConcernFilter(), scope, page=page, limit=limit)

    async def list_for_submitter(
        self,
        email: str,
        concern_filter: ConcernFilter | None = None,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> ConcernPage:
        """Concerns filed under ``email``, newest first, regardless of department."""

        if not email.strip():
            raise ConcernValidationError("A submitter email is required")
        base = replace(concern_filter or ConcernFilter(), submitter_email=email.strip())
        return await self._page(base, DepartmentScope.all(), page=page, limit=limit)

    async def _page(self, base: ConcernFilter, scope: DepartmentScope, *, page: int, limit: int) -> ConcernPage:
        page = max(page, 1)
        store_scope = None if scope.wildcard else scope
        paged = replace(base, limit=limit, offset=(page - 1) * limit)
        items = await self._repository.query(paged, store_scope)
        total = await self._repository.count(base, store_scope)
        return ConcernPage(items=items, total=total, page=page, limit=limit)

    async def status_counts(self, scope: DepartmentScope) -> Mapping[str, int]:
        """Counts of assistance concerns per status plus the feedback total, within scope."""

        counts: Counter[str] = Counter({status.value: 0 for status in ConcernStatus})
        counts["feedback"] = 0
        for row in await self._repository.status_breakdown():
            if not department_visible(row.get("department"), scope):
                continue
            if row["submission_type"] == SubmissionType.FEEDBACK.value:
                counts["feedback"] += int(row["total"])
            elif row.get("status"):
                counts[str(row["status"])] += int(row["total"])
        counts["total"] = sum(counts.values())
        return dict(counts)

    async def get_audit_log(self, concern_id: str, *, scope: DepartmentScope | None = None) -> list[ConcernAuditLog]:
        await self.get_concern(concern_id, scope=scope)
        return await self._repository.get_audit_log(concern_id)

    async def open_for_review(
        self, concern_id: str, *, actor: str, scope: DepartmentScope | None = None
    ) -> ActionOutcome:
        return await self._apply(
            "open_for_review",
            concern_id,
            actor,
            scope,
            lambda concern, now: self._engine.open_for_review(concern, actor, now),
        )

    async def set_status(
        self,
        concern_id: str,
        *,
        new_status: ConcernStatus,
        actor: str,
        scope: DepartmentScope | None = None,
    ) -> ActionOutcome:
        return await self._apply(
            "set_status",
            concern_id,
            actor,
            scope,
            lambda concern, now: self._engine.set_status(concern, new_status, actor, now),
        )

    async def resolve(
        self,
        concern_id: str,
        *,
        resolution: str,
        actor: str,
        scope: DepartmentScope | None = None,
    ) -> ActionOutcome:
        return await self._apply(
            "resolve",
            concern_id,
            actor,
            scope,
            lambda concern, now: self._engine.resolve(concern, resolution, actor, now),
            metadata=lambda result: {"resolution": result.concern.resolution},
        )

    async def add_note(
        self,
        concern_id: str,
        *,
        message: str,
        actor: str,
        scope: DepartmentScope | None = None,
    ) -> ActionOutcome:
        return await self._apply(
            "add_note",
            concern_id,
            actor,
            scope,
            lambda concern, now: self._engine.add_note(concern, message, actor, now),
            metadata=lambda result: {"message": result.concern.notes[-1].message},
        )

    async def set_priority(
        self,
        concern_id: str,
        *,
        priority: ConcernPriority,
        actor: str,
        scope: DepartmentScope | None = None,
    ) -> ActionOutcome:
        return await self._apply(
            "set_priority",
            concern_id,
            actor,
            scope,
            lambda concern, now: self._engine.set_priority(concern, priority, actor, now),
            metadata=lambda result: {"priority": priority.value},
        )

    async def _apply(
        self,
        operation: str,
        concern_id: str,
        actor: str,
        scope: DepartmentScope | None,
        step: Callable[[Concern, datetime], LifecycleResult],
        *,
        metadata: Callable[[LifecycleResult], Mapping[str, Any]] | None = None,
    ) -> ActionOutcome:
        duration = self._metrics.distribution(metric_names.CONCERN_ACTION_DURATION, label_names=("operation",))
        with tracer.start_as_current_span(f"concern.{operation}") as span, track_duration(
            duration, labels={"operation": operation}
        ):
            span.set_attribute("concern.id", concern_id)
            span.set_attribute("concern.actor", actor)

            # Always work from the persisted snapshot so retries observe committed state.
            concern = await self.get_concern(concern_id, scope=scope)
            now = self._clock()
            try:
                result = step(concern, now)
            except (ConcernValidationError, InvalidTransitionError) as exc:
                self._reject(operation, exc)
                raise

            if not result.changed:
                self._metrics.counter(metric_names.CONCERN_NOOPS_TOTAL, label_names=("operation",)).inc(
                    labels={"operation": operation}
                )
                logger.debug("Concern %s: %s left it unchanged", concern_id, operation)
                return ActionOutcome(concern=concern)

            audit = self._audit(
                concern,
                result.action or operation,
                actor,
                concern.status,
                result.concern.status,
                metadata(result) if metadata is not None else {},
                now,
            )
            stored = await self._repository.conditional_update(
                concern_id,
                concern.status,
                ConcernMutation.between(concern, result.concern),
                audit,
                expected_updated_at=concern.updated_at,
            )
            if stored is None:
                if await self._repository.find_by_id(concern_id) is None:
                    raise ConcernNotFoundError(f"Concern {concern_id} not found")
                self._metrics.counter(metric_names.CONCERN_CONFLICTS_TOTAL, label_names=("operation",)).inc(
                    labels={"operation": operation}
                )
                logger.info("Concern %s: %s lost a concurrent update", concern_id, operation)
                raise ConcernConflictError(concern_id, concern.status)

            self._metrics.counter(metric_names.CONCERN_ACTIONS_TOTAL, label_names=("action",)).inc(
                labels={"action": audit.action}
            )
            logger.info("Concern %s: %s by %s", concern_id, audit.action, actor)
            span.set_attribute("concern.action", audit.action)

            delivered, warning = await self._dispatch(result.intent)
            return ActionOutcome(
                concern=stored,
                intent=result.intent,
                changed=True,
                delivered=delivered,
                warning=warning,
            )

    async def _dispatch(self, intent: NotificationIntent | None) -> tuple[bool, str | None]:
        if intent is None:
            return False, None
        try:
            await self._dispatcher.send(intent)
        except DeliveryError as exc:
            self._metrics.counter(metric_names.NOTIFICATIONS_FAILED_TOTAL, label_names=("kind",)).inc(
                labels={"kind": intent.kind.value}
            )
            logger.warning("Could not deliver %s notification for %s: %s", intent.kind.value, intent.concern_id, exc)
            return False, f"The change was saved but the notification could not be delivered: {exc}"
        self._metrics.counter(metric_names.NOTIFICATIONS_SENT_TOTAL, label_names=("kind",)).inc(
            labels={"kind": intent.kind.value}
        )
        return True, None

    def _reject(self, operation: str, exc: ConcernError) -> None:
        reason = "validation" if isinstance(exc, ConcernValidationError) else "invalid_transition"
        self._metrics.counter(metric_names.CONCERN_REJECTIONS_TOTAL, label_names=("operation", "reason")).inc(
            labels={"operation": operation, "reason": reason}
        )
        logger.info("Rejected %s: %s", operation, exc)

    @staticmethod
    def _audit(
        concern: Concern,
        action: str,
        actor: str,
        from_status: ConcernStatus | None,
        to_status: ConcernStatus | None,
        metadata: Mapping[str, Any],
        now: datetime,
    ) -> ConcernAuditLog:
        return ConcernAuditLog(
            id=str(uuid.uuid4()),
            concern_id=concern.id,
            action=action,
            actor=actor,
            from_status=from_status,
            to_status=to_status,
            metadata=dict(metadata),
            created_at=now,
        )

