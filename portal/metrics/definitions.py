"""Metric definitions for the concern lifecycle."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


CONCERN_ACTIONS_TOTAL = "concern_actions_total"
CONCERN_NOOPS_TOTAL = "concern_noop_actions_total"
CONCERN_CONFLICTS_TOTAL = "concern_conflicts_total"
CONCERN_REJECTIONS_TOTAL = "concern_rejected_actions_total"
CONCERN_ACTION_DURATION = "concern_action_duration_seconds"
NOTIFICATIONS_SENT_TOTAL = "concern_notifications_sent_total"
NOTIFICATIONS_FAILED_TOTAL = "concern_notifications_failed_total"
CONCERNS_SUBMITTED_TOTAL = "concerns_submitted_total"


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=CONCERN_ACTIONS_TOTAL,
        metric_type="counter",
        description="Committed lifecycle actions.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=CONCERN_NOOPS_TOTAL,
        metric_type="counter",
        description="Lifecycle calls that left the concern unchanged.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=CONCERN_CONFLICTS_TOTAL,
        metric_type="counter",
        description="Conditional updates lost to a concurrent writer.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=CONCERN_REJECTIONS_TOTAL,
        metric_type="counter",
        description="Lifecycle calls rejected by validation or the state machine.",
        label_names=("operation", "reason"),
    ),
    MetricDefinition(
        name=CONCERN_ACTION_DURATION,
        metric_type="distribution",
        description="Time spent applying a lifecycle operation, including persistence and delivery.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_SENT_TOTAL,
        metric_type="counter",
        description="Notification intents delivered.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_FAILED_TOTAL,
        metric_type="counter",
        description="Notification intents that failed delivery after a committed change.",
        label_names=("kind",),
    ),
    MetricDefinition(
        name=CONCERNS_SUBMITTED_TOTAL,
        metric_type="counter",
        description="Concerns submitted by users.",
        label_names=("submission_type",),
    ),
)
