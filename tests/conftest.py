from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from portal.concerns.models import Concern, Submitter
from portal.concerns.state import ConcernPriority, ConcernStatus, SubmissionType

NOW = datetime(2024, 3, 11, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_concern():
    base = Concern(
        id="AST-20240311-ABC123",
        submission_type=SubmissionType.ASSISTANCE,
        status=ConcernStatus.PENDING,
        department="NU Shuttle Service",
        priority=ConcernPriority.LOW,
        category="Shuttle",
        rating=None,
        subject="Card not tapping",
        message="The reader on bus 4 rejects my card.",
        submitter=Submitter(name="Jamie Cruz", email="jamie@students.nu.edu"),
        submitted_at=NOW,
        updated_at=NOW,
    )

    def factory(**overrides) -> Concern:
        if overrides.get("submission_type") is SubmissionType.FEEDBACK:
            overrides.setdefault("id", "FBK-20240311-XYZ789")
            overrides.setdefault("status", None)
            overrides.setdefault("priority", None)
            overrides.setdefault("rating", 4)
        return replace(base, **overrides)

    return factory
