from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from portal.concerns import engine as lifecycle
from portal.concerns.engine import LifecycleEngine
from portal.concerns.errors import ConcernValidationError, InvalidTransitionError
from portal.concerns.models import ConcernMutation, ConcernNote, NotificationKind
from portal.concerns.state import ConcernPriority, ConcernStateMachine, ConcernStatus, SubmissionType

ADMIN = "Motorpool Admin"


@pytest.fixture
def engine() -> LifecycleEngine:
    return LifecycleEngine()


def test_state_machine_transitions():
    machine = ConcernStateMachine()
    assert machine.can_transition(ConcernStatus.PENDING, ConcernStatus.IN_PROGRESS)
    assert machine.can_transition(ConcernStatus.IN_PROGRESS, ConcernStatus.CLOSED)
    assert machine.can_transition(ConcernStatus.CLOSED, ConcernStatus.RESOLVED)
    assert not machine.can_transition(ConcernStatus.IN_PROGRESS, ConcernStatus.PENDING)
    assert not machine.can_transition(ConcernStatus.RESOLVED, ConcernStatus.CLOSED)
    assert not machine.can_transition(ConcernStatus.CLOSED, ConcernStatus.IN_PROGRESS)
    assert machine.initial_state(SubmissionType.ASSISTANCE) is ConcernStatus.PENDING
    assert machine.initial_state(SubmissionType.FEEDBACK) is None


def test_open_for_review_moves_pending_to_in_progress(engine, make_concern, now):
    concern = make_concern()
    later = now + timedelta(hours=2)

    result = engine.open_for_review(concern, ADMIN, later)

    assert result.changed
    assert result.action == "opened_for_review"
    assert result.concern.status is ConcernStatus.IN_PROGRESS
    assert result.concern.in_progress_at == later
    assert result.concern.updated_at == later
    assert result.intent is not None
    assert result.intent.kind is NotificationKind.STATUS_CHANGED
    assert result.intent.recipient == concern.submitter
    assert result.intent.payload["old_status"] == "pending"
    assert result.intent.payload["new_status"] == "in_progress"
    assert result.intent.payload["admin_name"] == ADMIN


def test_open_for_review_is_idempotent(engine, make_concern, now):
    first = engine.open_for_review(make_concern(), ADMIN, now)

    second = engine.open_for_review(first.concern, ADMIN, now + timedelta(minutes=5))

    assert not second.changed
    assert second.intent is None
    assert second.concern == first.concern


@pytest.mark.parametrize(
    "status",
    [ConcernStatus.IN_PROGRESS, ConcernStatus.RESOLVED, ConcernStatus.CLOSED],
)
def test_open_for_review_leaves_other_states_alone(engine, make_concern, now, status):
    concern = make_concern(status=status)

    result = engine.open_for_review(concern, ADMIN, now)

    assert result.concern is concern
    assert result.intent is None


def test_open_for_review_ignores_feedback(engine, make_concern, now):
    feedback = make_concern(submission_type=SubmissionType.FEEDBACK)

    result = engine.open_for_review(feedback, ADMIN, now)

    assert result.concern is feedback
    assert result.intent is None


@pytest.mark.parametrize(
    "status",
    [ConcernStatus.PENDING, ConcernStatus.IN_PROGRESS, ConcernStatus.CLOSED],
)
def test_resolve_succeeds_from_open_states(engine, make_concern, now, status):
    concern = make_concern(status=status)

    result = engine.resolve(concern, "  Replaced the card reader.  ", ADMIN, now)

    resolved = result.concern
    assert resolved.status is ConcernStatus.RESOLVED
    assert resolved.resolution == "Replaced the card reader."
    assert resolved.resolved_by == ADMIN
    assert resolved.resolved_at == now
    assert result.intent is not None
    assert result.intent.kind is NotificationKind.RESOLVED
    assert result.intent.payload["message"] == "Replaced the card reader."


@pytest.mark.parametrize("message", ["", "   ", "\n\t", None])
def test_resolve_requires_message(engine, make_concern, now, message):
    concern = make_concern()

    with pytest.raises(ConcernValidationError):
        engine.resolve(concern, message, ADMIN, now)

    assert concern.status is ConcernStatus.PENDING
    assert concern.resolution is None


def test_resolve_rejects_already_resolved(engine, make_concern, now):
    concern = engine.resolve(make_concern(), "Done", ADMIN, now).concern

    with pytest.raises(InvalidTransitionError):
        engine.resolve(concern, "Again", ADMIN, now + timedelta(hours=1))

    assert concern.resolution == "Done"


def test_resolve_rejects_feedback(engine, make_concern, now):
    feedback = make_concern(submission_type=SubmissionType.FEEDBACK)

    with pytest.raises(InvalidTransitionError):
        engine.resolve(feedback, "Thanks", ADMIN, now)


def test_set_status_closes_in_progress_concern(engine, make_concern, now):
    concern = make_concern(status=ConcernStatus.IN_PROGRESS, in_progress_at=now)

    result = engine.set_status(concern, ConcernStatus.CLOSED, ADMIN, now + timedelta(days=1))

    assert result.concern.status is ConcernStatus.CLOSED
    assert result.concern.in_progress_at == now
    assert result.intent is not None
    assert result.intent.payload["old_status"] == "in_progress"
    assert result.intent.payload["new_status"] == "closed"


def test_set_status_same_status_is_noop(engine, make_concern, now):
    concern = make_concern(status=ConcernStatus.IN_PROGRESS)

    result = engine.set_status(concern, ConcernStatus.IN_PROGRESS, ADMIN, now)

    assert not result.changed
    assert result.intent is None


def test_set_status_cannot_reopen_closed(engine, make_concern, now):
    with pytest.raises(InvalidTransitionError):
        engine.set_status(make_concern(status=ConcernStatus.CLOSED), ConcernStatus.IN_PROGRESS, ADMIN, now)


@pytest.mark.parametrize("target", [ConcernStatus.RESOLVED, ConcernStatus.PENDING])
def test_set_status_rejects_targets_outside_direct_changes(engine, make_concern, now, target):
    with pytest.raises(InvalidTransitionError):
        engine.set_status(make_concern(status=ConcernStatus.IN_PROGRESS), target, ADMIN, now)


def test_set_status_rejects_resolved_and_feedback(engine, make_concern, now):
    with pytest.raises(InvalidTransitionError):
        engine.set_status(make_concern(status=ConcernStatus.RESOLVED), ConcernStatus.CLOSED, ADMIN, now)
    with pytest.raises(InvalidTransitionError):
        engine.set_status(
            make_concern(submission_type=SubmissionType.FEEDBACK), ConcernStatus.IN_PROGRESS, ADMIN, now
        )


def test_add_note_appends_in_order(engine, make_concern, now):
    concern = make_concern(status=ConcernStatus.IN_PROGRESS)

    first = engine.add_note(concern, "Checking with the driver", ADMIN, now)
    second = engine.add_note(first.concern, "  Reader replaced  ", "Shuttle Lead", now + timedelta(minutes=1))

    notes = second.concern.notes
    assert [note.message for note in notes] == ["Checking with the driver", "Reader replaced"]
    assert notes[0] == first.concern.notes[0]
    assert notes[1].admin_name == "Shuttle Lead"
    assert second.concern.status is ConcernStatus.IN_PROGRESS
    assert second.intent is not None
    assert second.intent.kind is NotificationKind.NOTE_ADDED
    assert second.intent.payload["message"] == "Reader replaced"


def test_add_note_allowed_on_closed(engine, make_concern, now):
    result = engine.add_note(make_concern(status=ConcernStatus.CLOSED), "Closed as duplicate", ADMIN, now)

    assert len(result.concern.notes) == 1


def test_add_note_rejections(engine, make_concern, now):
    with pytest.raises(ConcernValidationError):
        engine.add_note(make_concern(), "   ", ADMIN, now)
    with pytest.raises(InvalidTransitionError):
        engine.add_note(make_concern(status=ConcernStatus.RESOLVED, resolution="Done"), "More", ADMIN, now)
    with pytest.raises(InvalidTransitionError):
        engine.add_note(make_concern(submission_type=SubmissionType.FEEDBACK), "Hi", ADMIN, now)


def test_set_priority_changes_without_notification(engine, make_concern, now):
    result = engine.set_priority(make_concern(), ConcernPriority.URGENT, ADMIN, now)

    assert result.changed
    assert result.action == "priority_changed"
    assert result.concern.priority is ConcernPriority.URGENT
    assert result.intent is None

    again = engine.set_priority(result.concern, ConcernPriority.URGENT, ADMIN, now)
    assert not again.changed


@pytest.mark.parametrize("status", [ConcernStatus.RESOLVED, ConcernStatus.CLOSED])
def test_set_priority_frozen_after_terminal(engine, make_concern, now, status):
    with pytest.raises(InvalidTransitionError):
        engine.set_priority(make_concern(status=status), ConcernPriority.HIGH, ADMIN, now)


def test_review_note_resolve_scenario(make_concern, now):
    concern = make_concern()
    intents = []

    step = lifecycle.open_for_review(concern, ADMIN, now + timedelta(minutes=1))
    intents.append(step.intent)
    step = lifecycle.add_note(step.concern, "Looking into it", ADMIN, now + timedelta(minutes=2))
    intents.append(step.intent)
    step = lifecycle.resolve(step.concern, "Fixed", ADMIN, now + timedelta(minutes=3))
    intents.append(step.intent)

    final = step.concern
    assert final.status is ConcernStatus.RESOLVED
    assert [note.message for note in final.notes] == ["Looking into it"]
    assert [intent.kind for intent in intents] == [
        NotificationKind.STATUS_CHANGED,
        NotificationKind.NOTE_ADDED,
        NotificationKind.RESOLVED,
    ]
    with pytest.raises(InvalidTransitionError):
        lifecycle.add_note(final, "Too late", ADMIN, now + timedelta(minutes=4))


def test_mutation_carries_only_appended_notes(engine, make_concern, now):
    existing = ConcernNote(admin_name=ADMIN, message="First", timestamp=now)
    before = make_concern(notes=(existing,))
    after = engine.add_note(before, "Second", ADMIN, now).concern

    mutation = ConcernMutation.between(before, after)

    assert [note.message for note in mutation.appended_notes] == ["Second"]
    assert mutation.status is ConcernStatus.PENDING


def test_mutation_refuses_rewritten_notes(make_concern, now):
    before = make_concern(notes=(ConcernNote(admin_name=ADMIN, message="First", timestamp=now),))
    after = replace(before, notes=(ConcernNote(admin_name=ADMIN, message="Edited", timestamp=now),))

    with pytest.raises(ValueError):
        ConcernMutation.between(before, after)
