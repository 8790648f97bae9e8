from datetime import timedelta

import pytest
from pydantic import ValidationError

from escalation.deadline_lifecycle import (
    handle_workflow_event,
    reassign_deadline_rule,
    reset_deadline,
    start_deadline,
)
from sla_models import PlatformEvent, SlaRule


def _event(event_type, now, **overrides) -> PlatformEvent:
    fields = dict(
        event_type=event_type,
        entity_type="submission",
        entity_id="sub-1",
        user_id="recruiter-1",
        created_at=now,
    )
    fields.update(overrides)
    return PlatformEvent(**fields)


def test_start_deadline_places_warning_before_deadline(make_rule, now):
    deadline = start_deadline(
        make_rule(warning_hours=12, deadline_hours=48),
        entity_type="submission",
        entity_id="sub-1",
        responsible_user_id="client-1",
        started_at=now,
    )

    assert deadline.deadline_at == now + timedelta(hours=48)
    assert deadline.warning_at == now + timedelta(hours=36)
    assert deadline.status == "active"
    assert deadline.reminders_sent == 0
    assert deadline.sla_rule_id == "rule-1"


def test_rule_without_warning_starts_deadline_without_warning(make_rule, now):
    deadline = start_deadline(
        make_rule(warning_hours=None, deadline_hours=24),
        entity_type="submission",
        entity_id="sub-1",
        responsible_user_id="client-1",
        started_at=now,
    )
    assert deadline.warning_at is None


def test_inactive_rule_cannot_start_deadlines(make_rule, now):
    with pytest.raises(ValueError):
        start_deadline(
            make_rule(is_active=False),
            entity_type="submission",
            entity_id="sub-1",
            responsible_user_id="client-1",
            started_at=now,
        )


@pytest.mark.parametrize("warning_hours, deadline_hours", [(48, 48), (60, 48), (0, 48), (-1, 48)])
def test_rule_warning_must_fall_inside_deadline(warning_hours, deadline_hours):
    with pytest.raises(ValidationError):
        SlaRule(
            id="bad",
            rule_name="Bad",
            entity_type="submission",
            phase="submitted",
            warning_hours=warning_hours,
            deadline_hours=deadline_hours,
        )


def test_rule_needs_positive_deadline():
    with pytest.raises(ValidationError):
        SlaRule(id="bad", rule_name="Bad", entity_type="submission", phase="submitted", deadline_hours=0)


def test_submission_created_starts_client_owned_deadline(store, make_item, make_rule, now):
    store.upsert_item(make_item())
    store.upsert_rule(make_rule())

    effect = handle_workflow_event(store, _event("submission_created", now))

    assert effect == "started"
    deadlines = store.get_unfulfilled_deadlines("sub-1")
    assert len(deadlines) == 1
    assert deadlines[0].responsible_user_id == "client-1"
    assert deadlines[0].deadline_at == now + timedelta(hours=48)
    assert store.get_recent_events("sub-1")[0].event_type == "submission_created"


def test_submission_reviewed_completes_open_deadlines(store, make_item, make_rule, now):
    store.upsert_item(make_item())
    store.upsert_rule(make_rule())
    handle_workflow_event(store, _event("submission_created", now))

    later = now + timedelta(hours=5)
    effect = handle_workflow_event(store, _event("submission_reviewed", later, user_id="client-1"))

    assert effect == "completed"
    assert store.get_unfulfilled_deadlines("sub-1") == []
    assert store.get_recent_completers(now) == ["client-1"]


def test_event_without_sla_meaning_is_only_recorded(store, now):
    effect = handle_workflow_event(store, _event("note_added", now))

    assert effect is None
    assert len(store.get_recent_events("sub-1")) == 1
    assert store.get_unfulfilled_deadlines("sub-1") == []


def test_no_active_rule_for_phase_starts_nothing(store, make_rule, now):
    store.upsert_rule(make_rule(is_active=False))

    assert handle_workflow_event(store, _event("submission_created", now)) is None
    assert store.get_unfulfilled_deadlines("sub-1") == []


def test_opt_in_request_is_owned_by_the_acting_user(store, make_rule, now):
    store.upsert_rule(make_rule("rule-opt-in", phase="opt_in_requested", rule_name="Candidate opt-in"))

    handle_workflow_event(store, _event("opt_in_requested", now, user_id="recruiter-7"))

    deadlines = store.get_unfulfilled_deadlines("sub-1")
    assert [d.responsible_user_id for d in deadlines] == ["recruiter-7"]


def test_review_latency_is_measured_from_the_previous_event(store, make_item, make_rule, now):
    store.upsert_item(make_item())
    store.upsert_rule(make_rule())
    handle_workflow_event(store, _event("submission_created", now - timedelta(hours=10)))

    handle_workflow_event(store, _event("submission_reviewed", now, user_id="client-1"))

    assert store.get_response_times("client-1") == [36000.0]
    assert store.get_response_times("recruiter-1") == []


def test_supplied_latency_is_kept(store, now):
    handle_workflow_event(store, _event("note_added", now - timedelta(hours=2)))

    handle_workflow_event(store, _event("offer_accepted", now, user_id="client-1", response_time_seconds=90))

    assert store.get_response_times("client-1") == [90.0]


def test_non_answer_events_and_first_events_get_no_latency(store, now):
    handle_workflow_event(store, _event("submission_rejected", now - timedelta(hours=1), user_id="client-1"))
    handle_workflow_event(store, _event("note_added", now, user_id="client-1"))

    assert store.get_response_times("client-1") == []


def test_rejection_archives_open_deadlines(store, make_item, make_rule, make_deadline, now):
    store.upsert_item(make_item())
    store.upsert_rule(make_rule())
    store.add_deadline(make_deadline(due_in_hours=-2, status="warning_sent"))
    store.add_deadline(make_deadline("dl-escalated", due_in_hours=-30, status="escalated"))

    effect = handle_workflow_event(store, _event("submission_rejected", now, user_id="client-1"))

    assert effect == "archived"
    assert store.get_deadline("dl-1").status == "archived"
    assert store.get_deadline("dl-escalated").status == "escalated"
    assert store.get_overdue_deadlines(now) == []
    assert store.get_recent_completers(now - timedelta(hours=1)) == []


def test_reset_restarts_a_breached_clock_under_the_new_rule(make_rule, make_deadline, now):
    overdue = make_deadline(due_in_hours=-3, status="warning_sent").model_copy(
        update={"reminders_sent": 4, "last_reminder_at": now - timedelta(hours=1)}
    )
    relaxed = make_rule("rule-relaxed", warning_hours=24, deadline_hours=96)

    restarted = reset_deadline(overdue, relaxed, reset_at=now)

    assert restarted.id == "dl-1"
    assert restarted.sla_rule_id == "rule-relaxed"
    assert restarted.status == "active"
    assert restarted.reminders_sent == 0
    assert restarted.last_reminder_at is None
    assert restarted.deadline_at == now + timedelta(hours=96)
    assert restarted.warning_at == now + timedelta(hours=72)


def test_settled_deadlines_cannot_be_reset(make_rule, make_deadline, now):
    with pytest.raises(ValueError):
        reset_deadline(make_deadline(status="completed"), make_rule(), reset_at=now)


def test_reassign_deadline_rule_persists_the_restart(store, make_rule, make_deadline, now):
    store.upsert_rule(make_rule("rule-relaxed", deadline_hours=96))
    store.add_deadline(make_deadline(due_in_hours=-3, status="escalated", breached_at=now - timedelta(hours=3)))

    reassign_deadline_rule(store, "dl-1", "rule-relaxed", now)

    saved = store.get_deadline("dl-1")
    assert saved.status == "active"
    assert saved.breached_at is None
    assert saved.sla_rule_id == "rule-relaxed"
    with pytest.raises(LookupError):
        reassign_deadline_rule(store, "dl-1", "missing-rule", now)
