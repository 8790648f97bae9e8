from datetime import timedelta

import pytest

from escalation.escalation_policy import CATEGORY_BREACH, CATEGORY_ESCALATION, CATEGORY_WARNING
from escalation.state_machine import (
    TransitionKind,
    format_remaining,
    plan_transition,
    resolve_deadline_action,
)
from sla_models import DeadlineAction


def test_active_deadline_inside_warning_window_is_warned(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=6, warn_hours_before=12)

    transition = plan_transition(deadline, make_rule(), now)

    assert transition.kind == TransitionKind.WARN
    assert transition.category == CATEGORY_WARNING
    assert transition.deadline.status == "warning_sent"
    assert transition.deadline.last_reminder_at == now
    assert "6 hours" in transition.message
    assert "Client review" in transition.message
    assert not transition.broadcast_to_admins
    # the input record is left untouched
    assert deadline.status == "active"


def test_deadline_before_warning_time_is_left_alone(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=24, warn_hours_before=12)
    assert plan_transition(deadline, make_rule(), now) is None


def test_warned_deadline_is_not_warned_twice(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=6, status="warning_sent")
    assert plan_transition(deadline, make_rule(), now) is None


def test_deadline_without_warning_time_waits_for_breach(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=1, warn_hours_before=None)
    assert plan_transition(deadline, make_rule(warning_hours=None), now) is None


def test_overdue_remind_deadline_counts_reminder_and_keeps_status(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=-2, status="warning_sent", reminders_sent=1)

    transition = plan_transition(deadline, make_rule(deadline_action="remind"), now)

    assert transition.kind == TransitionKind.REMIND
    assert transition.category == CATEGORY_BREACH
    assert transition.is_breach
    assert transition.deadline.status == "warning_sent"
    assert transition.deadline.reminders_sent == 2
    assert transition.deadline.last_reminder_at == now
    assert transition.deadline.breached_at is None


def test_overdue_escalate_deadline_is_escalated(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=-1, status="warning_sent")

    transition = plan_transition(deadline, make_rule(deadline_action="escalate"), now)

    assert transition.kind == TransitionKind.ESCALATE
    assert transition.category == CATEGORY_ESCALATION
    assert transition.broadcast_to_admins
    assert transition.deadline.status == "escalated"
    assert transition.deadline.breached_at == now


def test_deadline_exactly_at_due_time_is_breached(make_deadline, make_rule, now):
    deadline = make_deadline(due_in_hours=0)
    transition = plan_transition(deadline, make_rule(), now)
    assert transition.kind == TransitionKind.REMIND


@pytest.mark.parametrize("status", ["completed", "breached", "escalated"])
def test_closed_deadlines_never_move(make_deadline, make_rule, now, status):
    deadline = make_deadline(due_in_hours=-48, status=status)
    assert plan_transition(deadline, make_rule(deadline_action="escalate"), now) is None


def test_reminder_cap_promotes_to_escalation(make_deadline, make_rule, now):
    rule = make_rule(deadline_action="remind", max_reminders=3)

    assert resolve_deadline_action(make_deadline(reminders_sent=2), rule) == DeadlineAction.REMIND
    assert resolve_deadline_action(make_deadline(reminders_sent=3), rule) == DeadlineAction.ESCALATE

    transition = plan_transition(make_deadline(due_in_hours=-5, reminders_sent=3), rule, now)
    assert transition.kind == TransitionKind.ESCALATE


def test_unbounded_reminders_without_cap(make_deadline, make_rule):
    rule = make_rule(deadline_action="remind")
    assert resolve_deadline_action(make_deadline(reminders_sent=500), rule) == DeadlineAction.REMIND


def test_format_remaining():
    assert format_remaining(timedelta(hours=5, minutes=30)) == "5 hours"
    assert format_remaining(timedelta(minutes=75)) == "1 hour"
    assert format_remaining(timedelta(minutes=20)) == "20 minutes"
    assert format_remaining(timedelta(minutes=-5)) == "0 minutes"
