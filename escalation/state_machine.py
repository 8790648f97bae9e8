from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from escalation.escalation_policy import (
    BREACH_MESSAGE,
    BREACH_TITLE,
    CATEGORY_BREACH,
    CATEGORY_ESCALATION,
    CATEGORY_WARNING,
    ESCALATION_MESSAGE,
    ESCALATION_TITLE,
    WARNING_MESSAGE,
    WARNING_TITLE,
)
from sla_models import OPEN_STATUSES, DeadlineAction, DeadlineStatus, SlaDeadline, SlaRule


class TransitionKind(str, Enum):
    WARN = "warn"
    REMIND = "remind"
    ESCALATE = "escalate"


@dataclass
class Transition:
    kind: TransitionKind
    deadline: SlaDeadline
    category: str
    title: str
    message: str
    broadcast_to_admins: bool = False

    @property
    def is_breach(self) -> bool:
        return self.kind in (TransitionKind.REMIND, TransitionKind.ESCALATE)


def format_remaining(delta: timedelta) -> str:
    minutes = max(0, int(delta.total_seconds() // 60))
    if minutes >= 120:
        return f"{minutes // 60} hours"
    if minutes >= 60:
        return "1 hour"
    return f"{minutes} minutes"


def resolve_deadline_action(deadline: SlaDeadline, rule: SlaRule) -> DeadlineAction:
    """The rule's breach action, promoted to escalate once the reminder cap is used up."""
    action = DeadlineAction(rule.deadline_action)
    if (
        action == DeadlineAction.REMIND
        and rule.max_reminders is not None
        and deadline.reminders_sent >= rule.max_reminders
    ):
        return DeadlineAction.ESCALATE
    return action


def plan_transition(deadline: SlaDeadline, rule: SlaRule, now: datetime) -> Optional[Transition]:
    """
    Decide what, if anything, happens to a deadline at `now`.

    Returns the updated deadline together with the notice that must accompany
    it, or None when the deadline is not due. Completed, breached and
    escalated deadlines are never moved.
    """
    if deadline.status not in OPEN_STATUSES:
        return None

    if now >= deadline.deadline_at:
        action = resolve_deadline_action(deadline, rule)
        if action == DeadlineAction.ESCALATE:
            return Transition(
                kind=TransitionKind.ESCALATE,
                deadline=deadline.model_copy(
                    update={"status": DeadlineStatus.ESCALATED.value, "breached_at": now}
                ),
                category=CATEGORY_ESCALATION,
                title=ESCALATION_TITLE,
                message=ESCALATION_MESSAGE.format(rule_name=rule.rule_name),
                broadcast_to_admins=True,
            )
        return Transition(
            kind=TransitionKind.REMIND,
            deadline=deadline.model_copy(
                update={
                    "reminders_sent": deadline.reminders_sent + 1,
                    "last_reminder_at": now,
                }
            ),
            category=CATEGORY_BREACH,
            title=BREACH_TITLE,
            message=BREACH_MESSAGE.format(rule_name=rule.rule_name),
        )

    if (
        deadline.status == DeadlineStatus.ACTIVE
        and deadline.warning_at is not None
        and now >= deadline.warning_at
    ):
        return Transition(
            kind=TransitionKind.WARN,
            deadline=deadline.model_copy(
                update={"status": DeadlineStatus.WARNING_SENT.value, "last_reminder_at": now}
            ),
            category=CATEGORY_WARNING,
            title=WARNING_TITLE,
            message=WARNING_MESSAGE.format(
                remaining=format_remaining(deadline.deadline_at - now),
                rule_name=rule.rule_name,
            ),
        )

    return None
