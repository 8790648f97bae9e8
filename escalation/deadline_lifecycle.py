"""Start, fulfil, archive and reset SLA deadlines from workflow events."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Optional

from escalation.escalation_policy import (
    CLIENT_OWNED_PHASES,
    RESPONSE_EVENT_MARKERS,
    TERMINAL_STAGE_EVENTS,
    WORKFLOW_EVENT_PHASES,
)
from sla_models import SETTLED_STATUSES, PlatformEvent, SlaDeadline, SlaRule
from sla_store import SlaStore

logger = logging.getLogger(__name__)


def start_deadline(
    rule: SlaRule,
    *,
    entity_type: str,
    entity_id: str,
    responsible_user_id: str,
    started_at: datetime,
    deadline_id: Optional[str] = None,
) -> SlaDeadline:
    """Create the deadline record a rule implies for an obligation starting at `started_at`."""
    if not rule.is_active:
        raise ValueError(f"SLA rule {rule.id} is inactive and cannot start deadlines")

    deadline_at = started_at + timedelta(hours=rule.deadline_hours)
    warning_at = None
    if rule.warning_hours:
        warning_at = started_at + timedelta(hours=rule.deadline_hours - rule.warning_hours)

    return SlaDeadline(
        id=deadline_id or str(uuid.uuid4()),
        sla_rule_id=rule.id,
        entity_type=entity_type,
        entity_id=entity_id,
        responsible_user_id=responsible_user_id,
        started_at=started_at,
        warning_at=warning_at,
        deadline_at=deadline_at,
    )


def derive_response_time(store: SlaStore, event: PlatformEvent) -> PlatformEvent:
    """
    Fill in `response_time_seconds` for answer-type events that arrive without one,
    measured in whole seconds from the entity's previous event.
    """
    if event.response_time_seconds is not None or not event.entity_id:
        return event
    if not any(marker in event.event_type for marker in RESPONSE_EVENT_MARKERS):
        return event

    previous = store.get_recent_events(event.entity_id, limit=1)
    if not previous or previous[0].created_at > event.created_at:
        return event

    elapsed = math.floor((event.created_at - previous[0].created_at).total_seconds())
    return event.model_copy(update={"response_time_seconds": float(elapsed)})


def handle_workflow_event(store: SlaStore, event: PlatformEvent) -> Optional[str]:
    """
    Record a workflow event and start, fulfil or archive the obligations it maps to.

    Returns "started", "completed", "archived" or None when the event carries no SLA meaning.
    """
    event = derive_response_time(store, event)
    store.append_event(event)

    if not event.entity_type or not event.entity_id:
        return None

    terminal_stage = TERMINAL_STAGE_EVENTS.get(event.event_type)
    if terminal_stage is not None:
        archived = store.archive_deadlines(event.entity_type, event.entity_id, event.created_at)
        logger.info(
            "sla_deadlines_archived",
            extra={"entity_id": event.entity_id, "stage": terminal_stage, "count": archived},
        )
        return "archived"

    mapping = WORKFLOW_EVENT_PHASES.get(event.event_type)
    if mapping is None:
        return None

    phase, starts_obligation = mapping

    if not starts_obligation:
        completed = store.complete_deadlines(event.entity_type, event.entity_id, event.created_at)
        logger.info(
            "sla_deadlines_completed",
            extra={"entity_id": event.entity_id, "phase": phase, "count": completed},
        )
        return "completed"

    rule = store.find_active_rule(event.entity_type, phase)
    if rule is None:
        logger.info(
            "sla_rule_missing_for_phase",
            extra={"entity_type": event.entity_type, "phase": phase},
        )
        return None

    responsible_user_id = event.user_id
    if (event.entity_type, phase) in CLIENT_OWNED_PHASES:
        item = store.get_item(event.entity_id)
        if item is not None and item.client_id:
            responsible_user_id = item.client_id

    if not responsible_user_id:
        logger.warning(
            "sla_deadline_without_responsible_user",
            extra={"entity_id": event.entity_id, "phase": phase},
        )
        return None

    deadline = start_deadline(
        rule,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        responsible_user_id=responsible_user_id,
        started_at=event.created_at,
    )
    store.add_deadline(deadline)
    logger.info(
        "sla_deadline_started",
        extra={
            "deadline_id": deadline.id,
            "entity_id": event.entity_id,
            "rule_id": rule.id,
            "responsible_user_id": responsible_user_id,
        },
    )
    return "started"


def reset_deadline(deadline: SlaDeadline, rule: SlaRule, *, reset_at: datetime) -> SlaDeadline:
    """
    Restart a deadline under a newly assigned rule.

    This is the one transition that moves a status backwards: the clock,
    reminder count and breach marker start over from `reset_at`.
    """
    if deadline.status in SETTLED_STATUSES:
        raise ValueError(f"deadline {deadline.id} is {deadline.status} and cannot be reset")

    return start_deadline(
        rule,
        entity_type=deadline.entity_type,
        entity_id=deadline.entity_id,
        responsible_user_id=deadline.responsible_user_id,
        started_at=reset_at,
        deadline_id=deadline.id,
    )


def reassign_deadline_rule(store: SlaStore, deadline_id: str, rule_id: str, reassigned_at: datetime) -> SlaDeadline:
    """Point a stored deadline at another rule and restart it."""
    deadline = store.get_deadline(deadline_id)
    if deadline is None:
        raise LookupError(f"deadline {deadline_id} not found")
    rule = store.get_rule(rule_id)
    if rule is None:
        raise LookupError(f"SLA rule {rule_id} not found")

    restarted = reset_deadline(deadline, rule, reset_at=reassigned_at)
    store.save_deadline(restarted)
    logger.info(
        "sla_deadline_reset",
        extra={
            "deadline_id": deadline_id,
            "from_rule_id": deadline.sla_rule_id,
            "rule_id": rule_id,
            "from_status": deadline.status,
        },
    )
    return restarted
