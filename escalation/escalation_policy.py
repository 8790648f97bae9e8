"""Centralized policy definitions for SLA deadline escalation.

Notification categories, wording and the workflow-event table live here so the
state machine, the lifecycle hooks and the tests share one source of truth.
"""

from __future__ import annotations

from typing import Dict, Tuple

CATEGORY_WARNING = "sla_warning"
CATEGORY_BREACH = "sla_breach"
CATEGORY_ESCALATION = "escalation"

WARNING_TITLE = "SLA warning"
WARNING_MESSAGE = 'Heads up: you have {remaining} left for "{rule_name}".'

BREACH_TITLE = "SLA deadline missed"
BREACH_MESSAGE = 'The deadline for "{rule_name}" has passed. Please respond immediately.'

ESCALATION_TITLE = "SLA escalation"
ESCALATION_MESSAGE = "An SLA deadline was escalated: {rule_name}"

WORKFLOW_EVENT_PHASES: Dict[str, Tuple[str, bool]] = {
    "submission_created": ("submitted", True),
    "opt_in_requested": ("opt_in_requested", True),
    "interview_requested": ("pending", True),
    "interview_completed": ("completed", True),
    "submission_reviewed": ("submitted", False),
    "opt_in_responded": ("opt_in_requested", False),
    "interview_scheduled": ("pending", False),
    "interview_feedback_given": ("completed", False),
}
"""Workflow event -> (rule phase, starts_obligation). False means the event fulfils it."""

CLIENT_OWNED_PHASES = {("submission", "submitted")}
"""(entity_type, phase) obligations owned by the item's demand-side actor."""

RESPONSE_EVENT_MARKERS = ("response", "review", "accept", "reject")
"""Event types containing one of these are answers; their latency is measured from the entity's previous event."""

TERMINAL_STAGE_EVENTS = {
    "submission_placed": "placed",
    "submission_rejected": "rejected",
    "submission_withdrawn": "withdrawn",
}
"""Workflow events that end a submission. Its open deadlines are archived."""
