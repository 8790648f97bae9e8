"""Centralized policy definitions for deal health scoring.

Tables, weights and wording are declarative so the engine, the Slack summary
and the tests share a single set of thresholds.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

EXPECTED_STAGE_DAYS: Dict[str, int] = {
    "submitted": 2,
    "in_review": 5,
    "shortlisted": 7,
    "interview": 14,
    "offer": 7,
}
DEFAULT_EXPECTED_DAYS = 7

PHASE_SCORE_STEPS: List[Tuple[int, int]] = [(1, 100), (2, 70), (3, 40)]
"""(multiple of expected duration, score); older than the last multiple scores PHASE_SCORE_FLOOR."""
PHASE_SCORE_FLOOR = 20

ACTIVITY_SCORE_STEPS: List[Tuple[int, int]] = [(0, 100), (1, 90), (3, 70), (7, 50), (14, 30)]
"""(max days since last activity, score)."""
ACTIVITY_SCORE_FLOOR = 10

SLA_BREACH_PENALTY = 30
SLA_WARNING_PENALTY = 15
SLA_OPEN_PENALTY = 5

HEALTH_WEIGHTS: Dict[str, float] = {
    "phase": 0.25,
    "sla": 0.25,
    "activity": 0.20,
    "behavior": 0.15,
    "match": 0.15,
}

DEFAULT_MATCH_SCORE = 50
DEFAULT_ACTOR_RISK = 50
LOW_MATCH_THRESHOLD = 60

RISK_LEVEL_THRESHOLDS: List[Tuple[int, str]] = [(80, "low"), (60, "medium"), (40, "high")]
"""(minimum health score, risk level); anything lower is critical."""

DROP_OFF_MIN = 5
DROP_OFF_MAX = 95
DROP_OFF_INACTIVE_DAYS = [(7, 15), (14, 20)]
"""(inactive for more than N days, added points)."""
DROP_OFF_BOTTLENECK_POINTS = 10
DROP_OFF_LONG_BOTTLENECK_DAYS = 5
DROP_OFF_LONG_BOTTLENECK_POINTS = 15

STALL_DAYS = 2
"""Days without an update before a stage-specific bottleneck is reported."""

RECENT_EVENT_LIMIT = 20

STAGE_BOTTLENECKS: Dict[str, Tuple[str, str]] = {
    "submitted": ("client_review", "client"),
    "in_review": ("client_decision", "client"),
    "opt_in_pending": ("candidate_opt_in", "recruiter"),
    "interview": ("interview_scheduling", "client"),
}
"""stage -> (bottleneck label, side responsible: client = demand, recruiter = supply)."""

INACTIVITY_ALERT_DAYS = 3
INACTIVITY_ACTION = "Contact the responsible stakeholder"
INACTIVITY_FACTOR = "{days} days without activity"

BOTTLENECK_GUIDANCE: Dict[str, Tuple[str, str]] = {
    "client_review": ("Send the client a review reminder", "Candidate is waiting on client review"),
    "client_decision": ("Ask the client for a decision", "Client decision outstanding"),
    "candidate_opt_in": ("Follow up on the candidate opt-in", "Candidate opt-in pending"),
    "interview_scheduling": ("Push the client to confirm interview slots", "Interview not yet scheduled"),
}

SLA_BREACH_ACTION = "Escalate the SLA breach"
SLA_BREACH_FACTOR = "{count} SLA deadline(s) breached"
LOW_MATCH_FACTOR = "Low match score"
ON_TRACK_ACTION = "Process on track - continue monitoring"

ASSESSMENT_TEMPLATES: Dict[str, str] = {
    "critical": "Critical deal status ({health}%). {detail}",
    "high": "Elevated risk ({health}%). {detail}",
    "medium": "Deal within normal range ({health}%). Minor delays possible.",
    "low": "Healthy deal ({health}%). All processes on schedule.",
}
CRITICAL_FALLBACK_DETAIL = "Immediate action required."
CRITICAL_BOTTLENECK_DETAIL = "Main bottleneck: {bottleneck}"
HIGH_FALLBACK_DETAIL = "Active follow-up recommended."
