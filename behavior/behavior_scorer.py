from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from behavior.behavior_policy import (
    BEHAVIOR_CLASS_RULES,
    DEFAULT_BEHAVIOR_CLASS,
    MAX_RESPONSE_OBSERVATIONS,
    RISK_GHOST_WEIGHT,
    RISK_NONCOMPLIANCE_WEIGHT,
    RISK_RESPONSE_TIME_CAP_HOURS,
    RISK_RESPONSE_TIME_POINTS,
    BehaviorMetrics,
    BehaviorRule,
)
from sla_models import BehaviorClass, BehaviorScore, DeadlineStatus
from sla_store import SlaStore

logger = logging.getLogger(__name__)


def classify_behavior(
    metrics: BehaviorMetrics,
    rules: Sequence[BehaviorRule] = BEHAVIOR_CLASS_RULES,
) -> BehaviorClass:
    for predicate, behavior_class in rules:
        if predicate(metrics):
            return behavior_class
    return DEFAULT_BEHAVIOR_CLASS


def compute_risk_score(avg_response_time_hours: float, sla_compliance_rate: float, ghost_rate: float) -> float:
    """0-100, higher means riskier."""
    capped_hours = min(avg_response_time_hours, RISK_RESPONSE_TIME_CAP_HOURS)
    raw = (
        ghost_rate * RISK_GHOST_WEIGHT
        + (100 - sla_compliance_rate) * RISK_NONCOMPLIANCE_WEIGHT
        + capped_hours / RISK_RESPONSE_TIME_CAP_HOURS * RISK_RESPONSE_TIME_POINTS
    )
    return min(100.0, max(0.0, raw))


def compute_behavior_score(
    user_id: str,
    *,
    response_times_seconds: List[float],
    outcome_counts: Dict[str, int],
    now: datetime,
    previous: Optional[BehaviorScore] = None,
    user_type: str = "unknown",
) -> BehaviorScore:
    """
    Build a fresh behavior snapshot for one actor.

    Args:
        user_id: Actor being scored
        response_times_seconds: Recent response latencies, most recent first
        outcome_counts: Deadline counts keyed by completed / breached / escalated
        now: Evaluation time, stamped as calculated_at
        previous: Last stored snapshot, used when no latencies were observed
        user_type: Role of the actor

    Returns:
        BehaviorScore replacing any earlier snapshot
    """
    if response_times_seconds:
        avg_response_time_hours = sum(response_times_seconds) / len(response_times_seconds) / 3600
        response_count = len(response_times_seconds)
    elif previous is not None:
        avg_response_time_hours = previous.avg_response_time_hours
        response_count = previous.response_count
    else:
        avg_response_time_hours = 0.0
        response_count = 0

    completed = outcome_counts.get(DeadlineStatus.COMPLETED.value, 0)
    missed = outcome_counts.get(DeadlineStatus.BREACHED.value, 0) + outcome_counts.get(
        DeadlineStatus.ESCALATED.value, 0
    )
    closed = completed + missed

    if closed > 0:
        sla_compliance_rate = completed / closed * 100
        ghost_rate = missed / closed * 100
    else:
        sla_compliance_rate = 100.0
        ghost_rate = 0.0

    metrics = BehaviorMetrics(
        avg_response_time_hours=avg_response_time_hours,
        sla_compliance_rate=sla_compliance_rate,
        ghost_rate=ghost_rate,
        closed_deadlines=closed,
    )

    return BehaviorScore(
        user_id=user_id,
        user_type=user_type,
        avg_response_time_hours=avg_response_time_hours,
        response_count=response_count,
        ghost_rate=ghost_rate,
        sla_compliance_rate=sla_compliance_rate,
        behavior_class=classify_behavior(metrics),
        risk_score=compute_risk_score(avg_response_time_hours, sla_compliance_rate, ghost_rate),
        calculated_at=now,
    )


class BehaviorScorer:
    """Recomputes and stores actor behavior snapshots from deadline and event history."""

    def __init__(self, store: SlaStore) -> None:
        self.store = store

    def refresh(self, user_id: str, now: datetime) -> BehaviorScore:
        score = compute_behavior_score(
            user_id,
            response_times_seconds=self.store.get_response_times(user_id, limit=MAX_RESPONSE_OBSERVATIONS),
            outcome_counts=self.store.count_deadline_outcomes(user_id),
            now=now,
            previous=self.store.get_behavior_score(user_id),
            user_type=self.store.get_user_role(user_id) or "unknown",
        )
        self.store.upsert_behavior_score(score)

        logger.info(
            "behavior_score_refreshed",
            extra={
                "user_id": user_id,
                "behavior_class": score.behavior_class,
                "risk_score": round(score.risk_score, 2),
            },
        )
        return score
