"""
Pure scoring functions for deal health.

Nothing here reads the clock or the store: every function takes `now` and its
inputs explicitly, so the same inputs always yield the same snapshot.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from deal_health.health_policy import (
    ACTIVITY_SCORE_FLOOR,
    ACTIVITY_SCORE_STEPS,
    ASSESSMENT_TEMPLATES,
    BOTTLENECK_GUIDANCE,
    CRITICAL_BOTTLENECK_DETAIL,
    CRITICAL_FALLBACK_DETAIL,
    DEFAULT_ACTOR_RISK,
    DEFAULT_EXPECTED_DAYS,
    DEFAULT_MATCH_SCORE,
    DROP_OFF_BOTTLENECK_POINTS,
    DROP_OFF_INACTIVE_DAYS,
    DROP_OFF_LONG_BOTTLENECK_DAYS,
    DROP_OFF_LONG_BOTTLENECK_POINTS,
    DROP_OFF_MAX,
    DROP_OFF_MIN,
    EXPECTED_STAGE_DAYS,
    HEALTH_WEIGHTS,
    HIGH_FALLBACK_DETAIL,
    INACTIVITY_ACTION,
    INACTIVITY_ALERT_DAYS,
    INACTIVITY_FACTOR,
    LOW_MATCH_FACTOR,
    LOW_MATCH_THRESHOLD,
    ON_TRACK_ACTION,
    PHASE_SCORE_FLOOR,
    PHASE_SCORE_STEPS,
    RISK_LEVEL_THRESHOLDS,
    SLA_BREACH_ACTION,
    SLA_BREACH_FACTOR,
    SLA_BREACH_PENALTY,
    SLA_OPEN_PENALTY,
    SLA_WARNING_PENALTY,
    STAGE_BOTTLENECKS,
    STALL_DAYS,
)
from sla_models import (
    SETTLED_STATUSES,
    BehaviorScore,
    DealHealth,
    DeadlineStatus,
    RiskLevel,
    SlaDeadline,
    WorkflowItem,
)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class Bottleneck:
    label: Optional[str] = None
    user_id: Optional[str] = None
    days: int = 0

    @property
    def present(self) -> bool:
        return self.label is not None


NO_BOTTLENECK = Bottleneck()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def whole_days_between(earlier: datetime, now: datetime) -> int:
    """Full days elapsed, never negative."""
    return max(0, int((now - earlier).total_seconds() // SECONDS_PER_DAY))


def is_breached(deadline: SlaDeadline, now: datetime) -> bool:
    if deadline.status in (DeadlineStatus.BREACHED.value, DeadlineStatus.ESCALATED.value):
        return True
    return now >= deadline.deadline_at


def count_breached(deadlines: Sequence[SlaDeadline], now: datetime) -> int:
    return sum(1 for d in deadlines if is_breached(d, now))


def calculate_phase_score(stage: str, age_days: int) -> int:
    expected = EXPECTED_STAGE_DAYS.get(stage, DEFAULT_EXPECTED_DAYS)
    for multiple, score in PHASE_SCORE_STEPS:
        if age_days <= expected * multiple:
            return score
    return PHASE_SCORE_FLOOR


def calculate_sla_score(deadlines: Sequence[SlaDeadline], now: datetime) -> int:
    """Deadlines passed in must already exclude completed ones."""
    breached = count_breached(deadlines, now)
    warned = sum(
        1
        for d in deadlines
        if d.status == DeadlineStatus.WARNING_SENT.value and not is_breached(d, now)
    )
    score = 100 - breached * SLA_BREACH_PENALTY - warned * SLA_WARNING_PENALTY - len(deadlines) * SLA_OPEN_PENALTY
    return max(0, score)


def calculate_activity_score(days_since_activity: int) -> int:
    for max_days, score in ACTIVITY_SCORE_STEPS:
        if days_since_activity <= max_days:
            return score
    return ACTIVITY_SCORE_FLOOR


def calculate_behavior_component(
    recruiter_score: Optional[BehaviorScore], client_score: Optional[BehaviorScore]
) -> float:
    """Lower actor risk means a healthier deal. Missing snapshots count as average risk."""
    recruiter_risk = recruiter_score.risk_score if recruiter_score is not None else DEFAULT_ACTOR_RISK
    client_risk = client_score.risk_score if client_score is not None else DEFAULT_ACTOR_RISK
    return 100 - (recruiter_risk + client_risk) / 2


def get_risk_level(health_score: int) -> RiskLevel:
    for minimum, level in RISK_LEVEL_THRESHOLDS:
        if health_score >= minimum:
            return RiskLevel(level)
    return RiskLevel.CRITICAL


def identify_bottleneck(
    item: WorkflowItem, deadlines: Sequence[SlaDeadline], now: datetime
) -> Bottleneck:
    for deadline in deadlines:
        if is_breached(deadline, now):
            return Bottleneck(
                label=f"{deadline.entity_type}_{deadline.sla_rule_id or 'unknown'}",
                user_id=deadline.responsible_user_id,
                days=whole_days_between(deadline.deadline_at, now),
            )

    stage_rule = STAGE_BOTTLENECKS.get(item.stage)
    if stage_rule:
        stalled_days = whole_days_between(item.updated_at, now)
        if stalled_days > STALL_DAYS:
            label, side = stage_rule
            user_id = item.client_id if side == "client" else item.recruiter_id
            return Bottleneck(label=label, user_id=user_id, days=stalled_days)

    return NO_BOTTLENECK


def calculate_drop_off_probability(health_score: int, inactive_days: int, bottleneck: Bottleneck) -> int:
    probability = 100 - health_score
    for threshold, points in DROP_OFF_INACTIVE_DAYS:
        if inactive_days > threshold:
            probability += points
    if bottleneck.present:
        probability += DROP_OFF_BOTTLENECK_POINTS
    if bottleneck.days > DROP_OFF_LONG_BOTTLENECK_DAYS:
        probability += DROP_OFF_LONG_BOTTLENECK_POINTS
    return min(DROP_OFF_MAX, max(DROP_OFF_MIN, probability))


def build_recommendations(
    match_score: Optional[float],
    bottleneck: Bottleneck,
    inactive_days: int,
    breached_count: int,
) -> Tuple[List[str], List[str]]:
    """Ordered (recommended_actions, risk_factors) for the present conditions."""
    actions: List[str] = []
    factors: List[str] = []

    if inactive_days > INACTIVITY_ALERT_DAYS:
        actions.append(INACTIVITY_ACTION)
        factors.append(INACTIVITY_FACTOR.format(days=inactive_days))

    guidance = BOTTLENECK_GUIDANCE.get(bottleneck.label or "")
    if guidance:
        action, factor = guidance
        actions.append(action)
        factors.append(factor)

    if breached_count > 0:
        actions.append(SLA_BREACH_ACTION)
        factors.append(SLA_BREACH_FACTOR.format(count=breached_count))

    if match_score is None or match_score < LOW_MATCH_THRESHOLD:
        factors.append(LOW_MATCH_FACTOR)

    if not actions:
        actions.append(ON_TRACK_ACTION)

    return actions, factors


def build_assessment(
    health_score: int, risk_level: RiskLevel, bottleneck: Bottleneck, risk_factors: Sequence[str]
) -> str:
    level = RiskLevel(risk_level).value
    if level == RiskLevel.CRITICAL.value:
        detail = (
            CRITICAL_BOTTLENECK_DETAIL.format(bottleneck=bottleneck.label)
            if bottleneck.present
            else CRITICAL_FALLBACK_DETAIL
        )
    elif level == RiskLevel.HIGH.value:
        detail = risk_factors[0] if risk_factors else HIGH_FALLBACK_DETAIL
    else:
        detail = ""
    return ASSESSMENT_TEMPLATES[level].format(health=health_score, detail=detail)


def calculate_deal_health(
    item: WorkflowItem,
    *,
    deadlines: Sequence[SlaDeadline],
    recruiter_score: Optional[BehaviorScore],
    client_score: Optional[BehaviorScore],
    last_activity_at: Optional[datetime],
    now: datetime,
) -> DealHealth:
    """
    Combine phase timing, SLA state, activity, actor behavior and match quality
    into one health snapshot.

    Args:
        item: The submission being scored
        deadlines: The submission's deadlines that are not completed
        recruiter_score: Supply-side behavior snapshot, if any
        client_score: Demand-side behavior snapshot, if any
        last_activity_at: Latest observed event, falls back to item.updated_at
        now: Evaluation time

    Returns:
        DealHealth snapshot stamped with `now`
    """
    open_deadlines = [d for d in deadlines if d.status not in SETTLED_STATUSES]

    age_days = whole_days_between(item.submitted_at, now)
    inactive_days = whole_days_between(last_activity_at or item.updated_at, now)
    match_score = item.match_score if item.match_score is not None else DEFAULT_MATCH_SCORE

    components = {
        "phase": calculate_phase_score(item.stage, age_days),
        "sla": calculate_sla_score(open_deadlines, now),
        "activity": calculate_activity_score(inactive_days),
        "behavior": calculate_behavior_component(recruiter_score, client_score),
        "match": match_score,
    }
    health_score = round_half_up(sum(components[name] * weight for name, weight in HEALTH_WEIGHTS.items()))
    health_score = min(100, max(0, health_score))

    risk_level = get_risk_level(health_score)
    bottleneck = identify_bottleneck(item, open_deadlines, now)
    drop_off = calculate_drop_off_probability(health_score, inactive_days, bottleneck)
    actions, factors = build_recommendations(
        item.match_score, bottleneck, inactive_days, count_breached(open_deadlines, now)
    )

    return DealHealth(
        submission_id=item.id,
        health_score=health_score,
        risk_level=risk_level,
        drop_off_probability=drop_off,
        days_since_last_activity=inactive_days,
        bottleneck=bottleneck.label,
        bottleneck_user_id=bottleneck.user_id,
        bottleneck_days=bottleneck.days,
        assessment=build_assessment(health_score, risk_level, bottleneck, factors),
        recommended_actions=actions,
        risk_factors=factors,
        calculated_at=now,
    )
