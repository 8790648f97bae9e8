"""Thresholds and classification table for actor behavior scores.

The classification is an ordered list of (predicate, class) pairs evaluated
top to bottom; the first matching predicate wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Tuple

from sla_models import BehaviorClass

FAST_RESPONSE_MAX_HOURS = 4
SLOW_RESPONSE_MIN_HOURS = 24
FAST_COMPLIANCE_MIN = 95
SLOW_COMPLIANCE_MAX = 70
GHOST_RATE_MAX = 20
HIGH_PERFORMER_COMPLIANCE_MIN = 90
AT_RISK_COMPLIANCE_MAX = 50

MAX_RESPONSE_OBSERVATIONS = 50
"""How many recent response latencies feed an actor's average."""

RISK_GHOST_WEIGHT = 0.4
RISK_NONCOMPLIANCE_WEIGHT = 0.4
RISK_RESPONSE_TIME_CAP_HOURS = 48
RISK_RESPONSE_TIME_POINTS = 20


@dataclass(frozen=True)
class BehaviorMetrics:
    avg_response_time_hours: float
    sla_compliance_rate: float
    ghost_rate: float
    closed_deadlines: int


BehaviorRule = Tuple[Callable[[BehaviorMetrics], bool], BehaviorClass]

BEHAVIOR_CLASS_RULES: List[BehaviorRule] = [
    # No closed obligations yet: the 100% compliance is assumed, not earned
    (lambda m: m.closed_deadlines == 0, BehaviorClass.NEUTRAL),
    (
        lambda m: m.avg_response_time_hours < FAST_RESPONSE_MAX_HOURS
        and m.sla_compliance_rate > FAST_COMPLIANCE_MIN,
        BehaviorClass.FAST_RESPONDER,
    ),
    (
        lambda m: m.avg_response_time_hours > SLOW_RESPONSE_MIN_HOURS
        and m.sla_compliance_rate < SLOW_COMPLIANCE_MAX,
        BehaviorClass.SLOW_RESPONDER,
    ),
    (lambda m: m.ghost_rate > GHOST_RATE_MAX, BehaviorClass.GHOSTER),
    (lambda m: m.sla_compliance_rate > HIGH_PERFORMER_COMPLIANCE_MIN, BehaviorClass.HIGH_PERFORMER),
    (lambda m: m.sla_compliance_rate < AT_RISK_COMPLIANCE_MAX, BehaviorClass.AT_RISK),
]

DEFAULT_BEHAVIOR_CLASS = BehaviorClass.NEUTRAL
