# sla_models.py
"""
Pydantic models for workflow items, SLA rules and deadlines, actor behavior
snapshots and deal health snapshots.
These validate records before they are written to, or after they are read from, the store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DeadlineStatus(str, Enum):
    ACTIVE = "active"
    WARNING_SENT = "warning_sent"
    BREACHED = "breached"
    ESCALATED = "escalated"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class DeadlineAction(str, Enum):
    REMIND = "remind"
    ESCALATE = "escalate"


class BehaviorClass(str, Enum):
    FAST_RESPONDER = "fast_responder"
    HIGH_PERFORMER = "high_performer"
    NEUTRAL = "neutral"
    SLOW_RESPONDER = "slow_responder"
    AT_RISK = "at_risk"
    GHOSTER = "ghoster"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


OPEN_STATUSES = {DeadlineStatus.ACTIVE.value, DeadlineStatus.WARNING_SENT.value}
"""Statuses the escalation engine may still advance."""

CLOSED_STATUSES = {
    DeadlineStatus.COMPLETED.value,
    DeadlineStatus.BREACHED.value,
    DeadlineStatus.ESCALATED.value,
}
"""Outcome statuses counted by the behavior scorer."""

SETTLED_STATUSES = {DeadlineStatus.COMPLETED.value, DeadlineStatus.ARCHIVED.value}
"""Deadlines that no longer weigh on their item."""


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; every timestamp in the engine is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _TimestampedModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v


class WorkflowItem(_TimestampedModel):
    """A submission: one candidate moving through one job's hiring process."""

    id: str = Field(..., description="Submission ID")
    stage: str = Field(..., description="submitted | in_review | shortlisted | opt_in_pending | interview | offer | ...")
    match_score: Optional[float] = Field(None, ge=0, le=100, description="Externally supplied match quality (0-100)")
    submitted_at: datetime
    updated_at: datetime
    recruiter_id: Optional[str] = Field(None, description="Supply-side actor")
    client_id: Optional[str] = Field(None, description="Demand-side actor")
    job_id: Optional[str] = None
    candidate_id: Optional[str] = None


class SlaRule(_TimestampedModel):
    """Static policy for one class of timed obligation."""

    id: str
    rule_name: str
    entity_type: str = Field(..., description="Entity the obligation is attached to, e.g. submission")
    phase: str = Field(..., description="Lifecycle phase that starts the obligation")
    warning_hours: Optional[float] = Field(None, description="Hours before the deadline at which to warn")
    deadline_hours: float = Field(..., gt=0)
    warning_action: str = "notify"
    deadline_action: DeadlineAction = DeadlineAction.REMIND
    escalate_to: Optional[str] = None
    priority: int = 0
    is_active: bool = True
    max_reminders: Optional[int] = Field(None, ge=1, description="Escalate once this many overdue reminders went out")

    @model_validator(mode="after")
    def validate_warning_window(self) -> "SlaRule":
        if self.warning_hours is not None:
            if self.warning_hours <= 0 or self.warning_hours >= self.deadline_hours:
                raise ValueError(
                    f"warning_hours must be between 0 and deadline_hours ({self.deadline_hours}), "
                    f"got {self.warning_hours}"
                )
        return self


class SlaDeadline(_TimestampedModel):
    """One timed obligation of a responsible actor."""

    id: str
    sla_rule_id: Optional[str] = None
    entity_type: str
    entity_id: str
    responsible_user_id: str
    started_at: Optional[datetime] = None
    warning_at: Optional[datetime] = None
    deadline_at: datetime
    status: DeadlineStatus = DeadlineStatus.ACTIVE
    reminders_sent: int = Field(default=0, ge=0)
    last_reminder_at: Optional[datetime] = None
    breached_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_window(self) -> "SlaDeadline":
        if self.warning_at is not None and self.warning_at >= self.deadline_at:
            raise ValueError("warning_at must be earlier than deadline_at")
        return self


class PlatformEvent(_TimestampedModel):
    """Activity observed on the platform (reviews, replies, stage moves)."""

    id: Optional[int] = None
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    response_time_seconds: Optional[float] = Field(None, ge=0)
    created_at: datetime


class BehaviorScore(_TimestampedModel):
    """Derived reputation snapshot for one actor. Replaced wholesale on recompute."""

    user_id: str
    user_type: str = "unknown"
    avg_response_time_hours: float = Field(default=0.0, ge=0)
    response_count: int = Field(default=0, ge=0)
    ghost_rate: float = Field(default=0.0, ge=0, le=100)
    sla_compliance_rate: float = Field(default=100.0, ge=0, le=100)
    behavior_class: BehaviorClass = BehaviorClass.NEUTRAL
    risk_score: float = Field(default=0.0, ge=0, le=100)
    calculated_at: Optional[datetime] = None


class DealHealth(_TimestampedModel):
    """Health snapshot for one submission. Replaced wholesale on recompute."""

    submission_id: str
    health_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    drop_off_probability: int = Field(..., ge=5, le=95)
    days_since_last_activity: int = Field(..., ge=0)
    bottleneck: Optional[str] = None
    bottleneck_user_id: Optional[str] = None
    bottleneck_days: int = 0
    assessment: str = ""
    recommended_actions: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)
    calculated_at: datetime


class Notification(_TimestampedModel):
    """In-app notification addressed to one actor."""

    user_id: str
    type: str = Field(..., description="sla_warning | sla_breach | escalation")
    title: str
    message: str
    related_type: Optional[str] = None
    related_id: Optional[str] = None
    created_at: Optional[datetime] = None
