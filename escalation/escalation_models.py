# escalation_models.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeadlineOutcome(BaseModel):
    deadline_id: str
    entity_type: str
    entity_id: str
    responsible_user_id: str
    action: str  # warn | remind | escalate
    from_status: str
    to_status: str
    reminders_sent: int = 0
    notified_user_ids: List[str] = Field(default_factory=list)


class EscalationError(BaseModel):
    deadline_id: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    error_code: str
    error_message: str


class EscalationRunSummary(BaseModel):
    timestamp: Optional[datetime] = None
    deadlines_seen: int = 0
    warnings_sent: int = 0
    reminders_sent: int = 0
    escalations_triggered: int = 0
    breaches_recorded: int = 0
    deadlines_archived: int = 0
    behavior_scores_refreshed: int = 0
    notification_failures: int = 0
    outcomes: List[DeadlineOutcome] = Field(default_factory=list)
    errors: List[EscalationError] = Field(default_factory=list)

    def to_logging_dict(self) -> dict:
        return self.model_dump(exclude={"outcomes"}, mode="json")

    @property
    def error_count(self) -> int:
        return len(self.errors)
