# deal_health_models.py

from typing import List, Optional

from pydantic import BaseModel, Field

from escalation.escalation_models import EscalationRunSummary


class DealHealthResult(BaseModel):
    submission_id: str
    stage: str
    health_score: int
    risk_level: str
    drop_off_probability: int
    bottleneck: Optional[str] = None
    bottleneck_user_id: Optional[str] = None


class DealHealthError(BaseModel):
    submission_id: Optional[str] = None
    error_code: str
    error_message: str
    technical_detail: Optional[str] = None


class DealHealthBatchSummary(BaseModel):
    total_seen: int = 0
    processed_count: int = 0
    failed: int = 0
    not_started: int = 0
    cancelled: bool = False
    low_risk: int = 0
    medium_risk: int = 0
    high_risk: int = 0
    critical_risk: int = 0
    escalation: Optional[EscalationRunSummary] = None
    errors: List[DealHealthError] = Field(default_factory=list)
    results: List[DealHealthResult] = Field(default_factory=list)

    def to_logging_dict(self) -> dict:
        return self.model_dump(exclude={"results", "escalation"}, mode="json")

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def record(self, result: DealHealthResult) -> None:
        self.processed_count += 1
        self.results.append(result)
        counter = f"{result.risk_level}_risk"
        setattr(self, counter, getattr(self, counter) + 1)
