from datetime import datetime, timedelta, timezone

import pytest

from sla_models import SlaDeadline, SlaRule, WorkflowItem
from sla_store import SlaStore
from batch_jobs import cycle_history

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return SlaStore(db_url="sqlite:///:memory:")


@pytest.fixture(autouse=True)
def reset_cycle_history():
    cycle_history.reset()
    yield
    cycle_history.reset()


@pytest.fixture
def make_item(now):
    def _make(item_id="sub-1", *, stage="submitted", age_days=0, idle_days=None, **overrides):
        idle = age_days if idle_days is None else idle_days
        fields = dict(
            id=item_id,
            stage=stage,
            match_score=80,
            submitted_at=now - timedelta(days=age_days),
            updated_at=now - timedelta(days=idle),
            recruiter_id="recruiter-1",
            client_id="client-1",
        )
        fields.update(overrides)
        return WorkflowItem(**fields)

    return _make


@pytest.fixture
def make_rule():
    def _make(rule_id="rule-1", **overrides):
        fields = dict(
            id=rule_id,
            rule_name="Client review",
            entity_type="submission",
            phase="submitted",
            warning_hours=12,
            deadline_hours=48,
            deadline_action="remind",
        )
        fields.update(overrides)
        return SlaRule(**fields)

    return _make


@pytest.fixture
def make_deadline(now):
    def _make(deadline_id="dl-1", *, due_in_hours=24, warn_hours_before=12, **overrides):
        deadline_at = now + timedelta(hours=due_in_hours)
        fields = dict(
            id=deadline_id,
            sla_rule_id="rule-1",
            entity_type="submission",
            entity_id="sub-1",
            responsible_user_id="client-1",
            started_at=deadline_at - timedelta(hours=48),
            warning_at=deadline_at - timedelta(hours=warn_hours_before) if warn_hours_before else None,
            deadline_at=deadline_at,
        )
        fields.update(overrides)
        return SlaDeadline(**fields)

    return _make
