import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from deal_health.deal_health_batch import DealHealthBatchProcessor, ItemNotFoundError
from escalation.escalation_engine import EscalationEngine
from sla_models import PlatformEvent
from sla_store import SlaStore


def build_processor(store, **kwargs) -> DealHealthBatchProcessor:
    return DealHealthBatchProcessor(correlation_id="test-batch", store=store, **kwargs)


def test_evaluate_unknown_item_raises(store, now):
    with pytest.raises(ItemNotFoundError):
        build_processor(store).evaluate("missing", now)
    assert store.get_deal_health("missing") is None


def test_evaluate_advances_deadlines_then_stores_health(store, make_item, make_rule, make_deadline, now):
    store.upsert_item(make_item(stage="submitted", age_days=3))
    store.upsert_rule(make_rule(deadline_action="remind"))
    store.add_deadline(make_deadline(due_in_hours=-26, status="warning_sent"))

    health = build_processor(store).evaluate("sub-1", now)

    assert store.get_deadline("dl-1").reminders_sent == 1
    assert health.bottleneck == "submission_rule-1"
    assert health.bottleneck_days == 1
    assert "Escalate the SLA breach" in health.recommended_actions
    assert store.get_deal_health("sub-1") == health


def test_reevaluation_without_new_events_is_stable(store, make_item, make_rule, make_deadline, now):
    store.upsert_item(make_item(stage="in_review", age_days=6, idle_days=4))
    store.upsert_rule(make_rule(deadline_action="remind"))
    store.add_deadline(make_deadline(due_in_hours=-5))
    processor = build_processor(store)

    first = processor.evaluate("sub-1", now)
    second = processor.evaluate("sub-1", now)

    # the reminder counter keeps moving; the snapshot does not
    assert store.get_deadline("dl-1").reminders_sent == 2
    assert first == second


def test_last_activity_comes_from_latest_event(store, make_item, now):
    store.upsert_item(make_item(stage="interview", age_days=10, idle_days=10))
    store.append_event(
        PlatformEvent(event_type="note_added", entity_type="submission", entity_id="sub-1",
                      created_at=now - timedelta(days=1))
    )

    health = build_processor(store).evaluate("sub-1", now)

    assert health.days_since_last_activity == 1


def test_evaluate_all_covers_active_stages_only(store, make_item, now):
    store.upsert_item(make_item("sub-a", stage="submitted", age_days=1))
    store.upsert_item(make_item("sub-b", stage="interview", age_days=30, idle_days=20, match_score=30))
    store.upsert_item(make_item("sub-c", stage="hired", age_days=2))

    summary = build_processor(store).evaluate_all(now)

    assert summary.total_seen == 2
    assert summary.processed_count == 2
    assert summary.failed == 0
    assert summary.escalation is not None
    assert {r.submission_id for r in summary.results} == {"sub-a", "sub-b"}
    assert summary.low_risk + summary.medium_risk + summary.high_risk + summary.critical_risk == 2
    assert store.get_deal_health("sub-c") is None


def test_one_failing_item_does_not_stop_the_batch(store, make_item, now, monkeypatch):
    store.upsert_item(make_item("sub-a", stage="submitted"))
    store.upsert_item(make_item("sub-b", stage="submitted"))
    store.upsert_item(make_item("sub-c", stage="submitted"))

    original = store.get_unfulfilled_deadlines

    def flaky(entity_id):
        if entity_id == "sub-b":
            raise RuntimeError("read timeout")
        return original(entity_id)

    monkeypatch.setattr(store, "get_unfulfilled_deadlines", flaky)

    summary = build_processor(store).evaluate_all(now)

    assert summary.processed_count == 2
    assert summary.failed == 1
    assert summary.errors[0].submission_id == "sub-b"
    assert summary.errors[0].error_code == DealHealthBatchProcessor.ERROR_CALCULATION_FAILED
    assert store.get_deal_health("sub-a") is not None
    assert store.get_deal_health("sub-b") is None
    assert store.get_deal_health("sub-c") is not None


def test_escalation_failure_is_recorded_and_health_still_runs(store, make_item, now):
    store.upsert_item(make_item(stage="submitted"))
    engine = MagicMock(spec=EscalationEngine)
    engine.run.side_effect = RuntimeError("engine down")

    summary = build_processor(store, escalation_engine=engine).evaluate_all(now)

    assert summary.escalation is None
    assert summary.errors[0].error_code == DealHealthBatchProcessor.ERROR_ESCALATION_FAILED
    assert summary.processed_count == 1


def test_cancel_before_start_leaves_items_not_started(store, make_item, now):
    store.upsert_item(make_item("sub-a", stage="submitted"))
    store.upsert_item(make_item("sub-b", stage="submitted"))
    cancel = threading.Event()
    cancel.set()

    summary = build_processor(store).evaluate_all(now, cancel_event=cancel)

    assert summary.cancelled
    assert summary.not_started == 2
    assert summary.processed_count == 0
    assert store.get_deal_health("sub-a") is None


def test_cancel_midway_keeps_finished_snapshots(store, make_item, now, monkeypatch):
    for item_id in ("sub-a", "sub-b", "sub-c"):
        store.upsert_item(make_item(item_id, stage="submitted"))
    cancel = threading.Event()
    original = store.upsert_deal_health

    def upsert_then_cancel(health):
        original(health)
        cancel.set()

    monkeypatch.setattr(store, "upsert_deal_health", upsert_then_cancel)

    summary = build_processor(store).evaluate_all(now, cancel_event=cancel)

    assert summary.cancelled
    assert summary.processed_count == 1
    assert summary.not_started == 2
    assert store.get_deal_health("sub-a") is not None


def test_parallel_workers_produce_the_same_counts(tmp_path, make_item, now):
    store = SlaStore(db_url=f"sqlite:///{tmp_path / 'sla.db'}")
    for index in range(6):
        store.upsert_item(make_item(f"sub-{index}", stage="submitted", age_days=index))

    summary = build_processor(store, max_workers=3).evaluate_all(now)

    assert summary.processed_count == 6
    assert summary.not_started == 0
    assert not summary.cancelled
