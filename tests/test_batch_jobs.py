from unittest.mock import MagicMock

import batch_jobs
from deal_health.deal_health_models import DealHealthBatchSummary
from escalation.escalation_models import EscalationRunSummary


def test_run_deal_health_batch_updates_summary_and_notifies(monkeypatch):
    escalation = EscalationRunSummary(escalations_triggered=2)
    fake_summary = DealHealthBatchSummary(total_seen=3, critical_risk=1, escalation=escalation)

    class FakeProcessor:
        def evaluate_all(self, cancel_event=None):
            return fake_summary

    monkeypatch.setattr(batch_jobs, "DealHealthBatchProcessor", lambda: FakeProcessor())
    notifier = MagicMock()

    result = batch_jobs.run_deal_health_batch(notifier)

    assert result is fake_summary
    assert batch_jobs.cycle_history.latest_health_cycle().total_seen == 3
    assert batch_jobs.cycle_history.latest_escalation_run().escalations_triggered == 2
    notifier.notify_health_cycle.assert_called_once_with(fake_summary)


def test_slack_failure_does_not_fail_the_batch(monkeypatch):
    fake_summary = DealHealthBatchSummary(total_seen=1)

    class FakeProcessor:
        def evaluate_all(self, cancel_event=None):
            return fake_summary

    monkeypatch.setattr(batch_jobs, "DealHealthBatchProcessor", lambda: FakeProcessor())
    notifier = MagicMock()
    notifier.notify_health_cycle.side_effect = RuntimeError("slack down")

    assert batch_jobs.run_deal_health_batch(notifier) is fake_summary
    assert batch_jobs.cycle_history.latest_health_cycle() is not None


def test_run_escalation_cycle_updates_summary_and_notifies(monkeypatch):
    fake_summary = EscalationRunSummary(warnings_sent=4)

    class FakeEngine:
        def run(self, now):
            return fake_summary

    monkeypatch.setattr(batch_jobs, "EscalationEngine", lambda: FakeEngine())
    notifier = MagicMock()

    result = batch_jobs.run_escalation_cycle(notifier)

    assert result is fake_summary
    assert batch_jobs.cycle_history.latest_escalation_run().warnings_sent == 4
    assert batch_jobs.cycle_history.latest_health_cycle() is None
    notifier.notify_escalation_run.assert_called_once_with(fake_summary)


def test_cycle_history_hands_out_copies():
    summary = DealHealthBatchSummary(total_seen=5)
    batch_jobs.cycle_history.record_health_cycle(summary)

    copy = batch_jobs.cycle_history.latest_health_cycle()
    copy.total_seen = 99

    assert batch_jobs.cycle_history.latest_health_cycle().total_seen == 5


def test_cycle_history_keeps_newest_first_and_reports_at_risk_trend():
    history = batch_jobs.CycleHistory(max_cycles=2)
    assert history.at_risk_trend() is None

    history.record_health_cycle(DealHealthBatchSummary(total_seen=1, high_risk=1))
    history.record_health_cycle(DealHealthBatchSummary(total_seen=2, high_risk=1, critical_risk=2))
    history.record_health_cycle(DealHealthBatchSummary(total_seen=3, critical_risk=1))

    assert [cycle.total_seen for cycle in history.recent_health_cycles(5)] == [3, 2]
    assert history.at_risk_trend() == {"at_risk": 1, "previous_at_risk": 3, "change": -2}
