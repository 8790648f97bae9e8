from types import SimpleNamespace
from unittest.mock import Mock

from deal_health.deal_health_models import DealHealthBatchSummary, DealHealthError, DealHealthResult
from escalation.escalation_models import EscalationError, EscalationRunSummary
from slack_blocks import (
    MAX_DEALS_PER_GROUP,
    build_at_risk_groups,
    build_cycle_header,
    build_error_details,
    build_escalation_run_blocks,
    build_footer,
    build_health_cycle_blocks,
    build_health_stats,
)


def _result(submission_id, risk_level, health_score, **overrides):
    fields = dict(
        submission_id=submission_id,
        stage="submitted",
        health_score=health_score,
        risk_level=risk_level,
        drop_off_probability=100 - health_score,
    )
    fields.update(overrides)
    return DealHealthResult(**fields)


def test_cycle_header_counts_active_deals():
    summary = Mock()
    summary.total_seen = 12
    summary.cancelled = False

    blocks = build_cycle_header(summary)

    assert blocks[0]["type"] == "header"
    assert "12 active deals" in blocks[0]["text"]["text"]
    assert "cancelled" not in blocks[0]["text"]["text"]


def test_cycle_header_marks_cancelled_runs():
    blocks = build_cycle_header(DealHealthBatchSummary(total_seen=3, cancelled=True))
    assert "cancelled" in blocks[0]["text"]["text"]


def test_health_stats_only_show_optional_fields_when_nonzero():
    quiet = build_health_stats(DealHealthBatchSummary(processed_count=2, low_risk=2))
    texts = [field["text"] for field in quiet[0]["fields"]]
    assert "*Evaluated:*\n2" in texts
    assert not any("Errors" in text for text in texts)
    assert not any("Not started" in text for text in texts)

    noisy = build_health_stats(
        DealHealthBatchSummary(
            not_started=4,
            errors=[DealHealthError(error_code="calculation_failed", error_message="boom")],
        )
    )
    texts = [field["text"] for field in noisy[0]["fields"]]
    assert "*Not started:*\n4" in texts
    assert "*Errors:*\n1" in texts


def test_error_details_are_truncated():
    summary = SimpleNamespace(
        errors=[
            DealHealthError(submission_id=f"sub-{i}", error_code="calculation_failed", error_message="boom")
            for i in range(5)
        ]
    )

    blocks = build_error_details(summary)
    text = blocks[0]["text"]["text"]

    assert "`sub-0`" in text
    assert "`sub-3`" not in text
    assert "2 more errors" in text
    assert build_error_details(SimpleNamespace(errors=[])) == []


def test_escalation_errors_name_the_deadline():
    summary = EscalationRunSummary(
        errors=[EscalationError(deadline_id="dl-9", error_code="rule_not_found", error_message="gone")]
    )
    text = build_error_details(summary)[0]["text"]["text"]
    assert "`dl-9`" in text
    assert "rule_not_found" in text


def test_at_risk_groups_list_critical_first_lowest_health_first():
    results = [
        _result("sub-high", "high", 50),
        _result("sub-crit-b", "critical", 30, bottleneck="client_review", bottleneck_user_id="client-1"),
        _result("sub-low", "low", 90),
        _result("sub-crit-a", "critical", 10),
    ]

    blocks = build_at_risk_groups(results)

    assert len(blocks) == 2
    critical_text = blocks[0]["text"]["text"]
    assert critical_text.startswith("🔴 *Critical deals* (2)")
    assert critical_text.index("sub-crit-a") < critical_text.index("sub-crit-b")
    assert "waiting on client_review (client-1)" in critical_text
    assert "sub-high" in blocks[1]["text"]["text"]
    assert all("sub-low" not in block.get("text", {}).get("text", "") for block in blocks)


def test_large_groups_are_truncated():
    results = [_result(f"sub-{i}", "critical", 20) for i in range(MAX_DEALS_PER_GROUP + 3)]

    blocks = build_at_risk_groups(results)

    assert blocks[-1]["type"] == "context"
    assert "3 more deals" in blocks[-1]["elements"][0]["text"]


def test_full_cycle_payload_includes_escalation_section():
    summary = DealHealthBatchSummary(
        total_seen=2,
        processed_count=2,
        critical_risk=1,
        escalation=EscalationRunSummary(warnings_sent=1, escalations_triggered=1, notification_failures=2),
        results=[_result("sub-1", "critical", 25), _result("sub-2", "low", 95)],
    )

    blocks = build_health_cycle_blocks(summary)
    flattened = str(blocks)

    assert blocks[0]["type"] == "header"
    assert "*Escalations:*\\n1" in flattened
    assert "*Notification failures:*\\n2" in flattened
    assert "sub-1" in flattened
    assert blocks[-1] == build_footer()[0]


def test_escalation_run_payload():
    blocks = build_escalation_run_blocks(EscalationRunSummary(reminders_sent=3))
    assert blocks[0]["type"] == "header"
    assert "*Reminders sent:*\n3" in [field["text"] for field in blocks[1]["fields"]]


def test_archived_deadlines_only_show_when_nonzero():
    quiet = build_escalation_run_blocks(EscalationRunSummary())
    busy = build_escalation_run_blocks(EscalationRunSummary(deadlines_archived=2))

    assert not any("archived" in field["text"] for field in quiet[1]["fields"])
    assert "*Deadlines archived:*\n2" in [field["text"] for field in busy[1]["fields"]]
