
"""
Slack Block Kit builders for SLA escalation and deal health cycle summaries.
"""

from typing import Any, Dict, List, Optional

MAX_DEALS_PER_GROUP = 10
ERROR_DISPLAY_LIMIT = 3

RISK_GROUPS = [
    ("critical", "🔴", "Critical deals"),
    ("high", "🟠", "High-risk deals"),
]


def _normalize_error_count(errors_value: Any) -> int:
    if isinstance(errors_value, (list, tuple, set)):
        return len(errors_value)
    try:
        return int(errors_value or 0)
    except (TypeError, ValueError):
        return 0


def _extract_error_entries(summary: Any) -> List[Any]:
    errors = getattr(summary, "errors", None)
    if isinstance(errors, list):
        return errors
    return []


def build_health_cycle_blocks(summary: Any) -> List[Dict[str, Any]]:
    """
    Build complete Slack Block Kit payload for one deal health cycle.

    Args:
        summary: DealHealthBatchSummary, optionally carrying its escalation run

    Returns:
        List of Slack blocks
    """
    blocks = []

    blocks.extend(build_cycle_header(summary))
    blocks.append({"type": "divider"})
    blocks.extend(build_health_stats(summary))

    escalation = getattr(summary, "escalation", None)
    if escalation is not None:
        blocks.append({"type": "divider"})
        blocks.extend(build_escalation_stats(escalation))

    error_blocks = build_error_details(summary)
    if error_blocks:
        blocks.append({"type": "divider"})
        blocks.extend(error_blocks)

    results = getattr(summary, "results", [])
    if results:
        deal_blocks = build_at_risk_groups(results)
        if deal_blocks:
            blocks.append({"type": "divider"})
            blocks.extend(deal_blocks)

    blocks.extend(build_footer())
    return blocks


def build_escalation_run_blocks(summary: Any) -> List[Dict[str, Any]]:
    """Payload for an escalation run triggered on its own."""
    blocks = [{
        "type": "header",
        "text": {"type": "plain_text", "text": "⏱️ SLA Escalation Run", "emoji": True},
    }]
    blocks.extend(build_escalation_stats(summary))

    error_blocks = build_error_details(summary)
    if error_blocks:
        blocks.append({"type": "divider"})
        blocks.extend(error_blocks)

    blocks.extend(build_footer())
    return blocks


def build_cycle_header(summary: Any) -> List[Dict[str, Any]]:
    total_seen = getattr(summary, "total_seen", 0)
    title = f"Deal Health Cycle ({total_seen} active deals)"
    if getattr(summary, "cancelled", False):
        title += " – cancelled"

    return [{
        "type": "header",
        "text": {
            "type": "plain_text",
            "text": f"🩺 {title}",
            "emoji": True
        }
    }]


def build_health_stats(summary: Any) -> List[Dict[str, Any]]:
    """Risk distribution of the snapshots written this cycle."""
    fields = [
        {"type": "mrkdwn", "text": f"*Evaluated:*\n{getattr(summary, 'processed_count', 0)}"},
        {"type": "mrkdwn", "text": f"*Low risk:*\n{getattr(summary, 'low_risk', 0)}"},
        {"type": "mrkdwn", "text": f"*Medium risk:*\n{getattr(summary, 'medium_risk', 0)}"},
        {"type": "mrkdwn", "text": f"*High risk:*\n{getattr(summary, 'high_risk', 0)}"},
        {"type": "mrkdwn", "text": f"*Critical:*\n{getattr(summary, 'critical_risk', 0)}"},
    ]

    not_started = getattr(summary, "not_started", 0)
    if not_started > 0:
        fields.append({"type": "mrkdwn", "text": f"*Not started:*\n{not_started}"})

    error_count = _normalize_error_count(getattr(summary, "errors", 0))
    if error_count > 0:
        fields.append({"type": "mrkdwn", "text": f"*Errors:*\n{error_count}"})

    return [{"type": "section", "fields": fields}]


def build_escalation_stats(escalation: Any) -> List[Dict[str, Any]]:
    fields = [
        {"type": "mrkdwn", "text": f"*Warnings sent:*\n{getattr(escalation, 'warnings_sent', 0)}"},
        {"type": "mrkdwn", "text": f"*Reminders sent:*\n{getattr(escalation, 'reminders_sent', 0)}"},
        {"type": "mrkdwn", "text": f"*Escalations:*\n{getattr(escalation, 'escalations_triggered', 0)}"},
        {"type": "mrkdwn", "text": f"*Behavior scores refreshed:*\n{getattr(escalation, 'behavior_scores_refreshed', 0)}"},
    ]

    archived = getattr(escalation, "deadlines_archived", 0)
    if archived > 0:
        fields.append({"type": "mrkdwn", "text": f"*Deadlines archived:*\n{archived}"})

    failures = getattr(escalation, "notification_failures", 0)
    if failures > 0:
        fields.append({"type": "mrkdwn", "text": f"*Notification failures:*\n{failures}"})

    return [{"type": "section", "fields": fields}]


def build_error_details(summary: Any, limit: int = ERROR_DISPLAY_LIMIT) -> List[Dict[str, Any]]:
    """Render a concise list of per-record errors for Slack."""
    entries = _extract_error_entries(summary)
    if not entries:
        return []

    lines: List[str] = [f"*Errors detected (top {limit})*"]
    for error in entries[:limit]:
        subject = (
            getattr(error, "submission_id", None)
            or getattr(error, "deadline_id", None)
            or getattr(error, "user_id", None)
            or "cycle"
        )
        code = getattr(error, "error_code", "error")
        message = getattr(error, "error_message", "See logs for full detail.")
        lines.append(f"• `{subject}` *{code}*")
        lines.append(f"   {message}")

    remaining = len(entries) - limit
    if remaining > 0:
        lines.append(f"…and {remaining} more errors. See logs.")

    return [{
        "type": "section",
        "text": {"type": "mrkdwn", "text": "\n".join(lines)}
    }]


def build_at_risk_groups(results: List[Any]) -> List[Dict[str, Any]]:
    """Critical then high-risk deals, lowest health first."""
    blocks = []

    groups: Dict[str, List[Any]] = {}
    for result in results:
        level = (getattr(result, "risk_level", "") or "").lower()
        groups.setdefault(level, []).append(result)

    for level, emoji, title in RISK_GROUPS:
        deals = sorted(groups.get(level, []), key=lambda r: getattr(r, "health_score", 0))
        if deals:
            blocks.extend(build_deal_group_section(title, emoji, deals))

    return blocks


def build_deal_group_section(title: str, emoji: str, deals: List[Any]) -> List[Dict[str, Any]]:
    count = len(deals)
    lines = [f"{emoji} *{title}* ({count})"]
    for deal in deals[:MAX_DEALS_PER_GROUP]:
        lines.append(_format_deal_line(deal))

    blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}}]

    if count > MAX_DEALS_PER_GROUP:
        remaining = count - MAX_DEALS_PER_GROUP
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"_...and {remaining} more deals_"}]
        })

    return blocks


def _format_deal_line(deal: Any) -> str:
    line = (
        f"• `{getattr(deal, 'submission_id', '?')}` ({getattr(deal, 'stage', '')}) "
        f"health {getattr(deal, 'health_score', 0)}%, "
        f"drop-off {getattr(deal, 'drop_off_probability', 0)}%"
    )
    bottleneck = _format_bottleneck(getattr(deal, "bottleneck", None), getattr(deal, "bottleneck_user_id", None))
    if bottleneck:
        line += f" – {bottleneck}"
    return line


def _format_bottleneck(label: Optional[str], user_id: Optional[str]) -> Optional[str]:
    if not label:
        return None
    if user_id:
        return f"waiting on {label} ({user_id})"
    return f"waiting on {label}"


def build_footer() -> List[Dict[str, Any]]:
    return [{
        "type": "context",
        "elements": [{
            "type": "mrkdwn",
            "text": "Generated by the SLA escalation engine"
        }]
    }]
