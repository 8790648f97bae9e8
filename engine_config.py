# engine_config.py
"""
Configuration for the SLA escalation and deal health engine.
"""

import os
from typing import List

SLA_DB_URL = os.getenv("SLA_DB_URL", "sqlite:///./sla_engine.db")

# Completions newer than this feed the positive behavior-score path each cycle
COMPLETION_LOOKBACK_MINUTES = int(os.getenv("ESCALATION_COMPLETION_LOOKBACK_MINUTES", "15"))
ADMIN_ROLE = os.getenv("ESCALATION_ADMIN_ROLE", "admin")

DEFAULT_ACTIVE_STAGES = "submitted,in_review,shortlisted,opt_in_pending,interview,offer"
ACTIVE_STAGES: List[str] = [
    stage.strip()
    for stage in os.getenv("DEAL_HEALTH_ACTIVE_STAGES", DEFAULT_ACTIVE_STAGES).split(",")
    if stage.strip()
]
DEFAULT_TERMINAL_STAGES = "placed,rejected,withdrawn"
# Open deadlines of submissions in these stages are archived each escalation run
TERMINAL_STAGES: List[str] = [
    stage.strip()
    for stage in os.getenv("SLA_TERMINAL_STAGES", DEFAULT_TERMINAL_STAGES).split(",")
    if stage.strip()
]
MAX_WORKERS = int(os.getenv("DEAL_HEALTH_MAX_WORKERS", "1"))

# Must not be shorter than the shortest warning/reminder interval of any rule
EVALUATION_INTERVAL_MINUTES = int(os.getenv("EVALUATION_INTERVAL_MINUTES", "15"))
ENABLE_JOB_SCHEDULER = os.getenv("ENABLE_JOB_SCHEDULER", "false").lower() == "true"

SLACK_OPS_BOT_TOKEN = os.getenv("SLACK_OPS_BOT_TOKEN")
SLACK_OPS_DEFAULT_CHANNEL_ID = os.getenv("SLACK_OPS_DEFAULT_CHANNEL_ID")

# Validation
if COMPLETION_LOOKBACK_MINUTES <= 0:
    raise ValueError(
        f"ESCALATION_COMPLETION_LOOKBACK_MINUTES must be positive, got {COMPLETION_LOOKBACK_MINUTES}"
    )
if MAX_WORKERS < 1:
    raise ValueError(f"DEAL_HEALTH_MAX_WORKERS must be at least 1, got {MAX_WORKERS}")
if EVALUATION_INTERVAL_MINUTES <= 0:
    raise ValueError(f"EVALUATION_INTERVAL_MINUTES must be positive, got {EVALUATION_INTERVAL_MINUTES}")
if not ACTIVE_STAGES:
    raise ValueError("DEAL_HEALTH_ACTIVE_STAGES must name at least one stage")
if set(ACTIVE_STAGES) & set(TERMINAL_STAGES):
    raise ValueError(
        f"SLA_TERMINAL_STAGES overlaps DEAL_HEALTH_ACTIVE_STAGES: {sorted(set(ACTIVE_STAGES) & set(TERMINAL_STAGES))}"
    )


def get_active_stages() -> List[str]:
    """Stages whose items are evaluated in batch mode."""
    return list(ACTIVE_STAGES)


def get_terminal_stages() -> List[str]:
    """Stages that end a submission and archive its open deadlines."""
    return list(TERMINAL_STAGES)


def is_slack_relay_enabled() -> bool:
    """Check if cycle summaries should be relayed to Slack."""
    return bool(SLACK_OPS_BOT_TOKEN and SLACK_OPS_DEFAULT_CHANNEL_ID)
