from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from deal_health.deal_health_batch import DealHealthBatchProcessor
from deal_health.deal_health_models import DealHealthBatchSummary
from escalation.escalation_engine import EscalationEngine
from escalation.escalation_models import EscalationRunSummary
from sla_models import DealHealth
from slack_service import SlackNotifier

logger = logging.getLogger(__name__)

CYCLE_HISTORY_SIZE = 20


class CycleHistory:
    """Latest escalation run plus the last few deal health cycles, newest first."""

    def __init__(self, max_cycles: int = CYCLE_HISTORY_SIZE) -> None:
        self._cycles: Deque[DealHealthBatchSummary] = deque(maxlen=max_cycles)
        self._escalation: Optional[EscalationRunSummary] = None
        self._lock = threading.Lock()

    def record_health_cycle(self, summary: DealHealthBatchSummary) -> None:
        with self._lock:
            self._cycles.appendleft(summary.model_copy(deep=True))
            if summary.escalation is not None:
                self._escalation = summary.escalation.model_copy(deep=True)

    def record_escalation_run(self, summary: EscalationRunSummary) -> None:
        with self._lock:
            self._escalation = summary.model_copy(deep=True)

    def latest_health_cycle(self) -> Optional[DealHealthBatchSummary]:
        with self._lock:
            return self._cycles[0].model_copy(deep=True) if self._cycles else None

    def latest_escalation_run(self) -> Optional[EscalationRunSummary]:
        with self._lock:
            return self._escalation.model_copy(deep=True) if self._escalation else None

    def recent_health_cycles(self, limit: int = 5) -> List[DealHealthBatchSummary]:
        with self._lock:
            return [cycle.model_copy(deep=True) for cycle in list(self._cycles)[:limit]]

    def at_risk_trend(self) -> Optional[Dict[str, int]]:
        """High plus critical deals in the latest cycle against the one before it."""
        with self._lock:
            if len(self._cycles) < 2:
                return None
            latest, previous = self._cycles[0], self._cycles[1]
        current = latest.high_risk + latest.critical_risk
        before = previous.high_risk + previous.critical_risk
        return {"at_risk": current, "previous_at_risk": before, "change": current - before}

    def reset(self) -> None:
        with self._lock:
            self._cycles.clear()
            self._escalation = None


cycle_history = CycleHistory()


def run_deal_health_batch(
    notifier: Optional[SlackNotifier] = None,
    cancel_event: Optional[threading.Event] = None,
) -> DealHealthBatchSummary:
    """Run escalation plus a full deal health pass, record the cycle, and notify Slack."""
    processor = DealHealthBatchProcessor()
    summary = processor.evaluate_all(cancel_event=cancel_event)
    cycle_history.record_health_cycle(summary)

    if notifier:
        try:
            notifier.notify_health_cycle(summary)
        except Exception as exc:  # pragma: no cover - logging path
            logger.error("health_slack_notification_failed", exc_info=True, extra={"error": str(exc)})

    return summary


def run_escalation_cycle(notifier: Optional[SlackNotifier] = None) -> EscalationRunSummary:
    """Advance due deadlines only, without recomputing deal health."""
    engine = EscalationEngine()
    summary = engine.run(datetime.now(timezone.utc))
    cycle_history.record_escalation_run(summary)

    if notifier:
        try:
            notifier.notify_escalation_run(summary)
        except Exception as exc:  # pragma: no cover - logging path
            logger.error("escalation_slack_notification_failed", exc_info=True, extra={"error": str(exc)})

    return summary


def evaluate_deal(item_id: str) -> DealHealth:
    return DealHealthBatchProcessor().evaluate(item_id)
