import logging
import threading
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from deal_health.deal_health_models import DealHealthBatchSummary, DealHealthError, DealHealthResult
from deal_health.health_engine import calculate_deal_health
from deal_health.health_policy import RECENT_EVENT_LIMIT
from engine_config import MAX_WORKERS, get_active_stages
from escalation.escalation_engine import EscalationEngine
from sla_models import DealHealth, WorkflowItem
from sla_store import SlaStore, get_store

logger = logging.getLogger(__name__)


class ItemNotFoundError(LookupError):
    """Raised when a single-item evaluation names a submission that does not exist."""


class DealHealthBatchProcessor:
    """
    Runs the SLA escalation engine and recomputes deal health, either for one
    submission or for every submission in an active stage.
    """

    ERROR_CALCULATION_FAILED = "calculation_failed"
    ERROR_ESCALATION_FAILED = "escalation_failed"
    ERROR_ITEM_LISTING_FAILED = "item_listing_failed"

    def __init__(
        self,
        *,
        correlation_id: Optional[str] = None,
        store: Optional[SlaStore] = None,
        escalation_engine: Optional[EscalationEngine] = None,
        max_workers: Optional[int] = None,
        active_stages: Optional[List[str]] = None,
    ) -> None:
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.store = store or get_store()
        self.escalation_engine = escalation_engine or EscalationEngine(
            store=self.store, correlation_id=self.correlation_id
        )
        self.max_workers = max_workers or MAX_WORKERS
        self.active_stages = active_stages or get_active_stages()

    # -------------------------------------------------------
    # SINGLE ITEM
    # -------------------------------------------------------
    def evaluate(self, item_id: str, now: Optional[datetime] = None) -> DealHealth:
        """
        Advance the submission's deadlines, then recompute and store its health.

        Raises:
            ItemNotFoundError: no submission with this id exists
        """
        now = now or datetime.now(timezone.utc)

        item = self.store.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(f"Submission {item_id} not found")

        escalation = self.escalation_engine.process_entity(item.id, now)
        if escalation.errors:
            logger.warning(
                "deal_health_escalation_partial",
                extra={
                    "correlation_id": self.correlation_id,
                    "item_id": item.id,
                    "error_count": escalation.error_count,
                },
            )

        return self._calculate_and_store(item, now)

    # -------------------------------------------------------
    # BATCH
    # -------------------------------------------------------
    def evaluate_all(
        self,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DealHealthBatchSummary:
        """
        One full cycle: escalation over all due deadlines, then a health
        snapshot for every submission in an active stage.

        A set `cancel_event` stops the cycle before the next submission starts;
        snapshots already written stay written.
        """
        now = now or datetime.now(timezone.utc)
        summary = DealHealthBatchSummary()

        logger.info(
            "deal_health_batch_started",
            extra={"correlation_id": self.correlation_id, "max_workers": self.max_workers},
        )

        try:
            summary.escalation = self.escalation_engine.run(now)
        except Exception as exc:
            logger.error(
                "deal_health_escalation_failed",
                extra={"correlation_id": self.correlation_id, "error": str(exc)},
                exc_info=True,
            )
            summary.errors.append(
                DealHealthError(
                    error_code=self.ERROR_ESCALATION_FAILED,
                    error_message=str(exc),
                    technical_detail=traceback.format_exc(),
                )
            )

        try:
            items = self.store.list_items_by_stages(self.active_stages)
        except Exception as exc:
            logger.error(
                "deal_health_item_listing_failed",
                extra={"correlation_id": self.correlation_id, "error": str(exc)},
                exc_info=True,
            )
            summary.errors.append(
                DealHealthError(
                    error_code=self.ERROR_ITEM_LISTING_FAILED,
                    error_message=str(exc),
                    technical_detail=traceback.format_exc(),
                )
            )
            return summary

        summary.total_seen = len(items)

        if self.max_workers > 1 and len(items) > 1:
            self._run_parallel(items, now, cancel_event, summary)
        else:
            self._run_sequential(items, now, cancel_event, summary)

        logger.info(
            "deal_health_batch_completed",
            extra={"correlation_id": self.correlation_id, **summary.to_logging_dict()},
        )
        return summary

    def _run_sequential(
        self,
        items: List[WorkflowItem],
        now: datetime,
        cancel_event: Optional[threading.Event],
        summary: DealHealthBatchSummary,
    ) -> None:
        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                summary.not_started = len(items) - index
                logger.info(
                    "deal_health_batch_cancelled",
                    extra={"correlation_id": self.correlation_id, "not_started": summary.not_started},
                )
                return
            self._apply_outcome(summary, self._evaluate_item(item, now))

    def _run_parallel(
        self,
        items: List[WorkflowItem],
        now: datetime,
        cancel_event: Optional[threading.Event],
        summary: DealHealthBatchSummary,
    ) -> None:
        def _guarded(item: WorkflowItem):
            if cancel_event is not None and cancel_event.is_set():
                return None
            return self._evaluate_item(item, now)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="deal-health") as pool:
            outcomes = list(pool.map(_guarded, items))

        for outcome in outcomes:
            if outcome is None:
                summary.not_started += 1
                continue
            self._apply_outcome(summary, outcome)

        if summary.not_started:
            summary.cancelled = True

    # -------------------------------------------------------
    # PER ITEM
    # -------------------------------------------------------
    def _evaluate_item(
        self, item: WorkflowItem, now: datetime
    ) -> Tuple[Optional[DealHealthResult], Optional[DealHealthError]]:
        try:
            health = self._calculate_and_store(item, now)
        except Exception as exc:
            logger.error(
                "deal_health_item_failed",
                extra={"correlation_id": self.correlation_id, "item_id": item.id, "error": str(exc)},
                exc_info=True,
            )
            return None, DealHealthError(
                submission_id=item.id,
                error_code=self.ERROR_CALCULATION_FAILED,
                error_message=str(exc),
                technical_detail=traceback.format_exc(),
            )

        return (
            DealHealthResult(
                submission_id=item.id,
                stage=item.stage,
                health_score=health.health_score,
                risk_level=health.risk_level,
                drop_off_probability=health.drop_off_probability,
                bottleneck=health.bottleneck,
                bottleneck_user_id=health.bottleneck_user_id,
            ),
            None,
        )

    @staticmethod
    def _apply_outcome(
        summary: DealHealthBatchSummary,
        outcome: Tuple[Optional[DealHealthResult], Optional[DealHealthError]],
    ) -> None:
        result, error = outcome
        if error is not None:
            summary.failed += 1
            summary.errors.append(error)
        elif result is not None:
            summary.record(result)

    def _calculate_and_store(self, item: WorkflowItem, now: datetime) -> DealHealth:
        deadlines = self.store.get_unfulfilled_deadlines(item.id)
        recruiter_score = self.store.get_behavior_score(item.recruiter_id) if item.recruiter_id else None
        client_score = self.store.get_behavior_score(item.client_id) if item.client_id else None
        events = self.store.get_recent_events(item.id, limit=RECENT_EVENT_LIMIT)
        last_activity_at = events[0].created_at if events else None

        health = calculate_deal_health(
            item,
            deadlines=deadlines,
            recruiter_score=recruiter_score,
            client_score=client_score,
            last_activity_at=last_activity_at,
            now=now,
        )
        self.store.upsert_deal_health(health)

        logger.info(
            "deal_health_calculated",
            extra={
                "correlation_id": self.correlation_id,
                "item_id": item.id,
                "health_score": health.health_score,
                "risk_level": health.risk_level,
            },
        )
        return health
