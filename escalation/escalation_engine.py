import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from behavior.behavior_scorer import BehaviorScorer
from engine_config import ADMIN_ROLE, COMPLETION_LOOKBACK_MINUTES, TERMINAL_STAGES
from escalation.escalation_models import DeadlineOutcome, EscalationError, EscalationRunSummary
from escalation.state_machine import Transition, TransitionKind, plan_transition
from notification_service import NotificationService
from sla_models import SlaDeadline
from sla_store import SlaStore, get_store

logger = logging.getLogger(__name__)


class EscalationEngine:
    """
    Advances SLA deadlines through warning, reminder and escalation, and keeps
    the responsible actors' behavior scores current.

    Every deadline is handled on its own: a failed lookup, write or
    notification is recorded on the summary and the run moves on.
    """

    ERROR_RULE_NOT_FOUND = "rule_not_found"
    ERROR_PERSIST_FAILED = "persist_failed"
    ERROR_NOTIFY_FAILED = "notification_failed"
    ERROR_BEHAVIOR_REFRESH_FAILED = "behavior_refresh_failed"
    ERROR_LOOKUP_FAILED = "lookup_failed"
    ERROR_ARCHIVE_FAILED = "archive_failed"

    def __init__(
        self,
        *,
        store: Optional[SlaStore] = None,
        notifier: Optional[NotificationService] = None,
        scorer: Optional[BehaviorScorer] = None,
        correlation_id: Optional[str] = None,
        admin_role: str = ADMIN_ROLE,
        completion_lookback_minutes: int = COMPLETION_LOOKBACK_MINUTES,
        terminal_stages: Optional[List[str]] = None,
    ) -> None:
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.store = store or get_store()
        self.notifier = notifier or NotificationService(self.store)
        self.scorer = scorer or BehaviorScorer(self.store)
        self.admin_role = admin_role
        self.completion_lookback = timedelta(minutes=completion_lookback_minutes)
        self.terminal_stages = list(TERMINAL_STAGES if terminal_stages is None else terminal_stages)

    # -------------------------------------------------------
    # ENTRY POINTS
    # -------------------------------------------------------
    def run(self, now: datetime) -> EscalationRunSummary:
        """Full cycle over every due deadline, then refresh recent completers."""
        summary = EscalationRunSummary(timestamp=now)
        logger.info("escalation_run_started", extra={"correlation_id": self.correlation_id})

        self._process_due_deadlines(now, summary, entity_id=None)
        self._refresh_recent_completers(now, summary)

        logger.info(
            "escalation_run_completed",
            extra={"correlation_id": self.correlation_id, **summary.to_logging_dict()},
        )
        return summary

    def process_entity(self, entity_id: str, now: datetime) -> EscalationRunSummary:
        """Same transitions as `run`, restricted to one entity's deadlines."""
        summary = EscalationRunSummary(timestamp=now)
        self._process_due_deadlines(now, summary, entity_id=entity_id)
        return summary

    # -------------------------------------------------------
    # DEADLINE PROCESSING
    # -------------------------------------------------------
    def _archive_ended_items(
        self, now: datetime, summary: EscalationRunSummary, entity_id: Optional[str]
    ) -> None:
        try:
            archived = self.store.archive_deadlines_in_stages(self.terminal_stages, now, entity_id=entity_id)
        except Exception as exc:
            logger.error(
                "escalation_archive_failed",
                extra={"correlation_id": self.correlation_id, "error": str(exc)},
                exc_info=True,
            )
            summary.errors.append(
                EscalationError(
                    entity_id=entity_id,
                    error_code=self.ERROR_ARCHIVE_FAILED,
                    error_message=f"Could not archive deadlines of ended items: {exc}",
                )
            )
            return

        if archived:
            summary.deadlines_archived += len(archived)
            logger.info(
                "sla_deadlines_archived",
                extra={"correlation_id": self.correlation_id, "count": len(archived)},
            )

    def _process_due_deadlines(
        self, now: datetime, summary: EscalationRunSummary, entity_id: Optional[str]
    ) -> None:
        self._archive_ended_items(now, summary, entity_id)

        # The two queries split on deadline_at, so no record is handled twice per run
        for fetch_name, fetch in (
            ("warning", self.store.get_deadlines_due_for_warning),
            ("overdue", self.store.get_overdue_deadlines),
        ):
            try:
                deadlines = fetch(now, entity_id=entity_id)
            except Exception as exc:
                logger.error(
                    "escalation_deadline_fetch_failed",
                    extra={"correlation_id": self.correlation_id, "phase": fetch_name, "error": str(exc)},
                    exc_info=True,
                )
                summary.errors.append(
                    EscalationError(
                        entity_id=entity_id,
                        error_code=self.ERROR_LOOKUP_FAILED,
                        error_message=f"Could not load {fetch_name} deadlines: {exc}",
                    )
                )
                continue

            if deadlines:
                logger.info(
                    "escalation_deadlines_found",
                    extra={"correlation_id": self.correlation_id, "phase": fetch_name, "count": len(deadlines)},
                )

            for deadline in deadlines:
                summary.deadlines_seen += 1
                self._process_deadline(deadline, now, summary)

    def _process_deadline(self, deadline: SlaDeadline, now: datetime, summary: EscalationRunSummary) -> None:
        try:
            rule = self.store.get_rule(deadline.sla_rule_id) if deadline.sla_rule_id else None
        except Exception as exc:
            self._record_error(summary, deadline, self.ERROR_LOOKUP_FAILED, str(exc))
            return

        if rule is None:
            self._record_error(
                summary,
                deadline,
                self.ERROR_RULE_NOT_FOUND,
                f"SLA rule {deadline.sla_rule_id!r} not found",
            )
            return

        transition = plan_transition(deadline, rule, now)
        if transition is None:
            return

        try:
            self.store.save_deadline(transition.deadline)
        except Exception as exc:
            self._record_error(summary, deadline, self.ERROR_PERSIST_FAILED, str(exc))
            return

        notified = self._send_notices(transition, now, summary)

        if transition.kind == TransitionKind.WARN:
            summary.warnings_sent += 1
        elif transition.kind == TransitionKind.REMIND:
            summary.reminders_sent += 1
        else:
            summary.escalations_triggered += 1

        summary.outcomes.append(
            DeadlineOutcome(
                deadline_id=deadline.id,
                entity_type=deadline.entity_type,
                entity_id=deadline.entity_id,
                responsible_user_id=deadline.responsible_user_id,
                action=transition.kind.value,
                from_status=deadline.status,
                to_status=transition.deadline.status,
                reminders_sent=transition.deadline.reminders_sent,
                notified_user_ids=notified,
            )
        )

        logger.info(
            "sla_deadline_transitioned",
            extra={
                "correlation_id": self.correlation_id,
                "deadline_id": deadline.id,
                "action": transition.kind.value,
                "from_status": deadline.status,
                "to_status": transition.deadline.status,
            },
        )

        if transition.is_breach:
            summary.breaches_recorded += 1
            self._refresh_behavior(deadline.responsible_user_id, now, summary)

    def _send_notices(self, transition: Transition, now: datetime, summary: EscalationRunSummary) -> List[str]:
        deadline = transition.deadline

        if transition.broadcast_to_admins:
            try:
                recipients = self.store.get_user_ids_with_role(self.admin_role)
            except Exception as exc:
                summary.notification_failures += 1
                self._record_error(summary, deadline, self.ERROR_NOTIFY_FAILED, f"admin lookup failed: {exc}")
                return []
            if not recipients:
                logger.warning(
                    "escalation_without_admins",
                    extra={"correlation_id": self.correlation_id, "deadline_id": deadline.id},
                )
        else:
            recipients = [deadline.responsible_user_id]

        notified: List[str] = []
        for recipient_id in recipients:
            try:
                self.notifier.notify(
                    recipient_id,
                    transition.category,
                    transition.title,
                    transition.message,
                    related_type=deadline.entity_type,
                    related_id=deadline.entity_id,
                    created_at=now,
                )
                notified.append(recipient_id)
            except Exception as exc:
                # The transition is already committed; the notice is best effort
                summary.notification_failures += 1
                self._record_error(
                    summary, deadline, self.ERROR_NOTIFY_FAILED, str(exc), user_id=recipient_id
                )
        return notified

    # -------------------------------------------------------
    # BEHAVIOR SCORES
    # -------------------------------------------------------
    def _refresh_recent_completers(self, now: datetime, summary: EscalationRunSummary) -> None:
        try:
            user_ids = self.store.get_recent_completers(now - self.completion_lookback)
        except Exception as exc:
            logger.error(
                "escalation_completion_lookup_failed",
                extra={"correlation_id": self.correlation_id, "error": str(exc)},
                exc_info=True,
            )
            summary.errors.append(
                EscalationError(error_code=self.ERROR_LOOKUP_FAILED, error_message=str(exc))
            )
            return

        for user_id in user_ids:
            self._refresh_behavior(user_id, now, summary)

    def _refresh_behavior(self, user_id: str, now: datetime, summary: EscalationRunSummary) -> None:
        try:
            self.scorer.refresh(user_id, now)
            summary.behavior_scores_refreshed += 1
        except Exception as exc:
            logger.error(
                "behavior_score_refresh_failed",
                extra={"correlation_id": self.correlation_id, "user_id": user_id, "error": str(exc)},
                exc_info=True,
            )
            summary.errors.append(
                EscalationError(
                    user_id=user_id,
                    error_code=self.ERROR_BEHAVIOR_REFRESH_FAILED,
                    error_message=str(exc),
                )
            )

    # -------------------------------------------------------
    def _record_error(
        self,
        summary: EscalationRunSummary,
        deadline: SlaDeadline,
        error_code: str,
        message: str,
        *,
        user_id: Optional[str] = None,
    ) -> None:
        logger.error(
            "escalation_deadline_error",
            extra={
                "correlation_id": self.correlation_id,
                "deadline_id": deadline.id,
                "error_code": error_code,
                "error": message,
            },
        )
        summary.errors.append(
            EscalationError(
                deadline_id=deadline.id,
                entity_id=deadline.entity_id,
                user_id=user_id or deadline.responsible_user_id,
                error_code=error_code,
                error_message=message,
            )
        )
