# sla_store.py
"""
Persistence layer for the SLA escalation and deal health engine.
Stores workflow items, SLA rules, deadlines, platform events, user roles,
behavior snapshots, deal health snapshots and in-app notifications.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    create_engine,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from engine_config import SLA_DB_URL
from sla_models import (
    CLOSED_STATUSES,
    OPEN_STATUSES,
    SETTLED_STATUSES,
    BehaviorScore as BehaviorScoreModel,
    DealHealth as DealHealthModel,
    DeadlineStatus,
    Notification as NotificationModel,
    PlatformEvent as PlatformEventModel,
    SlaDeadline as SlaDeadlineModel,
    SlaRule as SlaRuleModel,
    WorkflowItem as WorkflowItemModel,
    ensure_utc,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class StoreError(RuntimeError):
    """Raised when a read or write against the store fails."""


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    # Columns hold naive UTC so comparisons behave the same on SQLite and Postgres
    value = ensure_utc(value)
    return value.replace(tzinfo=None) if value is not None else None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


# SQLAlchemy ORM Models

class DBWorkflowItem(Base):
    """Database model for submissions."""

    __tablename__ = "submissions"

    id = Column(String(255), primary_key=True)
    stage = Column(String(50), nullable=False, index=True)
    match_score = Column(Float, nullable=True)
    submitted_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    recruiter_id = Column(String(255), nullable=True)
    client_id = Column(String(255), nullable=True)
    job_id = Column(String(255), nullable=True)
    candidate_id = Column(String(255), nullable=True)


class DBSlaRule(Base):
    """Database model for SLA rules."""

    __tablename__ = "sla_rules"

    id = Column(String(255), primary_key=True)
    rule_name = Column(String(255), nullable=False)
    entity_type = Column(String(50), nullable=False)
    phase = Column(String(50), nullable=False)
    warning_hours = Column(Float, nullable=True)
    deadline_hours = Column(Float, nullable=False)
    warning_action = Column(String(50), default="notify")
    deadline_action = Column(String(50), default="remind")
    escalate_to = Column(String(255), nullable=True)
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    max_reminders = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_rule_entity_phase", "entity_type", "phase"),
    )


class DBSlaDeadline(Base):
    """Database model for SLA deadlines."""

    __tablename__ = "sla_deadlines"

    id = Column(String(255), primary_key=True)
    sla_rule_id = Column(String(255), nullable=True, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False, index=True)
    responsible_user_id = Column(String(255), nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    warning_at = Column(DateTime, nullable=True)
    deadline_at = Column(DateTime, nullable=False, index=True)
    status = Column(String(50), nullable=False, default="active", index=True)
    reminders_sent = Column(Integer, default=0)
    last_reminder_at = Column(DateTime, nullable=True)
    breached_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class DBPlatformEvent(Base):
    """Database model for platform activity events."""

    __tablename__ = "platform_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(255), nullable=True)
    user_id = Column(String(255), nullable=True)
    response_time_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("idx_event_entity", "entity_id", "created_at"),
        Index("idx_event_user", "user_id", "created_at"),
    )


class DBUserRole(Base):
    """Database model for user roles."""

    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(50), nullable=False, index=True)


class DBBehaviorScore(Base):
    """Database model for per-actor behavior snapshots."""

    __tablename__ = "user_behavior_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    user_type = Column(String(50), default="unknown")
    avg_response_time_hours = Column(Float, default=0.0)
    response_count = Column(Integer, default=0)
    ghost_rate = Column(Float, default=0.0)
    sla_compliance_rate = Column(Float, default=100.0)
    behavior_class = Column(String(50), default="neutral")
    risk_score = Column(Float, default=0.0)
    calculated_at = Column(DateTime, nullable=True)


class DBDealHealth(Base):
    """Database model for per-submission health snapshots."""

    __tablename__ = "deal_health"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(String(255), unique=True, nullable=False, index=True)
    health_score = Column(Integer, nullable=False)
    risk_level = Column(String(20), nullable=False)
    drop_off_probability = Column(Integer, nullable=False)
    days_since_last_activity = Column(Integer, nullable=False)
    bottleneck = Column(String(255), nullable=True)
    bottleneck_user_id = Column(String(255), nullable=True)
    bottleneck_days = Column(Integer, default=0)
    assessment = Column(Text, nullable=True)
    recommended_actions = Column(JSON, default=list)
    risk_factors = Column(JSON, default=list)
    calculated_at = Column(DateTime, nullable=False)


class DBNotification(Base):
    """Database model for in-app notifications."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_type = Column(String(50), nullable=True)
    related_id = Column(String(255), nullable=True)
    read = Column(Boolean, default=False)
    created_at = Column(DateTime, nullable=False)


# Row converters

def _item_from_row(row: DBWorkflowItem) -> WorkflowItemModel:
    return WorkflowItemModel(
        id=row.id,
        stage=row.stage,
        match_score=row.match_score,
        submitted_at=row.submitted_at,
        updated_at=row.updated_at,
        recruiter_id=row.recruiter_id,
        client_id=row.client_id,
        job_id=row.job_id,
        candidate_id=row.candidate_id,
    )


def _rule_from_row(row: DBSlaRule) -> SlaRuleModel:
    return SlaRuleModel(
        id=row.id,
        rule_name=row.rule_name,
        entity_type=row.entity_type,
        phase=row.phase,
        warning_hours=row.warning_hours,
        deadline_hours=row.deadline_hours,
        warning_action=row.warning_action or "notify",
        deadline_action=row.deadline_action or "remind",
        escalate_to=row.escalate_to,
        priority=row.priority or 0,
        is_active=bool(row.is_active),
        max_reminders=row.max_reminders,
    )


def _deadline_from_row(row: DBSlaDeadline) -> SlaDeadlineModel:
    return SlaDeadlineModel(
        id=row.id,
        sla_rule_id=row.sla_rule_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        responsible_user_id=row.responsible_user_id,
        started_at=row.started_at,
        warning_at=row.warning_at,
        deadline_at=row.deadline_at,
        status=row.status,
        reminders_sent=row.reminders_sent or 0,
        last_reminder_at=row.last_reminder_at,
        breached_at=row.breached_at,
        completed_at=row.completed_at,
    )


def _event_from_row(row: DBPlatformEvent) -> PlatformEventModel:
    return PlatformEventModel(
        id=row.id,
        event_type=row.event_type,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        user_id=row.user_id,
        response_time_seconds=row.response_time_seconds,
        created_at=row.created_at,
    )


def _behavior_from_row(row: DBBehaviorScore) -> BehaviorScoreModel:
    return BehaviorScoreModel(
        user_id=row.user_id,
        user_type=row.user_type or "unknown",
        avg_response_time_hours=row.avg_response_time_hours or 0.0,
        response_count=row.response_count or 0,
        ghost_rate=row.ghost_rate or 0.0,
        sla_compliance_rate=row.sla_compliance_rate if row.sla_compliance_rate is not None else 100.0,
        behavior_class=row.behavior_class or "neutral",
        risk_score=row.risk_score or 0.0,
        calculated_at=row.calculated_at,
    )


def _health_from_row(row: DBDealHealth) -> DealHealthModel:
    return DealHealthModel(
        submission_id=row.submission_id,
        health_score=row.health_score,
        risk_level=row.risk_level,
        drop_off_probability=row.drop_off_probability,
        days_since_last_activity=row.days_since_last_activity,
        bottleneck=row.bottleneck,
        bottleneck_user_id=row.bottleneck_user_id,
        bottleneck_days=row.bottleneck_days or 0,
        assessment=row.assessment or "",
        recommended_actions=row.recommended_actions or [],
        risk_factors=row.risk_factors or [],
        calculated_at=row.calculated_at,
    )


# Store

class SlaStore:
    """
    Deadline store adapter. Every public method opens its own session, so one
    record's failure never leaves another record half-written.
    """

    def __init__(self, db_url: Optional[str] = None):
        """
        Initialize the store.

        Args:
            db_url: Database connection URL (defaults to SLA_DB_URL)
        """
        if not db_url:
            db_url = SLA_DB_URL

        engine_kwargs: Dict[str, Any] = {"echo": False, "future": True}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in db_url:
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(db_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

        Base.metadata.create_all(self.engine)

        logger.info("sla_store_initialized", extra={"db_url": db_url})

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "sla_store_operation_failed",
                extra={"operation": operation, "error": str(exc)},
                exc_info=True,
            )
            raise StoreError(f"{operation} failed: {exc}") from exc
        finally:
            session.close()

    # Workflow Item Methods

    def upsert_item(self, item: WorkflowItemModel) -> None:
        with self._session("upsert_item") as session:
            row = session.get(DBWorkflowItem, item.id)
            if row is None:
                row = DBWorkflowItem(id=item.id)
                session.add(row)
            row.stage = item.stage
            row.match_score = item.match_score
            row.submitted_at = _to_db(item.submitted_at)
            row.updated_at = _to_db(item.updated_at)
            row.recruiter_id = item.recruiter_id
            row.client_id = item.client_id
            row.job_id = item.job_id
            row.candidate_id = item.candidate_id

    def get_item(self, item_id: str) -> Optional[WorkflowItemModel]:
        with self._session("get_item") as session:
            row = session.get(DBWorkflowItem, item_id)
            return _item_from_row(row) if row else None

    def list_items_by_stages(self, stages: List[str]) -> List[WorkflowItemModel]:
        """Items whose stage is one of `stages`, ordered by id."""
        with self._session("list_items_by_stages") as session:
            rows = (
                session.query(DBWorkflowItem)
                .filter(DBWorkflowItem.stage.in_(list(stages)))
                .order_by(DBWorkflowItem.id)
                .all()
            )
            return [_item_from_row(row) for row in rows]

    # SLA Rule Methods

    def upsert_rule(self, rule: SlaRuleModel) -> None:
        with self._session("upsert_rule") as session:
            row = session.get(DBSlaRule, rule.id)
            if row is None:
                row = DBSlaRule(id=rule.id)
                session.add(row)
            row.rule_name = rule.rule_name
            row.entity_type = rule.entity_type
            row.phase = rule.phase
            row.warning_hours = rule.warning_hours
            row.deadline_hours = rule.deadline_hours
            row.warning_action = rule.warning_action
            row.deadline_action = _enum_value(rule.deadline_action)
            row.escalate_to = rule.escalate_to
            row.priority = rule.priority
            row.is_active = rule.is_active
            row.max_reminders = rule.max_reminders

    def get_rule(self, rule_id: str) -> Optional[SlaRuleModel]:
        with self._session("get_rule") as session:
            row = session.get(DBSlaRule, rule_id)
            return _rule_from_row(row) if row else None

    def find_active_rule(self, entity_type: str, phase: str) -> Optional[SlaRuleModel]:
        """Highest-priority active rule for an entity type and phase."""
        with self._session("find_active_rule") as session:
            row = (
                session.query(DBSlaRule)
                .filter_by(entity_type=entity_type, phase=phase, is_active=True)
                .order_by(DBSlaRule.priority.desc(), DBSlaRule.id)
                .first()
            )
            return _rule_from_row(row) if row else None

    # Deadline Methods

    def add_deadline(self, deadline: SlaDeadlineModel) -> None:
        with self._session("add_deadline") as session:
            row = DBSlaDeadline(id=deadline.id)
            self._write_deadline(row, deadline)
            session.add(row)

    def save_deadline(self, deadline: SlaDeadlineModel) -> None:
        """Persist every mutable field of an existing deadline."""
        with self._session("save_deadline") as session:
            row = session.get(DBSlaDeadline, deadline.id)
            if row is None:
                raise StoreError(f"deadline {deadline.id} not found")
            self._write_deadline(row, deadline)

    @staticmethod
    def _write_deadline(row: DBSlaDeadline, deadline: SlaDeadlineModel) -> None:
        row.sla_rule_id = deadline.sla_rule_id
        row.entity_type = deadline.entity_type
        row.entity_id = deadline.entity_id
        row.responsible_user_id = deadline.responsible_user_id
        row.started_at = _to_db(deadline.started_at)
        row.warning_at = _to_db(deadline.warning_at)
        row.deadline_at = _to_db(deadline.deadline_at)
        row.status = _enum_value(deadline.status)
        row.reminders_sent = deadline.reminders_sent
        row.last_reminder_at = _to_db(deadline.last_reminder_at)
        row.breached_at = _to_db(deadline.breached_at)
        row.completed_at = _to_db(deadline.completed_at)

    def get_deadline(self, deadline_id: str) -> Optional[SlaDeadlineModel]:
        with self._session("get_deadline") as session:
            row = session.get(DBSlaDeadline, deadline_id)
            return _deadline_from_row(row) if row else None

    def get_deadlines_due_for_warning(
        self, now: datetime, entity_id: Optional[str] = None
    ) -> List[SlaDeadlineModel]:
        """Active deadlines whose warning time has passed but whose deadline has not."""
        now_db = _to_db(now)
        with self._session("get_deadlines_due_for_warning") as session:
            query = session.query(DBSlaDeadline).filter(
                DBSlaDeadline.status == DeadlineStatus.ACTIVE.value,
                DBSlaDeadline.warning_at.isnot(None),
                DBSlaDeadline.warning_at <= now_db,
                DBSlaDeadline.deadline_at > now_db,
            )
            if entity_id is not None:
                query = query.filter(DBSlaDeadline.entity_id == entity_id)
            rows = query.order_by(DBSlaDeadline.deadline_at, DBSlaDeadline.id).all()
            return [_deadline_from_row(row) for row in rows]

    def get_overdue_deadlines(
        self, now: datetime, entity_id: Optional[str] = None
    ) -> List[SlaDeadlineModel]:
        """Active or warned deadlines whose deadline time has passed."""
        now_db = _to_db(now)
        with self._session("get_overdue_deadlines") as session:
            query = session.query(DBSlaDeadline).filter(
                DBSlaDeadline.status.in_(sorted(OPEN_STATUSES)),
                DBSlaDeadline.deadline_at <= now_db,
            )
            if entity_id is not None:
                query = query.filter(DBSlaDeadline.entity_id == entity_id)
            rows = query.order_by(DBSlaDeadline.deadline_at, DBSlaDeadline.id).all()
            return [_deadline_from_row(row) for row in rows]

    def get_unfulfilled_deadlines(self, entity_id: str) -> List[SlaDeadlineModel]:
        """Every deadline of an entity that has been neither completed nor archived."""
        with self._session("get_unfulfilled_deadlines") as session:
            rows = (
                session.query(DBSlaDeadline)
                .filter(
                    DBSlaDeadline.entity_id == entity_id,
                    DBSlaDeadline.status.notin_(sorted(SETTLED_STATUSES)),
                )
                .order_by(DBSlaDeadline.deadline_at, DBSlaDeadline.id)
                .all()
            )
            return [_deadline_from_row(row) for row in rows]

    def get_recent_completers(self, since: datetime) -> List[str]:
        """Distinct actors with a deadline completed at or after `since`."""
        with self._session("get_recent_completers") as session:
            rows = (
                session.query(DBSlaDeadline.responsible_user_id)
                .filter(
                    DBSlaDeadline.status == DeadlineStatus.COMPLETED.value,
                    DBSlaDeadline.completed_at >= _to_db(since),
                )
                .distinct()
                .order_by(DBSlaDeadline.responsible_user_id)
                .all()
            )
            return [row[0] for row in rows]

    def count_deadline_outcomes(self, user_id: str) -> Dict[str, int]:
        """Counts of completed, breached and escalated deadlines for an actor."""
        counts = {status: 0 for status in CLOSED_STATUSES}
        with self._session("count_deadline_outcomes") as session:
            rows = (
                session.query(DBSlaDeadline.status, func.count(DBSlaDeadline.id))
                .filter(
                    DBSlaDeadline.responsible_user_id == user_id,
                    DBSlaDeadline.status.in_(sorted(CLOSED_STATUSES)),
                )
                .group_by(DBSlaDeadline.status)
                .all()
            )
            for status, count in rows:
                counts[status] = count
        return counts

    def complete_deadlines(self, entity_type: str, entity_id: str, completed_at: datetime) -> int:
        """Mark every open deadline of an entity as completed. Returns how many changed."""
        with self._session("complete_deadlines") as session:
            rows = (
                session.query(DBSlaDeadline)
                .filter(
                    DBSlaDeadline.entity_type == entity_type,
                    DBSlaDeadline.entity_id == entity_id,
                    DBSlaDeadline.status.in_(sorted(OPEN_STATUSES)),
                )
                .all()
            )
            for row in rows:
                row.status = DeadlineStatus.COMPLETED.value
                row.completed_at = _to_db(completed_at)
            return len(rows)

    def archive_deadlines_in_stages(
        self, stages: List[str], archived_at: datetime, entity_id: Optional[str] = None
    ) -> List[str]:
        """
        Archive the open deadlines of submissions sitting in one of `stages`.
        Breached and escalated records stay as they are for behavior scoring.
        Returns the archived deadline ids.
        """
        if not stages:
            return []
        with self._session("archive_deadlines_in_stages") as session:
            ended_items = select(DBWorkflowItem.id).where(DBWorkflowItem.stage.in_(stages))
            query = session.query(DBSlaDeadline).filter(
                DBSlaDeadline.entity_type == "submission",
                DBSlaDeadline.entity_id.in_(ended_items),
                DBSlaDeadline.status.in_(sorted(OPEN_STATUSES)),
            )
            if entity_id is not None:
                query = query.filter(DBSlaDeadline.entity_id == entity_id)
            rows = query.order_by(DBSlaDeadline.id).all()
            for row in rows:
                row.status = DeadlineStatus.ARCHIVED.value
                row.completed_at = _to_db(archived_at)
            return [row.id for row in rows]

    def archive_deadlines(self, entity_type: str, entity_id: str, archived_at: datetime) -> int:
        """Archive every open deadline of one entity. Returns how many changed."""
        with self._session("archive_deadlines") as session:
            rows = (
                session.query(DBSlaDeadline)
                .filter(
                    DBSlaDeadline.entity_type == entity_type,
                    DBSlaDeadline.entity_id == entity_id,
                    DBSlaDeadline.status.in_(sorted(OPEN_STATUSES)),
                )
                .all()
            )
            for row in rows:
                row.status = DeadlineStatus.ARCHIVED.value
                row.completed_at = _to_db(archived_at)
            return len(rows)

    # Platform Event Methods

    def append_event(self, event: PlatformEventModel) -> None:
        with self._session("append_event") as session:
            session.add(
                DBPlatformEvent(
                    event_type=event.event_type,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    user_id=event.user_id,
                    response_time_seconds=event.response_time_seconds,
                    created_at=_to_db(event.created_at),
                )
            )

    def get_recent_events(self, entity_id: str, limit: int = 20) -> List[PlatformEventModel]:
        """Latest events for an entity, most recent first."""
        with self._session("get_recent_events") as session:
            rows = (
                session.query(DBPlatformEvent)
                .filter_by(entity_id=entity_id)
                .order_by(DBPlatformEvent.created_at.desc(), DBPlatformEvent.id.desc())
                .limit(limit)
                .all()
            )
            return [_event_from_row(row) for row in rows]

    def get_response_times(self, user_id: str, limit: int = 50) -> List[float]:
        """Latest observed response latencies (seconds) for an actor, most recent first."""
        with self._session("get_response_times") as session:
            rows = (
                session.query(DBPlatformEvent.response_time_seconds)
                .filter(
                    DBPlatformEvent.user_id == user_id,
                    DBPlatformEvent.response_time_seconds.isnot(None),
                )
                .order_by(DBPlatformEvent.created_at.desc(), DBPlatformEvent.id.desc())
                .limit(limit)
                .all()
            )
            return [float(row[0]) for row in rows]

    # User Role Methods

    def set_user_role(self, user_id: str, role: str) -> None:
        with self._session("set_user_role") as session:
            row = session.query(DBUserRole).filter_by(user_id=user_id).first()
            if row:
                row.role = role
            else:
                session.add(DBUserRole(user_id=user_id, role=role))

    def get_user_role(self, user_id: str) -> Optional[str]:
        with self._session("get_user_role") as session:
            row = session.query(DBUserRole).filter_by(user_id=user_id).first()
            return row.role if row else None

    def get_user_ids_with_role(self, role: str) -> List[str]:
        with self._session("get_user_ids_with_role") as session:
            rows = (
                session.query(DBUserRole.user_id)
                .filter_by(role=role)
                .order_by(DBUserRole.user_id)
                .all()
            )
            return [row[0] for row in rows]

    # Behavior Score Methods

    def get_behavior_score(self, user_id: str) -> Optional[BehaviorScoreModel]:
        with self._session("get_behavior_score") as session:
            row = session.query(DBBehaviorScore).filter_by(user_id=user_id).first()
            return _behavior_from_row(row) if row else None

    def upsert_behavior_score(self, score: BehaviorScoreModel) -> None:
        """Replace the stored snapshot for the actor, creating it if needed."""
        with self._session("upsert_behavior_score") as session:
            row = session.query(DBBehaviorScore).filter_by(user_id=score.user_id).first()
            if row is None:
                row = DBBehaviorScore(user_id=score.user_id)
                session.add(row)
            row.user_type = score.user_type
            row.avg_response_time_hours = score.avg_response_time_hours
            row.response_count = score.response_count
            row.ghost_rate = score.ghost_rate
            row.sla_compliance_rate = score.sla_compliance_rate
            row.behavior_class = _enum_value(score.behavior_class)
            row.risk_score = score.risk_score
            row.calculated_at = _to_db(score.calculated_at)

    # Deal Health Methods

    def get_deal_health(self, submission_id: str) -> Optional[DealHealthModel]:
        with self._session("get_deal_health") as session:
            row = session.query(DBDealHealth).filter_by(submission_id=submission_id).first()
            return _health_from_row(row) if row else None

    def upsert_deal_health(self, health: DealHealthModel) -> None:
        """Replace the stored snapshot for the submission, creating it if needed."""
        with self._session("upsert_deal_health") as session:
            row = session.query(DBDealHealth).filter_by(submission_id=health.submission_id).first()
            if row is None:
                row = DBDealHealth(submission_id=health.submission_id)
                session.add(row)
            row.health_score = health.health_score
            row.risk_level = _enum_value(health.risk_level)
            row.drop_off_probability = health.drop_off_probability
            row.days_since_last_activity = health.days_since_last_activity
            row.bottleneck = health.bottleneck
            row.bottleneck_user_id = health.bottleneck_user_id
            row.bottleneck_days = health.bottleneck_days
            row.assessment = health.assessment
            row.recommended_actions = list(health.recommended_actions)
            row.risk_factors = list(health.risk_factors)
            row.calculated_at = _to_db(health.calculated_at)

    # Notification Methods

    def add_notification(self, notification: NotificationModel) -> None:
        with self._session("add_notification") as session:
            session.add(
                DBNotification(
                    user_id=notification.user_id,
                    type=notification.type,
                    title=notification.title,
                    message=notification.message,
                    related_type=notification.related_type,
                    related_id=notification.related_id,
                    created_at=_to_db(notification.created_at or datetime.now(timezone.utc)),
                )
            )

    def list_notifications(self, user_id: Optional[str] = None) -> List[NotificationModel]:
        """Notifications in insertion order, optionally for one recipient."""
        with self._session("list_notifications") as session:
            query = session.query(DBNotification)
            if user_id is not None:
                query = query.filter_by(user_id=user_id)
            rows = query.order_by(DBNotification.id).all()
            return [
                NotificationModel(
                    user_id=row.user_id,
                    type=row.type,
                    title=row.title,
                    message=row.message,
                    related_type=row.related_type,
                    related_id=row.related_id,
                    created_at=row.created_at,
                )
                for row in rows
            ]


# Global instance

_store: Optional[SlaStore] = None


def get_store() -> SlaStore:
    """Get global store instance (lazy initialization)."""
    global _store

    if _store is None:
        _store = SlaStore(db_url=SLA_DB_URL)

    return _store
