# main.py

from dotenv import load_dotenv
load_dotenv()

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid

from batch_jobs import cycle_history, evaluate_deal, run_deal_health_batch, run_escalation_cycle
from deal_health.deal_health_batch import ItemNotFoundError
from engine_config import (
    ENABLE_JOB_SCHEDULER,
    EVALUATION_INTERVAL_MINUTES,
    SLACK_OPS_BOT_TOKEN,
    SLACK_OPS_DEFAULT_CHANNEL_ID,
    is_slack_relay_enabled,
)
from escalation.deadline_lifecycle import handle_workflow_event
from sla_models import PlatformEvent
from sla_store import get_store
from slack_service import SlackClient, SlackNotifier


slack_logger = logging.getLogger("slack")


# Request Logging Middleware
request_logger = logging.getLogger("request_logging")

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        start_time = time.time()

        actor = "API"
        if request.url.path.startswith("/deal-health"):
            actor = "DealHealth"
        elif request.url.path.startswith("/run-escalation"):
            actor = "Escalation"
        elif request.url.path.startswith("/events"):
            actor = "Workflow"

        response = await call_next(request)

        latency_ms = (time.time() - start_time) * 1000

        request_logger.info(
            "request_completed",
            extra={
                "request_id": request_id,
                "endpoint": request.url.path,
                "method": request.method,
                "actor": actor,
                "status_code": response.status_code,
                "latency_ms": round(latency_ms, 2),
            }
        )

        return response


app = FastAPI()
app.add_middleware(RequestLoggingMiddleware)


if not is_slack_relay_enabled():
    slack_logger.warning("slack_relay_disabled_startup")

ops_slack_client = SlackClient(
    name="ops",
    bot_token=SLACK_OPS_BOT_TOKEN,
    default_channel=SLACK_OPS_DEFAULT_CHANNEL_ID,
)
slack_notifier: Optional[SlackNotifier] = (
    SlackNotifier(ops_client=ops_slack_client) if is_slack_relay_enabled() else None
)
# ------------------------------------------------------------------
# Scheduler setup
# ------------------------------------------------------------------
scheduler_logger = logging.getLogger("batch_scheduler")
scheduler = AsyncIOScheduler(timezone=timezone.utc)


def execute_deal_health_batch():
    return run_deal_health_batch(slack_notifier)


def execute_escalation_cycle():
    return run_escalation_cycle(slack_notifier)


def deal_health_interval_job():
    job_corr = "deal_health_interval_job"
    try:
        summary = execute_deal_health_batch()
        scheduler_logger.info(
            "deal_health_interval_job_complete",
            extra={"correlation_id": job_corr, **summary.to_logging_dict()},
        )
    except Exception as exc:  # pragma: no cover - defensive logging
        scheduler_logger.exception(
            "deal_health_interval_job_failed",
            extra={"correlation_id": job_corr, "error": str(exc)},
        )


def _register_scheduler_jobs() -> None:
    if not ENABLE_JOB_SCHEDULER:
        scheduler_logger.info("[Scheduler] ENABLE_JOB_SCHEDULER is false; skipping job registration.")
        return

    try:
        # max_instances=1 keeps a slow cycle from overlapping the next one
        scheduler.add_job(
            deal_health_interval_job,
            IntervalTrigger(minutes=EVALUATION_INTERVAL_MINUTES, timezone=timezone.utc),
            id="deal_health_interval_job",
            name="deal_health_interval_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    except Exception as exc:  # pragma: no cover - defensive logging
        scheduler_logger.error(
            "[Scheduler] Failed to register jobs; disabling scheduler for this run.",
            exc_info=True,
            extra={"error": str(exc)},
        )
        return


@app.on_event("startup")
async def start_scheduler() -> None:  # pragma: no cover - FastAPI lifecycle
    if not ENABLE_JOB_SCHEDULER:
        scheduler_logger.info("[Scheduler] ENABLE_JOB_SCHEDULER is false; skipping startup.")
        return

    _register_scheduler_jobs()
    if not scheduler.running:
        scheduler.start()
        scheduler_logger.info("job_scheduler_started", extra={"correlation_id": "scheduler"})


@app.on_event("shutdown")
async def stop_scheduler() -> None:  # pragma: no cover - FastAPI lifecycle
    if scheduler.running:
        scheduler.shutdown()


# ------------------------------------------------------------------
# Health check
# ------------------------------------------------------------------
def _healthy_response():
    return {"status": "ok"}


@app.get("/health")
def health():
    return _healthy_response()


@app.get("/healthz")
def healthz():
    return _healthy_response()


# ------------------------------------------------------------------
# Slack test endpoint
# ------------------------------------------------------------------
@app.get("/slack-test")
def slack_test():
    if slack_notifier is None:
        return {"status": "Slack relay not configured"}
    sent = slack_notifier.send_test_message()
    return {"status": "Slack test message sent" if sent else "Slack test message failed"}


# ------------------------------------------------------------------
# Deal health
# ------------------------------------------------------------------
@app.post("/deal-health/run-all")
def run_all_deal_health():
    return execute_deal_health_batch()


@app.get("/deal-health/summary")
def deal_health_summary():
    summary = cycle_history.latest_health_cycle()
    if summary is None:
        raise HTTPException(status_code=404, detail="No deal health cycle has run yet")
    return summary


@app.get("/deal-health/summary/history")
def deal_health_summary_history(limit: int = Query(5, ge=1, le=20)):
    cycles = cycle_history.recent_health_cycles(limit)
    return {
        "cycles": [cycle.to_logging_dict() for cycle in cycles],
        "at_risk_trend": cycle_history.at_risk_trend(),
    }


@app.post("/deal-health/{item_id}")
def evaluate_single_deal(item_id: str):
    try:
        return evaluate_deal(item_id)
    except ItemNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# ------------------------------------------------------------------
# Escalation
# ------------------------------------------------------------------
@app.post("/run-escalation")
def run_escalation():
    return execute_escalation_cycle()


# ------------------------------------------------------------------
# Workflow events
# ------------------------------------------------------------------
class WorkflowEventRequest(BaseModel):
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    response_time_seconds: Optional[float] = Field(None, ge=0)
    created_at: Optional[datetime] = None


@app.post("/events")
def record_workflow_event(payload: WorkflowEventRequest):
    event = PlatformEvent(
        **payload.model_dump(exclude={"created_at"}),
        created_at=payload.created_at or datetime.now(timezone.utc),
    )
    try:
        effect = handle_workflow_event(get_store(), event)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"event_type": event.event_type, "sla_effect": effect}
