"""
Event recorder.

Appends every inbound event to the event log, then hands an
EvaluationTask to a task sink. The record is committed before the task is
handed off, so a failing (or never-run) evaluation cannot lose the event.

Task sinks:
- InlineEvaluationSink: evaluates on the recorder's own session (workers,
  tests)
- the API hands tasks to FastAPI BackgroundTasks with
  run_evaluation_task(), which opens its own session
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from push_automation.database.session import get_session_factory
from push_automation.models.base import as_utc
from push_automation.models.event_record import EventKind, EventRecord
from push_automation.platform.errors import ValidationError
from push_automation.services.rule_evaluator import EvaluationResult, RuleEvaluator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationTask:
    """A separately schedulable rule evaluation for one recorded event."""
    event_id: str
    tenant_id: str
    event_kind: EventKind
    customer_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None


TaskSink = Callable[[EvaluationTask], None]


def evaluate_task(db_session: Session, task: EvaluationTask) -> EvaluationResult:
    return RuleEvaluator(db_session).evaluate(
        task.tenant_id,
        task.event_kind,
        payload=task.payload,
        customer_id=task.customer_id,
        now=task.occurred_at,
        event_id=task.event_id,
    )


def run_evaluation_task(task: EvaluationTask, session_factory: Optional[sessionmaker] = None) -> None:
    """Run one evaluation task on a fresh session (background task entrypoint)."""
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        evaluate_task(session, task)
    except Exception as e:
        logger.error(
            "evaluation_task.failed",
            extra={"tenant_id": task.tenant_id, "event_id": task.event_id, "error": str(e)},
            exc_info=True,
        )
    finally:
        session.close()


class InlineEvaluationSink:
    """Evaluates tasks immediately on a given session."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def __call__(self, task: EvaluationTask) -> None:
        evaluate_task(self.db, task)


class EventRecorder:
    """Append-only event ingestion."""

    def __init__(self, db_session: Session, task_sink: Optional[TaskSink] = None):
        self.db = db_session
        self.task_sink = task_sink if task_sink is not None else InlineEvaluationSink(db_session)

    def record(
        self,
        tenant_id: str,
        event_kind: str,
        payload: Optional[Dict[str, Any]] = None,
        customer_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> EventRecord:
        """
        Append an event and schedule its rule evaluation.

        Args:
            tenant_id: Tenant ID
            event_kind: One of EventKind
            payload: Free-form event payload
            customer_id: Shopify customer ID, if the customer is identified
            occurred_at: Event time (defaults to now)

        Returns:
            The committed EventRecord

        Raises:
            ValidationError: unknown event kind or missing tenant
        """
        if not str(tenant_id or "").strip():
            raise ValidationError("tenant_id is required")
        try:
            kind = EventKind(event_kind)
        except ValueError:
            raise ValidationError(
                f"Unknown event kind: {event_kind}",
                details={"allowed": [k.value for k in EventKind]},
            )
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("payload must be an object")

        occurred_at = as_utc(occurred_at)
        event = EventRecord(
            tenant_id=tenant_id,
            kind=kind,
            customer_id=customer_id or None,
            payload=payload or {},
            created_at=occurred_at,
            updated_at=occurred_at,
        )
        self.db.add(event)
        self.db.commit()

        logger.info(
            "event.recorded",
            extra={
                "tenant_id": tenant_id,
                "event_id": event.id,
                "event_kind": kind.value,
                "has_customer": bool(customer_id),
            },
        )

        task = EvaluationTask(
            event_id=event.id,
            tenant_id=tenant_id,
            event_kind=kind,
            customer_id=customer_id or None,
            payload=dict(payload or {}),
            occurred_at=occurred_at,
        )
        try:
            self.task_sink(task)
        except Exception as e:
            logger.error(
                "event.evaluation_handoff_failed",
                extra={"tenant_id": tenant_id, "event_id": event.id, "error": str(e)},
                exc_info=True,
            )

        return event
