"""
Event ingestion route.

The event is committed before the response; rule evaluation is handed to
FastAPI BackgroundTasks and never affects the response.

SECURITY: the customer is resolved from the customer access token against
an unexpired session of the same tenant, never taken from the request.
Unknown or expired tokens record an anonymous event.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session, sessionmaker

from push_automation.api.dependencies import get_evaluation_session_factory, get_tenant_id
from push_automation.api.schemas.events import EventRequest, EventResponse
from push_automation.database.session import get_db_session
from push_automation.services.audience_resolver import DatabaseAudienceResolver
from push_automation.services.event_recorder import EventRecorder, EvaluationTask, run_evaluation_task
from push_automation.services.tenant_setup import TenantSetupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("", response_model=EventResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_event(
    request_body: EventRequest,
    background_tasks: BackgroundTasks,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
    session_factory: sessionmaker = Depends(get_evaluation_session_factory),
):
    """Record an event and schedule its rule evaluation."""
    TenantSetupService(db_session).ensure_tenant(tenant_id)

    customer_id = DatabaseAudienceResolver(db_session).customer_for_access_token(
        tenant_id, request_body.customer_access_token
    )
    if request_body.customer_access_token and customer_id is None:
        logger.info("event.customer_unresolved", extra={"tenant_id": tenant_id})

    def enqueue(task: EvaluationTask) -> None:
        background_tasks.add_task(run_evaluation_task, task, session_factory)

    event = EventRecorder(db_session, task_sink=enqueue).record(
        tenant_id,
        request_body.kind,
        payload=request_body.payload,
        customer_id=customer_id,
    )

    return EventResponse(
        event_id=event.id,
        kind=event.kind.value,
        recorded_at=event.created_at,
    )
