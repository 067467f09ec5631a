"""
Campaign and manual push routes.

FeatureDisabled (403), QuotaExceeded (429) and validation (400) errors are
surfaced so the merchant UI can show an actionable message.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from push_automation.api.dependencies import get_dispatcher, get_tenant_id
from push_automation.api.schemas.campaigns import (
    CampaignRequest,
    CampaignResponse,
    PushRequest,
    PushResponse,
)
from push_automation.database.session import get_db_session
from push_automation.jobs.scheduler import JobScheduler
from push_automation.services.manual_push import ManualPushService
from push_automation.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["campaigns"])


@router.post("/campaigns", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request_body: CampaignRequest,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
):
    """Schedule a push campaign for an audience."""
    result = JobScheduler(db_session).create_campaign(
        tenant_id,
        title=request_body.title,
        body=request_body.body,
        due_at=request_body.due_at,
        audience=request_body.audience,
    )
    return CampaignResponse(
        rule_id=result.rule_id,
        jobs_created=result.jobs_created,
        due_at=result.due_at,
    )


@router.post("/push", response_model=PushResponse)
async def send_push(
    request_body: PushRequest,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send a push immediately."""
    result = await ManualPushService(db_session, dispatcher).send_immediate_push(
        tenant_id,
        title=request_body.title,
        body=request_body.body,
        audience=request_body.audience,
    )
    return PushResponse(**result.to_dict())
