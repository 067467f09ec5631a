"""Automation rule routes (list, pause/resume)."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from push_automation.api.dependencies import get_tenant_id
from push_automation.api.schemas.automation import RuleListResponse, RuleResponse, RuleStatusUpdate
from push_automation.database.session import get_db_session
from push_automation.models.automation_rule import AutomationRule, RuleStatus
from push_automation.platform.errors import ValidationError
from push_automation.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automation/rules", tags=["automation"])


def _rule_to_response(rule: AutomationRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        rule_type=rule.rule_type.value,
        status=rule.status.value,
        config=rule.config or {},
        created_at=rule.created_at,
    )


@router.get("", response_model=RuleListResponse)
async def list_rules(
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
):
    rules = RuleStore(db_session).list_rules(tenant_id)
    return RuleListResponse(rules=[_rule_to_response(rule) for rule in rules])


@router.patch("/{rule_id}", response_model=RuleResponse)
async def update_rule_status(
    rule_id: str,
    request_body: RuleStatusUpdate,
    tenant_id: str = Depends(get_tenant_id),
    db_session: Session = Depends(get_db_session),
):
    """Pause or resume a rule."""
    try:
        new_status = RuleStatus(request_body.status.upper())
    except ValueError:
        raise ValidationError(
            f"Unknown rule status: {request_body.status}",
            details={"allowed": [s.value for s in RuleStatus]},
        )

    rule = RuleStore(db_session).set_status(tenant_id, rule_id, new_status)
    db_session.commit()
    return _rule_to_response(rule)
