"""
Immediate (merchant-initiated) push.

Checks the monthly PUSH quota, dispatches now, records one PUSH usage
entry and logs a PUSH_REQUESTED event with the delivery counts.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from push_automation.models.automation_rule import AudienceSelector
from push_automation.models.event_record import EventKind
from push_automation.models.usage_log import UsageFeature
from push_automation.platform.errors import DispatchFailureError, ValidationError
from push_automation.services.audience_resolver import AudienceResolver, DatabaseAudienceResolver
from push_automation.services.event_recorder import EventRecorder
from push_automation.services.notification_dispatcher import (
    DeliverySummary,
    DispatchTarget,
    NotificationDispatcher,
)
from push_automation.services.quota_ledger import QuotaLedger

logger = logging.getLogger(__name__)


@dataclass
class PushResult:
    targeted: int
    attempted: int
    succeeded: int

    def to_dict(self) -> dict:
        return {
            "targeted": self.targeted,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
        }


class ManualPushService:
    """Sends a push immediately on behalf of the merchant."""

    def __init__(
        self,
        db_session: Session,
        dispatcher: NotificationDispatcher,
        audience_resolver: Optional[AudienceResolver] = None,
        quota_ledger: Optional[QuotaLedger] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher
        self.audience_resolver = audience_resolver or DatabaseAudienceResolver(db_session)
        self.quota = quota_ledger or QuotaLedger(db_session)

    def _targets(self, tenant_id: str, audience: AudienceSelector) -> List[DispatchTarget]:
        if audience == AudienceSelector.ALL:
            return [DispatchTarget(tenant_id=tenant_id)]
        return [
            DispatchTarget(tenant_id=tenant_id, customer_id=customer_id)
            for customer_id in sorted(self.audience_resolver.resolve(tenant_id, audience))
        ]

    async def send_immediate_push(
        self,
        tenant_id: str,
        title: str,
        body: str,
        audience: str = AudienceSelector.ALL.value,
    ) -> PushResult:
        """
        Dispatch a push now.

        Audience "all" broadcasts to every registered device of the tenant;
        other audiences target each resolved customer.

        Raises:
            ValidationError: missing title/body or unknown audience
            QuotaExceededError: monthly push limit reached
            DispatchFailureError: every dispatch failed
        """
        title = (title or "").strip()
        body = (body or "").strip()
        if not title or not body:
            raise ValidationError("title and body are required")
        try:
            selector = AudienceSelector(audience or AudienceSelector.ALL.value)
        except ValueError:
            raise ValidationError(f"Unknown audience: {audience}")

        self.quota.check_limit(tenant_id, UsageFeature.PUSH)

        targets = self._targets(tenant_id, selector)
        total = DeliverySummary()
        failures = []
        for target in targets:
            try:
                summary = await self.dispatcher.dispatch(
                    target, title, body, data={"type": "manual_push"}
                )
            except DispatchFailureError as e:
                failures.append(e.message)
                continue
            total.attempted += summary.attempted
            total.succeeded += summary.succeeded

        if targets and len(failures) == len(targets):
            raise DispatchFailureError(
                "Push delivery failed for every target",
                details={"targets": len(targets), "errors": failures[:5]},
            )

        self.quota.record_usage(tenant_id, UsageFeature.PUSH)
        result = PushResult(
            targeted=len(targets),
            attempted=total.attempted,
            succeeded=total.succeeded,
        )

        # Commits the usage entry together with the event
        EventRecorder(self.db).record(
            tenant_id,
            EventKind.PUSH_REQUESTED,
            payload={"title": title, "audience": selector.value, **result.to_dict()},
        )

        logger.info(
            "manual_push.sent",
            extra={"tenant_id": tenant_id, "audience": selector.value, **result.to_dict()},
        )
        return result
