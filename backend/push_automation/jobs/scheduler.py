"""
Job scheduler.

Public entry point for creating and cancelling automation jobs.

- create_job(): inserts one queued job (used by the rule evaluator)
- create_campaign(): merchant-initiated scheduled push; gated by the
  scheduling capability flag and the monthly scheduled-campaign quota,
  fans out to one job per resolved customer and is charged once
- cancel_job() / cancel_cart_recovery_jobs(): queued -> cancelled as a
  conditional update; terminal jobs are left untouched

SECURITY: All operations are tenant-scoped.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from push_automation.models.automation_job import AutomationJob, AutomationJobStatus
from push_automation.models.automation_rule import (
    AudienceSelector,
    AutomationRule,
    RuleType,
    ScheduledPushConfig,
)
from push_automation.models.base import as_utc, utcnow
from push_automation.models.usage_log import UsageFeature
from push_automation.platform.errors import FeatureDisabledError, NotFoundError, ValidationError
from push_automation.services.audience_resolver import AudienceResolver, DatabaseAudienceResolver
from push_automation.services.plan_limits import PlanLimitsService
from push_automation.services.quota_ledger import QuotaLedger
from push_automation.services.rule_store import RuleStore

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_BODY_LENGTH = 2000


@dataclass
class CampaignResult:
    """Outcome of a campaign creation; jobs_created is "N customers will be notified"."""
    rule_id: str
    jobs_created: int
    due_at: datetime

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "jobs_created": self.jobs_created,
            "due_at": self.due_at.isoformat(),
        }


class JobScheduler:
    """Creates, cancels and reads automation jobs."""

    def __init__(
        self,
        db_session: Session,
        audience_resolver: Optional[AudienceResolver] = None,
        quota_ledger: Optional[QuotaLedger] = None,
        plan_limits: Optional[PlanLimitsService] = None,
    ):
        self.db = db_session
        self.plan_limits = plan_limits or PlanLimitsService(db_session)
        self.quota = quota_ledger or QuotaLedger(db_session, self.plan_limits)
        self.audience_resolver = audience_resolver or DatabaseAudienceResolver(db_session)
        self.rules = RuleStore(db_session)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_job(
        self,
        tenant_id: str,
        rule: AutomationRule,
        due_at: datetime,
        customer_id: Optional[str] = None,
        correlation_key: Optional[str] = None,
    ) -> AutomationJob:
        """
        Insert a queued job for a rule. Flushes, does not commit.

        Args:
            tenant_id: Tenant ID
            rule: Owning rule (must belong to the tenant)
            due_at: Earliest execution time
            customer_id: Target customer (None targets every tenant device)
            correlation_key: Key matched by cancelling events (e.g. cart ID)
        """
        if rule.tenant_id != tenant_id:
            raise NotFoundError("AutomationRule", rule.id)

        job = AutomationJob(
            tenant_id=tenant_id,
            rule_id=rule.id,
            customer_id=customer_id,
            correlation_key=correlation_key,
            due_at=as_utc(due_at),
            status=AutomationJobStatus.QUEUED,
        )
        self.db.add(job)
        self.db.flush()

        logger.info(
            "automation_job.created",
            extra={
                "tenant_id": tenant_id,
                "job_id": job.id,
                "rule_id": rule.id,
                "rule_type": rule.rule_type.value,
                "due_at": job.due_at.isoformat(),
            },
        )
        return job

    def create_campaign(
        self,
        tenant_id: str,
        title: str,
        body: str,
        due_at: Optional[datetime],
        audience: Optional[str],
    ) -> CampaignResult:
        """
        Schedule a push campaign.

        Creates one SCHEDULED_PUSH rule, one job per resolved customer and
        exactly one SCHEDULED_PUSH usage entry for the whole campaign.

        Raises:
            ValidationError: missing/invalid title, body, due time or audience
            FeatureDisabledError: scheduling not enabled for the plan
            QuotaExceededError: monthly scheduled campaign limit reached
        """
        title = (title or "").strip()
        body = (body or "").strip()
        if not title or not body:
            raise ValidationError("title and body are required")
        if len(title) > MAX_TITLE_LENGTH or len(body) > MAX_BODY_LENGTH:
            raise ValidationError(
                "title or body too long",
                details={"max_title_length": MAX_TITLE_LENGTH, "max_body_length": MAX_BODY_LENGTH},
            )
        if due_at is None:
            raise ValidationError("due_at is required")
        if not audience:
            raise ValidationError("audience is required")
        try:
            selector = AudienceSelector(audience)
        except ValueError:
            raise ValidationError(
                f"Unknown audience: {audience}",
                details={"allowed": [a.value for a in AudienceSelector]},
            )

        limits = self.plan_limits.get_or_initialize(tenant_id)
        if not limits.scheduling_enabled:
            raise FeatureDisabledError("scheduling", tenant_id=tenant_id)

        self.quota.check_limit(tenant_id, UsageFeature.SCHEDULED_PUSH)

        rule = self.rules.create_rule(
            tenant_id,
            ScheduledPushConfig(title=title, body=body, audience=selector),
        )
        customer_ids = sorted(self.audience_resolver.resolve(tenant_id, selector))
        for customer_id in customer_ids:
            self.create_job(tenant_id, rule, due_at, customer_id=customer_id)

        self.quota.record_usage(tenant_id, UsageFeature.SCHEDULED_PUSH)
        self.db.commit()

        logger.info(
            "campaign.scheduled",
            extra={
                "tenant_id": tenant_id,
                "rule_id": rule.id,
                "audience": selector.value,
                "jobs_created": len(customer_ids),
            },
        )
        return CampaignResult(rule_id=rule.id, jobs_created=len(customer_ids), due_at=as_utc(due_at))

    # =========================================================================
    # Cancellation
    # =========================================================================

    def cancel_job(self, tenant_id: str, job_id: str, reason: str = "cancelled") -> AutomationJob:
        """
        Cancel a queued job.

        Idempotent: a job that is already running or terminal is returned
        unchanged.

        Raises:
            NotFoundError: job does not exist for the tenant
        """
        job = self.get_job(tenant_id, job_id)

        updated = (
            self.db.query(AutomationJob)
            .filter(
                AutomationJob.id == job_id,
                AutomationJob.tenant_id == tenant_id,
                AutomationJob.status == AutomationJobStatus.QUEUED,
            )
            .update(
                {
                    AutomationJob.status: AutomationJobStatus.CANCELLED,
                    AutomationJob.completed_at: utcnow(),
                    AutomationJob.result: {"reason": reason},
                },
                synchronize_session=False,
            )
        )
        self.db.commit()

        if updated:
            logger.info(
                "automation_job.cancelled",
                extra={"tenant_id": tenant_id, "job_id": job_id, "reason": reason},
            )
        else:
            logger.debug(
                "automation_job.cancel_noop",
                extra={"tenant_id": tenant_id, "job_id": job_id},
            )

        self.db.refresh(job)
        return job

    def cancel_cart_recovery_jobs(
        self,
        tenant_id: str,
        customer_id: Optional[str] = None,
        correlation_key: Optional[str] = None,
        reason: str = "order_created",
    ) -> int:
        """
        Cancel queued cart-recovery jobs matching a customer and/or cart key.

        Whichever of customer_id / correlation_key is given must match; with
        both given, both must match. With neither, nothing is cancelled.
        Flushes, does not commit.

        Returns:
            Number of jobs cancelled
        """
        if not customer_id and not correlation_key:
            logger.info(
                "automation_job.cancel_skipped_no_match_key",
                extra={"tenant_id": tenant_id, "reason": reason},
            )
            return 0

        cart_recovery_rule_ids = select(AutomationRule.id).where(
            AutomationRule.tenant_id == tenant_id,
            AutomationRule.rule_type == RuleType.CART_RECOVERY,
        )

        query = self.db.query(AutomationJob).filter(
            AutomationJob.tenant_id == tenant_id,
            AutomationJob.status == AutomationJobStatus.QUEUED,
            AutomationJob.rule_id.in_(cart_recovery_rule_ids),
        )
        if customer_id:
            query = query.filter(AutomationJob.customer_id == customer_id)
        if correlation_key:
            query = query.filter(AutomationJob.correlation_key == correlation_key)

        result = {"reason": reason}
        if correlation_key:
            result["cart_id"] = correlation_key

        cancelled = query.update(
            {
                AutomationJob.status: AutomationJobStatus.CANCELLED,
                AutomationJob.completed_at: utcnow(),
                AutomationJob.result: result,
            },
            synchronize_session=False,
        )
        self.db.flush()

        logger.info(
            "automation_job.cart_recovery_cancelled",
            extra={
                "tenant_id": tenant_id,
                "customer_id": customer_id,
                "cart_id": correlation_key,
                "cancelled": cancelled,
            },
        )
        return cancelled

    # =========================================================================
    # Query Methods
    # =========================================================================

    def get_job(self, tenant_id: str, job_id: str) -> AutomationJob:
        """
        Get a tenant's job.

        Raises:
            NotFoundError: job does not exist for the tenant
        """
        job = (
            self.db.query(AutomationJob)
            .filter(
                AutomationJob.id == job_id,
                AutomationJob.tenant_id == tenant_id,
            )
            .first()
        )
        if job is None:
            raise NotFoundError("AutomationJob", job_id)
        return job

    def list_jobs(
        self,
        tenant_id: str,
        status: Optional[AutomationJobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AutomationJob]:
        """List a tenant's jobs, most recently due first."""
        query = self.db.query(AutomationJob).filter(AutomationJob.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(AutomationJob.status == AutomationJobStatus(status))
        return (
            query.order_by(AutomationJob.due_at.desc(), AutomationJob.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
