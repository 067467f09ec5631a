"""
Plan limits resolution.

Resolves a tenant's PlanLimits row from the tier definitions in
config/plans.json. There is exactly one row per tenant; a resync
overwrites it in place.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from push_automation.entitlements import (
    FEATURE_CART_RECOVERY,
    FEATURE_PRIORITY_JOBS,
    FEATURE_SCHEDULING,
    LIMIT_CART_RECOVERIES_PER_DAY,
    LIMIT_PUSH_CAMPAIGNS_PER_MONTH,
    LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH,
    PlanLoader,
    PlanTier,
    get_plan_loader,
)
from push_automation.models.plan_limits import PlanLimits

logger = logging.getLogger(__name__)


class PlanLimitsService:
    """Reads and resyncs per-tenant plan limits."""

    def __init__(self, db_session: Session, loader: Optional[PlanLoader] = None):
        self.db = db_session
        self.loader = loader or get_plan_loader()

    def get(self, tenant_id: str) -> Optional[PlanLimits]:
        return (
            self.db.query(PlanLimits)
            .filter(PlanLimits.tenant_id == tenant_id)
            .first()
        )

    def get_or_initialize(self, tenant_id: str) -> PlanLimits:
        """
        Return the tenant's limits, initializing free-tier defaults if none exist.
        """
        limits = self.get(tenant_id)
        if limits is not None:
            return limits

        logger.info(
            "plan_limits.initialized_default",
            extra={"tenant_id": tenant_id, "plan": PlanTier.FREE.value},
        )
        return self.sync(tenant_id, PlanTier.FREE)

    def sync(self, tenant_id: str, tier: PlanTier) -> PlanLimits:
        """
        Overwrite the tenant's limits with the definition of the given tier.

        Args:
            tenant_id: Tenant ID
            tier: Effective plan tier

        Returns:
            The (single) PlanLimits row for the tenant
        """
        if not str(tenant_id or "").strip():
            raise ValueError("tenant_id is required")

        plan = self.loader.get_plan(PlanTier(tier).value)
        limits = self.get(tenant_id)
        if limits is None:
            limits = PlanLimits(tenant_id=tenant_id)
            self.db.add(limits)

        limits.plan = plan.plan_key
        limits.max_push_campaigns_per_month = plan.limit(LIMIT_PUSH_CAMPAIGNS_PER_MONTH)
        limits.max_scheduled_campaigns_per_month = plan.limit(LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH)
        limits.max_cart_recoveries_per_day = plan.limit(LIMIT_CART_RECOVERIES_PER_DAY)
        limits.scheduling_enabled = plan.has_feature(FEATURE_SCHEDULING)
        limits.cart_recovery_enabled = plan.has_feature(FEATURE_CART_RECOVERY)
        limits.priority_jobs = plan.has_feature(FEATURE_PRIORITY_JOBS)
        limits.synced_at = datetime.now(timezone.utc)
        self.db.flush()

        logger.info(
            "plan_limits.synced",
            extra={
                "tenant_id": tenant_id,
                "plan": plan.plan_key,
                "priority_jobs": limits.priority_jobs,
            },
        )
        return limits
