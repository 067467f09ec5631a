"""
Tenant onboarding and subscription sync.

ensure_tenant() runs on app install / first event: it creates the tenant,
its free-tier limits and the default cart-recovery rule exactly once.

apply_subscription_update() handles plan/subscription change notifications
(Shopify app_subscriptions/update). Only an ACTIVE subscription keeps its
nominal plan; every other status resolves to free-tier limits.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from push_automation.entitlements import PlanLoader, PlanTier, get_plan_loader
from push_automation.models.plan_limits import PlanLimits
from push_automation.models.tenant import SubscriptionStatus, Tenant, TenantSubscription
from push_automation.platform.errors import NotFoundError, ValidationError
from push_automation.services.plan_limits import PlanLimitsService
from push_automation.services.rule_store import RuleStore

logger = logging.getLogger(__name__)


def effective_tier(tier: PlanTier, status: SubscriptionStatus) -> PlanTier:
    """Non-active subscriptions operate under free-tier limits."""
    if SubscriptionStatus(status) == SubscriptionStatus.ACTIVE:
        return PlanTier(tier)
    return PlanTier.FREE


class TenantSetupService:
    """Creates tenants and keeps their plan limits in sync with billing."""

    def __init__(self, db_session: Session, loader: Optional[PlanLoader] = None):
        self.db = db_session
        self.loader = loader or get_plan_loader()
        self.plan_limits = PlanLimitsService(db_session, self.loader)
        self.rules = RuleStore(db_session)

    def get_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            raise NotFoundError("Tenant", tenant_id)
        return tenant

    def get_tenant_by_shop(self, shop_domain: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.shop_domain == shop_domain).first()

    def ensure_tenant(self, tenant_id: Optional[str] = None, shop_domain: Optional[str] = None) -> Tenant:
        """
        Create the tenant and its defaults if missing.

        Args:
            tenant_id: Explicit tenant ID (generated if omitted)
            shop_domain: Shop's myshopify.com domain

        Returns:
            The existing or newly created Tenant
        """
        if not tenant_id and not shop_domain:
            raise ValidationError("tenant_id or shop_domain is required")

        tenant = None
        if tenant_id:
            tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None and shop_domain:
            tenant = self.get_tenant_by_shop(shop_domain)

        created = tenant is None
        if created:
            tenant = Tenant(id=tenant_id, shop_domain=shop_domain) if tenant_id else Tenant(shop_domain=shop_domain)
            self.db.add(tenant)
            self.db.flush()

        self.plan_limits.get_or_initialize(tenant.id)
        default_rules = self.rules.create_default_rules(tenant.id)
        self.db.commit()

        logger.info(
            "tenant.ensured",
            extra={
                "tenant_id": tenant.id,
                "shop_domain": tenant.shop_domain,
                "tenant_created": created,
                "default_rules_created": len(default_rules),
            },
        )
        return tenant

    def apply_subscription_update(
        self,
        tenant_id: str,
        plan_name: Optional[str],
        status: str,
        shopify_subscription_id: Optional[str] = None,
    ) -> PlanLimits:
        """
        Record a subscription change and resync the tenant's plan limits.

        Args:
            tenant_id: Tenant ID
            plan_name: Plan key or Shopify plan display name ("Pro")
            status: Shopify subscription status (ACTIVE, CANCELLED, ...)
            shopify_subscription_id: Shopify AppSubscription GID

        Returns:
            The resynced PlanLimits row
        """
        try:
            parsed_status = SubscriptionStatus(str(status).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown subscription status: {status}")

        tier = self.loader.resolve_tier(plan_name)

        subscription = (
            self.db.query(TenantSubscription)
            .filter(TenantSubscription.tenant_id == tenant_id)
            .first()
        )
        if subscription is None:
            subscription = TenantSubscription(tenant_id=tenant_id)
            self.db.add(subscription)

        subscription.plan = tier.value
        subscription.status = parsed_status
        if shopify_subscription_id:
            subscription.shopify_subscription_id = shopify_subscription_id

        limits = self.plan_limits.sync(tenant_id, effective_tier(tier, parsed_status))
        self.db.commit()

        logger.info(
            "subscription.updated",
            extra={
                "tenant_id": tenant_id,
                "plan": tier.value,
                "status": parsed_status.value,
                "effective_plan": limits.plan,
            },
        )
        return limits
