"""
Rule store: per-tenant automation rule definitions.

SECURITY: All operations are tenant-scoped.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from push_automation.models.automation_rule import (
    AutomationRule,
    CartRecoveryConfig,
    RuleConfig,
    RuleStatus,
    RuleType,
    ScheduledPushConfig,
)
from push_automation.platform.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_CONFIG_TYPES = {
    CartRecoveryConfig: RuleType.CART_RECOVERY,
    ScheduledPushConfig: RuleType.SCHEDULED_PUSH,
}


class RuleStore:
    """Holds automation rules for tenants."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def list_rules(self, tenant_id: str, status: Optional[RuleStatus] = None) -> List[AutomationRule]:
        """List a tenant's rules in a stable order (creation time, then id)."""
        query = self.db.query(AutomationRule).filter(AutomationRule.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(AutomationRule.status == status)
        return query.order_by(AutomationRule.created_at.asc(), AutomationRule.id.asc()).all()

    def list_active_rules(self, tenant_id: str) -> List[AutomationRule]:
        return self.list_rules(tenant_id, status=RuleStatus.ACTIVE)

    def get_rule(self, tenant_id: str, rule_id: str) -> AutomationRule:
        """
        Get a tenant's rule.

        Raises:
            NotFoundError: rule missing or owned by another tenant
        """
        rule = (
            self.db.query(AutomationRule)
            .filter(
                AutomationRule.tenant_id == tenant_id,
                AutomationRule.id == rule_id,
            )
            .first()
        )
        if rule is None:
            raise NotFoundError("AutomationRule", rule_id)
        return rule

    def create_rule(
        self,
        tenant_id: str,
        config: RuleConfig,
        status: RuleStatus = RuleStatus.ACTIVE,
    ) -> AutomationRule:
        """Create a rule whose type is implied by the config variant."""
        rule_type = _CONFIG_TYPES.get(type(config))
        if rule_type is None:
            raise ValidationError(f"Unsupported rule config: {type(config).__name__}")

        rule = AutomationRule(
            tenant_id=tenant_id,
            rule_type=rule_type,
            status=status,
            config=config.to_dict(),
        )
        self.db.add(rule)
        self.db.flush()

        logger.info(
            "automation_rule.created",
            extra={
                "tenant_id": tenant_id,
                "rule_id": rule.id,
                "rule_type": rule_type.value,
            },
        )
        return rule

    def set_status(self, tenant_id: str, rule_id: str, status: RuleStatus) -> AutomationRule:
        """Toggle a rule between ACTIVE and PAUSED."""
        rule = self.get_rule(tenant_id, rule_id)
        previous = rule.status
        rule.status = RuleStatus(status)
        self.db.flush()

        logger.info(
            "automation_rule.status_changed",
            extra={
                "tenant_id": tenant_id,
                "rule_id": rule_id,
                "from_status": previous.value if previous else None,
                "to_status": rule.status.value,
            },
        )
        return rule

    def create_default_rules(self, tenant_id: str) -> List[AutomationRule]:
        """
        Create the onboarding rule set (one cart-recovery rule).

        Idempotent: nothing is created if the tenant already has a
        cart-recovery rule.
        """
        existing = (
            self.db.query(AutomationRule)
            .filter(
                AutomationRule.tenant_id == tenant_id,
                AutomationRule.rule_type == RuleType.CART_RECOVERY,
            )
            .first()
        )
        if existing is not None:
            return []

        return [self.create_rule(tenant_id, CartRecoveryConfig())]
