"""
Plan entitlements: tier definitions, capability flags and quota limits.

Plans are defined in config/plans.json and resolved per tenant into a
PlanLimits row (see push_automation.services.plan_limits).
"""

from push_automation.entitlements.models import (
    FEATURE_CART_RECOVERY,
    FEATURE_PRIORITY_JOBS,
    FEATURE_SCHEDULING,
    LIMIT_CART_RECOVERIES_PER_DAY,
    LIMIT_PUSH_CAMPAIGNS_PER_MONTH,
    LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH,
    PlanDefinition,
    PlansConfig,
    PlanTier,
)
from push_automation.entitlements.loader import PlanLoader, get_plan_loader

__all__ = [
    "FEATURE_CART_RECOVERY",
    "FEATURE_PRIORITY_JOBS",
    "FEATURE_SCHEDULING",
    "LIMIT_CART_RECOVERIES_PER_DAY",
    "LIMIT_PUSH_CAMPAIGNS_PER_MONTH",
    "LIMIT_SCHEDULED_CAMPAIGNS_PER_MONTH",
    "PlanDefinition",
    "PlansConfig",
    "PlanTier",
    "PlanLoader",
    "get_plan_loader",
]
