"""
Database models for the automation core.

All tenant-owned models inherit from TenantScopedMixin.
Importing this package registers every table on Base.metadata.
"""

from push_automation.models.base import TimestampMixin, TenantScopedMixin
from push_automation.models.tenant import Tenant, TenantSubscription, SubscriptionStatus
from push_automation.models.plan_limits import PlanLimits
from push_automation.models.event_record import EventRecord, EventKind
from push_automation.models.automation_rule import (
    AutomationRule,
    AudienceSelector,
    CartRecoveryConfig,
    RuleConfig,
    RuleStatus,
    RuleType,
    ScheduledPushConfig,
    parse_rule_config,
)
from push_automation.models.automation_job import (
    AutomationJob,
    AutomationJobStatus,
    TERMINAL_STATUSES,
)
from push_automation.models.usage_log import UsageLogEntry, UsageFeature
from push_automation.models.customer import CustomerProfile, CustomerSession, PushToken

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "Tenant",
    "TenantSubscription",
    "SubscriptionStatus",
    "PlanLimits",
    "EventRecord",
    "EventKind",
    "AutomationRule",
    "AudienceSelector",
    "CartRecoveryConfig",
    "RuleConfig",
    "RuleStatus",
    "RuleType",
    "ScheduledPushConfig",
    "parse_rule_config",
    "AutomationJob",
    "AutomationJobStatus",
    "TERMINAL_STATUSES",
    "UsageLogEntry",
    "UsageFeature",
    "CustomerProfile",
    "CustomerSession",
    "PushToken",
]
