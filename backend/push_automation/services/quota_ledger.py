"""
Quota ledger.

Usage is derived, never stored as a counter: the usage of a feature is the
number of UsageLogEntry rows inside the feature's window.

Windows:
- PUSH, SCHEDULED_PUSH: since the 1st of the current calendar month
- CART_RECOVERY: since midnight today

Both are computed in QUOTA_TIMEZONE.

check_limit() and record_usage() are deliberately separate calls with no
lock between them; concurrent callers may overshoot a limit by a small,
batch-bounded amount.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from push_automation.config.settings import QUOTA_TIMEZONE
from push_automation.models.base import as_utc
from push_automation.models.plan_limits import PlanLimits
from push_automation.models.usage_log import UsageFeature, UsageLogEntry
from push_automation.platform.errors import QuotaExceededError
from push_automation.services.plan_limits import PlanLimitsService

logger = logging.getLogger(__name__)

MONTHLY_FEATURES = frozenset({UsageFeature.PUSH, UsageFeature.SCHEDULED_PUSH})


@dataclass
class QuotaCheck:
    """Result of a passing quota check."""
    feature: UsageFeature
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


def _limit_for(limits: PlanLimits, feature: UsageFeature) -> int:
    if feature == UsageFeature.PUSH:
        return limits.max_push_campaigns_per_month
    if feature == UsageFeature.SCHEDULED_PUSH:
        return limits.max_scheduled_campaigns_per_month
    return limits.max_cart_recoveries_per_day


def _exceeded_message(feature: UsageFeature, used: int, limit: int) -> str:
    if feature == UsageFeature.PUSH:
        return f"Monthly push limit reached ({used}/{limit}). Upgrade to Pro."
    if feature == UsageFeature.SCHEDULED_PUSH:
        return f"Monthly scheduled campaign limit reached ({used}/{limit}). Upgrade to Pro."
    return f"Daily cart recovery limit reached ({used}/{limit})."


class QuotaLedger:
    """Per-tenant usage counting against plan-derived limits."""

    def __init__(
        self,
        db_session: Session,
        plan_limits: Optional[PlanLimitsService] = None,
        tz_name: str = QUOTA_TIMEZONE,
    ):
        self.db = db_session
        self.plan_limits = plan_limits or PlanLimitsService(db_session)
        self.tz = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)

    def window_start(self, feature: UsageFeature, now: Optional[datetime] = None) -> datetime:
        """Start of the feature's current window, as a UTC datetime."""
        local_now = as_utc(now).astimezone(self.tz)
        start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        if UsageFeature(feature) in MONTHLY_FEATURES:
            start = start.replace(day=1)
        return start.astimezone(timezone.utc)

    def count_usage(self, tenant_id: str, feature: UsageFeature, now: Optional[datetime] = None) -> int:
        """Number of usage entries for the feature inside its current window."""
        since = self.window_start(feature, now)
        return (
            self.db.query(func.count(UsageLogEntry.id))
            .filter(
                UsageLogEntry.tenant_id == tenant_id,
                UsageLogEntry.feature == UsageFeature(feature),
                UsageLogEntry.occurred_at >= since,
            )
            .scalar()
        ) or 0

    def check_limit(
        self,
        tenant_id: str,
        feature: UsageFeature,
        now: Optional[datetime] = None,
    ) -> QuotaCheck:
        """
        Check the tenant still has quota for the feature.

        Tenants without limits get free-tier defaults initialized first.

        Raises:
            QuotaExceededError: usage in window >= limit
        """
        feature = UsageFeature(feature)
        limits = self.plan_limits.get_or_initialize(tenant_id)
        limit = _limit_for(limits, feature)
        used = self.count_usage(tenant_id, feature, now)

        if used >= limit:
            logger.info(
                "quota.exceeded",
                extra={
                    "tenant_id": tenant_id,
                    "feature": feature.value,
                    "used": used,
                    "limit": limit,
                },
            )
            raise QuotaExceededError(
                feature=feature.value,
                used=used,
                limit=limit,
                message=_exceeded_message(feature, used, limit),
            )

        return QuotaCheck(feature=feature, used=used, limit=limit)

    def record_usage(
        self,
        tenant_id: str,
        feature: UsageFeature,
        occurred_at: Optional[datetime] = None,
    ) -> UsageLogEntry:
        """Append one usage entry. Does not re-check the limit."""
        entry = UsageLogEntry(
            tenant_id=tenant_id,
            feature=UsageFeature(feature),
            occurred_at=as_utc(occurred_at),
        )
        self.db.add(entry)
        self.db.flush()

        logger.debug(
            "quota.usage_recorded",
            extra={"tenant_id": tenant_id, "feature": entry.feature.value},
        )
        return entry
