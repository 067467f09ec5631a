"""
Resolved per-tenant plan limits and capability flags.

Derived deterministically from the tenant's plan tier (config/plans.json)
and overwritten, never versioned, whenever the plan changes. Exactly one
row per tenant.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


class PlanLimits(Base, TimestampMixin, TenantScopedMixin):
    """Quota configuration a tenant currently operates under."""

    __tablename__ = "plan_limits"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    plan = Column(
        String(50),
        nullable=False,
        comment="Effective plan tier the limits were derived from"
    )

    max_push_campaigns_per_month = Column(Integer, nullable=False)
    max_scheduled_campaigns_per_month = Column(Integer, nullable=False)
    max_cart_recoveries_per_day = Column(Integer, nullable=False)

    scheduling_enabled = Column(Boolean, nullable=False, default=False)
    cart_recovery_enabled = Column(Boolean, nullable=False, default=False)
    priority_jobs = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Tenant's due jobs are selected in the priority lane"
    )

    synced_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Last resync from plan definition"
    )

    __table_args__ = (
        Index("ix_plan_limits_tenant_unique", "tenant_id", unique=True),
        Index("ix_plan_limits_priority", "priority_jobs"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlanLimits(tenant_id={self.tenant_id}, plan={self.plan}, "
            f"priority_jobs={self.priority_jobs})>"
        )
