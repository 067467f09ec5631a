"""
Usage log for plan quotas.

Usage "so far this month/day" is always derived by counting rows inside a
window; there is no stored running counter.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, Index, String

from push_automation.db_base import Base
from push_automation.models.base import TenantScopedMixin


class UsageFeature(str, enum.Enum):
    """Quota-consuming feature tags."""
    PUSH = "PUSH"
    SCHEDULED_PUSH = "SCHEDULED_PUSH"
    CART_RECOVERY = "CART_RECOVERY"


USAGE_FEATURE_ENUM = Enum(
    UsageFeature,
    name="usage_feature",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class UsageLogEntry(Base, TenantScopedMixin):
    """Immutable record of one quota-consuming action."""

    __tablename__ = "usage_log_entries"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    feature = Column(
        USAGE_FEATURE_ENUM,
        nullable=False,
        comment="Feature tag"
    )

    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the usage happened (UTC)"
    )

    __table_args__ = (
        Index("ix_usage_log_tenant_feature_time", "tenant_id", "feature", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageLogEntry(tenant_id={self.tenant_id}, feature={self.feature}, "
            f"occurred_at={self.occurred_at})>"
        )
