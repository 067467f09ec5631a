"""
Tenant (merchant) and subscription models.

A tenant is created on first setup/event and is never hard-deleted by the
automation core. Each tenant has at most one subscription row, overwritten
by Shopify app_subscriptions/update webhooks.
"""

import enum
import uuid

from sqlalchemy import Column, Enum, Index, String

from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


class SubscriptionStatus(str, enum.Enum):
    """Shopify AppSubscription status values."""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    FROZEN = "FROZEN"
    CANCELLED = "CANCELLED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class Tenant(Base, TimestampMixin):
    """A merchant account; the unit of data isolation."""

    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Opaque stable tenant ID"
    )

    shop_domain = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Shop's myshopify.com domain"
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, shop_domain={self.shop_domain})>"


class TenantSubscription(Base, TimestampMixin, TenantScopedMixin):
    """Current billing subscription of a tenant (one row per tenant)."""

    __tablename__ = "tenant_subscriptions"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    plan = Column(
        String(50),
        nullable=False,
        comment="Nominal plan tier (free, pro, enterprise)"
    )

    status = Column(
        Enum(
            SubscriptionStatus,
            name="tenant_subscription_status",
            validate_strings=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        comment="Shopify subscription status"
    )

    shopify_subscription_id = Column(
        String(255),
        nullable=True,
        comment="gid://shopify/AppSubscription/..."
    )

    __table_args__ = (
        Index("ix_tenant_subscriptions_tenant_unique", "tenant_id", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantSubscription(tenant_id={self.tenant_id}, plan={self.plan}, "
            f"status={self.status})>"
        )
