"""
Read-side customer tables.

Owned by the customer-profile/session and push-registration subsystems;
the automation core only reads them (audience resolution, device tokens).
"""

import uuid

from sqlalchemy import Column, DateTime, Index, String

from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


class CustomerProfile(Base, TimestampMixin, TenantScopedMixin):
    """A storefront customer who has signed in at least once."""

    __tablename__ = "customer_profiles"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_customer_id = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True)

    __table_args__ = (
        Index("ix_customer_profiles_tenant_customer", "tenant_id", "shopify_customer_id", unique=True),
    )


class CustomerSession(Base, TimestampMixin, TenantScopedMixin):
    """A signed-in mobile session; unexpired sessions mark likely cart owners."""

    __tablename__ = "customer_sessions"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_customer_id = Column(String(255), nullable=False)
    customer_access_token = Column(String(255), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_customer_sessions_tenant_expiry", "tenant_id", "expires_at"),
        Index("ix_customer_sessions_tenant_token", "tenant_id", "customer_access_token"),
    )


class PushToken(Base, TimestampMixin, TenantScopedMixin):
    """A registered device push token, optionally linked to a customer."""

    __tablename__ = "push_tokens"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(512), nullable=False)
    platform = Column(String(20), nullable=True)
    shopify_customer_id = Column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_push_tokens_tenant_token", "tenant_id", "token", unique=True),
        Index("ix_push_tokens_tenant_customer", "tenant_id", "shopify_customer_id"),
    )
