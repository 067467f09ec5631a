"""
Append-only commerce event log.

The sole audit trail and the sole input to rule evaluation. Rows are never
updated or deleted.
"""

import enum
import uuid

from sqlalchemy import Column, Enum, Index, JSON, String
from sqlalchemy.dialects.postgresql import JSONB

from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


JSONType = JSON().with_variant(JSONB(), "postgresql")


class EventKind(str, enum.Enum):
    """Inbound event kinds accepted by the automation core."""
    CART_ABANDONED = "CART_ABANDONED"
    CART_UPDATED = "CART_UPDATED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_FULFILLED = "ORDER_FULFILLED"
    PUSH_REQUESTED = "PUSH_REQUESTED"


EVENT_KIND_ENUM = Enum(
    EventKind,
    name="event_kind",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class EventRecord(Base, TimestampMixin, TenantScopedMixin):
    """Immutable record of one inbound event."""

    __tablename__ = "event_records"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    kind = Column(
        EVENT_KIND_ENUM,
        nullable=False,
        comment="Event kind"
    )

    customer_id = Column(
        String(255),
        nullable=True,
        comment="Shopify customer correlation ID (absent for anonymous events)"
    )

    payload = Column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Free-form event payload"
    )

    __table_args__ = (
        Index("ix_event_records_tenant_kind", "tenant_id", "kind"),
        Index("ix_event_records_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventRecord(id={self.id}, tenant_id={self.tenant_id}, "
            f"kind={self.kind}, customer_id={self.customer_id})>"
        )
