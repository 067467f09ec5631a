"""
Model mixins.

TimestampMixin: created_at / updated_at maintained Python-side so values
compare consistently on PostgreSQL and on SQLite (tests).

TenantScopedMixin: every tenant-owned row carries tenant_id.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, String


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC, None is now."""
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimestampMixin:
    """Adds created_at and updated_at columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Row creation time (UTC)"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        comment="Last modification time (UTC)"
    )


class TenantScopedMixin:
    """
    Adds tenant_id column.

    SECURITY: every query against a tenant-scoped model MUST filter by tenant_id.
    """

    tenant_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning tenant (merchant) ID"
    )
