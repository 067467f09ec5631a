"""
Automation job model.

The unit of deferred work: one notification to one customer (or to every
device of the tenant), due at a given time.

Lifecycle:
    queued -> running -> completed | failed
    queued -> cancelled

running, completed, failed and cancelled are terminal with respect to
processor selection. A terminal job is never resurrected; re-triggering
means creating a new job.

rule_id is a weak reference: there is no foreign key, and a job whose rule
has disappeared fails with NotFound when executed.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Enum, Index, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from push_automation.db_base import Base
from push_automation.models.base import TimestampMixin, TenantScopedMixin


JSONType = JSON().with_variant(JSONB(), "postgresql")


class AutomationJobStatus(str, enum.Enum):
    """Automation job status values."""
    QUEUED = "queued"  # Waiting for its due time
    RUNNING = "running"  # Claimed by a sweep
    COMPLETED = "completed"  # Dispatcher returned a delivery summary
    FAILED = "failed"  # Quota, dispatch or configuration error
    CANCELLED = "cancelled"  # Cancelled while still queued


TERMINAL_STATUSES = frozenset({
    AutomationJobStatus.COMPLETED,
    AutomationJobStatus.FAILED,
    AutomationJobStatus.CANCELLED,
})


AUTOMATION_JOB_STATUS_ENUM = Enum(
    AutomationJobStatus,
    name="automation_job_status",
    create_constraint=True,
    metadata=Base.metadata,
    validate_strings=True,
    values_callable=lambda enum: [e.value for e in enum],
)


class AutomationJob(Base, TimestampMixin, TenantScopedMixin):
    """Scheduled notification job."""

    __tablename__ = "automation_jobs"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    rule_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Owning automation rule (weak reference, no FK)"
    )

    customer_id = Column(
        String(255),
        nullable=True,
        comment="Target Shopify customer; NULL targets every tenant device"
    )

    correlation_key = Column(
        String(255),
        nullable=True,
        comment="Opaque key (e.g. cart ID) matched by cancelling events"
    )

    due_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="Earliest time the job may run"
    )

    status = Column(
        AUTOMATION_JOB_STATUS_ENUM,
        nullable=False,
        default=AutomationJobStatus.QUEUED,
        comment="queued, running, completed, failed, cancelled"
    )

    executed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When a sweep claimed the job"
    )

    completed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the job reached a terminal state"
    )

    result = Column(
        JSONType,
        nullable=True,
        comment="Delivery summary, error or cancellation reason"
    )

    error_message = Column(
        Text,
        nullable=True,
        comment="Error message if job failed"
    )

    __table_args__ = (
        Index("ix_automation_jobs_status_due", "status", "due_at"),
        Index("ix_automation_jobs_tenant_status", "tenant_id", "status"),
        Index("ix_automation_jobs_tenant_customer", "tenant_id", "customer_id"),
        Index("ix_automation_jobs_tenant_correlation", "tenant_id", "correlation_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<AutomationJob(id={self.id}, tenant_id={self.tenant_id}, "
            f"rule_id={self.rule_id}, status={self.status}, due_at={self.due_at})>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_completed(self, result: Optional[dict] = None) -> None:
        """Mark job as completed successfully."""
        self.status = AutomationJobStatus.COMPLETED
        self.result = result or {}
        self.completed_at = datetime.now(timezone.utc)

    def mark_failed(self, error_message: str, result: Optional[dict] = None) -> None:
        """Mark job as failed."""
        self.status = AutomationJobStatus.FAILED
        self.error_message = error_message
        self.result = result or {"error": error_message}
        self.completed_at = datetime.now(timezone.utc)
