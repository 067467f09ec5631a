"""Pydantic schemas for automation rules and jobs."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RuleResponse(BaseModel):
    id: str = Field(..., description="Rule ID")
    rule_type: str = Field(..., description="CART_RECOVERY or SCHEDULED_PUSH")
    status: str = Field(..., description="ACTIVE or PAUSED")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-specific configuration")
    created_at: datetime = Field(..., description="When the rule was created")

    class Config:
        from_attributes = True


class RuleListResponse(BaseModel):
    rules: List[RuleResponse] = Field(..., description="Tenant's rules")


class RuleStatusUpdate(BaseModel):
    status: str = Field(..., description="ACTIVE or PAUSED")


class JobResponse(BaseModel):
    id: str = Field(..., description="Job ID")
    rule_id: str = Field(..., description="Owning rule ID")
    customer_id: Optional[str] = Field(None, description="Target customer")
    correlation_key: Optional[str] = Field(None, description="Cart ID or other correlation key")
    status: str = Field(..., description="queued, running, completed, failed or cancelled")
    due_at: datetime = Field(..., description="Earliest execution time")
    executed_at: Optional[datetime] = Field(None, description="When a sweep claimed the job")
    completed_at: Optional[datetime] = Field(None, description="When the job became terminal")
    result: Optional[Dict[str, Any]] = Field(None, description="Delivery summary, error or cancellation reason")
    error_message: Optional[str] = Field(None, description="Error message if the job failed")

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    jobs: List[JobResponse] = Field(..., description="Tenant's jobs, most recently due first")


class SweepResponse(BaseModel):
    processed: int = Field(..., description="Jobs claimed and executed by this sweep")
    completed: int = Field(0, description="Jobs that completed")
    failed: int = Field(0, description="Jobs that failed")
    skipped: int = Field(0, description="Jobs claimed by a concurrent sweep")
