"""Pydantic schemas for campaigns and manual pushes."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CampaignRequest(BaseModel):
    """Scheduled push campaign."""

    title: Optional[str] = Field(None, description="Notification title")
    body: Optional[str] = Field(None, description="Notification body")
    due_at: Optional[datetime] = Field(None, description="When the campaign is sent")
    audience: Optional[str] = Field(None, description="all, logged_in or cart_owners")


class CampaignResponse(BaseModel):
    rule_id: str = Field(..., description="Campaign rule ID")
    jobs_created: int = Field(..., description="Number of customers that will be notified")
    due_at: datetime = Field(..., description="When the campaign is sent")


class PushRequest(BaseModel):
    """Immediate push."""

    title: Optional[str] = Field(None, description="Notification title")
    body: Optional[str] = Field(None, description="Notification body")
    audience: str = Field("all", description="all, logged_in or cart_owners")


class PushResponse(BaseModel):
    targeted: int = Field(..., description="Dispatch targets (1 for a broadcast)")
    attempted: int = Field(..., description="Devices a message was sent to")
    succeeded: int = Field(..., description="Devices that accepted the message")
