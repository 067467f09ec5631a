"""Pydantic schemas for event ingestion."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventRequest(BaseModel):
    """Inbound mobile/storefront event."""

    kind: str = Field(..., description="CART_ABANDONED, CART_UPDATED, ORDER_CREATED, ORDER_FULFILLED or PUSH_REQUESTED")
    customer_access_token: Optional[str] = Field(
        None, description="Storefront customer access token of a signed-in customer"
    )
    payload: Dict[str, Any] = Field(default_factory=dict, description="Free-form event payload (e.g. cartId)")


class EventResponse(BaseModel):
    """Recorded event; rule evaluation runs after the response."""

    event_id: str = Field(..., description="Recorded event ID")
    kind: str = Field(..., description="Event kind")
    recorded_at: datetime = Field(..., description="When the event was recorded")
