"""
Notification dispatcher contract.

The automation core never talks to a push transport directly. It hands a
DispatchTarget plus title/body/data to a NotificationDispatcher and gets a
DeliverySummary back, or a DispatchFailureError on total failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DispatchTarget:
    """
    Who a notification is for.

    customer_id=None means every registered device of the tenant.
    """
    tenant_id: str
    customer_id: Optional[str] = None

    @property
    def is_broadcast(self) -> bool:
        return self.customer_id is None


@dataclass
class DeliverySummary:
    """Outcome of one dispatch call."""
    attempted: int = 0
    succeeded: int = 0

    def to_dict(self) -> dict:
        return {"attempted": self.attempted, "succeeded": self.succeeded}


class NotificationDispatcher(ABC):
    """Delivers a message to devices."""

    @abstractmethod
    async def dispatch(
        self,
        target: DispatchTarget,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> DeliverySummary:
        """
        Deliver a notification.

        Raises:
            DispatchFailureError: nothing could be delivered
        """
