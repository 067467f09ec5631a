"""
Audience resolution for campaigns.

Resolves an AudienceSelector into the set of customer IDs a campaign
targets:
- all, logged_in: customers with a profile
- cart_owners: customers with a currently unexpired session

Also resolves a mobile customer access token to its customer through the
same unexpired-session lookup.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Set

from sqlalchemy.orm import Query, Session

from push_automation.models.automation_rule import AudienceSelector
from push_automation.models.customer import CustomerProfile, CustomerSession


class AudienceResolver(ABC):
    @abstractmethod
    def resolve(self, tenant_id: str, audience: AudienceSelector) -> Set[str]:
        """Return the de-duplicated customer IDs for the audience."""


class DatabaseAudienceResolver(AudienceResolver):
    """Resolves audiences from the customer profile and session tables."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _live_sessions(self, tenant_id: str, now: Optional[datetime] = None) -> Query:
        now = now or datetime.now(timezone.utc)
        return self.db.query(CustomerSession.shopify_customer_id).filter(
            CustomerSession.tenant_id == tenant_id,
            CustomerSession.expires_at > now,
        )

    def resolve(
        self,
        tenant_id: str,
        audience: AudienceSelector,
        now: Optional[datetime] = None,
    ) -> Set[str]:
        audience = AudienceSelector(audience)

        if audience == AudienceSelector.CART_OWNERS:
            rows = self._live_sessions(tenant_id, now).distinct().all()
        else:
            rows = (
                self.db.query(CustomerProfile.shopify_customer_id)
                .filter(CustomerProfile.tenant_id == tenant_id)
                .distinct()
                .all()
            )

        return {row[0] for row in rows if row[0]}

    def customer_for_access_token(
        self,
        tenant_id: str,
        access_token: Optional[str],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """
        Customer behind an unexpired session of this tenant.

        Returns:
            The Shopify customer ID, or None for a missing, unknown or
            expired token
        """
        if not access_token:
            return None
        row = (
            self._live_sessions(tenant_id, now)
            .filter(CustomerSession.customer_access_token == access_token)
            .first()
        )
        return row[0] if row else None
