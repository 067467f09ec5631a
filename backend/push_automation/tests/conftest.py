"""
Shared pytest fixtures for automation core tests.

Every test gets its own in-memory SQLite database. StaticPool keeps the
single connection alive across threads so the FastAPI TestClient and
background tasks see the same data.
"""

from datetime import datetime, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import push_automation.models  # noqa: F401  (registers tables)
from push_automation.db_base import Base
from push_automation.entitlements import PlanLoader, PlanTier
from push_automation.platform.errors import DispatchFailureError
from push_automation.services.notification_dispatcher import (
    DeliverySummary,
    DispatchTarget,
    NotificationDispatcher,
)
from push_automation.services.plan_limits import PlanLimitsService


# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """Create in-memory SQLite database session for testing."""
    session = session_factory()
    yield session
    session.close()


# ============================================================================
# PLANS AND TENANTS
# ============================================================================

@pytest.fixture
def plan_loader():
    """Plan definitions from the bundled config/plans.json."""
    return PlanLoader()


@pytest.fixture
def make_tenant_limits(db_session, plan_loader):
    """Sync a tenant's plan limits to a tier and commit."""

    def _make(tenant_id: str, tier: PlanTier = PlanTier.FREE):
        limits = PlanLimitsService(db_session, plan_loader).sync(tenant_id, tier)
        db_session.commit()
        return limits

    return _make


@pytest.fixture
def now():
    """Fixed mid-month instant for window arithmetic."""
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# NOTIFICATION DISPATCHER
# ============================================================================

class FakeDispatcher(NotificationDispatcher):
    """
    In-memory dispatcher.

    Records every call; raises DispatchFailureError for customers listed
    in fail_for (or for everyone when fail_all is set).
    """

    def __init__(self, devices_per_target: int = 1):
        self.devices_per_target = devices_per_target
        self.calls: List[dict] = []
        self.fail_all = False
        self.fail_for: set = set()

    async def dispatch(
        self,
        target: DispatchTarget,
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> DeliverySummary:
        self.calls.append({
            "tenant_id": target.tenant_id,
            "customer_id": target.customer_id,
            "title": title,
            "body": body,
            "data": data or {},
        })
        if self.fail_all or target.customer_id in self.fail_for:
            raise DispatchFailureError("Expo push delivery failed")
        return DeliverySummary(
            attempted=self.devices_per_target,
            succeeded=self.devices_per_target,
        )


@pytest.fixture
def dispatcher():
    return FakeDispatcher()
