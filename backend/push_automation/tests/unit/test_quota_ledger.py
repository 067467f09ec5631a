"""
Tests for the quota ledger.

Tests cover:
- check_limit / record_usage round trip within a window
- Monthly and daily windows
- Free -> Pro upgrade with the same usage log
- Free-tier self-healing defaults
- Tenant isolation
"""

from datetime import datetime, timedelta, timezone

import pytest

from push_automation.entitlements import PlanTier
from push_automation.models.plan_limits import PlanLimits
from push_automation.models.usage_log import UsageFeature, UsageLogEntry
from push_automation.platform.errors import QuotaExceededError
from push_automation.services.plan_limits import PlanLimitsService
from push_automation.services.quota_ledger import QuotaLedger


@pytest.fixture
def ledger(db_session, plan_loader):
    return QuotaLedger(db_session, PlanLimitsService(db_session, plan_loader))


def _log_usage(ledger, tenant_id, feature, count, occurred_at):
    for _ in range(count):
        ledger.record_usage(tenant_id, feature, occurred_at=occurred_at)


class TestCheckAndRecord:
    """Tests for check_limit and record_usage."""

    @pytest.mark.parametrize("feature", list(UsageFeature))
    def test_recorded_usage_is_reflected_by_next_check(self, ledger, now, feature):
        before = ledger.check_limit("tenant-a", feature, now=now)
        ledger.record_usage("tenant-a", feature, occurred_at=now)
        after = ledger.check_limit("tenant-a", feature, now=now)

        assert after.used == before.used + 1
        assert after.remaining == before.remaining - 1

    def test_record_usage_does_not_recheck_limit(self, ledger, now):
        _log_usage(ledger, "tenant-a", UsageFeature.SCHEDULED_PUSH, 5, now)

        assert ledger.count_usage("tenant-a", UsageFeature.SCHEDULED_PUSH, now=now) == 5

    def test_push_limit_reached_then_upgrade(self, db_session, ledger, now, make_tenant_limits):
        """Free tenant at 20/20 pushes is blocked; after upgrading to Pro the same log passes."""
        make_tenant_limits("tenant-a", PlanTier.FREE)
        _log_usage(ledger, "tenant-a", UsageFeature.PUSH, 20, now)

        with pytest.raises(QuotaExceededError) as exc_info:
            ledger.check_limit("tenant-a", UsageFeature.PUSH, now=now)

        error = exc_info.value
        assert error.used == 20
        assert error.limit == 20
        assert error.status_code == 429
        assert error.message == "Monthly push limit reached (20/20). Upgrade to Pro."

        make_tenant_limits("tenant-a", PlanTier.PRO)
        check = ledger.check_limit("tenant-a", UsageFeature.PUSH, now=now)

        assert check.used == 20
        assert check.limit == 200

    def test_daily_cart_recovery_limit_message(self, ledger, now, make_tenant_limits):
        make_tenant_limits("tenant-a", PlanTier.FREE)
        _log_usage(ledger, "tenant-a", UsageFeature.CART_RECOVERY, 5, now)

        with pytest.raises(QuotaExceededError, match=r"Daily cart recovery limit reached \(5/5\)\."):
            ledger.check_limit("tenant-a", UsageFeature.CART_RECOVERY, now=now)

    def test_missing_limits_are_initialized_to_free(self, db_session, ledger, now):
        check = ledger.check_limit("tenant-new", UsageFeature.SCHEDULED_PUSH, now=now)

        assert check.limit == 2
        limits = db_session.query(PlanLimits).filter(PlanLimits.tenant_id == "tenant-new").one()
        assert limits.plan == "free"

    def test_other_tenants_usage_is_not_counted(self, ledger, now):
        _log_usage(ledger, "tenant-b", UsageFeature.PUSH, 20, now)

        check = ledger.check_limit("tenant-a", UsageFeature.PUSH, now=now)

        assert check.used == 0


class TestWindows:
    """Tests for quota windows."""

    def test_monthly_window_starts_on_the_first(self, ledger, now):
        assert ledger.window_start(UsageFeature.PUSH, now) == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert ledger.window_start(UsageFeature.SCHEDULED_PUSH, now) == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_daily_window_starts_at_midnight(self, ledger, now):
        assert ledger.window_start(UsageFeature.CART_RECOVERY, now) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_previous_month_usage_is_not_counted(self, ledger, now):
        ledger.record_usage("tenant-a", UsageFeature.PUSH, occurred_at=datetime(2026, 2, 28, 23, 59, tzinfo=timezone.utc))
        ledger.record_usage("tenant-a", UsageFeature.PUSH, occurred_at=datetime(2026, 3, 1, 0, 1, tzinfo=timezone.utc))

        assert ledger.count_usage("tenant-a", UsageFeature.PUSH, now=now) == 1

    def test_yesterdays_recoveries_are_not_counted(self, ledger, now):
        ledger.record_usage("tenant-a", UsageFeature.CART_RECOVERY, occurred_at=now - timedelta(days=1))
        ledger.record_usage("tenant-a", UsageFeature.CART_RECOVERY, occurred_at=now.replace(hour=0, minute=30))

        assert ledger.count_usage("tenant-a", UsageFeature.CART_RECOVERY, now=now) == 1

    def test_naive_datetimes_are_treated_as_utc(self, ledger, now):
        naive = now.replace(tzinfo=None)

        assert ledger.window_start(UsageFeature.PUSH, naive) == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_entries_are_immutable_rows(self, db_session, ledger, now):
        ledger.record_usage("tenant-a", UsageFeature.PUSH, occurred_at=now)
        ledger.record_usage("tenant-a", UsageFeature.PUSH, occurred_at=now)
        db_session.commit()

        assert db_session.query(UsageLogEntry).count() == 2
