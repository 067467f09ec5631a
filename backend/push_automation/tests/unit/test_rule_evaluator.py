"""
Tests for the rule evaluator.

Tests cover:
- Cart recovery scheduling for CART_ABANDONED
- Anonymous carts, disabled capability, paused rules
- ORDER_CREATED cancellation matching (customer, cart key, both)
- Tenant and customer isolation of cancellations
- Failures are swallowed and rolled back
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from push_automation.jobs.scheduler import JobScheduler
from push_automation.models.automation_job import AutomationJob, AutomationJobStatus
from push_automation.models.automation_rule import (
    AutomationRule,
    CartRecoveryConfig,
    RuleStatus,
    RuleType,
    ScheduledPushConfig,
)
from push_automation.models.event_record import EventKind
from push_automation.models.plan_limits import PlanLimits
from push_automation.services.rule_evaluator import RuleEvaluator, cart_key_from_payload
from push_automation.services.rule_store import RuleStore
from push_automation.services.tenant_setup import TenantSetupService


TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@pytest.fixture
def tenants(db_session, plan_loader):
    """Two onboarded free-tier tenants, each with the default cart-recovery rule."""
    service = TenantSetupService(db_session, plan_loader)
    service.ensure_tenant(TENANT)
    service.ensure_tenant(OTHER_TENANT)
    return service


@pytest.fixture
def evaluator(db_session):
    return RuleEvaluator(db_session)


def _jobs(db_session, tenant_id=TENANT):
    return (
        db_session.query(AutomationJob)
        .filter(AutomationJob.tenant_id == tenant_id)
        .order_by(AutomationJob.created_at.asc())
        .all()
    )


def _default_rule(db_session, tenant_id=TENANT):
    return (
        db_session.query(AutomationRule)
        .filter(
            AutomationRule.tenant_id == tenant_id,
            AutomationRule.rule_type == RuleType.CART_RECOVERY,
        )
        .first()
    )


def _queue_recovery(db_session, tenant_id, customer_id, cart_id, now):
    job = JobScheduler(db_session).create_job(
        tenant_id,
        _default_rule(db_session, tenant_id),
        due_at=now + timedelta(minutes=30),
        customer_id=customer_id,
        correlation_key=cart_id,
    )
    db_session.commit()
    return job.id


def _status(db_session, job_id):
    db_session.expire_all()
    return db_session.get(AutomationJob, job_id).status


class TestCartKey:

    @pytest.mark.parametrize("payload,expected", [
        ({"cartId": "gid://shopify/Cart/1"}, "gid://shopify/Cart/1"),
        ({"cartToken": "abc"}, None),
        ({"cart_token": "abc", "cartId": "gid://shopify/Cart/2"}, "gid://shopify/Cart/2"),
        ({"cart_id": 42}, "42"),
        ({"cartId": ""}, None),
        ({}, None),
        (None, None),
    ])
    def test_cart_key_from_payload(self, payload, expected):
        assert cart_key_from_payload(payload) == expected


class TestCartAbandoned:
    """Tests for cart recovery scheduling."""

    def test_schedules_one_job_after_delay(self, db_session, tenants, evaluator, now):
        result = evaluator.evaluate(
            TENANT, EventKind.CART_ABANDONED, {"cartId": "cart-1"}, customer_id="cust-1", now=now
        )

        assert result.succeeded
        jobs = _jobs(db_session)
        assert len(jobs) == 1
        job = jobs[0]
        assert result.jobs_created == [job.id]
        assert job.status == AutomationJobStatus.QUEUED
        assert job.customer_id == "cust-1"
        assert job.correlation_key == "cart-1"
        assert job.rule_id == _default_rule(db_session).id
        # SQLite doesn't preserve timezone, so compare naive datetimes
        assert job.due_at.replace(tzinfo=None) == (now + timedelta(minutes=30)).replace(tzinfo=None)

    def test_anonymous_cart_creates_no_job(self, db_session, tenants, evaluator, now):
        result = evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {"cartId": "cart-1"}, now=now)

        assert result.succeeded
        assert result.jobs_created == []
        assert _jobs(db_session) == []

    def test_disabled_cart_recovery_creates_no_job(self, db_session, tenants, evaluator, now):
        limits = db_session.query(PlanLimits).filter(PlanLimits.tenant_id == TENANT).one()
        limits.cart_recovery_enabled = False
        db_session.commit()

        evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {}, customer_id="cust-1", now=now)

        assert _jobs(db_session) == []

    def test_paused_rule_is_ignored(self, db_session, tenants, evaluator, now):
        RuleStore(db_session).set_status(TENANT, _default_rule(db_session).id, RuleStatus.PAUSED)
        db_session.commit()

        evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {}, customer_id="cust-1", now=now)

        assert _jobs(db_session) == []

    def test_uses_rule_delay(self, db_session, tenants, evaluator, now):
        store = RuleStore(db_session)
        store.set_status(TENANT, _default_rule(db_session).id, RuleStatus.PAUSED)
        store.create_rule(TENANT, CartRecoveryConfig(delay_minutes=90))
        db_session.commit()

        evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {}, customer_id="cust-1", now=now)

        jobs = _jobs(db_session)
        assert len(jobs) == 1
        assert jobs[0].due_at.replace(tzinfo=None) == (now + timedelta(minutes=90)).replace(tzinfo=None)

    def test_malformed_rule_does_not_block_other_rules(self, db_session, tenants, evaluator, now):
        db_session.add(AutomationRule(
            tenant_id=TENANT,
            rule_type=RuleType.CART_RECOVERY,
            status=RuleStatus.ACTIVE,
            config={"delay_minutes": "later"},
        ))
        db_session.commit()

        result = evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {}, customer_id="cust-1", now=now)

        assert result.succeeded
        assert len(_jobs(db_session)) == 1

    @pytest.mark.parametrize("kind", [EventKind.CART_UPDATED, EventKind.ORDER_FULFILLED, EventKind.PUSH_REQUESTED])
    def test_other_events_create_no_jobs(self, db_session, tenants, evaluator, now, kind):
        evaluator.evaluate(TENANT, kind, {"cartId": "cart-1"}, customer_id="cust-1", now=now)

        assert _jobs(db_session) == []

    def test_reevaluating_same_event_creates_new_jobs(self, db_session, tenants, evaluator, now):
        for _ in range(2):
            evaluator.evaluate(
                TENANT, EventKind.CART_ABANDONED, {"cartId": "cart-1"},
                customer_id="cust-1", now=now, event_id="event-1",
            )

        assert len(_jobs(db_session)) == 2


class TestOrderCreated:
    """Tests for cart recovery cancellation on ORDER_CREATED."""

    def test_cancels_only_matching_customer_in_same_tenant(self, db_session, tenants, evaluator, now):
        target = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)
        other_customer = _queue_recovery(db_session, TENANT, "cust-2", "cart-2", now)
        other_tenant = _queue_recovery(db_session, OTHER_TENANT, "cust-1", "cart-1", now)

        result = evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {}, customer_id="cust-1", now=now)

        assert result.jobs_cancelled == 1
        assert _status(db_session, target) == AutomationJobStatus.CANCELLED
        assert _status(db_session, other_customer) == AutomationJobStatus.QUEUED
        assert _status(db_session, other_tenant) == AutomationJobStatus.QUEUED

        cancelled = db_session.get(AutomationJob, target)
        assert cancelled.result["reason"] == "order_created"
        assert cancelled.completed_at is not None

    def test_cancels_by_cart_key_only(self, db_session, tenants, evaluator, now):
        job_id = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)

        result = evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {"cartId": "cart-1"}, now=now)

        assert result.jobs_cancelled == 1
        assert _status(db_session, job_id) == AutomationJobStatus.CANCELLED

    def test_both_keys_must_match(self, db_session, tenants, evaluator, now):
        matching = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)
        other_cart = _queue_recovery(db_session, TENANT, "cust-1", "cart-2", now)

        evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {"cartId": "cart-1"}, customer_id="cust-1", now=now)

        assert _status(db_session, matching) == AutomationJobStatus.CANCELLED
        assert _status(db_session, other_cart) == AutomationJobStatus.QUEUED

    def test_no_keys_cancels_nothing(self, db_session, tenants, evaluator, now):
        job_id = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)

        result = evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {}, now=now)

        assert result.jobs_cancelled == 0
        assert _status(db_session, job_id) == AutomationJobStatus.QUEUED

    def test_shopify_order_cancels_by_customer(self, db_session, tenants, evaluator, now):
        evaluator.evaluate(
            TENANT,
            EventKind.CART_ABANDONED,
            {"cartId": "gid://shopify/Cart/abc123?key=k"},
            customer_id="42",
            now=now,
        )

        # orders/create carries the checkout cart_token, not the Storefront cart id
        result = evaluator.evaluate(
            TENANT,
            EventKind.ORDER_CREATED,
            {"orderId": 1, "cartToken": "abc123"},
            customer_id="42",
            now=now,
        )

        assert result.jobs_cancelled == 1
        job = db_session.query(AutomationJob).one()
        assert job.status == AutomationJobStatus.CANCELLED
        assert job.result == {"reason": "order_created"}

    def test_terminal_jobs_are_untouched(self, db_session, tenants, evaluator, now):
        job_id = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)
        job = db_session.get(AutomationJob, job_id)
        job.mark_completed({"attempted": 1, "succeeded": 1})
        db_session.commit()

        result = evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {}, customer_id="cust-1", now=now)

        assert result.jobs_cancelled == 0
        assert _status(db_session, job_id) == AutomationJobStatus.COMPLETED

    def test_campaign_jobs_are_not_cancelled(self, db_session, tenants, evaluator, now):
        scheduler = JobScheduler(db_session)
        campaign_rule = RuleStore(db_session).create_rule(TENANT, ScheduledPushConfig(title="Sale", body="Now"))
        campaign_job = scheduler.create_job(TENANT, campaign_rule, now + timedelta(hours=1), customer_id="cust-1")
        db_session.commit()

        evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {}, customer_id="cust-1", now=now)

        assert _status(db_session, campaign_job.id) == AutomationJobStatus.QUEUED

    def test_cancellation_runs_without_any_rules(self, db_session, tenants, evaluator, now):
        job_id = _queue_recovery(db_session, TENANT, "cust-1", "cart-1", now)
        RuleStore(db_session).set_status(TENANT, _default_rule(db_session).id, RuleStatus.PAUSED)
        db_session.commit()

        result = evaluator.evaluate(TENANT, EventKind.ORDER_CREATED, {}, customer_id="cust-1", now=now)

        assert result.jobs_cancelled == 1
        assert _status(db_session, job_id) == AutomationJobStatus.CANCELLED


class TestFailureIsolation:
    """Evaluation errors are logged, never raised."""

    def test_errors_are_swallowed_and_rolled_back(self, db_session, tenants, now):
        evaluator = RuleEvaluator(db_session)

        with patch.object(evaluator.scheduler, "create_job", side_effect=RuntimeError("db down")):
            result = evaluator.evaluate(TENANT, EventKind.CART_ABANDONED, {}, customer_id="cust-1", now=now)

        assert not result.succeeded
        assert result.error == "db down"
        assert result.jobs_created == []
        assert _jobs(db_session) == []

    def test_unknown_event_kind_is_reported_not_raised(self, db_session, tenants, evaluator, now):
        result = evaluator.evaluate(TENANT, "CHECKOUT_STARTED", {}, customer_id="cust-1", now=now)

        assert not result.succeeded
