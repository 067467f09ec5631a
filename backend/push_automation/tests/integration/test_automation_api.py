"""
API tests for the automation routes.

The app runs against the shared in-memory database; the Expo dispatcher
is replaced by the in-memory FakeDispatcher from conftest.
"""

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from push_automation.api.dependencies import get_dispatcher, get_evaluation_session_factory
from push_automation.database.session import get_db_session
from push_automation.entitlements import PlanTier
from push_automation.main import create_app
from push_automation.models.automation_job import AutomationJob, AutomationJobStatus
from push_automation.models.customer import CustomerProfile, CustomerSession
from push_automation.models.event_record import EventKind, EventRecord
from push_automation.models.plan_limits import PlanLimits
from push_automation.services.tenant_setup import TenantSetupService


TENANT_ID = "tenant-api"
SHOP_DOMAIN = "api-store.myshopify.com"
WEBHOOK_SECRET = "whsec_api"
HEADERS = {"X-Tenant-ID": TENANT_ID}
CART_GID = "gid://shopify/Cart/c1-abc123?key=k1"


@pytest.fixture
def client(session_factory, dispatcher):
    app = create_app()

    def override_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_evaluation_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def tenant(db_session):
    tenant = TenantSetupService(db_session).ensure_tenant(TENANT_ID, shop_domain=SHOP_DOMAIN)
    db_session.add_all([
        CustomerProfile(tenant_id=TENANT_ID, shopify_customer_id="cust-1"),
        CustomerProfile(tenant_id=TENANT_ID, shopify_customer_id="cust-2"),
    ])
    db_session.commit()
    return tenant


@pytest.fixture
def signed_in(db_session):
    """Mobile sessions keyed by customer access token."""
    now = datetime.now(timezone.utc)
    db_session.add_all([
        CustomerSession(
            tenant_id=TENANT_ID,
            shopify_customer_id="cust-1",
            customer_access_token="token-cust-1",
            expires_at=now + timedelta(days=30),
        ),
        CustomerSession(
            tenant_id=TENANT_ID,
            shopify_customer_id="42",
            customer_access_token="token-42",
            expires_at=now + timedelta(days=30),
        ),
        CustomerSession(
            tenant_id=TENANT_ID,
            shopify_customer_id="cust-2",
            customer_access_token="token-expired",
            expires_at=now - timedelta(minutes=1),
        ),
        CustomerSession(
            tenant_id="tenant-other",
            shopify_customer_id="cust-9",
            customer_access_token="token-other-tenant",
            expires_at=now + timedelta(days=30),
        ),
    ])
    db_session.commit()


def _cart_abandoned(client, access_token, cart_id=CART_GID):
    return client.post(
        "/api/events",
        json={
            "kind": "CART_ABANDONED",
            "customer_access_token": access_token,
            "payload": {"cartId": cart_id},
        },
        headers=HEADERS,
    )


def _signed(payload):
    body = json.dumps(payload).encode("utf-8")
    digest = hmac.new(WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).digest()
    return body, base64.b64encode(digest).decode("utf-8")


def _webhook(client, path, payload, signature=None):
    body, computed = _signed(payload)
    with patch("push_automation.config.settings.SHOPIFY_API_SECRET", WEBHOOK_SECRET):
        return client.post(
            path,
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Shop-Domain": SHOP_DOMAIN,
                "X-Shopify-Hmac-Sha256": signature or computed,
            },
        )


def _jobs(db_session):
    db_session.expire_all()
    return db_session.query(AutomationJob).order_by(AutomationJob.created_at.asc()).all()


# ============================================================================
# EVENTS
# ============================================================================

class TestEvents:

    def test_cart_abandoned_schedules_recovery(self, client, db_session, signed_in):
        response = _cart_abandoned(client, "token-cust-1")

        assert response.status_code == 202
        data = response.json()
        assert data["kind"] == "CART_ABANDONED"
        event = db_session.get(EventRecord, data["event_id"])
        assert event.customer_id == "cust-1"

        # First event onboards the tenant with a default recovery rule
        jobs = _jobs(db_session)
        assert len(jobs) == 1
        assert jobs[0].customer_id == "cust-1"
        assert jobs[0].correlation_key == CART_GID
        assert jobs[0].status == AutomationJobStatus.QUEUED

    @pytest.mark.parametrize("access_token", ["token-expired", "token-unknown", "token-other-tenant", None])
    def test_unresolved_token_records_anonymous_event(self, client, db_session, signed_in, access_token):
        response = _cart_abandoned(client, access_token)

        assert response.status_code == 202
        event = db_session.get(EventRecord, response.json()["event_id"])
        assert event.customer_id is None
        assert _jobs(db_session) == []

    def test_client_supplied_customer_id_is_ignored(self, client, db_session, signed_in):
        response = client.post(
            "/api/events",
            json={"kind": "CART_ABANDONED", "customer_id": "cust-1", "payload": {"cartId": CART_GID}},
            headers=HEADERS,
        )

        assert response.status_code == 202
        event = db_session.get(EventRecord, response.json()["event_id"])
        assert event.customer_id is None
        assert _jobs(db_session) == []

    def test_order_created_cancels_recovery(self, client, db_session, signed_in):
        _cart_abandoned(client, "token-cust-1")

        client.post(
            "/api/events",
            json={
                "kind": "ORDER_CREATED",
                "customer_access_token": "token-cust-1",
                "payload": {"cartId": CART_GID},
            },
            headers=HEADERS,
        )

        job = _jobs(db_session)[0]
        assert job.status == AutomationJobStatus.CANCELLED
        assert job.result == {"reason": "order_created", "cart_id": CART_GID}

    def test_unknown_kind_is_rejected(self, client):
        response = client.post("/api/events", json={"kind": "CHECKOUT_STARTED"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert "X-Correlation-ID" in response.headers

    def test_blank_tenant_header_is_unauthorized(self, client):
        response = client.post("/api/events", json={"kind": "CART_UPDATED"}, headers={"X-Tenant-ID": " "})

        assert response.status_code == 401


# ============================================================================
# CAMPAIGNS AND PUSH
# ============================================================================

class TestCampaigns:

    def test_create_campaign(self, client, tenant):
        due_at = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()

        response = client.post(
            "/api/campaigns",
            json={"title": "Weekend sale", "body": "Starts now", "due_at": due_at, "audience": "all"},
            headers=HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["jobs_created"] == 2

    def test_campaign_quota_returns_429(self, client, tenant):
        due_at = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()
        body = {"title": "Sale", "body": "Now", "due_at": due_at, "audience": "all"}

        for _ in range(2):
            assert client.post("/api/campaigns", json=body, headers=HEADERS).status_code == 201
        response = client.post("/api/campaigns", json=body, headers=HEADERS)

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["message"] == "Monthly scheduled campaign limit reached (2/2). Upgrade to Pro."
        assert "X-Correlation-ID" in response.headers

    def test_scheduling_disabled_returns_403(self, client, db_session, tenant):
        limits = db_session.query(PlanLimits).filter(PlanLimits.tenant_id == TENANT_ID).one()
        limits.scheduling_enabled = False
        db_session.commit()

        response = client.post(
            "/api/campaigns",
            json={"title": "Sale", "body": "Now", "due_at": datetime.now(timezone.utc).isoformat(), "audience": "all"},
            headers=HEADERS,
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FEATURE_DISABLED"

    def test_missing_audience_returns_400(self, client, tenant):
        response = client.post(
            "/api/campaigns",
            json={"title": "Sale", "body": "Now", "due_at": datetime.now(timezone.utc).isoformat()},
            headers=HEADERS,
        )

        assert response.status_code == 400

    def test_immediate_push(self, client, db_session, tenant, dispatcher):
        response = client.post("/api/push", json={"title": "Hi", "body": "There"}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"targeted": 1, "attempted": 1, "succeeded": 1}
        assert db_session.query(EventRecord).filter(EventRecord.kind == EventKind.PUSH_REQUESTED).count() == 1

    def test_immediate_push_total_failure_returns_502(self, client, tenant, dispatcher):
        dispatcher.fail_all = True

        response = client.post("/api/push", json={"title": "Hi", "body": "There"}, headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "DISPATCH_FAILED"


# ============================================================================
# JOBS AND RULES
# ============================================================================

class TestJobs:

    @pytest.fixture
    def due_campaign(self, client, tenant):
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        response = client.post(
            "/api/campaigns",
            json={"title": "Sale", "body": "Now", "due_at": past, "audience": "logged_in"},
            headers=HEADERS,
        )
        assert response.status_code == 201
        return response.json()

    def test_process_runs_due_jobs(self, client, due_campaign, dispatcher):
        response = client.post("/api/jobs/process")

        assert response.status_code == 200
        assert response.json() == {"processed": 2, "completed": 2, "failed": 0, "skipped": 0}
        assert sorted(call["customer_id"] for call in dispatcher.calls) == ["cust-1", "cust-2"]

        jobs = client.get("/api/jobs", params={"status": "completed"}, headers=HEADERS).json()["jobs"]
        assert len(jobs) == 2
        assert jobs[0]["result"] == {"attempted": 1, "succeeded": 1}

    def test_process_requires_configured_token(self, client, due_campaign):
        with patch("push_automation.config.settings.JOB_SWEEP_TOKEN", "sweep-secret"):
            denied = client.post("/api/jobs/process")
            allowed = client.post("/api/jobs/process", headers={"X-Job-Sweep-Token": "sweep-secret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200

    def test_get_and_cancel_job(self, client, due_campaign):
        job_id = client.get("/api/jobs", headers=HEADERS).json()["jobs"][0]["id"]

        cancelled = client.post(f"/api/jobs/{job_id}/cancel", headers=HEADERS)
        again = client.post(f"/api/jobs/{job_id}/cancel", headers=HEADERS)
        fetched = client.get(f"/api/jobs/{job_id}", headers=HEADERS)

        assert cancelled.json()["status"] == "cancelled"
        assert cancelled.json()["result"] == {"reason": "merchant_cancelled"}
        assert again.status_code == 200
        assert fetched.json()["status"] == "cancelled"

    def test_other_tenant_cannot_see_job(self, client, due_campaign):
        job_id = client.get("/api/jobs", headers=HEADERS).json()["jobs"][0]["id"]

        response = client.get(f"/api/jobs/{job_id}", headers={"X-Tenant-ID": "tenant-other"})

        assert response.status_code == 404

    def test_unknown_status_filter(self, client, tenant):
        response = client.get("/api/jobs", params={"status": "exploded"}, headers=HEADERS)

        assert response.status_code == 400


class TestRules:

    def test_pause_default_rule(self, client, tenant):
        rules = client.get("/api/automation/rules", headers=HEADERS).json()["rules"]
        assert [rule["rule_type"] for rule in rules] == ["CART_RECOVERY"]

        response = client.patch(
            f"/api/automation/rules/{rules[0]['id']}",
            json={"status": "paused"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "PAUSED"

    def test_paused_rule_schedules_nothing(self, client, db_session, tenant, signed_in):
        rule_id = client.get("/api/automation/rules", headers=HEADERS).json()["rules"][0]["id"]
        client.patch(f"/api/automation/rules/{rule_id}", json={"status": "PAUSED"}, headers=HEADERS)

        _cart_abandoned(client, "token-cust-1")

        assert _jobs(db_session) == []

    def test_invalid_status(self, client, tenant):
        rule_id = client.get("/api/automation/rules", headers=HEADERS).json()["rules"][0]["id"]

        response = client.patch(f"/api/automation/rules/{rule_id}", json={"status": "DELETED"}, headers=HEADERS)

        assert response.status_code == 400


# ============================================================================
# SHOPIFY WEBHOOKS
# ============================================================================

class TestShopifyWebhooks:

    def test_order_created_cancels_customer_recovery(self, client, db_session, tenant, signed_in):
        _cart_abandoned(client, "token-42")
        assert _jobs(db_session)[0].status == AutomationJobStatus.QUEUED

        response = _webhook(
            client,
            "/webhooks/shopify/orders-create",
            {"id": 1001, "cart_token": "abc123", "total_price": "19.99", "currency": "USD", "customer": {"id": 42}},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
        job = _jobs(db_session)[0]
        assert job.status == AutomationJobStatus.CANCELLED
        assert job.result == {"reason": "order_created"}
        event = db_session.get(EventRecord, response.json()["event_id"])
        assert event.kind == EventKind.ORDER_CREATED
        assert event.customer_id == "42"
        assert event.payload == {"orderId": 1001, "cartToken": "abc123", "totalPrice": "19.99", "currency": "USD"}

    def test_guest_order_leaves_recovery_queued(self, client, db_session, tenant, signed_in):
        _cart_abandoned(client, "token-42")

        _webhook(client, "/webhooks/shopify/orders-create", {"id": 1002, "cart_token": "abc123"})

        assert _jobs(db_session)[0].status == AutomationJobStatus.QUEUED

    def test_invalid_signature_is_rejected(self, client, tenant):
        response = _webhook(client, "/webhooks/shopify/orders-create", {"id": 1}, signature="bogus")

        assert response.status_code == 401

    def test_unknown_shop_is_ignored(self, client):
        response = _webhook(client, "/webhooks/shopify/orders-create", {"id": 1})

        assert response.json() == {"status": "ignored"}

    def test_subscription_update_resyncs_limits(self, client, db_session, tenant):
        payload = {
            "app_subscription": {
                "name": "Pro",
                "status": "ACTIVE",
                "admin_graphql_api_id": "gid://shopify/AppSubscription/7",
            }
        }

        response = _webhook(client, "/webhooks/shopify/app-subscriptions-update", payload)

        assert response.json() == {"status": "processed", "plan": PlanTier.PRO.value}
        db_session.expire_all()
        limits = db_session.query(PlanLimits).filter(PlanLimits.tenant_id == TENANT_ID).one()
        assert limits.priority_jobs is True

    def test_cancelled_subscription_falls_back_to_free(self, client, db_session, tenant):
        payload = {"app_subscription": {"name": "Pro", "status": "CANCELLED"}}

        response = _webhook(client, "/webhooks/shopify/app-subscriptions-update", payload)

        assert response.json() == {"status": "processed", "plan": PlanTier.FREE.value}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
