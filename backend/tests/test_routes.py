"""HTTP層のテスト (エラー形式・認証・Webhookエンドポイント)"""
import asyncio
import json
from datetime import timedelta

import pytest

from factories import make_event, sign_payload, stripe_subscription
from rentbook.core.exceptions import handle_subscription_error, ResourceLimitError
from rentbook.models.property import Property
from rentbook.routers.deps import require_resource
from rentbook.routers import health
from rentbook.services import subscription_service, webhook_service


class TestPlans:
    def test_list_plans(self, client):
        res = client.get("/api/plans")

        assert res.status_code == 200
        plans = res.json()
        assert [p["id"] for p in plans] == ["STARTER", "PRO", "BUSINESS"]
        assert plans[1]["popular"] is True
        assert plans[0]["limits"]["properties"] == 10


class TestAuthentication:
    def test_without_session_cookie(self, client):
        client.cookies.clear()

        res = client.get("/api/billing/subscription")

        assert res.status_code == 401

    def test_unknown_session(self, client):
        client.cookies.clear()
        client.cookies.set("session_id", "expired-session")

        res = client.get("/api/billing/subscription")

        assert res.status_code == 401


class TestSubscriptionEndpoints:
    def test_trial_subscription(self, client):
        res = client.get("/api/billing/subscription")

        assert res.status_code == 200
        body = res.json()
        assert body["status"] == "TRIAL"
        assert body["plan"] == "BUSINESS"
        assert body["trial_days_remaining"] == 14
        assert "custom_branding" in body["enabled_features"]

    def test_expired_trial_is_reported_as_unpaid(self, client, db, account):
        sub = subscription_service.get_subscription(db, account.id)
        sub.trial_ends_at = sub.trial_ends_at - timedelta(days=30)
        db.commit()

        res = client.get("/api/billing/subscription")

        assert res.json()["status"] == "UNPAID"

    def test_usage(self, client):
        res = client.get("/api/billing/usage")

        assert res.status_code == 200
        body = res.json()
        assert body["usage"]["api_calls"]["current_usage"] == 1
        assert body["usage"]["properties"]["limit"] == 999
        assert body["recommendation"]["should_upgrade"] is False


class TestBillingEndpoints:
    def test_checkout_without_customer(self, client, fake_stripe):
        res = client.post("/api/billing/checkout", json={"plan": "PRO", "billing_period": "monthly"})

        assert res.status_code == 500
        body = res.json()
        assert body["success"] is False
        assert body["code"] == "CHECKOUT_SESSION_FAILED"
        assert fake_stripe.calls == []

    def test_customer_then_checkout(self, client, fake_stripe):
        res = client.post("/api/billing/customer")
        assert res.json() == {"provider_customer_id": "cus_test_123"}

        res = client.post("/api/billing/checkout", json={"plan": "PRO", "billing_period": "yearly"})

        assert res.status_code == 200
        assert res.json()["session_url"].startswith("https://checkout.stripe.com/")
        [call] = fake_stripe.called("create_checkout_session")
        assert call["success_url"].startswith("http://testserver/billing/success")

    def test_invalid_plan(self, client, fake_stripe):
        client.post("/api/billing/customer")

        res = client.post("/api/billing/checkout", json={"plan": "ENTERPRISE"})

        assert res.status_code == 400
        assert res.json()["code"] == "INVALID_PLAN"
        assert res.json()["metadata"] == {"plan": "ENTERPRISE"}

    def test_invalid_billing_period(self, client, fake_stripe):
        res = client.post("/api/billing/checkout", json={"plan": "PRO", "billing_period": "weekly"})
        assert res.status_code == 422

    def test_foreign_redirect_url(self, client, fake_stripe):
        client.post("/api/billing/customer")

        res = client.post("/api/billing/checkout", json={
            "plan": "PRO", "success_url": "https://evil.example.com/steal",
        })

        assert res.status_code == 400
        assert fake_stripe.called("create_checkout_session") == []

    @pytest.mark.parametrize("url", [
        "https:evil.example/phish",
        "//evil.example/phish",
        "javascript:alert(1)",
    ])
    def test_redirect_url_must_share_site_origin(self, client, fake_stripe, url):
        client.post("/api/billing/customer")

        res = client.post("/api/billing/checkout", json={"plan": "PRO", "cancel_url": url})

        assert res.status_code == 400
        assert fake_stripe.called("create_checkout_session") == []

    def test_relative_redirect_url_is_resolved_against_site(self, client, fake_stripe):
        client.post("/api/billing/customer")

        res = client.post("/api/billing/portal", json={"return_url": "/settings/billing"})

        assert res.status_code == 200
        [call] = fake_stripe.called("create_billing_portal_session")
        assert call["return_url"] == "http://testserver/settings/billing"

    def test_portal_without_customer(self, client, fake_stripe):
        res = client.post("/api/billing/portal", json={})

        assert res.status_code == 404
        assert res.json()["code"] == "STRIPE_CUSTOMER_NOT_FOUND"

    def test_cancel_now(self, client, fake_stripe):
        res = client.post("/api/billing/cancel-now")

        assert res.status_code == 200
        assert res.json()["status"] == "CANCELED"

    def test_cancel_at_period_end_by_default(self, client, fake_stripe):
        res = client.post("/api/billing/cancel")

        assert res.status_code == 200
        assert res.json()["cancel_at_period_end"] is True
        assert res.json()["status"] == "TRIAL"


class TestStripeWebhookEndpoint:
    def _post(self, client, event, header=None):
        payload = json.dumps(event)
        return client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": header or sign_payload(payload), "content-type": "application/json"},
        )

    def test_invalid_signature(self, client, account):
        event = make_event("customer.subscription.updated", stripe_subscription(account.id))

        res = self._post(client, event, header="t=1,v1=deadbeef")

        assert res.status_code == 400
        assert res.json()["code"] == "WEBHOOK_SIGNATURE_INVALID"

    def test_subscription_updated(self, client, db, account):
        res = self._post(client, make_event("customer.subscription.updated", stripe_subscription(account.id)))

        assert res.status_code == 200
        assert res.json() == {"received": True}
        assert subscription_service.get_subscription(db, account.id).status == "ACTIVE"

    def test_processing_failure_asks_for_retry(self, client, account):
        res = self._post(client, make_event(
            "customer.subscription.updated", stripe_subscription(account.id, metadata={}),
        ))

        assert res.status_code == 500
        assert res.json()["received"] is False

    def test_failure_detail_is_not_returned(self, client, account, monkeypatch):
        def _boom(db, event):
            raise RuntimeError("OperationalError: connection to 10.0.0.5 refused")

        monkeypatch.setitem(webhook_service.WEBHOOK_HANDLERS, "customer.subscription.updated", _boom)

        res = self._post(client, make_event("customer.subscription.updated", stripe_subscription(account.id)))

        assert res.status_code == 500
        assert "10.0.0.5" not in res.text
        assert res.json()["error"] == "Webhookイベントの処理に失敗しました"

    def test_unknown_event(self, client):
        res = self._post(client, make_event("customer.created", {"id": "cus_1"}))
        assert res.status_code == 200


class TestErrorMapping:
    def test_typed_error(self):
        error = handle_subscription_error(ResourceLimitError("properties", 10, 10, "STARTER"))

        assert error["code"] == "RESOURCE_LIMIT_EXCEEDED"
        assert error["status_code"] == 403
        assert error["metadata"]["limit"] == 10

    def test_unknown_error_leaks_nothing(self):
        error = handle_subscription_error(ValueError("password=hunter2"))

        assert error["code"] == "INTERNAL_ERROR"
        assert error["status_code"] == 500
        assert error["metadata"] is None
        assert "hunter2" not in error["message"]

    def test_webhook_registry_matches_endpoint(self):
        assert webhook_service.is_webhook_event_supported("checkout.session.completed")


class TestHealth:
    def test_health(self, client, monkeypatch):
        async def _redis_ok():
            return True

        monkeypatch.setattr(health, "check_redis_connection", _redis_ok)

        res = client.get("/health")

        assert res.json() == {"status": "ok", "db": "connected", "redis": "connected", "plans": 3}


class TestRequireResource:
    def test_allows_within_limit(self, db, account):
        check = asyncio.run(require_resource("properties")(account_id=account.id, db=db))

        assert check.allowed is True
        assert check.limit == 999

    def test_rejects_at_limit(self, db, account):
        subscription_service.update_subscription_plan(db, account.id, "STARTER")
        for i in range(10):
            db.add(Property(account_id=account.id, name=f"物件{i}"))
        db.commit()

        with pytest.raises(ResourceLimitError):
            asyncio.run(require_resource("properties")(account_id=account.id, db=db))

    def test_inactive_account_is_logged_out(self, client, db, account):
        account.is_active = False
        db.commit()

        res = client.get("/api/billing/subscription")

        assert res.status_code == 401
