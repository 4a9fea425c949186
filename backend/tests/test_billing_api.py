"""
API tests for billing and account routes.

Verifies:
- Every route authenticates from the bearer token and ignores body user ids
- 401 responses carry a distinct failure kind
- Price ids are validated before Stripe is called
- Cancel and delete are rate limited per user
"""

import asyncio
import threading

import httpx
import pytest

from cortex.entitlements.tiers import Tier

from tests.fakes import ELITE_PRICE, FINANCE_PRO_PRICE, auth_headers, make_token


class TestAuthentication:

    def test_missing_header(self, client, billing):
        response = client.post("/api/cancel-subscription")

        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "AUTHENTICATION_ERROR"
        assert body["details"]["kind"] == "missing"
        assert billing.calls == []

    def test_malformed_header(self, client):
        response = client.post("/api/cancel-subscription", headers={"Authorization": "Token abc"})
        assert response.status_code == 401
        assert response.json()["details"]["kind"] == "malformed"

    def test_expired_token(self, client):
        token = make_token("user-1", expires_in=-10)
        response = client.post("/api/cancel-subscription", headers=auth_headers(token))
        assert response.status_code == 401
        assert response.json()["details"]["kind"] == "expired"

    def test_unknown_user(self, client):
        response = client.post("/api/cancel-subscription", headers=auth_headers(make_token("ghost")))
        assert response.status_code == 401
        assert response.json()["details"]["kind"] == "unknown_user"

    def test_identity_provider_down_is_500(self, client, identity):
        token = identity.add_user("user-1")
        identity.unavailable = True

        response = client.post("/api/cancel-subscription", headers=auth_headers(token))

        assert response.status_code == 500
        assert response.json()["code"] == "PROVIDER_ERROR"


class TestCreateUserRecord:

    def test_creates_free_profile(self, client, identity, db_session):
        from cortex.models.user_profile import UserProfile

        token = identity.add_user("user-1", "new@example.com")

        response = client.post("/api/create-user-record", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json() == {"success": True, "tier": "free"}
        profile = db_session.get(UserProfile, "user-1")
        assert profile.email == "new@example.com"

    def test_is_idempotent(self, client, identity, make_profile):
        make_profile("user-1", tier=Tier.ELITE)
        token = identity.add_user("user-1")

        first = client.post("/api/create-user-record", headers=auth_headers(token))
        second = client.post("/api/create-user-record", headers=auth_headers(token))

        assert first.json()["tier"] == "elite"
        assert second.json()["tier"] == "elite"

    def test_body_cannot_choose_user(self, client, identity, db_session):
        from cortex.models.user_profile import UserProfile

        token = identity.add_user("user-1")

        client.post(
            "/api/create-user-record",
            headers=auth_headers(token),
            json={"userId": "someone-else", "email": "evil@example.com"},
        )

        assert db_session.get(UserProfile, "someone-else") is None
        assert db_session.get(UserProfile, "user-1").email == "user-1@example.com"


class TestCheckout:

    def test_creates_session(self, client, identity, billing, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        response = client.post(
            "/api/create-checkout-session",
            headers=auth_headers(token),
            json={"priceId": FINANCE_PRO_PRICE},
        )

        assert response.status_code == 200
        assert response.json() == {
            "sessionId": "cs_test_1",
            "url": "https://checkout.stripe.test/cs_test_1",
        }
        assert billing.method_calls() == ["create_customer", "create_checkout_session"]

    def test_unknown_price_rejected_without_stripe_call(self, client, identity, billing, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        response = client.post(
            "/api/create-checkout-session",
            headers=auth_headers(token),
            json={"priceId": "price_not_for_sale"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert billing.calls == []

    def test_malformed_price_rejected(self, client, identity, billing, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        response = client.post(
            "/api/create-checkout-session",
            headers=auth_headers(token),
            json={"priceId": "prod_abc"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid price ID format"
        assert billing.calls == []

    def test_missing_price_field_is_400(self, client, identity):
        token = identity.add_user("user-1")

        response = client.post("/api/create-checkout-session", headers=auth_headers(token), json={})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_checkout_is_rate_limited_per_ip(self, client, identity, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")
        headers = {**auth_headers(token), "x-forwarded-for": "203.0.113.10"}

        statuses = [
            client.post("/api/create-checkout-session", headers=headers, json={"priceId": ELITE_PRICE}).status_code
            for _ in range(11)
        ]

        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429

    def test_unauthenticated_checkouts_count_against_ip_limit(self, client, billing):
        headers = {"x-forwarded-for": "203.0.113.20"}

        statuses = [
            client.post("/api/create-checkout-session", headers=headers, json={"priceId": ELITE_PRICE}).status_code
            for _ in range(11)
        ]

        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429
        assert billing.calls == []


class TestPortal:

    def test_no_customer_is_404(self, client, identity, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        response = client.post("/api/create-portal-session", headers=auth_headers(token))

        assert response.status_code == 404
        assert response.json()["error"] == "No subscription found"

    def test_returns_url(self, client, identity, make_profile):
        make_profile("user-1", stripe_customer_id="cus_1")
        token = identity.add_user("user-1")

        response = client.post("/api/create-portal-session", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json() == {"url": "https://billing.stripe.test/session/cus_1"}


class TestCancelSubscription:

    def test_ignores_body_user_id(self, client, identity, billing, make_profile):
        make_profile("user-1", tier=Tier.ELITE, stripe_customer_id="cus_1", stripe_subscription_id="sub_mine")
        make_profile("victim", tier=Tier.ELITE, stripe_customer_id="cus_2", stripe_subscription_id="sub_victim")
        token = identity.add_user("user-1")

        response = client.post(
            "/api/cancel-subscription",
            headers=auth_headers(token),
            json={"userId": "victim"},
        )

        assert response.status_code == 200
        assert billing.calls == [("cancel_subscription", "sub_mine")]

    def test_response_shape_and_rate_limit_headers(self, client, identity, make_profile):
        make_profile("user-1", tier=Tier.FINANCE_PRO)
        token = identity.add_user("user-1")

        response = client.post("/api/cancel-subscription", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "outcome": "no_subscription",
            "tier": "free",
            "subscription_status": "canceled",
        }
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_sixth_cancel_in_window_is_429(self, client, identity, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        for _ in range(5):
            assert client.post("/api/cancel-subscription", headers=auth_headers(token)).status_code == 200

        response = client.post("/api/cancel-subscription", headers=auth_headers(token))

        assert response.status_code == 429
        assert "Retry-After" in response.headers
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_provider_failure_is_500(self, client, identity, billing, make_profile):
        from cortex.integrations.stripe.billing_client import StripeBillingError

        make_profile("user-1", tier=Tier.ELITE, stripe_subscription_id="sub_1")
        billing.errors["cancel_subscription"] = StripeBillingError("api down", code="api_error")
        token = identity.add_user("user-1")

        response = client.post("/api/cancel-subscription", headers=auth_headers(token))

        assert response.status_code == 500
        assert response.json()["code"] == "PROVIDER_ERROR"

    @pytest.mark.asyncio
    async def test_slow_stripe_call_does_not_stall_other_requests(self, app, identity, billing, make_profile):
        make_profile("user-1", tier=Tier.ELITE, stripe_subscription_id="sub_1")
        token = identity.add_user("user-1")
        release = threading.Event()
        stripe_cancel = billing.cancel_subscription

        def slow_cancel(subscription_id):
            release.wait(timeout=5)
            return stripe_cancel(subscription_id)

        billing.cancel_subscription = slow_cancel

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            cancel = asyncio.create_task(http.post("/api/cancel-subscription", headers=auth_headers(token)))
            await asyncio.sleep(0.05)

            health = await asyncio.wait_for(http.get("/api/health"), timeout=2)

            assert health.status_code == 200
            assert not cancel.done()
            release.set()
            response = await cancel

        assert response.status_code == 200
        assert billing.calls == [("cancel_subscription", "sub_1")]


class TestDeleteAccount:

    def test_deletes_everything(self, client, identity, billing, make_profile, db_session):
        from cortex.models.user_profile import UserProfile

        make_profile("user-1", tier=Tier.ELITE, stripe_customer_id="cus_1", stripe_subscription_id="sub_1")
        token = identity.add_user("user-1")
        client.post(
            "/api/scenarios",
            headers=auth_headers(token),
            json={"tool_id": "budget", "tool_name": "Budget", "inputs": {"income": 5000}},
        )

        response = client.post("/api/delete-account", headers=auth_headers(token))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "subscription_canceled": True,
            "profile_deleted": True,
        }
        assert ("cancel_subscription", "sub_1") in billing.calls
        assert identity.deleted == ["user-1"]
        db_session.expire_all()
        assert db_session.get(UserProfile, "user-1") is None

    def test_deleting_profile_removes_scenarios(self, client, identity, make_profile, db_session):
        from sqlalchemy import func, select

        from cortex.models.scenario import Scenario

        make_profile("user-1")
        token = identity.add_user("user-1")
        client.post(
            "/api/scenarios",
            headers=auth_headers(token),
            json={"tool_id": "budget", "tool_name": "Budget", "inputs": {}},
        )

        client.post("/api/delete-account", headers=auth_headers(token))

        count = db_session.execute(
            select(func.count(Scenario.id)).where(Scenario.user_id == "user-1")
        ).scalar_one()
        assert count == 0

    def test_identity_failure_is_500(self, client, identity, make_profile):
        from cortex.platform.supabase_client import IdentityProviderError

        make_profile("user-1")
        token = identity.add_user("user-1")
        identity.delete_error = IdentityProviderError("admin api down")

        response = client.post("/api/delete-account", headers=auth_headers(token))

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to delete account"

    def test_ignores_body_user_id(self, client, identity, billing, make_profile, db_session):
        from cortex.models.user_profile import UserProfile

        make_profile("user-1", tier=Tier.FINANCE_PRO, stripe_customer_id="cus_1", stripe_subscription_id="sub_1")
        make_profile("user-2", tier=Tier.ELITE, stripe_customer_id="cus_2", stripe_subscription_id="sub_2")
        token = identity.add_user("user-1")

        response = client.post(
            "/api/delete-account",
            headers=auth_headers(token),
            json={"userId": "user-2"},
        )

        assert response.status_code == 200
        assert billing.calls == [("cancel_subscription", "sub_1")]
        assert identity.deleted == ["user-1"]
        db_session.expire_all()
        assert db_session.get(UserProfile, "user-1") is None
        other = db_session.get(UserProfile, "user-2")
        assert other.tier == Tier.ELITE
        assert other.stripe_subscription_id == "sub_2"
