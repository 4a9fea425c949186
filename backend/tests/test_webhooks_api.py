"""
Stripe webhook endpoint tests.

Signature verification is delegated to the billing provider; the fake accepts
only the literal signature "valid-signature".
"""

import json

from cortex.entitlements.tiers import Tier
from cortex.models.user_profile import UserProfile

from tests.fakes import ELITE_PRICE, FINANCE_PRO_PRICE


def _event(event_type, data_object, event_id="evt_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": data_object}}).encode()


def _subscription(sub_id="sub_1", status="active", price_id=FINANCE_PRO_PRICE, user_id="user-1"):
    return {
        "id": sub_id,
        "customer": "cus_1",
        "status": status,
        "metadata": {"userId": user_id},
        "items": {"data": [{"price": {"id": price_id}}]},
    }


def _post(client, payload, signature="valid-signature"):
    headers = {"stripe-signature": signature} if signature else {}
    return client.post("/api/webhooks/stripe", content=payload, headers=headers)


def test_invalid_signature_is_400(client, make_profile, db_session):
    make_profile("user-1")

    response = _post(client, _event("customer.subscription.updated", _subscription()), signature="forged")

    assert response.status_code == 400
    assert response.json()["error"] == "Webhook signature verification failed"
    assert db_session.get(UserProfile, "user-1").tier == Tier.FREE


def test_missing_signature_is_400(client):
    response = _post(client, _event("customer.subscription.updated", _subscription()), signature=None)
    assert response.status_code == 400


def test_subscription_updated_grants_tier(client, make_profile, db_session):
    make_profile("user-1")

    response = _post(client, _event("customer.subscription.updated", _subscription(price_id=ELITE_PRICE)))

    assert response.status_code == 200
    assert response.json() == {"received": True, "applied": True}
    profile = db_session.get(UserProfile, "user-1")
    assert profile.tier == Tier.ELITE
    assert profile.stripe_subscription_id == "sub_1"


def test_replayed_event_is_idempotent(client, make_profile, db_session):
    make_profile("user-1")
    payload = _event("customer.subscription.created", _subscription())

    _post(client, payload)
    response = _post(client, payload)

    assert response.status_code == 200
    assert db_session.get(UserProfile, "user-1").tier == Tier.FINANCE_PRO


def test_subscription_deleted_downgrades(client, make_profile, db_session):
    make_profile("user-1", tier=Tier.ELITE, subscription_status="active", stripe_subscription_id="sub_1")

    _post(client, _event("customer.subscription.deleted", _subscription(status="canceled")))

    profile = db_session.get(UserProfile, "user-1")
    assert profile.tier == Tier.FREE
    assert profile.subscription_status == "canceled"


def test_checkout_completed_syncs_subscription(client, billing, make_profile, db_session):
    from cortex.integrations.stripe.billing_client import SubscriptionSnapshot

    make_profile("user-1")
    billing.subscriptions["sub_new"] = SubscriptionSnapshot(
        id="sub_new", customer_id="cus_1", status="active", price_id=ELITE_PRICE
    )
    session = {"id": "cs_1", "customer": "cus_1", "subscription": "sub_new", "metadata": {"userId": "user-1"}}

    response = _post(client, _event("checkout.session.completed", session))

    assert response.status_code == 200
    profile = db_session.get(UserProfile, "user-1")
    assert profile.tier == Tier.ELITE
    assert profile.stripe_customer_id == "cus_1"


def test_unknown_event_type_acknowledged(client):
    response = _post(client, _event("invoice.payment_succeeded", {"id": "in_1"}))

    assert response.status_code == 200
    assert response.json() == {"received": True, "applied": False}


def test_event_for_unknown_customer_acknowledged(client):
    response = _post(
        client,
        _event("customer.subscription.updated", _subscription(user_id="nobody")),
    )

    assert response.status_code == 200
    assert response.json()["applied"] is False
