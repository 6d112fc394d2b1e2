"""
Webhook tests: authentication before mutation, the idempotency ledger,
and checkout linkage for guests and existing users.
"""
import json

import pytest
from sqlmodel import select

from models.models import PaymentSession, Subscription, SubscriptionStatus, WebhookEvent


def _stripe_post(client, event, signature="valid"):
    return client.post(
        "/api/webhooks/stripe",
        content=json.dumps(event),
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def _stripe_checkout_event(event_id, session_id, **obj):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "customer_details": {"email": "buyer@example.com"}, **obj}},
    }


def _payment_session(session, session_id):
    session.expire_all()
    return session.exec(select(PaymentSession).where(PaymentSession.session_id == session_id)).one()


@pytest.fixture
def guest_checkout(client, plan):
    response = client.post(
        "/api/payments/stripe/create-checkout-guest",
        json={"plan_id": plan.id, "customer_email": "buyer@example.com"},
    )
    assert response.status_code == 200
    return response.json()["session_id"]


@pytest.fixture
def paypal_user_subscription(client, plan, reader_headers):
    response = client.post(
        "/api/payments/paypal/create-subscription",
        json={"plan_id": plan.id},
        headers=reader_headers,
    )
    assert response.status_code == 201
    return response.json()["session_id"]


# ----------------------------------------------------------------------
# Stripe
# ----------------------------------------------------------------------
def test_stripe_invalid_signature_is_rejected_without_mutation(client, session, guest_checkout):
    response = _stripe_post(client, _stripe_checkout_event("evt_1", guest_checkout), signature="forged")

    assert response.status_code == 400
    assert response.json()["error"] == "Webhook signature verification failed"
    assert _payment_session(session, guest_checkout).status == "pending"
    assert session.exec(select(WebhookEvent)).all() == []


def test_stripe_guest_checkout_completes_session_once(client, session, guest_checkout):
    event = _stripe_checkout_event("evt_1", guest_checkout, subscription="sub_123")

    first = _stripe_post(client, event)
    assert first.status_code == 200
    assert first.json() == {"received": True, "duplicate": False}

    ps = _payment_session(session, guest_checkout)
    assert ps.status == "completed"
    assert ps.subscription_id == "sub_123"
    token = ps.signup_token
    assert len(token) == 64

    replay = _stripe_post(client, event)
    assert replay.json() == {"received": True, "duplicate": True}
    assert _payment_session(session, guest_checkout).signup_token == token
    assert len(session.exec(select(WebhookEvent)).all()) == 1


def test_stripe_unhandled_event_is_acknowledged(client, session):
    response = _stripe_post(client, {"id": "evt_x", "type": "customer.created", "data": {"object": {}}})
    assert response.status_code == 200
    assert session.exec(select(WebhookEvent)).one().processed


def test_stripe_invoice_failure_then_payment_restores_subscription(client, session, reader, plan):
    session.add(Subscription(
        user_id=reader.id, pricing_plan_id=plan.id, provider="stripe", provider_subscription_id="sub_9",
        status=SubscriptionStatus.ACTIVE.value, amount=29.99,
    ))
    session.commit()

    _stripe_post(client, {"id": "evt_f", "type": "invoice.payment_failed", "data": {"object": {"subscription": "sub_9"}}})
    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.status == SubscriptionStatus.PAST_DUE.value
    assert sub.failed_payment_attempts == 1

    _stripe_post(client, {
        "id": "evt_p", "type": "invoice.payment_succeeded",
        "data": {"object": {"subscription": "sub_9", "amount_paid": 2999, "created": 1735689600}},
    })
    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.status == SubscriptionStatus.ACTIVE.value
    assert sub.failed_payment_attempts == 0
    assert sub.last_payment_amount == 29.99
    assert sub.next_billing_date.month == 2


# ----------------------------------------------------------------------
# PayPal
# ----------------------------------------------------------------------
def _paypal_event(event_id, event_type, **resource):
    return {"id": event_id, "event_type": event_type, "resource": resource}


def test_paypal_bad_signature_is_rejected_without_mutation(client, session, paypal_fake, paypal_user_subscription, reader, plan):
    paypal_fake.signature_valid = False
    event = _paypal_event("WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"{reader.id}|{plan.id}")

    response = client.post("/api/webhooks/paypal", json=event)

    assert response.status_code == 400
    assert session.exec(select(Subscription)).all() == []
    assert session.exec(select(WebhookEvent)).all() == []
    assert _payment_session(session, paypal_user_subscription).status == "pending"


def test_paypal_activation_links_existing_user(client, session, paypal_fake, paypal_user_subscription, reader, plan):
    assert paypal_fake.custom_ids == [f"{reader.id}|{plan.id}"]
    event = _paypal_event(
        "WH-1", "BILLING.SUBSCRIPTION.ACTIVATED",
        id="I-SUB1", custom_id=f"{reader.id}|{plan.id}",
        subscriber={"email_address": "reader@example.com"},
    )

    response = client.post("/api/webhooks/paypal", json=event)
    assert response.status_code == 200

    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.user_id == reader.id
    assert sub.status == SubscriptionStatus.ACTIVE.value
    assert sub.pricing_plan_id == plan.id
    assert sub.next_billing_date is not None

    ps = _payment_session(session, paypal_user_subscription)
    assert ps.status == "completed"
    assert ps.signup_completed
    session.refresh(reader)
    assert reader.subscription_status == "active"
    assert reader.subscription_plan_name == "Premium"


def test_paypal_payment_failed_replay_counts_once(client, session, paypal_user_subscription, reader, plan):
    client.post("/api/webhooks/paypal", json=_paypal_event(
        "WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"{reader.id}|{plan.id}",
    ))
    failed = _paypal_event("WH-2", "BILLING.SUBSCRIPTION.PAYMENT.FAILED", id="I-SUB1")

    assert client.post("/api/webhooks/paypal", json=failed).json()["duplicate"] is False
    assert client.post("/api/webhooks/paypal", json=failed).json()["duplicate"] is True

    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.failed_payment_attempts == 1
    assert sub.status == SubscriptionStatus.PAST_DUE.value


def test_paypal_cancellation(client, session, paypal_user_subscription, reader, plan):
    client.post("/api/webhooks/paypal", json=_paypal_event(
        "WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"{reader.id}|{plan.id}",
    ))
    client.post("/api/webhooks/paypal", json=_paypal_event("WH-3", "BILLING.SUBSCRIPTION.CANCELLED", id="I-SUB1"))

    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.status == SubscriptionStatus.CANCELED.value
    assert sub.canceled_at is not None
    session.refresh(reader)
    assert reader.subscription_status == SubscriptionStatus.CANCELED.value


def test_paypal_suspension_makes_subscription_inactive(client, session, paypal_user_subscription, reader, plan):
    client.post("/api/webhooks/paypal", json=_paypal_event(
        "WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"{reader.id}|{plan.id}",
    ))
    response = client.post("/api/webhooks/paypal", json=_paypal_event("WH-4", "BILLING.SUBSCRIPTION.SUSPENDED", id="I-SUB1"))

    assert response.status_code == 200
    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.status == SubscriptionStatus.INACTIVE.value
    assert sub.canceled_at is None
    assert not sub.is_active


def test_paypal_expiry_cancels_and_sets_end_date(client, session, paypal_user_subscription, reader, plan):
    client.post("/api/webhooks/paypal", json=_paypal_event(
        "WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"{reader.id}|{plan.id}",
    ))
    expired = _paypal_event("WH-5", "BILLING.SUBSCRIPTION.EXPIRED", id="I-SUB1")

    assert client.post("/api/webhooks/paypal", json=expired).json()["duplicate"] is False
    assert client.post("/api/webhooks/paypal", json=expired).json()["duplicate"] is True

    session.expire_all()
    sub = session.exec(select(Subscription)).one()
    assert sub.status == SubscriptionStatus.CANCELED.value
    assert sub.end_date is not None


def test_paypal_guest_activation_waits_for_signup(client, session, plan):
    created = client.post(
        "/api/payments/paypal/create-subscription-guest",
        json={"plan_id": plan.id, "customer_email": "guest@example.com"},
    ).json()
    session_id = created["session_id"]

    client.post("/api/webhooks/paypal", json=_paypal_event(
        "WH-9", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", custom_id=f"session_{session_id}",
    ))

    ps = _payment_session(session, session_id)
    assert ps.status == "completed"
    assert ps.signup_token
    assert session.exec(select(Subscription)).all() == []


def test_paypal_invalid_payload(client):
    assert client.post("/api/webhooks/paypal", json={"event_type": "X"}).status_code == 400


# ----------------------------------------------------------------------
# RupantorPay
# ----------------------------------------------------------------------
@pytest.fixture
def rupantor_order(client, plan):
    response = client.post(
        "/api/payments/rupantor/create-session",
        json={"plan_id": plan.id, "customer_email": "buyer@example.com", "customer_name": "Buyer"},
    )
    assert response.status_code == 200
    return response.json()["session_id"]


def test_rupantor_completion_is_reverified_and_idempotent(client, session, rupantor_fake, rupantor_order):
    rupantor_fake.verification = {
        "success": True, "order_id": rupantor_order, "amount": 29.99,
        "customer_email": "buyer@example.com", "meta_data": {},
    }

    first = client.post("/api/webhooks/rupantor", json={"transaction_id": "TX1", "status": "COMPLETED"})
    assert first.json() == {"received": True, "duplicate": False}
    assert rupantor_fake.verified == ["TX1"]

    ps = _payment_session(session, rupantor_order)
    assert ps.status == "completed"
    assert ps.payment_intent_id == "TX1"

    replay = client.post("/api/webhooks/rupantor", json={"transaction_id": "TX1"})
    assert replay.json()["duplicate"] is True


def test_rupantor_underpayment_is_recorded_as_failure(client, session, rupantor_fake, rupantor_order):
    rupantor_fake.verification = {"success": True, "order_id": rupantor_order, "amount": 5, "meta_data": {}}

    response = client.post("/api/webhooks/rupantor", json={"transaction_id": "TX2"})

    assert response.status_code == 400
    assert _payment_session(session, rupantor_order).status == "pending"
    event = session.exec(select(WebhookEvent)).one()
    assert not event.processed
    assert "does not cover" in event.processing_error


def test_rupantor_unverified_transaction_marks_failed(client, session, rupantor_fake, rupantor_order):
    rupantor_fake.verification = {"success": False, "order_id": rupantor_order, "meta_data": {}}

    client.post("/api/webhooks/rupantor", json={"transaction_id": "TX3"})

    assert _payment_session(session, rupantor_order).status == "failed"


def test_rupantor_missing_transaction_id(client, rupantor_fake):
    assert client.post("/api/webhooks/rupantor", json={"status": "COMPLETED"}).status_code == 400
    assert rupantor_fake.verified == []
