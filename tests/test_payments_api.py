"""API tests for checkout, the signup-token bridge and paid signup."""
from sqlmodel import select

from models.models import PaymentSession, Subscription, User

from .conftest import STRONG_PASSWORD


def _checkout(client, plan, **extra):
    response = client.post(
        "/api/payments/stripe/create-checkout-guest",
        json={"plan_id": plan.id, "customer_email": "buyer@example.com", **extra},
    )
    assert response.status_code == 200
    return response.json()["session_id"]


def _confirm(client, session_id):
    return client.post("/api/payment/create-session", json={"session_id": session_id, "payment_data": {"provider": "stripe"}})


def _signup_payload(token, **overrides):
    return {
        "name": "Buyer",
        "email": "buyer@example.com",
        "phone": "+15550001111",
        "password": STRONG_PASSWORD,
        "signup_token": token,
        **overrides,
    }


def test_guest_checkout_records_pending_session(client, session, plan, stripe_fake):
    session_id = _checkout(client, plan)

    ps = session.exec(select(PaymentSession).where(PaymentSession.session_id == session_id)).one()
    assert ps.status == "pending"
    assert ps.amount == 29.99
    assert ps.user_id is None
    assert "user_id" not in stripe_fake.created[0]["metadata"]


def test_yearly_checkout_of_monthly_plan_is_discounted(client, session, plan, stripe_fake):
    _checkout(client, plan, billing_period="yearly")
    assert stripe_fake.created[0]["amount"] == round(29.99 * 12 * 0.8, 2)


def test_checkout_for_inactive_plan_is_404(client, session, plan):
    plan.is_active = False
    session.add(plan)
    session.commit()
    response = client.post("/api/payments/stripe/create-checkout-guest", json={"plan_id": plan.id})
    assert response.status_code == 404


def test_signed_in_checkout_carries_user_id(client, plan, reader, reader_headers, stripe_fake):
    client.post("/api/payments/stripe/create-checkout-guest", json={"plan_id": plan.id}, headers=reader_headers)
    assert stripe_fake.created[0]["metadata"]["user_id"] == str(reader.id)


def test_confirm_returns_same_token_until_consumed(client, plan):
    session_id = _checkout(client, plan)

    first = _confirm(client, session_id)
    assert first.status_code == 200
    assert first.json()["session_exists"] is False
    token = first.json()["signup_token"]
    assert len(token) == 64

    second = _confirm(client, session_id)
    assert second.json() == {"success": True, "signup_token": token, "session_exists": True}


def test_confirm_requires_provider_confirmation(client, plan, stripe_fake):
    stripe_fake.paid = False
    response = _confirm(client, _checkout(client, plan))
    assert response.status_code == 400
    assert "not been confirmed" in response.json()["error"]


def test_confirm_requires_an_identifier(client):
    response = client.post("/api/payment/create-session", json={"payment_data": {"provider": "stripe"}})
    assert response.status_code == 400


def test_confirm_unknown_session_is_404(client):
    assert _confirm(client, "cs_missing").status_code == 404


def test_validate_signup_token(client, plan):
    token = _confirm(client, _checkout(client, plan)).json()["signup_token"]

    response = client.post("/api/payment/validate-signup-token", json={"signup_token": token})
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["payment_session"]["plan_details"]["name"] == "Premium"
    assert body["expires_at"]


def test_full_paid_signup_flow(client, session, plan, mailer):
    """checkout -> confirm -> signup -> verify email -> login."""
    session_id = _checkout(client, plan)
    token = _confirm(client, session_id).json()["signup_token"]

    created = client.post("/api/auth/signup-with-payment", json=_signup_payload(token))
    assert created.status_code == 201
    assert created.json()["user"]["status"] == "pending"

    session.expire_all()
    user = session.exec(select(User).where(User.email == "buyer@example.com")).one()
    assert user.subscription_plan_id == plan.id
    sub = session.exec(select(Subscription)).one()
    assert sub.user_id == user.id
    assert sub.provider_subscription_id == "sub_test_1"

    again = client.post("/api/auth/signup-with-payment", json=_signup_payload(token, email="second@example.com"))
    assert again.status_code == 400
    assert again.json()["error"] == "Account has already been created with this payment"
    assert _confirm(client, session_id).status_code == 409

    pending_login = client.post("/api/auth/login", json={"email": "buyer@example.com", "password": STRONG_PASSWORD})
    assert pending_login.status_code == 401

    verification = mailer.last("email_verification")
    assert verification["to"] == "buyer@example.com"
    assert verification["plan"] == "Premium"
    verified = client.post("/api/auth/verify-email", json={"token": verification["token"]})
    assert verified.status_code == 200

    login = client.post("/api/auth/login", json={"email": "buyer@example.com", "password": STRONG_PASSWORD})
    assert login.status_code == 200
    assert mailer.last("welcome")["to"] == "buyer@example.com"


def test_signup_token_shape_is_validated(client):
    response = client.post("/api/auth/signup-with-payment", json=_signup_payload("short"))
    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"
    assert response.json()["details"][0]["field"] == "signup_token"


def test_rupantor_verify_returns_signup_token(client, session, plan, rupantor_fake):
    order_id = client.post(
        "/api/payments/rupantor/create-session",
        json={"plan_id": plan.id, "customer_email": "buyer@example.com"},
    ).json()["session_id"]
    rupantor_fake.verification = {"success": True, "order_id": order_id, "amount": 29.99, "meta_data": {}}

    response = client.post("/api/payment/verify", json={"transaction_id": "TX7"})

    assert response.status_code == 200
    body = response.json()
    assert body["user_exists"] is False
    assert len(body["signup_token"]) == 64


def test_rupantor_verify_for_signed_in_buyer_grants_access(client, session, plan, reader, reader_headers, rupantor_fake):
    order_id = client.post(
        "/api/payments/rupantor/create-session", json={"plan_id": plan.id}, headers=reader_headers,
    ).json()["session_id"]
    rupantor_fake.verification = {"success": True, "order_id": order_id, "amount": 29.99, "meta_data": {}}

    response = client.post("/api/payment/verify", json={"transaction_id": "TX8"})

    assert response.json() == {"success": True, "user_exists": True}
    session.refresh(reader)
    assert reader.subscription_status == "active"
    assert reader.subscription_plan_id == plan.id


def test_rupantor_verify_failure(client, rupantor_fake):
    rupantor_fake.verification = {"success": False, "meta_data": {}}
    response = client.post("/api/payment/verify", json={"transaction_id": "TX9"})
    assert response.status_code == 400


def test_cancel_own_subscription(client, session, plan, reader, reader_headers, stripe_fake):
    session.add(Subscription(user_id=reader.id, pricing_plan_id=plan.id, provider="stripe",
                             provider_subscription_id="sub_77", status="active", amount=29.99))
    session.commit()

    current = client.get("/api/payments/subscription", headers=reader_headers)
    assert current.json()["provider_subscription_id"] == "sub_77"

    canceled = client.post("/api/payments/subscription/cancel", headers=reader_headers)
    assert canceled.status_code == 200
    assert canceled.json()["status"] == "canceled"
    assert {"canceled": "sub_77"} in stripe_fake.created

    again = client.post("/api/payments/subscription/cancel", headers=reader_headers)
    assert again.status_code == 400


def test_no_subscription_is_null(client, reader_headers):
    response = client.get("/api/payments/subscription", headers=reader_headers)
    assert response.status_code == 200
    assert response.json() is None
