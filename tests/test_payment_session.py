"""Tests for the payment session lifecycle and one-time signup tokens."""
from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from core.errors import ConflictError, NotFoundError, ValidationError
from models.models import PaymentSession, PaymentSessionStatus, User, UserStatus, utc_now
from services import payment_session_service
from services.payment_session_service import ALREADY_USED

from .conftest import STRONG_PASSWORD


@pytest.fixture
def pending(session, plan):
    return payment_session_service.create_pending_session(
        session,
        provider="stripe",
        session_id="cs_test_abc",
        plan=plan,
        amount=29.99,
        currency="USD",
        customer_email="Buyer@Example.com",
        meta_data={"billing_period": "monthly"},
    )


def _signup(session, token, email="buyer@example.com", phone=None):
    return payment_session_service.signup_with_token(
        session, token=token, name="Buyer", email=email, password=STRONG_PASSWORD, phone=phone,
    )


def test_pending_session_snapshots_plan(pending, plan):
    assert pending.status == PaymentSessionStatus.PENDING.value
    assert pending.customer_email == "buyer@example.com"
    assert pending.plan_details["name"] == plan.name
    assert pending.plan_details["price"] == 29.99
    assert pending.signup_token is None


def test_duplicate_session_id_conflicts(session, pending, plan):
    with pytest.raises(ConflictError):
        payment_session_service.create_pending_session(
            session, provider="stripe", session_id="cs_test_abc", plan=plan, amount=1, currency="USD",
        )


def test_completion_issues_64_hex_token_valid_for_a_day(session, pending):
    completed = payment_session_service.complete_payment_session(session, pending, subscription_id="sub_1")

    assert completed.status == PaymentSessionStatus.COMPLETED.value
    assert completed.subscription_id == "sub_1"
    assert len(completed.signup_token) == 64
    int(completed.signup_token, 16)
    remaining = completed.signup_token_expiry - utc_now()
    assert timedelta(hours=23, minutes=59) < remaining <= timedelta(hours=24)


def test_duplicate_completion_before_signup_keeps_token(session, pending):
    first = payment_session_service.complete_payment_session(session, pending).signup_token
    second = payment_session_service.complete_payment_session(session, pending).signup_token
    assert first == second


def test_signup_consumes_token_once(session, pending):
    token = payment_session_service.complete_payment_session(session, pending).signup_token

    user = _signup(session, token)
    assert user.status == UserStatus.PENDING.value
    assert user.email_verification_token
    assert user.subscription_plan_name == "Premium"
    assert user.subscription_payment_session_id == pending.id

    session.refresh(pending)
    assert pending.signup_completed
    assert pending.user_id == user.id

    with pytest.raises(ValidationError) as exc:
        _signup(session, token, email="other@example.com")
    assert exc.value.message == ALREADY_USED
    assert len(session.exec(select(User)).all()) == 1


def test_signup_losing_the_race_creates_no_user(engine, session, pending):
    """Another request consumes the token after this one validated it."""
    token = payment_session_service.complete_payment_session(session, pending).signup_token
    assert pending.signup_completed is False

    with Session(engine) as other:
        other.exec(
            update(PaymentSession).where(PaymentSession.id == pending.id).values(signup_completed=True)
        )
        other.commit()

    # the first session still holds the stale, unconsumed row
    with pytest.raises(ValidationError) as exc:
        _signup(session, token)
    assert exc.value.message == ALREADY_USED
    assert session.exec(select(User)).all() == []


def test_late_completion_after_signup_conflicts(session, pending):
    token = payment_session_service.complete_payment_session(session, pending).signup_token
    _signup(session, token)

    with pytest.raises(ConflictError):
        payment_session_service.complete_payment_session(session, pending)


def test_signup_rejects_unknown_and_expired_tokens(session, pending):
    with pytest.raises(NotFoundError):
        _signup(session, "0" * 64)

    token = payment_session_service.complete_payment_session(session, pending).signup_token
    pending.signup_token_expiry = utc_now() - timedelta(minutes=1)
    session.add(pending)
    session.commit()

    with pytest.raises(ValidationError):
        _signup(session, token)


def test_signup_rejects_weak_password(session, pending):
    token = payment_session_service.complete_payment_session(session, pending).signup_token
    with pytest.raises(ValidationError):
        payment_session_service.signup_with_token(
            session, token=token, name="Buyer", email="buyer@example.com", password="weak",
        )
    session.refresh(pending)
    assert not pending.signup_completed


def test_signup_with_taken_email_leaves_token_usable(session, pending, reader):
    token = payment_session_service.complete_payment_session(session, pending).signup_token
    with pytest.raises(ConflictError):
        _signup(session, token, email=reader.email)

    session.refresh(pending)
    assert not pending.signup_completed
    assert _signup(session, token).email == "buyer@example.com"


def test_regenerate_issues_fresh_token(session, pending):
    old = payment_session_service.complete_payment_session(session, pending).signup_token
    regenerated = payment_session_service.regenerate_signup_token(session, pending)
    assert regenerated.signup_token != old
    assert regenerated.is_signup_token_valid()


def test_mark_failed_only_moves_pending(session, pending):
    payment_session_service.mark_failed(session, pending, reason="declined")
    assert pending.status == PaymentSessionStatus.FAILED.value

    with pytest.raises(ValidationError):
        payment_session_service.complete_payment_session(session, pending)


def test_expire_stale_sessions(session, plan, pending):
    old = PaymentSession(
        session_id="cs_old", provider="stripe", plan_id=plan.id, amount=29.99,
        created_at=utc_now() - timedelta(hours=72),
    )
    session.add(old)
    session.commit()

    assert payment_session_service.expire_stale_sessions(session, older_than_hours=48) == 1
    session.refresh(old)
    session.refresh(pending)
    assert old.status == PaymentSessionStatus.EXPIRED.value
    assert pending.status == PaymentSessionStatus.PENDING.value
