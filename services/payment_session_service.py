# services/payment_session_service.py
"""Payment session lifecycle and the one-time signup token it gates.

    pending --(provider confirms)--> completed --(signup)--> completed + signup_completed
    pending --(timeout / failure)--> failed | expired

State changes are conditional UPDATEs so concurrent webhook deliveries and
double-submitted signup forms are serialized by the database.
"""
import logging
import secrets
from datetime import timedelta
from typing import Optional, Dict, Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.config import settings
from core.errors import ConflictError, NotFoundError, ValidationError
from core.security import hash_password, validate_password_strength, generate_random_token
from models.models import (
    PaymentSession, PaymentSessionStatus, Pricing, User, UserRole, UserStatus,
    SubscriptionStatus, utc_now,
)

logger = logging.getLogger(__name__)

ALREADY_USED = "Account has already been created with this payment"


def get_by_session_id(session: Session, session_id: str) -> Optional[PaymentSession]:
    return session.exec(select(PaymentSession).where(PaymentSession.session_id == session_id)).first()


def get_by_subscription_id(session: Session, subscription_id: str) -> Optional[PaymentSession]:
    return session.exec(select(PaymentSession).where(PaymentSession.subscription_id == subscription_id)).first()


def get_by_signup_token(session: Session, token: str) -> Optional[PaymentSession]:
    if not token:
        return None
    return session.exec(select(PaymentSession).where(PaymentSession.signup_token == token)).first()


# ============================================================
# ✅ Create
# ============================================================
def create_pending_session(
    session: Session,
    *,
    provider: str,
    session_id: str,
    plan: Optional[Pricing],
    amount: float,
    currency: str,
    customer_email: Optional[str] = None,
    subscription_id: Optional[str] = None,
    user_id: Optional[int] = None,
    meta_data: Optional[Dict[str, Any]] = None,
) -> PaymentSession:
    payment_session = PaymentSession(
        user_id=user_id,
        session_id=session_id,
        subscription_id=subscription_id,
        provider=provider,
        plan_id=plan.id if plan else None,
        plan_details=plan.details_snapshot() if plan else None,
        amount=amount,
        currency=currency,
        status=PaymentSessionStatus.PENDING.value,
        customer_email=customer_email.lower() if customer_email else None,
        meta_data=meta_data or {},
    )
    session.add(payment_session)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("Payment session already exists")
    session.refresh(payment_session)
    logger.info(f"🧾 Pending {provider} payment session {session_id} created")
    return payment_session


def new_session_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(12)}"


# ============================================================
# ✅ Transitions
# ============================================================
def complete_payment_session(
    session: Session,
    payment_session: PaymentSession,
    *,
    subscription_id: Optional[str] = None,
    customer_email: Optional[str] = None,
    payment_intent_id: Optional[str] = None,
    commit: bool = True,
) -> PaymentSession:
    """pending -> completed, issuing the signup token exactly once.

    A duplicate confirmation before signup returns the session unchanged.
    One that arrives after the token was consumed raises ConflictError.
    """
    token = secrets.token_hex(32)
    expiry = utc_now() + timedelta(hours=settings.SIGNUP_TOKEN_EXPIRE_HOURS)

    values: Dict[str, Any] = {
        "status": PaymentSessionStatus.COMPLETED.value,
        "signup_token": token,
        "signup_token_expiry": expiry,
        "updated_at": utc_now(),
    }
    if subscription_id:
        values["subscription_id"] = subscription_id
    if customer_email:
        values["customer_email"] = customer_email.lower()
    if payment_intent_id:
        values["payment_intent_id"] = payment_intent_id

    result = session.exec(
        update(PaymentSession)
        .where(PaymentSession.id == payment_session.id)
        .where(PaymentSession.status == PaymentSessionStatus.PENDING.value)
        .values(**values)
    )
    if commit:
        session.commit()
    else:
        session.flush()
    session.refresh(payment_session)

    if result.rowcount == 1:
        logger.info(f"✅ Payment session {payment_session.session_id} completed")
        return payment_session

    if payment_session.signup_completed:
        raise ConflictError("Payment session already processed")
    if payment_session.status != PaymentSessionStatus.COMPLETED.value:
        raise ValidationError(f"Payment session is {payment_session.status}")
    return payment_session


def regenerate_signup_token(session: Session, payment_session: PaymentSession) -> PaymentSession:
    """Issue a fresh token for a completed, not yet consumed session."""
    if payment_session.signup_completed:
        raise ConflictError("Payment session already processed")
    if payment_session.status != PaymentSessionStatus.COMPLETED.value:
        raise ValidationError("Payment is not completed")

    result = session.exec(
        update(PaymentSession)
        .where(PaymentSession.id == payment_session.id)
        .where(PaymentSession.signup_completed == False)  # noqa: E712
        .values(
            signup_token=secrets.token_hex(32),
            signup_token_expiry=utc_now() + timedelta(hours=settings.SIGNUP_TOKEN_EXPIRE_HOURS),
            updated_at=utc_now(),
        )
    )
    session.commit()
    session.refresh(payment_session)
    if result.rowcount != 1:
        raise ConflictError("Payment session already processed")
    return payment_session


def mark_failed(session: Session, payment_session: PaymentSession, reason: str = "", commit: bool = True) -> PaymentSession:
    session.exec(
        update(PaymentSession)
        .where(PaymentSession.id == payment_session.id)
        .where(PaymentSession.status == PaymentSessionStatus.PENDING.value)
        .values(status=PaymentSessionStatus.FAILED.value, updated_at=utc_now())
    )
    if commit:
        session.commit()
    else:
        session.flush()
    session.refresh(payment_session)
    logger.warning(f"⚠️ Payment session {payment_session.session_id} failed {reason}".rstrip())
    return payment_session


def expire_stale_sessions(session: Session, older_than_hours: Optional[int] = None) -> int:
    """pending sessions older than the cutoff become expired; returns the count."""
    cutoff = utc_now() - timedelta(hours=older_than_hours or settings.PENDING_SESSION_EXPIRE_HOURS)
    result = session.exec(
        update(PaymentSession)
        .where(PaymentSession.status == PaymentSessionStatus.PENDING.value)
        .where(PaymentSession.created_at < cutoff)
        .values(status=PaymentSessionStatus.EXPIRED.value, updated_at=utc_now())
    )
    session.commit()
    if result.rowcount:
        logger.info(f"⏰ Expired {result.rowcount} stale payment session(s)")
    return result.rowcount


# ============================================================
# ✅ Signup token
# ============================================================
def validate_signup_token(session: Session, token: str) -> PaymentSession:
    payment_session = get_by_signup_token(session, token)
    if not payment_session:
        raise NotFoundError("Invalid signup token")
    if payment_session.signup_completed:
        raise ValidationError(ALREADY_USED)
    if payment_session.status != PaymentSessionStatus.COMPLETED.value:
        raise ValidationError("Payment is not completed")
    if not payment_session.is_signup_token_valid():
        raise ValidationError("Signup token has expired")
    return payment_session


def signup_with_token(
    session: Session,
    *,
    token: str,
    name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
) -> User:
    """Consume the signup token and create exactly one pending user.

    The signup_completed flag is flipped with a compare-and-swap inside the
    same transaction as the user insert; the loser of a race gets ALREADY_USED.
    """
    validate_password_strength(password)
    payment_session = validate_signup_token(session, token)
    email = email.strip().lower()

    if session.exec(select(User).where(User.email == email)).first():
        raise ConflictError("User with this email already exists")
    if phone and session.exec(select(User).where(User.phone == phone.strip())).first():
        raise ConflictError("User with this phone already exists")

    claimed = session.exec(
        update(PaymentSession)
        .where(PaymentSession.id == payment_session.id)
        .where(PaymentSession.signup_completed == False)  # noqa: E712
        .values(signup_completed=True, updated_at=utc_now())
    )
    if claimed.rowcount != 1:
        session.rollback()
        raise ValidationError(ALREADY_USED)

    now = utc_now()
    plan_details = payment_session.plan_details or {}
    user = User(
        name=name.strip(),
        email=email,
        phone=phone.strip() if phone else None,
        password_hash=hash_password(password),
        role=UserRole.USER.value,
        status=UserStatus.PENDING.value,
        email_verified=False,
        email_verification_token=generate_random_token(),
        email_verification_expiry=now + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
        subscription_plan_id=payment_session.plan_id,
        subscription_plan_name=plan_details.get("name") or "Premium Plan",
        subscription_status=SubscriptionStatus.ACTIVE.value,
        subscription_start_date=now,
        subscription_provider=payment_session.provider,
        subscription_payment_session_id=payment_session.id,
        subscription_external_id=payment_session.subscription_id,
        created_reason="Payment signup",
        created_method="payment-flow",
    )
    user.add_audit_entry("created", details={"method": "payment-flow", "payment_session": payment_session.session_id})
    session.add(user)

    try:
        session.flush()
        session.exec(
            update(PaymentSession)
            .where(PaymentSession.id == payment_session.id)
            .values(
                user_id=user.id,
                meta_data={**(payment_session.meta_data or {}), "user_created": True, "signup_completed_at": now.isoformat()},
            )
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("User with this email or phone already exists")

    session.refresh(user)
    session.refresh(payment_session)
    logger.info(f"👤 User {user.email} created from payment session {payment_session.session_id}")
    return user
