# services/subscription_service.py
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.errors import ConflictError
from models.models import (
    Subscription, SubscriptionStatus, BillingPeriod, PaymentSession,
    PaymentSessionStatus, Pricing, User, WebhookEvent, utc_now,
)
from services import payment_session_service

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Webhook idempotency ledger
# ============================================================
def process_webhook_event(
    session: Session,
    provider: str,
    event_id: str,
    event_type: str,
    payload: Dict[str, Any],
    handler: Callable[[Session], None],
) -> bool:
    """Apply ``handler`` once per (provider, event_id).

    The ledger row and the handler's writes commit together. Returns False
    for a replay of an already processed event. A handler failure is
    recorded on the ledger row and re-raised so the provider retries.
    """
    existing = session.exec(
        select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
    ).first()
    if existing and existing.processed:
        logger.info(f"🔁 Duplicate {provider} webhook {event_id} ({event_type}) ignored")
        return False

    event = existing or WebhookEvent(provider=provider, event_id=event_id, event_type=event_type)
    event.payload = payload
    session.add(event)
    try:
        session.flush()
    except IntegrityError:
        # a concurrent delivery of the same event won the insert
        session.rollback()
        logger.info(f"🔁 Concurrent {provider} webhook {event_id} already recorded")
        return False

    try:
        handler(session)
        event.processed = True
        event.processing_error = None
        session.add(event)
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.exception(f"❌ Error processing {provider} webhook {event_id} ({event_type})")
        _record_failure(session, provider, event_id, event_type, payload, str(exc))
        raise
    logger.info(f"✅ {provider} webhook {event_id} ({event_type}) processed")
    return True


def _record_failure(session: Session, provider: str, event_id: str, event_type: str, payload: Dict[str, Any], error: str) -> None:
    event = session.exec(
        select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
    ).first() or WebhookEvent(provider=provider, event_id=event_id, event_type=event_type, payload=payload)
    event.processed = False
    event.processing_error = error[:1000]
    session.add(event)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()


# ============================================================
# ✅ Lookups
# ============================================================
def find_subscription(session: Session, provider: str, provider_subscription_id: Optional[str]) -> Optional[Subscription]:
    if not provider_subscription_id:
        return None
    return session.exec(
        select(Subscription).where(
            Subscription.provider == provider,
            Subscription.provider_subscription_id == provider_subscription_id,
        )
    ).first()


def get_user_subscription(session: Session, user_id: int) -> Optional[Subscription]:
    """Most recent subscription for a user."""
    return session.exec(
        select(Subscription).where(Subscription.user_id == user_id).order_by(Subscription.created_at.desc())
    ).first()


def parse_custom_id(custom_id: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """Decode checkout linkage: ``session_<id>`` (guest) or ``<user_id>|<plan_id>``."""
    if not custom_id:
        return "unknown", {}
    if custom_id.startswith("session_"):
        return "session", {"session_id": custom_id[len("session_"):]}
    parts = custom_id.split("|")
    if len(parts) == 2 and all(parts):
        return "user", {"user_id": parts[0], "plan_id": parts[1]}
    return "unknown", {}


def _sync_user_snapshot(session: Session, subscription: Subscription) -> None:
    user = session.get(User, subscription.user_id)
    if not user:
        return
    user.subscription_status = subscription.status
    user.subscription_provider = subscription.provider
    user.subscription_external_id = subscription.provider_subscription_id
    if subscription.pricing_plan_id:
        user.subscription_plan_id = subscription.pricing_plan_id
        plan = session.get(Pricing, subscription.pricing_plan_id)
        if plan:
            user.subscription_plan_name = plan.name
    if not user.subscription_start_date:
        user.subscription_start_date = subscription.start_date
    user.touch()
    session.add(user)


def _save(session: Session, subscription: Subscription) -> Subscription:
    subscription.updated_at = utc_now()
    session.add(subscription)
    _sync_user_snapshot(session, subscription)
    session.flush()
    return subscription


# ============================================================
# ✅ Transitions (flush only; callers own the commit)
# ============================================================
def activate_subscription(
    session: Session,
    *,
    provider: str,
    provider_subscription_id: str,
    user_id: int,
    pricing_plan_id: Optional[int] = None,
    billing_period: str = BillingPeriod.MONTHLY.value,
    amount: float = 0.0,
    currency: str = "USD",
    provider_customer_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    meta_data: Optional[Dict[str, Any]] = None,
) -> Subscription:
    """Create-or-update by provider subscription id; status becomes active."""
    start = start_date or utc_now()
    subscription = find_subscription(session, provider, provider_subscription_id)
    if subscription is None:
        subscription = Subscription(
            user_id=user_id,
            pricing_plan_id=pricing_plan_id,
            provider=provider,
            provider_subscription_id=provider_subscription_id,
            provider_customer_id=provider_customer_id,
            billing_period=billing_period,
            amount=amount,
            currency=currency,
            start_date=start,
            next_billing_date=Subscription.calculate_next_billing_date(start, billing_period),
            meta_data=meta_data or {},
        )
        logger.info(f"🆕 {provider} subscription {provider_subscription_id} created for user {user_id}")
    else:
        subscription.start_date = start
        if provider_customer_id:
            subscription.provider_customer_id = provider_customer_id
    subscription.status = SubscriptionStatus.ACTIVE.value
    return _save(session, subscription)


def cancel_subscription(session: Session, provider: str, provider_subscription_id: str, at: Optional[datetime] = None) -> Optional[Subscription]:
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        logger.warning(f"⚠️ Cancel for unknown {provider} subscription {provider_subscription_id}")
        return None
    subscription.status = SubscriptionStatus.CANCELED.value
    subscription.canceled_at = at or utc_now()
    return _save(session, subscription)


def suspend_subscription(session: Session, provider: str, provider_subscription_id: str) -> Optional[Subscription]:
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        logger.warning(f"⚠️ Suspend for unknown {provider} subscription {provider_subscription_id}")
        return None
    subscription.status = SubscriptionStatus.INACTIVE.value
    return _save(session, subscription)


def record_payment_failed(session: Session, provider: str, provider_subscription_id: str) -> Optional[Subscription]:
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        logger.warning(f"⚠️ Payment failure for unknown {provider} subscription {provider_subscription_id}")
        return None
    subscription.failed_payment_attempts = (subscription.failed_payment_attempts or 0) + 1
    subscription.status = SubscriptionStatus.PAST_DUE.value
    return _save(session, subscription)


def record_payment_completed(
    session: Session,
    provider: str,
    provider_subscription_id: str,
    amount: Optional[float] = None,
    paid_at: Optional[datetime] = None,
) -> Optional[Subscription]:
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        logger.warning(f"⚠️ Payment for unknown {provider} subscription {provider_subscription_id}")
        return None
    paid_at = paid_at or utc_now()
    subscription.last_payment_date = paid_at
    subscription.last_payment_amount = amount if amount is not None else subscription.amount
    subscription.failed_payment_attempts = 0
    subscription.status = SubscriptionStatus.ACTIVE.value
    next_billing = Subscription.calculate_next_billing_date(paid_at, subscription.billing_period)
    if next_billing:
        subscription.next_billing_date = next_billing
    return _save(session, subscription)


def expire_subscription(session: Session, provider: str, provider_subscription_id: str, at: Optional[datetime] = None) -> Optional[Subscription]:
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        logger.warning(f"⚠️ Expiry for unknown {provider} subscription {provider_subscription_id}")
        return None
    subscription.status = SubscriptionStatus.CANCELED.value
    subscription.end_date = at or utc_now()
    return _save(session, subscription)


def update_from_provider_status(
    session: Session,
    provider: str,
    provider_subscription_id: str,
    status: str,
    period_end: Optional[datetime] = None,
    canceled_at: Optional[datetime] = None,
) -> Optional[Subscription]:
    """Mirror a provider-reported status (Stripe subscription objects)."""
    subscription = find_subscription(session, provider, provider_subscription_id)
    if not subscription:
        return None
    mapped = {
        "active": SubscriptionStatus.ACTIVE.value,
        "trialing": SubscriptionStatus.ACTIVE.value,
        "past_due": SubscriptionStatus.PAST_DUE.value,
        "unpaid": SubscriptionStatus.UNPAID.value,
        "canceled": SubscriptionStatus.CANCELED.value,
        "incomplete": SubscriptionStatus.PENDING.value,
        "incomplete_expired": SubscriptionStatus.INACTIVE.value,
        "paused": SubscriptionStatus.INACTIVE.value,
    }.get(status, subscription.status)
    subscription.status = mapped
    if period_end:
        subscription.end_date = period_end
        subscription.next_billing_date = period_end
    if canceled_at:
        subscription.canceled_at = canceled_at
    return _save(session, subscription)


def attach_signup_subscription(session: Session, user: User, payment_session: PaymentSession) -> Optional[Subscription]:
    """After a payment signup, link the provider subscription to the new user."""
    if not payment_session.subscription_id:
        return None
    details = payment_session.plan_details or {}
    billing_period = (
        (payment_session.meta_data or {}).get("billing_period")
        or details.get("billing_period")
        or BillingPeriod.MONTHLY.value
    )
    if billing_period == BillingPeriod.LIFETIME.value:
        return None
    subscription = find_subscription(session, payment_session.provider, payment_session.subscription_id)
    if subscription:
        subscription.user_id = user.id
        _save(session, subscription)
    else:
        subscription = activate_subscription(
            session,
            provider=payment_session.provider,
            provider_subscription_id=payment_session.subscription_id,
            user_id=user.id,
            pricing_plan_id=payment_session.plan_id,
            billing_period=billing_period,
            amount=payment_session.amount,
            currency=payment_session.currency,
            meta_data={"payment_session": payment_session.session_id},
        )
    session.commit()
    session.refresh(subscription)
    return subscription


def grant_plan_access(session: Session, user: User, payment_session: PaymentSession) -> User:
    """Point an existing user's subscription snapshot at a paid session's plan."""
    details = payment_session.plan_details or {}
    user.subscription_plan_id = payment_session.plan_id
    user.subscription_plan_name = details.get("name") or user.subscription_plan_name
    user.subscription_status = SubscriptionStatus.ACTIVE.value
    user.subscription_start_date = utc_now()
    user.subscription_provider = payment_session.provider
    user.subscription_payment_session_id = payment_session.id
    user.subscription_external_id = payment_session.subscription_id or payment_session.payment_intent_id
    user.touch()
    user.add_audit_entry("plan_purchased", performed_by_id=user.id, details={"payment_session": payment_session.session_id})
    session.add(user)

    payment_session.user_id = user.id
    payment_session.signup_completed = True
    payment_session.updated_at = utc_now()
    session.add(payment_session)
    session.flush()
    logger.info(f"💳 User {user.id} granted plan {payment_session.plan_id} via {payment_session.provider}")
    return user


def complete_linked_session(session: Session, provider: str, session_id: str, **kwargs) -> Optional[PaymentSession]:
    """Complete a guest checkout's payment session from a verified webhook.

    A completion arriving after signup is logged and acknowledged.
    """
    payment_session = payment_session_service.get_by_session_id(session, session_id)
    if not payment_session or payment_session.provider != provider:
        logger.warning(f"⚠️ {provider} webhook references unknown payment session {session_id}")
        return None
    if payment_session.status != PaymentSessionStatus.PENDING.value:
        logger.info(f"ℹ️ Payment session {session_id} already {payment_session.status}")
        return payment_session
    try:
        return payment_session_service.complete_payment_session(session, payment_session, commit=False, **kwargs)
    except ConflictError:
        logger.warning(f"⚠️ Late completion for consumed payment session {session_id} rejected")
        return payment_session


def from_timestamp(value: Any) -> Optional[datetime]:
    """Unix seconds or ISO-8601 string to naive UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

