# routes/webhooks.py
"""Provider webhooks.

Every handler authenticates the delivery first (signature, or a server-side
re-verification for RupantorPay) and only then mutates state through the
idempotency ledger in subscription_service.process_webhook_event.
"""
from typing import Any, Callable, Dict
import logging

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from core.database import get_session
from core.errors import ValidationError
from models.models import PaymentProvider, PaymentSessionStatus, Pricing, User
from services import payment_session_service, subscription_service
from services.payment_providers import (
    PayPalProvider, RupantorProvider, StripeProvider,
    get_paypal_provider, get_rupantor_provider, get_stripe_provider,
)
from services.subscription_service import from_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])

STRIPE = PaymentProvider.STRIPE.value
PAYPAL = PaymentProvider.PAYPAL.value
RUPANTOR = PaymentProvider.RUPANTOR.value

Handler = Callable[[Session, Dict[str, Any]], None]


def _dispatch(session: Session, provider: str, event_id: str, event_type: str, payload: Dict[str, Any],
              handlers: Dict[str, Handler], resource: Dict[str, Any]) -> Dict[str, Any]:
    handler = handlers.get(event_type)
    if handler is None:
        logger.info(f"ℹ️ Unhandled {provider} webhook type {event_type}")

    applied = subscription_service.process_webhook_event(
        session, provider, event_id, event_type, payload,
        lambda s: handler(s, resource) if handler else None,
    )
    return {"received": True, "duplicate": not applied}


def _user(session: Session, user_id: Any):
    try:
        return session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


def _settle_for_user(session: Session, user: User, payment_session, **confirmed) -> None:
    """Existing-user checkout: complete the session and move the user onto its plan."""
    if payment_session.status == PaymentSessionStatus.PENDING.value:
        payment_session_service.complete_payment_session(session, payment_session, commit=False, **confirmed)
    if not payment_session.signup_completed:
        subscription_service.grant_plan_access(session, user, payment_session)


# ==========================================================
# 💳 Stripe
# ==========================================================
def _stripe_checkout_completed(session: Session, obj: Dict[str, Any]) -> None:
    metadata = obj.get("metadata") or {}
    confirmed = {
        "subscription_id": obj.get("subscription"),
        "customer_email": (obj.get("customer_details") or {}).get("email") or obj.get("customer_email"),
        "payment_intent_id": obj.get("payment_intent"),
    }
    user = _user(session, metadata.get("user_id")) if metadata.get("user_id") else None
    if not user:
        subscription_service.complete_linked_session(session, STRIPE, obj["id"], **confirmed)
        return

    payment_session = payment_session_service.get_by_session_id(session, obj["id"])
    if payment_session:
        _settle_for_user(session, user, payment_session, **confirmed)
    if obj.get("subscription"):
        subscription_service.activate_subscription(
            session,
            provider=STRIPE,
            provider_subscription_id=obj["subscription"],
            user_id=user.id,
            pricing_plan_id=int(metadata["plan_id"]) if metadata.get("plan_id") else None,
            billing_period=metadata.get("billing_period") or "monthly",
            amount=(obj.get("amount_total") or 0) / 100,
            currency=(obj.get("currency") or "usd").upper(),
            provider_customer_id=obj.get("customer"),
        )


def _stripe_subscription_changed(session: Session, obj: Dict[str, Any]) -> None:
    updated = subscription_service.update_from_provider_status(
        session, STRIPE, obj["id"], obj.get("status", ""),
        period_end=from_timestamp(obj.get("current_period_end")),
        canceled_at=from_timestamp(obj.get("canceled_at")),
    )
    if updated is None:
        logger.info(f"ℹ️ Stripe subscription {obj['id']} not linked yet; waiting for checkout or signup")


def _stripe_subscription_deleted(session: Session, obj: Dict[str, Any]) -> None:
    subscription_service.cancel_subscription(session, STRIPE, obj["id"], at=from_timestamp(obj.get("canceled_at")))


def _stripe_invoice_paid(session: Session, obj: Dict[str, Any]) -> None:
    subscription_service.record_payment_completed(
        session, STRIPE, obj.get("subscription"),
        amount=(obj.get("amount_paid") or 0) / 100,
        paid_at=from_timestamp(obj.get("created")),
    )


def _stripe_invoice_failed(session: Session, obj: Dict[str, Any]) -> None:
    subscription_service.record_payment_failed(session, STRIPE, obj.get("subscription"))


STRIPE_HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": _stripe_checkout_completed,
    "customer.subscription.created": _stripe_subscription_changed,
    "customer.subscription.updated": _stripe_subscription_changed,
    "customer.subscription.deleted": _stripe_subscription_deleted,
    "invoice.payment_succeeded": _stripe_invoice_paid,
    "invoice.payment_failed": _stripe_invoice_failed,
}


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: Session = Depends(get_session),
    stripe_provider: StripeProvider = Depends(get_stripe_provider),
):
    payload = await request.body()
    event = stripe_provider.construct_event(payload, request.headers.get("stripe-signature"))
    obj = (event.get("data") or {}).get("object") or {}
    return _dispatch(session, STRIPE, event["id"], event["type"], event, STRIPE_HANDLERS, obj)


# ==========================================================
# 🅿️ PayPal
# ==========================================================
def _paypal_activated(session: Session, resource: Dict[str, Any]) -> None:
    subscription_id = resource["id"]
    email = (resource.get("subscriber") or {}).get("email_address")
    kind, data = subscription_service.parse_custom_id(resource.get("custom_id"))

    if kind == "session":
        payment_session = subscription_service.complete_linked_session(
            session, PAYPAL, data["session_id"], subscription_id=subscription_id, customer_email=email,
        )
        user = _user(session, payment_session.user_id) if payment_session and payment_session.user_id else None
        if not user:
            # guest checkout: the subscription is attached when the account is created
            return
    elif kind == "user":
        user = _user(session, data["user_id"])
        if not user:
            raise ValidationError(f"PayPal subscription {subscription_id} references unknown user")
        payment_session = payment_session_service.get_by_subscription_id(session, subscription_id)
        if payment_session:
            _settle_for_user(session, user, payment_session, customer_email=email)
    else:
        payment_session = payment_session_service.get_by_subscription_id(session, subscription_id)
        user = _user(session, payment_session.user_id) if payment_session and payment_session.user_id else None
        if not user:
            logger.warning(f"⚠️ PayPal subscription {subscription_id} has no usable custom_id")
            return

    plan_id = (payment_session.plan_id if payment_session else None) or (
        int(data["plan_id"]) if data.get("plan_id", "").isdigit() else None
    )
    plan = session.get(Pricing, plan_id) if plan_id else None
    billing_period = ((payment_session.meta_data or {}).get("billing_period") if payment_session else None) or (
        plan.billing_period if plan else "monthly"
    )
    subscription_service.activate_subscription(
        session,
        provider=PAYPAL,
        provider_subscription_id=subscription_id,
        user_id=user.id,
        pricing_plan_id=plan_id,
        billing_period=billing_period,
        amount=payment_session.amount if payment_session else (plan.price if plan else 0.0),
        currency=payment_session.currency if payment_session else (plan.currency if plan else "USD"),
        start_date=from_timestamp(resource.get("start_time")),
    )


def _paypal_cancelled(session: Session, resource: Dict[str, Any]) -> None:
    subscription_service.cancel_subscription(session, PAYPAL, resource["id"])


def _paypal_suspended(session: Session, resource: Dict[str, Any]) -> None:
    subscription_service.suspend_subscription(session, PAYPAL, resource["id"])


def _paypal_payment_failed(session: Session, resource: Dict[str, Any]) -> None:
    subscription_service.record_payment_failed(session, PAYPAL, resource["id"])


def _paypal_expired(session: Session, resource: Dict[str, Any]) -> None:
    subscription_service.expire_subscription(session, PAYPAL, resource["id"])


def _paypal_sale_completed(session: Session, resource: Dict[str, Any]) -> None:
    total = (resource.get("amount") or {}).get("total")
    subscription_service.record_payment_completed(
        session, PAYPAL, resource.get("billing_agreement_id"),
        amount=float(total) if total else None,
        paid_at=from_timestamp(resource.get("create_time")),
    )


PAYPAL_HANDLERS: Dict[str, Handler] = {
    "BILLING.SUBSCRIPTION.ACTIVATED": _paypal_activated,
    "BILLING.SUBSCRIPTION.CANCELLED": _paypal_cancelled,
    "BILLING.SUBSCRIPTION.SUSPENDED": _paypal_suspended,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": _paypal_payment_failed,
    "BILLING.SUBSCRIPTION.EXPIRED": _paypal_expired,
    "PAYMENT.SALE.COMPLETED": _paypal_sale_completed,
}


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    session: Session = Depends(get_session),
    paypal_provider: PayPalProvider = Depends(get_paypal_provider),
):
    try:
        event = await request.json()
    except ValueError:
        raise ValidationError("Invalid payload")
    if not isinstance(event, dict) or not event.get("id"):
        raise ValidationError("Invalid payload")
    if not paypal_provider.verify_webhook_signature(request.headers, event):
        logger.warning(f"🚫 PayPal webhook {event.get('id')} failed signature verification")
        raise ValidationError("Webhook signature verification failed")

    return _dispatch(
        session, PAYPAL, event["id"], event.get("event_type", ""), event,
        PAYPAL_HANDLERS, event.get("resource") or {},
    )


# ==========================================================
# 🇧🇩 RupantorPay
# ==========================================================
def _rupantor_completed(session: Session, verification: Dict[str, Any]) -> None:
    meta = verification.get("meta_data") or {}
    order_id = verification.get("order_id") or meta.get("order_id")
    payment_session = payment_session_service.get_by_session_id(session, order_id) if order_id else None
    if not payment_session or payment_session.provider != RUPANTOR:
        logger.warning(f"⚠️ RupantorPay transaction for unknown order {order_id}")
        return

    paid = verification.get("amount")
    if paid is not None and float(paid) + 0.01 < payment_session.amount:
        raise ValidationError(f"RupantorPay amount {paid} does not cover order {order_id}")

    user = _user(session, payment_session.user_id) if payment_session.user_id else None
    confirmed = {"customer_email": verification.get("customer_email"), "payment_intent_id": verification.get("transaction_id")}
    if user:
        _settle_for_user(session, user, payment_session, **confirmed)
    else:
        subscription_service.complete_linked_session(session, RUPANTOR, order_id, **confirmed)


def _rupantor_failed(session: Session, verification: Dict[str, Any]) -> None:
    meta = verification.get("meta_data") or {}
    order_id = verification.get("order_id") or meta.get("order_id")
    payment_session = payment_session_service.get_by_session_id(session, order_id) if order_id else None
    if payment_session and payment_session.status == PaymentSessionStatus.PENDING.value:
        payment_session_service.mark_failed(session, payment_session, reason="(RupantorPay)", commit=False)


RUPANTOR_HANDLERS: Dict[str, Handler] = {
    "payment.completed": _rupantor_completed,
    "payment.failed": _rupantor_failed,
}


@router.post("/rupantor")
async def rupantor_webhook(
    request: Request,
    session: Session = Depends(get_session),
    rupantor: RupantorProvider = Depends(get_rupantor_provider),
):
    """RupantorPay does not sign deliveries, so the transaction is re-fetched from its API."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid payload")
    transaction_id = body.get("transaction_id") if isinstance(body, dict) else None
    if not transaction_id:
        raise ValidationError("Missing transaction_id")

    verification = rupantor.verify_payment(str(transaction_id))
    verification.setdefault("transaction_id", str(transaction_id))
    event_type = "payment.completed" if verification["success"] else "payment.failed"
    return _dispatch(session, RUPANTOR, f"{transaction_id}:{event_type}", event_type, body, RUPANTOR_HANDLERS, verification)
