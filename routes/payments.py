# routes/payments.py
from typing import Optional
import logging

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from core.database import get_session
from core.errors import ConflictError, NotFoundError, ValidationError
from core.security import get_current_user, get_optional_user
from models.models import (
    PaymentProvider, PaymentSession, PaymentSessionStatus, Pricing, SubscriptionStatus, User, utc_now,
)
from schemas.payment_schema import (
    CheckoutResponse, CreateSessionRequest, GuestCheckoutRequest, PaymentSessionRead,
    SignupTokenResponse, SubscriptionRead, ValidateSignupToken, VerifyPaymentRequest,
)
from services import payment_session_service, subscription_service
from services.payment_providers import (
    PayPalProvider, RupantorProvider, StripeProvider, checkout_amount,
    get_paypal_provider, get_rupantor_provider, get_stripe_provider,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])


def _active_plan(session: Session, plan_id: int) -> Pricing:
    plan = session.get(Pricing, plan_id)
    if not plan or not plan.is_active:
        raise NotFoundError("Pricing plan not found or inactive")
    return plan


def _signup_token_for(session: Session, payment_session: PaymentSession, existed: bool) -> SignupTokenResponse:
    """Hand out the live token, regenerating it only when it expired."""
    if not payment_session.is_signup_token_valid():
        payment_session = payment_session_service.regenerate_signup_token(session, payment_session)
    return SignupTokenResponse(signup_token=payment_session.signup_token, session_exists=existed)


# ==========================================================
# ✅ Signup-token bridge
# ==========================================================
@router.post("/payment/create-session", response_model=SignupTokenResponse)
def confirm_payment_session(
    payload: CreateSessionRequest,
    session: Session = Depends(get_session),
    stripe_provider: StripeProvider = Depends(get_stripe_provider),
    paypal_provider: PayPalProvider = Depends(get_paypal_provider),
):
    """Success-page confirmation: re-check the payment with the provider, then return a signup token."""
    if not payload.session_id and not payload.subscription_id:
        raise ValidationError("Session ID or Subscription ID required")

    payment_session = None
    if payload.session_id:
        payment_session = payment_session_service.get_by_session_id(session, payload.session_id)
    if not payment_session and payload.subscription_id:
        payment_session = payment_session_service.get_by_subscription_id(session, payload.subscription_id)
    if not payment_session:
        raise NotFoundError("Payment session not found")

    if payment_session.signup_completed:
        raise ConflictError("Payment session already processed")
    if payment_session.status == PaymentSessionStatus.COMPLETED.value:
        return _signup_token_for(session, payment_session, existed=True)
    if payment_session.status != PaymentSessionStatus.PENDING.value:
        raise ValidationError(f"Payment session is {payment_session.status}")

    if payment_session.provider == PaymentProvider.STRIPE.value:
        checkout = stripe_provider.retrieve_checkout_session(payment_session.session_id)
        if not checkout["paid"]:
            raise ValidationError("Payment has not been confirmed by Stripe")
        confirmed = {
            "subscription_id": checkout["subscription_id"],
            "customer_email": checkout["customer_email"],
            "payment_intent_id": checkout["payment_intent_id"],
        }
    elif payment_session.provider == PaymentProvider.PAYPAL.value:
        paypal = paypal_provider.get_subscription(payment_session.subscription_id)
        if not paypal["active"]:
            raise ValidationError("Payment has not been confirmed by PayPal")
        confirmed = {"customer_email": paypal["customer_email"]}
    else:
        raise ValidationError("RupantorPay payments are confirmed through /api/payment/verify")

    payment_session = payment_session_service.complete_payment_session(session, payment_session, **confirmed)
    return _signup_token_for(session, payment_session, existed=False)


@router.post("/payment/validate-signup-token")
def validate_signup_token(payload: ValidateSignupToken, session: Session = Depends(get_session)):
    payment_session = payment_session_service.validate_signup_token(session, payload.signup_token)
    return {
        "valid": True,
        "payment_session": PaymentSessionRead.model_validate(payment_session),
        "expires_at": payment_session.signup_token_expiry,
    }


@router.post("/payment/verify")
def verify_rupantor_payment(
    payload: VerifyPaymentRequest,
    session: Session = Depends(get_session),
    rupantor: RupantorProvider = Depends(get_rupantor_provider),
):
    """Verify a RupantorPay transaction server-side and settle its payment session."""
    if not any([payload.session_id, payload.subscription_id, payload.transaction_id, payload.order_id]):
        raise ValidationError("Transaction ID or Order ID required")
    if not payload.transaction_id:
        raise ValidationError("Transaction ID missing for verification")

    verification = rupantor.verify_payment(payload.transaction_id)
    if not verification["success"]:
        raise ValidationError("Payment verification failed")

    order_id = verification.get("order_id") or verification["meta_data"].get("order_id") or payload.order_id or payload.session_id
    payment_session = payment_session_service.get_by_session_id(session, order_id) if order_id else None
    if not payment_session or payment_session.provider != PaymentProvider.RUPANTOR.value:
        raise NotFoundError("Payment session not found")

    paid = verification.get("amount")
    if paid is not None and float(paid) + 0.01 < payment_session.amount:
        raise ValidationError("Paid amount does not match the order")

    if payment_session.signup_completed:
        return {"success": True, "user_exists": True}

    if payment_session.status == PaymentSessionStatus.PENDING.value:
        payment_session = payment_session_service.complete_payment_session(
            session,
            payment_session,
            customer_email=verification.get("customer_email"),
            payment_intent_id=payload.transaction_id,
        )

    user = session.get(User, payment_session.user_id) if payment_session.user_id else None
    if user:
        subscription_service.grant_plan_access(session, user, payment_session)
        session.commit()
        return {"success": True, "user_exists": True}

    token = _signup_token_for(session, payment_session, existed=False)
    return {"success": True, "user_exists": False, "signup_token": token.signup_token}


# ==========================================================
# 💳 Checkout
# ==========================================================
@router.post("/payments/stripe/create-checkout-guest", response_model=CheckoutResponse)
def stripe_checkout(
    payload: GuestCheckoutRequest,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
    stripe_provider: StripeProvider = Depends(get_stripe_provider),
):
    plan = _active_plan(session, payload.plan_id)
    billing_period = payload.billing_period.value if payload.billing_period else plan.billing_period
    amount = checkout_amount(plan, billing_period)
    email = payload.customer_email or (current_user.email if current_user else None)

    metadata = {"plan_id": str(plan.id), "billing_period": billing_period}
    if current_user:
        metadata["user_id"] = str(current_user.id)

    checkout = stripe_provider.create_checkout_session(plan, billing_period, amount, email, metadata)
    payment_session_service.create_pending_session(
        session,
        provider=PaymentProvider.STRIPE.value,
        session_id=checkout["session_id"],
        plan=plan,
        amount=amount,
        currency=plan.currency,
        customer_email=email,
        user_id=current_user.id if current_user else None,
        meta_data={**metadata, "created_from": "stripe-checkout"},
    )
    return CheckoutResponse(provider=PaymentProvider.STRIPE.value, session_id=checkout["session_id"], url=checkout["url"])


@router.post("/payments/paypal/create-subscription-guest", response_model=CheckoutResponse)
def paypal_guest_subscription(
    payload: GuestCheckoutRequest,
    session: Session = Depends(get_session),
    paypal_provider: PayPalProvider = Depends(get_paypal_provider),
):
    plan = _active_plan(session, payload.plan_id)
    billing_period = payload.billing_period.value if payload.billing_period else plan.billing_period
    amount = checkout_amount(plan, billing_period)
    session_id = payment_session_service.new_session_id("pp")

    created = paypal_provider.create_subscription(
        plan, billing_period, amount, custom_id=f"session_{session_id}", customer_email=payload.customer_email,
    )
    payment_session_service.create_pending_session(
        session,
        provider=PaymentProvider.PAYPAL.value,
        session_id=session_id,
        subscription_id=created["subscription_id"],
        plan=plan,
        amount=amount,
        currency=plan.currency,
        customer_email=payload.customer_email,
        meta_data={"billing_period": billing_period, "created_from": "paypal-guest"},
    )
    return CheckoutResponse(provider=PaymentProvider.PAYPAL.value, session_id=session_id, url=created["approval_url"])


@router.post("/payments/paypal/create-subscription", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
def paypal_user_subscription(
    payload: GuestCheckoutRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    paypal_provider: PayPalProvider = Depends(get_paypal_provider),
):
    """Subscription for a signed-in user; the webhook links it through ``user_id|plan_id``."""
    plan = _active_plan(session, payload.plan_id)
    billing_period = payload.billing_period.value if payload.billing_period else plan.billing_period
    amount = checkout_amount(plan, billing_period)

    created = paypal_provider.create_subscription(
        plan, billing_period, amount, custom_id=f"{current_user.id}|{plan.id}", customer_email=current_user.email,
    )
    session_id = payment_session_service.new_session_id("pp")
    payment_session_service.create_pending_session(
        session,
        provider=PaymentProvider.PAYPAL.value,
        session_id=session_id,
        subscription_id=created["subscription_id"],
        plan=plan,
        amount=amount,
        currency=plan.currency,
        customer_email=current_user.email,
        user_id=current_user.id,
        meta_data={"billing_period": billing_period, "created_from": "paypal-user"},
    )
    return CheckoutResponse(provider=PaymentProvider.PAYPAL.value, session_id=session_id, url=created["approval_url"])


@router.post("/payments/rupantor/create-session", response_model=CheckoutResponse)
def rupantor_checkout(
    payload: GuestCheckoutRequest,
    session: Session = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
    rupantor: RupantorProvider = Depends(get_rupantor_provider),
):
    plan = _active_plan(session, payload.plan_id)
    billing_period = payload.billing_period.value if payload.billing_period else plan.billing_period
    amount = checkout_amount(plan, billing_period)
    email = payload.customer_email or (current_user.email if current_user else None)
    if not email:
        raise ValidationError("Customer email is required")

    order_id = payment_session_service.new_session_id("rp")
    metadata = {"plan_id": str(plan.id), "billing_period": billing_period}
    if current_user:
        metadata["user_id"] = str(current_user.id)

    created = rupantor.create_payment_session(
        order_id, amount, email, payload.customer_name or (current_user.name if current_user else ""), metadata,
    )
    payment_session_service.create_pending_session(
        session,
        provider=PaymentProvider.RUPANTOR.value,
        session_id=order_id,
        plan=plan,
        amount=amount,
        currency=plan.currency,
        customer_email=email,
        user_id=current_user.id if current_user else None,
        meta_data={**metadata, "created_from": "rupantor-checkout"},
    )
    return CheckoutResponse(provider=PaymentProvider.RUPANTOR.value, session_id=order_id, url=created["payment_url"])


# ==========================================================
# 📄 Subscription (end user)
# ==========================================================
@router.get("/payments/subscription", response_model=Optional[SubscriptionRead])
def my_subscription(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return subscription_service.get_user_subscription(session, current_user.id)


@router.post("/payments/subscription/cancel", response_model=SubscriptionRead)
def cancel_my_subscription(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    stripe_provider: StripeProvider = Depends(get_stripe_provider),
    paypal_provider: PayPalProvider = Depends(get_paypal_provider),
):
    """The one subscription change an end user may make directly."""
    subscription = subscription_service.get_user_subscription(session, current_user.id)
    if not subscription:
        raise NotFoundError("No subscription found")
    if subscription.status == SubscriptionStatus.CANCELED.value:
        raise ValidationError("Subscription is already canceled")

    if subscription.provider == PaymentProvider.STRIPE.value:
        stripe_provider.cancel_subscription(subscription.provider_subscription_id)
    elif subscription.provider == PaymentProvider.PAYPAL.value:
        paypal_provider.cancel_subscription(subscription.provider_subscription_id)

    subscription_service.cancel_subscription(
        session, subscription.provider, subscription.provider_subscription_id, at=utc_now(),
    )
    current_user.add_audit_entry("subscription_canceled", performed_by_id=current_user.id)
    session.add(current_user)
    session.commit()
    session.refresh(subscription)
    logger.info(f"🛑 {current_user.email} canceled {subscription.provider} subscription {subscription.provider_subscription_id}")
    return subscription
