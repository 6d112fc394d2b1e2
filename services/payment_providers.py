# services/payment_providers.py
"""Thin clients for the three payment gateways.

Each client only knows how to talk to its provider. Database state changes
live in payment_session_service and subscription_service.
"""
import json
import logging
from typing import Dict, Any, Optional, Mapping

import requests
import stripe

from core.config import settings, Settings
from core.errors import UpstreamError, ValidationError
from models.models import BillingPeriod, Pricing

logger = logging.getLogger(__name__)

YEARLY_DISCOUNT = 0.8


def checkout_amount(plan: Pricing, billing_period: Optional[str] = None) -> float:
    """Monthly plans bought yearly are charged 12 months at 20% off."""
    if billing_period == BillingPeriod.YEARLY.value and plan.billing_period == BillingPeriod.MONTHLY.value:
        return round(plan.price * 12 * YEARLY_DISCOUNT, 2)
    return round(plan.price, 2)


# ============================================================
# 💳 STRIPE
# ============================================================
class StripeProvider:
    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings
        self.enabled = self.config.STRIPE_ENABLED
        if self.enabled:
            stripe.api_key = self.config.STRIPE_SECRET_KEY

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise ValidationError("Stripe is not configured")

    def create_checkout_session(
        self,
        plan: Pricing,
        billing_period: str,
        amount: float,
        customer_email: Optional[str],
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        self._require_enabled()

        price_data: Dict[str, Any] = {
            "currency": plan.currency.lower(),
            "product_data": {"name": plan.name, "description": plan.description or plan.name},
            "unit_amount": int(round(amount * 100)),
        }
        mode = "payment"
        if billing_period in (BillingPeriod.MONTHLY.value, BillingPeriod.YEARLY.value):
            price_data["recurring"] = {"interval": "month" if billing_period == BillingPeriod.MONTHLY.value else "year"}
            mode = "subscription"

        params: Dict[str, Any] = {
            "mode": mode,
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "success_url": f"{self.config.PAYMENT_SUCCESS_URL}?provider=stripe&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": self.config.PAYMENT_CANCEL_URL,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email
        if mode == "subscription":
            params["subscription_data"] = {"metadata": metadata}

        try:
            checkout = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe checkout error: {e}")
            raise UpstreamError("Failed to create Stripe checkout session")

        logger.info(f"✅ Stripe checkout session created: {checkout.id}")
        return {"session_id": checkout.id, "url": checkout.url}

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        """Server-side lookup used by the success page; ``paid`` gates completion."""
        self._require_enabled()
        try:
            checkout = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe session lookup failed for {session_id}: {e}")
            raise UpstreamError("Failed to retrieve Stripe checkout session")

        details = getattr(checkout, "customer_details", None)
        return {
            "paid": getattr(checkout, "payment_status", None) in ("paid", "no_payment_required"),
            "customer_email": getattr(checkout, "customer_email", None) or getattr(details, "email", None),
            "subscription_id": getattr(checkout, "subscription", None),
            "payment_intent_id": getattr(checkout, "payment_intent", None),
        }

    def cancel_subscription(self, subscription_id: str) -> None:
        self._require_enabled()
        try:
            stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe cancel failed for {subscription_id}: {e}")
            raise UpstreamError("Failed to cancel Stripe subscription")

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Verify the stripe-signature header. Raises ValidationError when invalid."""
        if not self.config.STRIPE_WEBHOOK_SECRET:
            raise ValidationError("Stripe webhook secret not configured")
        if not sig_header:
            raise ValidationError("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=sig_header,
                secret=self.config.STRIPE_WEBHOOK_SECRET,
            )
        except ValueError:
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError:
            raise ValidationError("Webhook signature verification failed")
        # signature covers the raw body, so the parsed JSON is trusted
        return json.loads(payload)


# ============================================================
# 🅿️ PAYPAL
# ============================================================
class PayPalProvider:
    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings
        self.enabled = self.config.PAYPAL_ENABLED
        self.base_url = self.config.PAYPAL_API_BASE
        self.timeout = self.config.HTTP_TIMEOUT_SECONDS

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise ValidationError("PayPal is not configured")

    def get_access_token(self) -> str:
        self._require_enabled()
        try:
            response = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.config.PAYPAL_CLIENT_ID, self.config.PAYPAL_CLIENT_SECRET),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()["access_token"]
        except (requests.RequestException, KeyError) as e:
            logger.error(f"❌ PayPal OAuth failed: {e}")
            raise UpstreamError("Failed to authenticate with PayPal")

    def _post(self, path: str, body: Dict[str, Any], access_token: str) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=body,
                headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"❌ PayPal request to {path} failed: {e}")
            raise UpstreamError("PayPal request failed")

    def create_subscription(
        self,
        plan: Pricing,
        billing_period: str,
        amount: float,
        custom_id: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create product, billing plan and subscription; returns the approval URL."""
        token = self.get_access_token()
        product = self._post("/v1/catalogs/products", {
            "name": plan.name,
            "description": plan.description or plan.name,
            "type": "SERVICE",
            "category": "SOFTWARE",
        }, token)

        interval = "YEAR" if billing_period == BillingPeriod.YEARLY.value else "MONTH"
        billing_plan = self._post("/v1/billing/plans", {
            "product_id": product["id"],
            "name": f"{plan.name} ({billing_period})",
            "billing_cycles": [{
                "frequency": {"interval_unit": interval, "interval_count": 1},
                "tenure_type": "REGULAR",
                "sequence": 1,
                "total_cycles": 0,
                "pricing_scheme": {"fixed_price": {"value": f"{amount:.2f}", "currency_code": plan.currency}},
            }],
            "payment_preferences": {"auto_bill_outstanding": True, "payment_failure_threshold": 3},
        }, token)

        body: Dict[str, Any] = {
            "plan_id": billing_plan["id"],
            "custom_id": custom_id,
            "application_context": {
                "brand_name": self.config.SITE_NAME,
                "user_action": "SUBSCRIBE_NOW",
                "return_url": f"{self.config.PAYMENT_SUCCESS_URL}?provider=paypal",
                "cancel_url": self.config.PAYMENT_CANCEL_URL,
            },
        }
        if customer_email:
            body["subscriber"] = {"email_address": customer_email}
        subscription = self._post("/v1/billing/subscriptions", body, token)

        approval_url = next(
            (link["href"] for link in subscription.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        logger.info(f"✅ PayPal subscription created: {subscription.get('id')}")
        return {"subscription_id": subscription.get("id"), "approval_url": approval_url}

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        token = self.get_access_token()
        try:
            response = requests.get(
                f"{self.base_url}/v1/billing/subscriptions/{subscription_id}",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"❌ PayPal subscription lookup failed for {subscription_id}: {e}")
            raise UpstreamError("Failed to retrieve PayPal subscription")

        subscriber = data.get("subscriber") or {}
        return {
            "active": data.get("status") in ("ACTIVE", "APPROVED"),
            "status": data.get("status"),
            "custom_id": data.get("custom_id"),
            "customer_email": subscriber.get("email_address"),
        }

    def cancel_subscription(self, subscription_id: str, reason: str = "Canceled by user") -> None:
        token = self.get_access_token()
        try:
            response = requests.post(
                f"{self.base_url}/v1/billing/subscriptions/{subscription_id}/cancel",
                json={"reason": reason},
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"❌ PayPal cancel failed for {subscription_id}: {e}")
            raise UpstreamError("Failed to cancel PayPal subscription")

    def verify_webhook_signature(self, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
        """Ask PayPal to verify the transmission. Unconfigured webhook id fails closed."""
        if not self.config.PAYPAL_WEBHOOK_ID:
            logger.error("❌ PAYPAL_WEBHOOK_ID not configured: rejecting webhook")
            return False
        try:
            token = self.get_access_token()
            result = self._post("/v1/notifications/verify-webhook-signature", {
                "auth_algo": headers.get("paypal-auth-algo"),
                "cert_id": headers.get("paypal-cert-id"),
                "transmission_id": headers.get("paypal-transmission-id"),
                "transmission_sig": headers.get("paypal-transmission-sig"),
                "transmission_time": headers.get("paypal-transmission-time"),
                "webhook_id": self.config.PAYPAL_WEBHOOK_ID,
                "webhook_event": event,
            }, token)
        except (UpstreamError, ValidationError) as e:
            logger.error(f"❌ PayPal webhook verification error: {e}")
            return False
        return result.get("verification_status") == "SUCCESS"


# ============================================================
# 🇧🇩 RUPANTORPAY
# ============================================================
class RupantorProvider:
    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings
        self.enabled = self.config.RUPANTOR_ENABLED
        self.base_url = self.config.RUPANTOR_BASE_URL.rstrip("/")
        self.timeout = self.config.HTTP_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-API-KEY": self.config.RUPANTOR_API_KEY or "",
            "X-CLIENT": self.config.RUPANTOR_CLIENT,
        }

    def create_payment_session(
        self,
        order_id: str,
        amount: float,
        customer_email: str,
        fullname: str,
        metadata: Dict[str, Any],
    ) -> Dict[str, Any]:
        if not self.enabled:
            raise ValidationError("RupantorPay is not configured")

        payload = {
            "fullname": fullname or "Customer",
            "email": customer_email,
            "amount": amount,
            "success_url": f"{self.config.PAYMENT_SUCCESS_URL}?provider=rupantor&order_id={order_id}",
            "cancel_url": self.config.PAYMENT_CANCEL_URL,
            "webhook_url": f"{self.config.BACKEND_URL}/api/webhooks/rupantor",
            "meta_data": json.dumps({**metadata, "order_id": order_id}),
        }
        try:
            response = requests.post(f"{self.base_url}/checkout", json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"❌ RupantorPay init error: {e}")
            raise UpstreamError("Failed to initialize RupantorPay session")

        payment_url = data.get("payment_url") or data.get("url")
        if not payment_url:
            raise UpstreamError(data.get("message") or "Failed to get payment URL")
        return {"session_id": order_id, "payment_url": payment_url}

    def verify_payment(self, transaction_id: str) -> Dict[str, Any]:
        """Server-side transaction lookup; ``success`` is True only for a paid transaction."""
        if not self.enabled:
            raise ValidationError("RupantorPay is not configured")
        try:
            response = requests.get(
                f"{self.base_url}/verify-payment",
                params={"transaction_id": transaction_id},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(f"❌ RupantorPay verification failed: {e}")
            raise UpstreamError("Failed to verify RupantorPay transaction")

        meta = data.get("meta_data") or {}
        if isinstance(meta, str):
            try:
                meta = json.loads(meta)
            except ValueError:
                meta = {}
        return {**data, "meta_data": meta, "success": str(data.get("status", "")).lower() in ("success", "completed")}


# ============================================================
# ✅ Dependencies (overridable in tests)
# ============================================================
def get_stripe_provider() -> StripeProvider:
    return StripeProvider()


def get_paypal_provider() -> PayPalProvider:
    return PayPalProvider()


def get_rupantor_provider() -> RupantorProvider:
    return RupantorProvider()


def enabled_providers(config: Optional[Settings] = None) -> Dict[str, Any]:
    """Public payment config: which gateways are available, never secrets."""
    config = config or settings
    return {
        "stripe": {"enabled": config.STRIPE_ENABLED, "publishableKey": config.STRIPE_PUBLISHABLE_KEY if config.STRIPE_ENABLED else None},
        "paypal": {"enabled": config.PAYPAL_ENABLED, "clientId": config.PAYPAL_CLIENT_ID if config.PAYPAL_ENABLED else None, "environment": config.PAYPAL_ENVIRONMENT},
        "rupantor": {"enabled": config.RUPANTOR_ENABLED},
    }
