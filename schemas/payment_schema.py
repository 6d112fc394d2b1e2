# payment_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    INR = "INR"
    BDT = "BDT"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class Provider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    RUPANTOR = "rupantor"


# ---------------------------
# Pricing Plan
# ---------------------------
class PlanFeature(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    included: bool = True
    limit: Optional[str] = None


class PricingCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    price: float = Field(..., ge=0)
    currency: Currency = Currency.USD
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    features: List[PlanFeature] = []
    is_popular: bool = False
    is_active: bool = True
    sort_order: int = 0
    button_text: str = Field(default="Get Started", max_length=50)
    button_link: Optional[str] = None


class PricingUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[Currency] = None
    billing_period: Optional[BillingPeriod] = None
    features: Optional[List[PlanFeature]] = None
    is_popular: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None
    button_text: Optional[str] = Field(default=None, max_length=50)
    button_link: Optional[str] = None


class PricingRead(BaseModel):
    id: int
    name: str
    description: str
    price: float
    currency: str
    billing_period: str
    features: List[Dict[str, Any]] = []
    is_popular: bool
    is_active: bool
    sort_order: int
    button_text: str
    button_link: Optional[str] = None
    formatted_price: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Checkout
# ---------------------------
class GuestCheckoutRequest(BaseModel):
    plan_id: int
    billing_period: Optional[BillingPeriod] = None
    customer_email: Optional[EmailStr] = None
    customer_name: Optional[str] = Field(default=None, max_length=100)


class CheckoutResponse(BaseModel):
    provider: str
    session_id: str
    url: Optional[str] = None


# ---------------------------
# Payment Session
# ---------------------------
class PaymentConfirmation(BaseModel):
    provider: Provider = Provider.STRIPE
    customer_email: Optional[EmailStr] = None
    payment_intent_id: Optional[str] = None


class CreateSessionRequest(BaseModel):
    session_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_data: PaymentConfirmation


class SignupTokenResponse(BaseModel):
    success: bool = True
    signup_token: str
    session_exists: bool = False


class ValidateSignupToken(BaseModel):
    signup_token: str


class VerifyPaymentRequest(BaseModel):
    session_id: Optional[str] = None
    subscription_id: Optional[str] = None
    transaction_id: Optional[str] = None
    order_id: Optional[str] = None


class PaymentSessionRead(BaseModel):
    session_id: str
    provider: str
    status: str
    amount: float
    currency: str
    customer_email: Optional[str] = None
    plan_details: Optional[Dict[str, Any]] = None
    signup_completed: bool

    model_config = ConfigDict(from_attributes=True)


# ---------------------------
# Subscription
# ---------------------------
class SubscriptionRead(BaseModel):
    id: int
    provider: str
    provider_subscription_id: str
    status: str
    billing_period: str
    amount: float
    currency: str
    formatted_amount: str
    start_date: datetime
    end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    last_payment_date: Optional[datetime] = None
    failed_payment_attempts: int
    is_active: bool
    is_in_trial: bool
    days_until_next_billing: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentConfigRead(BaseModel):
    stripe: Dict[str, Any]
    paypal: Dict[str, Any]
    rupantor: Dict[str, Any]
    currency: str = "USD"
