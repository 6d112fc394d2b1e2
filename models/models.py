# bxlibrary_backend/models.py
from typing import Optional, List, Dict, Any
from datetime import datetime, timedelta, timezone
from enum import Enum
import secrets

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint, Column, JSON, Text


def utc_now() -> datetime:
    """Naive UTC timestamp (stored the same way on SQLite and PostgreSQL)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    RUPANTOR = "rupantor"


class PaymentSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PENDING = "pending"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    INR = "INR"
    BDT = "BDT"


CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "INR": "₹", "BDT": "৳"}


class BookStatus(str, Enum):
    PUBLISHED = "published"
    DRAFT = "draft"
    ARCHIVED = "archived"


class SmartBookStatus(str, Enum):
    PENDING = "pending"
    PARSED = "parsed"


# ============================================================
# LINK MODEL
# ============================================================
class BookCategoryLink(SQLModel, table=True):
    __tablename__ = "book_category_link"
    book_id: int = Field(foreign_key="book.id", primary_key=True)
    category_id: int = Field(foreign_key="category.id", primary_key=True)


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255)
    phone: Optional[str] = Field(default=None, index=True, unique=True, max_length=30)
    name: str = Field(default="", max_length=100)
    password_hash: Optional[str] = Field(default=None)

    role: str = Field(default=UserRole.USER.value, max_length=20, index=True)
    status: str = Field(default=UserStatus.PENDING.value, max_length=20, index=True)
    expiry_date: Optional[datetime] = None
    last_login: Optional[datetime] = None

    invite_token: Optional[str] = Field(default=None, sa_column=Column(Text))
    invite_token_expiry: Optional[datetime] = None
    reset_password_token: Optional[str] = Field(default=None, sa_column=Column(Text))
    reset_password_expiry: Optional[datetime] = None

    email_verified: bool = Field(default=False)
    email_verification_token: Optional[str] = Field(default=None, index=True, max_length=128)
    email_verification_expiry: Optional[datetime] = None

    # Subscription snapshot (denormalized from the plan at signup time)
    subscription_plan_id: Optional[int] = Field(default=None, foreign_key="pricing.id")
    subscription_plan_name: Optional[str] = None
    subscription_status: Optional[str] = Field(default=None, max_length=20)
    subscription_start_date: Optional[datetime] = None
    subscription_provider: Optional[str] = Field(default=None, max_length=20)
    subscription_payment_session_id: Optional[int] = None
    subscription_external_id: Optional[str] = None

    # Creation audit
    created_by_id: Optional[int] = Field(default=None)
    created_reason: Optional[str] = None
    created_method: Optional[str] = None
    verified_at: Optional[datetime] = None
    verification_method: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    audit_entries: List["AuditEntry"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={
            "foreign_keys": "[AuditEntry.user_id]",
            "cascade": "all, delete-orphan",
            "order_by": "AuditEntry.id",
        },
    )
    reading_sessions: List["ReadingSession"] = Relationship(
        back_populates="user",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def is_access_valid(self, now: Optional[datetime] = None) -> bool:
        """Active and not past the (optional) expiry date."""
        if self.status != UserStatus.ACTIVE.value:
            return False
        if self.expiry_date is None:
            return True
        return self.expiry_date > (now or utc_now())

    def add_audit_entry(
        self,
        action: str,
        performed_by_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "AuditEntry":
        entry = AuditEntry(action=action, performed_by_id=performed_by_id, details=details or {})
        self.audit_entries.append(entry)
        return entry

    def touch(self) -> None:
        self.updated_at = utc_now()


class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    action: str = Field(max_length=50)
    performed_by_id: Optional[int] = Field(default=None)
    timestamp: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    user: Optional[User] = Relationship(
        back_populates="audit_entries",
        sa_relationship_kwargs={"foreign_keys": "[AuditEntry.user_id]"},
    )


# ============================================================
# PRICING
# ============================================================
class Pricing(SQLModel, table=True):
    __tablename__ = "pricing"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, index=True, unique=True)
    description: str = Field(default="", max_length=500)
    price: float = Field(default=0.0, ge=0)
    currency: str = Field(default=Currency.USD.value, max_length=3)
    billing_period: str = Field(default=BillingPeriod.MONTHLY.value, max_length=20)
    features: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    is_popular: bool = Field(default=False)
    is_active: bool = Field(default=True, index=True)
    sort_order: int = Field(default=0)
    button_text: str = Field(default="Get Started", max_length=50)
    button_link: Optional[str] = None

    created_by_id: Optional[int] = Field(default=None)
    updated_by_id: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def formatted_price(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, "$")
        return f"{symbol}{self.price:.2f}"

    def details_snapshot(self) -> Dict[str, Any]:
        """Plan details copied onto a payment session."""
        return {
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "billing_period": self.billing_period,
            "features": list(self.features or []),
        }


# ============================================================
# PAYMENT SESSION
# ============================================================
class PaymentSession(SQLModel, table=True):
    __tablename__ = "payment_session"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(unique=True, index=True, max_length=255)
    subscription_id: Optional[str] = Field(default=None, index=True, max_length=255)
    provider: str = Field(default=PaymentProvider.STRIPE.value, max_length=20)

    plan_id: Optional[int] = Field(default=None, foreign_key="pricing.id")
    plan_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    amount: float = Field(default=0.0)
    currency: str = Field(default=Currency.USD.value, max_length=3)
    status: str = Field(default=PaymentSessionStatus.PENDING.value, max_length=20, index=True)

    customer_email: Optional[str] = Field(default=None, max_length=255)
    payment_intent_id: Optional[str] = Field(default=None, max_length=255)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")

    signup_token: Optional[str] = Field(default=None, unique=True, index=True, max_length=64)
    signup_token_expiry: Optional[datetime] = None
    signup_completed: bool = Field(default=False)

    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)

    def generate_signup_token(self, ttl_hours: int = 24) -> str:
        """Assign a fresh 64-hex signup token valid for ``ttl_hours``."""
        self.signup_token = secrets.token_hex(32)
        self.signup_token_expiry = utc_now() + timedelta(hours=ttl_hours)
        return self.signup_token

    def is_signup_token_valid(self, now: Optional[datetime] = None) -> bool:
        return bool(
            self.signup_token
            and self.signup_token_expiry
            and self.signup_token_expiry > (now or utc_now())
            and self.status == PaymentSessionStatus.COMPLETED.value
            and not self.signup_completed
        )


# ============================================================
# SUBSCRIPTION
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"
    __table_args__ = (
        UniqueConstraint("provider", "provider_subscription_id", name="uq_provider_subscription"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    pricing_plan_id: Optional[int] = Field(default=None, foreign_key="pricing.id")
    provider: str = Field(max_length=20)
    provider_subscription_id: str = Field(max_length=255, index=True)
    provider_customer_id: Optional[str] = Field(default=None, max_length=255)

    status: str = Field(default=SubscriptionStatus.PENDING.value, max_length=20, index=True)
    billing_period: str = Field(default=BillingPeriod.MONTHLY.value, max_length=20)
    amount: float = Field(default=0.0)
    currency: str = Field(default=Currency.USD.value, max_length=3)

    start_date: datetime = Field(default_factory=utc_now)
    end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None

    last_payment_date: Optional[datetime] = None
    last_payment_amount: Optional[float] = None
    failed_payment_attempts: int = Field(default=0)

    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @staticmethod
    def calculate_next_billing_date(start: datetime, billing_period: str) -> Optional[datetime]:
        if billing_period == BillingPeriod.MONTHLY.value:
            month = start.month % 12 + 1
            year = start.year + (1 if start.month == 12 else 0)
            # clamp e.g. Jan 31 -> Feb 28/29
            for day in (start.day, 30, 29, 28):
                try:
                    return start.replace(year=year, month=month, day=day)
                except ValueError:
                    continue
        if billing_period == BillingPeriod.YEARLY.value:
            try:
                return start.replace(year=start.year + 1)
            except ValueError:
                return start.replace(year=start.year + 1, day=28)
        return None

    @property
    def is_active(self) -> bool:
        if self.status != SubscriptionStatus.ACTIVE.value:
            return False
        return self.end_date is None or self.end_date > utc_now()

    @property
    def is_in_trial(self) -> bool:
        if not (self.trial_start and self.trial_end):
            return False
        return self.trial_start <= utc_now() <= self.trial_end

    @property
    def days_until_next_billing(self) -> Optional[int]:
        if not self.next_billing_date:
            return None
        delta = self.next_billing_date - utc_now()
        return max(0, delta.days + (1 if delta.seconds else 0))

    @property
    def formatted_amount(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, "$")
        return f"{symbol}{self.amount:.2f}"


# ============================================================
# CATALOG
# ============================================================
class Category(SQLModel, table=True):
    __tablename__ = "category"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100, index=True)
    description: str = Field(default="", max_length=500)
    color: str = Field(default="#3B82F6", max_length=7)
    is_active: bool = Field(default=True)
    book_count: int = Field(default=0)

    created_by_id: Optional[int] = Field(default=None)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    books: List["Book"] = Relationship(back_populates="categories", link_model=BookCategoryLink)


class Book(SQLModel, table=True):
    __tablename__ = "book"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=200, index=True)
    author: str = Field(max_length=100, index=True)
    description: str = Field(default="", max_length=1000)

    drive_url: str
    drive_file_id: str = Field(index=True, max_length=255)
    images: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    thumbnail_url: Optional[str] = None

    status: str = Field(default=BookStatus.PUBLISHED.value, max_length=20, index=True)
    published_at: Optional[datetime] = None
    file_size: Optional[int] = None
    page_count: Optional[int] = None
    read_count: int = Field(default=0)
    last_read_at: Optional[datetime] = None

    created_by_id: Optional[int] = Field(default=None)
    updated_by_id: Optional[int] = Field(default=None)
    is_deleted: bool = Field(default=False, index=True)
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    categories: List[Category] = Relationship(back_populates="books", link_model=BookCategoryLink)
    smart_content: Optional["SmartBookContent"] = Relationship(
        back_populates="book",
        sa_relationship_kwargs={"uselist": False, "cascade": "all, delete-orphan"},
    )


class SmartBookContent(SQLModel, table=True):
    __tablename__ = "smart_book_content"

    id: Optional[int] = Field(default=None, primary_key=True)
    book_id: int = Field(foreign_key="book.id", unique=True, index=True)
    status: str = Field(default=SmartBookStatus.PENDING.value, max_length=20)
    pages: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    last_edited_by_id: Optional[int] = Field(default=None)
    last_edited_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    book: Optional[Book] = Relationship(back_populates="smart_content")


# ============================================================
# READING SESSION
# ============================================================
class ReadingSession(SQLModel, table=True):
    __tablename__ = "reading_session"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_reading_user_book"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    book_id: int = Field(foreign_key="book.id", index=True)
    current_page: int = Field(default=1)
    total_pages: Optional[int] = None
    progress_percentage: float = Field(default=0.0)
    started_at: datetime = Field(default_factory=utc_now)
    last_accessed_at: datetime = Field(default_factory=utc_now)
    total_reading_time: int = Field(default=0)  # minutes
    completed_at: Optional[datetime] = None

    user: Optional[User] = Relationship(back_populates="reading_sessions")

    def update_progress(self, current_page: int, total_pages: Optional[int] = None, minutes: int = 0) -> None:
        self.current_page = max(1, current_page)
        if total_pages:
            self.total_pages = total_pages
        if self.total_pages:
            self.progress_percentage = round(min(100.0, self.current_page / self.total_pages * 100), 2)
        self.total_reading_time += max(0, minutes)
        self.last_accessed_at = utc_now()
        if self.progress_percentage >= 95 and not self.completed_at:
            self.completed_at = utc_now()


# ============================================================
# WEBHOOK EVENT LOG
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"
    __table_args__ = (UniqueConstraint("provider", "event_id", name="uq_webhook_provider_event"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(max_length=20)
    event_id: str = Field(index=True, max_length=255)
    event_type: str = Field(max_length=100, index=True)

    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
