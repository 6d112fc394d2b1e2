"""
Shared fixtures for the API and service tests.

Every test gets a fresh in-memory SQLite database. Email and payment
gateways are replaced through FastAPI dependency overrides; nothing
leaves the process.
"""
import json
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-bxlibrary-tests-only")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SENDGRID_API_KEY"] = ""
os.environ["GOOGLE_API_KEY"] = ""
os.environ["TRACK_LAST_LOGIN"] = "true"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from core.database import create_db_and_tables, get_session  # noqa: E402
from core.errors import ValidationError  # noqa: E402
from core.security import create_session_token, hash_password  # noqa: E402
from main import app  # noqa: E402
from models.models import Pricing, User, UserRole, UserStatus  # noqa: E402
from services.email_service import get_email_service  # noqa: E402
from services.payment_providers import (  # noqa: E402
    get_paypal_provider, get_rupantor_provider, get_stripe_provider,
)

STRONG_PASSWORD = "Str0ng!Pass"


# ============================================================================
# FAKE COLLABORATORS
# ============================================================================

class FakeMailer:
    """Records every email instead of sending it."""

    def __init__(self):
        self.sent = []

    def _record(self, kind, to_email, **data):
        self.sent.append({"kind": kind, "to": to_email, **data})
        return True

    def send_invite_email(self, to_email, invite_token):
        return self._record("invite", to_email, token=invite_token)

    def send_welcome_email(self, to_email, user_name):
        return self._record("welcome", to_email, name=user_name)

    def send_password_reset_email(self, to_email, user_name, reset_token):
        return self._record("password_reset", to_email, token=reset_token)

    def send_verification_email(self, to_email, user_name, token, plan_name=""):
        return self._record("email_verification", to_email, token=token, plan=plan_name)

    def last(self, kind):
        matches = [m for m in self.sent if m["kind"] == kind]
        return matches[-1] if matches else None


class FakeStripe:
    """Signature is valid iff the header equals ``valid``."""

    def __init__(self):
        self.paid = True
        self.created = []

    def construct_event(self, payload, sig_header):
        if sig_header != "valid":
            raise ValidationError("Webhook signature verification failed")
        return json.loads(payload)

    def create_checkout_session(self, plan, billing_period, amount, customer_email, metadata):
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({"session_id": session_id, "amount": amount, "metadata": metadata})
        return {"session_id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def retrieve_checkout_session(self, session_id):
        return {
            "paid": self.paid,
            "customer_email": "buyer@example.com",
            "subscription_id": "sub_test_1",
            "payment_intent_id": None,
        }

    def cancel_subscription(self, subscription_id):
        self.created.append({"canceled": subscription_id})


class FakePayPal:
    def __init__(self):
        self.signature_valid = True
        self.custom_ids = []

    def verify_webhook_signature(self, headers, event):
        return self.signature_valid

    def create_subscription(self, plan, billing_period, amount, custom_id, customer_email=None):
        self.custom_ids.append(custom_id)
        return {"subscription_id": f"I-SUB{len(self.custom_ids)}", "approval_url": "https://paypal.test/approve"}

    def get_subscription(self, subscription_id):
        return {"active": True, "status": "ACTIVE", "custom_id": None, "customer_email": "buyer@example.com"}

    def cancel_subscription(self, subscription_id, reason="Canceled by user"):
        return None


class FakeRupantor:
    def __init__(self):
        self.verification = {"success": False, "meta_data": {}}
        self.verified = []

    def create_payment_session(self, order_id, amount, customer_email, fullname, metadata):
        return {"session_id": order_id, "payment_url": f"https://rupantor.test/pay/{order_id}"}

    def verify_payment(self, transaction_id):
        self.verified.append(transaction_id)
        return dict(self.verification)


# ============================================================================
# DATABASE / APP
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def stripe_fake():
    return FakeStripe()


@pytest.fixture
def paypal_fake():
    return FakePayPal()


@pytest.fixture
def rupantor_fake():
    return FakeRupantor()


@pytest.fixture
def client(session, mailer, stripe_fake, paypal_fake, rupantor_fake):
    """TestClient sharing the test session and wired to fake gateways."""
    def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_email_service] = lambda: mailer
    app.dependency_overrides[get_stripe_provider] = lambda: stripe_fake
    app.dependency_overrides[get_paypal_provider] = lambda: paypal_fake
    app.dependency_overrides[get_rupantor_provider] = lambda: rupantor_fake
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================================================
# ACCOUNTS
# ============================================================================

def make_user(session, email, role=UserRole.USER, status=UserStatus.ACTIVE, password=STRONG_PASSWORD, **fields):
    user = User(
        email=email,
        name=fields.pop("name", email.split("@")[0].title()),
        role=role.value,
        status=status.value,
        password_hash=hash_password(password) if password else None,
        **fields,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin(session):
    return make_user(session, "admin@example.com", role=UserRole.ADMIN, phone="+10000000001")


@pytest.fixture
def reader(session):
    return make_user(session, "reader@example.com", phone="+10000000002")


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_session_token(admin)}"}


@pytest.fixture
def reader_headers(reader):
    return {"Authorization": f"Bearer {create_session_token(reader)}"}


@pytest.fixture
def plan(session):
    plan = Pricing(name="Premium", description="All books", price=29.99, currency="USD", billing_period="monthly")
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return plan
