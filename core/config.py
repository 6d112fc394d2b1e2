# ==================================================================================
# core/config.py - BX Library Configuration (SendGrid + Stripe + PayPal + RupantorPay)
# ==================================================================================
from typing import Dict, List, Optional
import logging
import sys

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# Default email templates. Placeholders use {{var}} syntax and can be
# overridden with the EMAIL_TEMPLATES env var (JSON object).
DEFAULT_EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {
    "invite": {
        "subject": "You're invited to {{siteName}}",
        "body": (
            "<p>Hello,</p>"
            "<p>You have been invited to join <strong>{{siteName}}</strong>.</p>"
            '<p><a href="{{inviteUrl}}">Accept your invitation</a></p>'
            "<p>This invitation expires in {{expiryDays}} days.</p>"
        ),
    },
    "welcome": {
        "subject": "Welcome to {{siteName}}",
        "body": (
            "<p>Hi {{userName}},</p>"
            "<p>Your account is active. Start reading at "
            '<a href="{{loginUrl}}">{{siteName}}</a>.</p>'
        ),
    },
    "password_reset": {
        "subject": "Reset your {{siteName}} password",
        "body": (
            "<p>Hi {{userName}},</p>"
            '<p><a href="{{resetUrl}}">Reset your password</a></p>'
            "<p>This link expires in {{expiryHours}} hour(s). "
            "If you didn't request it, ignore this email.</p>"
        ),
    },
    "email_verification": {
        "subject": "Verify your email for {{siteName}}",
        "body": (
            "<p>Hi {{userName}},</p>"
            "<p>Thanks for subscribing to {{planName}}.</p>"
            '<p><a href="{{verifyUrl}}">Verify your email address</a></p>'
        ),
    },
}


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./bxlibrary.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    SESSION_TIMEOUT_HOURS: int = 24
    INVITE_TOKEN_EXPIRE_DAYS: int = 7
    RESET_TOKEN_EXPIRE_HOURS: int = 1
    SIGNUP_TOKEN_EXPIRE_HOURS: int = 24
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PENDING_SESSION_EXPIRE_HOURS: int = 48
    TRACK_LAST_LOGIN: bool = True

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: Optional[str] = None
    MAIL_FROM: Optional[str] = None
    EMAIL_TEMPLATES: Dict[str, Dict[str, str]] = {}

    # ------------------------
    # FRONTEND & BACKEND CONFIG
    # ------------------------
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # ------------------------
    # SITE / BRANDING / READER
    # ------------------------
    SITE_NAME: str = "BX Library"
    SITE_DESCRIPTION: str = "Your digital library"
    PRIMARY_COLOR: str = "#3B82F6"
    LOGO_URL: Optional[str] = None
    SUPPORT_EMAIL: Optional[str] = None
    DEFAULT_READER_MODE: str = "embed"  # 'embed' | 'pdfjs' | 'smart'
    ALLOW_DOWNLOADS: bool = False
    BOOKS_PER_PAGE: int = 12
    MAINTENANCE_MODE: bool = False

    # ------------------------
    # STRIPE CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None

    # ------------------------
    # PAYPAL CONFIG
    # ------------------------
    PAYPAL_CLIENT_ID: Optional[str] = None
    PAYPAL_CLIENT_SECRET: Optional[str] = None
    PAYPAL_WEBHOOK_ID: Optional[str] = None
    PAYPAL_ENVIRONMENT: str = "sandbox"  # 'sandbox' | 'live'

    # ------------------------
    # RUPANTORPAY CONFIG
    # ------------------------
    RUPANTOR_API_KEY: Optional[str] = None
    RUPANTOR_CLIENT: str = "bxlibrary"
    RUPANTOR_BASE_URL: str = "https://payment.rupantorpay.com/api/payment"

    # ------------------------
    # GOOGLE DRIVE
    # ------------------------
    GOOGLE_API_KEY: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: int = 30

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def STRIPE_ENABLED(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    @property
    def PAYPAL_ENABLED(self) -> bool:
        return bool(self.PAYPAL_CLIENT_ID and self.PAYPAL_CLIENT_SECRET)

    @property
    def RUPANTOR_ENABLED(self) -> bool:
        return bool(self.RUPANTOR_API_KEY)

    @property
    def PAYPAL_API_BASE(self) -> str:
        if self.PAYPAL_ENVIRONMENT.lower() == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    @property
    def PAYMENT_SUCCESS_URL(self) -> str:
        return f"{self.FRONTEND_URL}/payment/success"

    @property
    def PAYMENT_CANCEL_URL(self) -> str:
        return f"{self.FRONTEND_URL}/pricing?canceled=true"

    @property
    def email_templates(self) -> Dict[str, Dict[str, str]]:
        """Defaults merged with any configured overrides."""
        merged = {key: dict(value) for key, value in DEFAULT_EMAIL_TEMPLATES.items()}
        for key, value in self.EMAIL_TEMPLATES.items():
            merged.setdefault(key, {}).update(value)
        return merged

    def public_settings(self) -> Dict:
        """Non-secret subset exposed to the frontend."""
        return {
            "siteName": self.SITE_NAME,
            "siteDescription": self.SITE_DESCRIPTION,
            "primaryColor": self.PRIMARY_COLOR,
            "logoUrl": self.LOGO_URL,
            "supportEmail": self.SUPPORT_EMAIL,
            "defaultReaderMode": self.DEFAULT_READER_MODE,
            "allowDownloads": self.ALLOW_DOWNLOADS,
            "booksPerPage": self.BOOKS_PER_PAGE,
            "maintenanceMode": self.MAINTENANCE_MODE,
            "sessionTimeoutHours": self.SESSION_TIMEOUT_HOURS,
        }

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    logger.info(f"✅ Environment loaded: {settings.ENVIRONMENT}, Debug: {settings.DEBUG}")
except ValidationError as e:
    logger.error(f"❌ Environment configuration error: missing or invalid settings!\n{e}")
    sys.exit(1)


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return settings
