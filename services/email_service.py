import logging
import re
from typing import Dict, Optional, Any

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings, Settings

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render(template_key: str, variables: Dict[str, Any], config: Optional[Settings] = None) -> Dict[str, str]:
    """Render a configured template into ``{"subject", "body"}``.

    Unknown placeholders are left empty. ``siteName`` is always available.
    """
    config = config or settings
    template = config.email_templates.get(template_key)
    if not template:
        raise KeyError(f"Unknown email template: {template_key}")

    values = {"siteName": config.SITE_NAME, **{k: "" if v is None else str(v) for k, v in variables.items()}}

    def substitute(text: str) -> str:
        return PLACEHOLDER.sub(lambda m: values.get(m.group(1), ""), text or "")

    return {"subject": substitute(template.get("subject", "")), "body": substitute(template.get("body", ""))}


class EmailService:
    """
    Transactional email for BX Library via SendGrid.
    Every send is meant to run from FastAPI BackgroundTasks: failures are
    logged and reported as False, never raised or retried.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings
        self.sendgrid_api_key = self.config.SENDGRID_API_KEY
        self.sender_email = self.config.MAIL_FROM

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    # ============================================================
    # ✅ Core send (synchronous for BackgroundTasks)
    # ============================================================
    def send_template(self, to_email: str, template_key: str, variables: Dict[str, Any]) -> bool:
        try:
            message = render(template_key, variables, self.config)
        except KeyError as e:
            logger.error(f"❌ {e}")
            return False

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {to_email} | Template: {template_key}")
            logger.info(f"Subject: {message['subject']}")
            return True

        try:
            mail = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=message["subject"],
                html_content=message["body"],
            )
            response = SendGridAPIClient(self.sendgrid_api_key).send(mail)
            logger.info(f"✅ '{template_key}' email sent to {to_email}. Status: {response.status_code}")
            return True
        except Exception:
            logger.exception(f"❌ Failed to send '{template_key}' email to {to_email}")
            return False

    # ============================================================
    # ✅ Convenience wrappers
    # ============================================================
    def send_invite_email(self, to_email: str, invite_token: str) -> bool:
        return self.send_template(to_email, "invite", {
            "inviteUrl": f"{self.config.FRONTEND_URL}/accept-invite?token={invite_token}",
            "expiryDays": self.config.INVITE_TOKEN_EXPIRE_DAYS,
            "email": to_email,
        })

    def send_welcome_email(self, to_email: str, user_name: str) -> bool:
        return self.send_template(to_email, "welcome", {
            "userName": user_name,
            "loginUrl": f"{self.config.FRONTEND_URL}/login",
        })

    def send_password_reset_email(self, to_email: str, user_name: str, reset_token: str) -> bool:
        return self.send_template(to_email, "password_reset", {
            "userName": user_name,
            "resetUrl": f"{self.config.FRONTEND_URL}/reset-password?token={reset_token}",
            "expiryHours": self.config.RESET_TOKEN_EXPIRE_HOURS,
        })

    def send_verification_email(self, to_email: str, user_name: str, token: str, plan_name: str = "") -> bool:
        return self.send_template(to_email, "email_verification", {
            "userName": user_name,
            "planName": plan_name,
            "verifyUrl": f"{self.config.FRONTEND_URL}/verify-email?token={token}",
        })


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService()


def get_email_service() -> EmailService:
    return email_service
