# routes/admin_reports.py
import logging

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from core.config import Settings, get_settings
from core.database import get_session
from core.security import get_current_admin, get_current_user
from models.models import User
from services import report_service
from services.payment_providers import enabled_providers

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports & Settings"])


@router.get("/admin/reports")
def get_report(
    report_type: str = Query("overview", alias="type"),
    period: int = Query(30),
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    logger.info(f"📊 {admin.email} requested {report_type} report ({period} days)")
    return report_service.build_report(session, report_type, period)


@router.get("/admin/settings")
def get_admin_settings(
    admin: User = Depends(get_current_admin),
    config: Settings = Depends(get_settings),
):
    """Effective configuration without secrets. Settings are read-only at runtime."""
    return {
        **config.public_settings(),
        "environment": config.ENVIRONMENT,
        "frontendUrl": config.FRONTEND_URL,
        "emailConfigured": bool(config.SENDGRID_API_KEY),
        "mailFrom": config.MAIL_FROM,
        "trackLastLogin": config.TRACK_LAST_LOGIN,
        "inviteTokenExpireDays": config.INVITE_TOKEN_EXPIRE_DAYS,
        "payments": enabled_providers(config),
    }


@router.get("/settings")
def get_public_settings(
    current_user: User = Depends(get_current_user),
    config: Settings = Depends(get_settings),
):
    return config.public_settings()
