from datetime import datetime, timedelta
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.config import settings
from core.database import get_session
from core.errors import AppError, AuthError, AuthorizationError, ValidationError
from core.security import (
    InvalidTokenError, clear_session_cookie, create_reset_token, create_session_token,
    generate_random_token, get_current_user, hash_password, set_session_cookie,
    validate_password_strength, verify_invite_token, verify_password, verify_reset_token,
)
from models.models import User, UserStatus, utc_now
from schemas.auth_schema import (
    AcceptInvite, ForgotPassword, LoginResponse, MessageResponse, ProfileUpdate,
    ResendVerification, ResetPassword, SignupWithPayment, UserLogin, VerifyEmail,
)
from schemas.user_schema import UserRead, serialize_user
from services import payment_session_service, subscription_service
from services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _token_expired(expiry: datetime) -> bool:
    return expiry is None or expiry <= utc_now()


def _commit(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"❌ Database error during {action}")
        raise AppError(f"A database error occurred during {action}.")


# ==========================================================
# ✅ Login / Logout / Me
# ==========================================================
@router.post("/login", response_model=LoginResponse)
def login(credentials: UserLogin, response: Response, session: Session = Depends(get_session)):
    """Password login; issues a session token as body and HttpOnly cookie."""
    user = session.exec(select(User).where(User.email == credentials.email.lower())).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        logger.info(f"🔒 Failed login for {credentials.email}")
        raise AuthError("Invalid email or password")

    if user.status == UserStatus.PENDING.value:
        raise AuthError("Account is not activated. Please verify your email or accept your invitation.")
    if not user.is_access_valid():
        raise AuthorizationError("Account is inactive or has expired")

    user.last_login = utc_now()
    user.add_audit_entry("login", performed_by_id=user.id)
    session.add(user)
    _commit(session, "login")
    session.refresh(user)

    token = create_session_token(user)
    set_session_cookie(response, token)
    logger.info(f"✅ {user.email} logged in")
    return LoginResponse(message="Login successful", user=serialize_user(user), token=token)


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    clear_session_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)):
    return serialize_user(current_user)


# ==========================================================
# ✅ Accept Invite
# ==========================================================
@router.post("/accept-invite", response_model=LoginResponse)
def accept_invite(
    payload: AcceptInvite,
    response: Response,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    """Set name and password for an invited account, activate it and sign in."""
    try:
        claims = verify_invite_token(payload.token)
    except InvalidTokenError:
        raise ValidationError("Invalid or expired invitation link")

    user = session.get(User, int(claims["sub"])) if str(claims.get("sub", "")).isdigit() else None
    if not user or user.invite_token != payload.token or _token_expired(user.invite_token_expiry):
        raise ValidationError("Invalid or expired invitation link")

    validate_password_strength(payload.password)

    now = utc_now()
    user.name = payload.name.strip()
    user.password_hash = hash_password(payload.password)
    user.status = UserStatus.ACTIVE.value
    user.invite_token = None
    user.invite_token_expiry = None
    user.email_verified = True
    user.verified_at = now
    user.verification_method = "invite"
    user.last_login = now
    user.touch()
    user.add_audit_entry("invite_accepted", performed_by_id=user.id)
    session.add(user)
    _commit(session, "invite acceptance")
    session.refresh(user)

    token = create_session_token(user)
    set_session_cookie(response, token)
    background_tasks.add_task(mailer.send_welcome_email, user.email, user.name)
    logger.info(f"🎉 Invitation accepted by {user.email}")
    return LoginResponse(message="Account activated successfully", user=serialize_user(user), token=token)


# ==========================================================
# ✅ Password reset
# ==========================================================
@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    payload: ForgotPassword,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    """Always answers the same way so emails cannot be enumerated."""
    user = session.exec(select(User).where(User.email == payload.email.lower())).first()

    if user and user.has_password and user.status == UserStatus.ACTIVE.value:
        token = create_reset_token(user)
        user.reset_password_token = token
        user.reset_password_expiry = utc_now() + timedelta(hours=settings.RESET_TOKEN_EXPIRE_HOURS)
        user.touch()
        session.add(user)
        _commit(session, "password reset request")
        background_tasks.add_task(mailer.send_password_reset_email, user.email, user.name, token)
    else:
        logger.info(f"ℹ️ Password reset requested for unknown or inactive account {payload.email}")

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPassword, session: Session = Depends(get_session)):
    try:
        claims = verify_reset_token(payload.token)
    except InvalidTokenError:
        raise ValidationError("Invalid or expired reset token")

    user = session.get(User, int(claims["sub"])) if str(claims.get("sub", "")).isdigit() else None
    if not user or user.reset_password_token != payload.token or _token_expired(user.reset_password_expiry):
        raise ValidationError("Invalid or expired reset token")

    validate_password_strength(payload.password)

    user.password_hash = hash_password(payload.password)
    user.reset_password_token = None
    user.reset_password_expiry = None
    user.touch()
    user.add_audit_entry("password_reset", performed_by_id=user.id)
    session.add(user)
    _commit(session, "password reset")
    return MessageResponse(message="Password has been reset successfully")


# ==========================================================
# ✅ Profile
# ==========================================================
@router.put("/update-profile", response_model=UserRead)
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    changed = []
    if payload.name is not None:
        current_user.name = payload.name.strip()
        changed.append("name")

    if payload.new_password is not None:
        if not payload.current_password or not verify_password(payload.current_password, current_user.password_hash):
            raise ValidationError("Current password is incorrect")
        if payload.new_password == payload.current_password:
            raise ValidationError("New password must be different from the current password")
        validate_password_strength(payload.new_password)
        current_user.password_hash = hash_password(payload.new_password)
        changed.append("password")

    if not changed:
        raise ValidationError("Nothing to update")

    current_user.touch()
    current_user.add_audit_entry("profile_updated", performed_by_id=current_user.id, details={"fields": changed})
    session.add(current_user)
    _commit(session, "profile update")
    session.refresh(current_user)
    return serialize_user(current_user)


# ==========================================================
# ✅ Email verification
# ==========================================================
@router.post("/verify-email", response_model=MessageResponse)
def verify_email(
    payload: VerifyEmail,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    user = session.exec(select(User).where(User.email_verification_token == payload.token)).first()
    if not user or _token_expired(user.email_verification_expiry):
        raise ValidationError("Invalid or expired verification token")

    user.email_verified = True
    user.email_verification_token = None
    user.email_verification_expiry = None
    user.verified_at = utc_now()
    user.verification_method = "email"
    if user.status == UserStatus.PENDING.value and user.has_password:
        user.status = UserStatus.ACTIVE.value
    user.touch()
    user.add_audit_entry("email_verified", performed_by_id=user.id)
    session.add(user)
    _commit(session, "email verification")

    background_tasks.add_task(mailer.send_welcome_email, user.email, user.name)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(
    payload: ResendVerification,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    user = session.exec(select(User).where(User.email == payload.email.lower())).first()
    if user and not user.email_verified and user.status == UserStatus.PENDING.value:
        user.email_verification_token = generate_random_token()
        user.email_verification_expiry = utc_now() + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS)
        user.touch()
        session.add(user)
        _commit(session, "verification resend")
        background_tasks.add_task(
            mailer.send_verification_email, user.email, user.name,
            user.email_verification_token, user.subscription_plan_name or "",
        )
    return MessageResponse(message="If your account needs verification, a new email has been sent.")


# ==========================================================
# ✅ Signup with payment
# ==========================================================
@router.post("/signup-with-payment", status_code=status.HTTP_201_CREATED)
def signup_with_payment(
    payload: SignupWithPayment,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    """Consume a signup token from a completed payment and create the account."""
    user = payment_session_service.signup_with_token(
        session,
        token=payload.signup_token,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        phone=payload.phone,
    )

    payment_session = payment_session_service.get_by_signup_token(session, payload.signup_token)
    if payment_session:
        subscription_service.attach_signup_subscription(session, user, payment_session)
        session.refresh(user)

    background_tasks.add_task(
        mailer.send_verification_email, user.email, user.name,
        user.email_verification_token, user.subscription_plan_name or "",
    )
    return {
        "success": True,
        "message": "Account created successfully. Please check your email to verify your account.",
        "user": serialize_user(user).model_dump(mode="json"),
    }
