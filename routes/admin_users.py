# routes/admin_users.py
from datetime import timedelta
from typing import Optional
import logging
import math

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from core.config import settings
from core.database import get_session
from core.errors import AppError, ConflictError, NotFoundError, ValidationError
from core.security import create_invite_token, create_reset_token, get_current_admin
from models.models import PaymentSession, Subscription, User, UserRole, UserStatus, utc_now
from schemas.user_schema import (
    UserAction, UserCreate, UserDetailRead, UserListResponse, UserUpdate, serialize_user,
)
from services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin Users"])


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def _commit_user(session: Session, user: User) -> User:
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    except IntegrityError:
        session.rollback()
        raise ConflictError("A user with this email or phone already exists")
    except SQLAlchemyError:
        session.rollback()
        logger.exception("❌ Database error while saving user")
        raise AppError("A database error occurred while saving the user.")


def _issue_invite(user: User) -> str:
    user.invite_token = create_invite_token(user)
    user.invite_token_expiry = utc_now() + timedelta(days=settings.INVITE_TOKEN_EXPIRE_DAYS)
    return user.invite_token


# ----------------------------------------------------------------------
# ✅ List Users
# ----------------------------------------------------------------------
@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    role: Optional[UserRole] = None,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    query = select(User)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(
            func.lower(User.name).like(pattern),
            func.lower(User.email).like(pattern),
            User.phone.like(pattern),
        ))
    if status_filter:
        query = query.where(User.status == status_filter.value)
    if role:
        query = query.where(User.role == role.value)

    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    users = session.exec(
        query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return UserListResponse(
        users=[serialize_user(u) for u in users],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


# ----------------------------------------------------------------------
# ✅ Create User (invite)
# ----------------------------------------------------------------------
@router.post("", response_model=UserDetailRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    background_tasks: BackgroundTasks,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    """Pre-register an email + phone and send an invitation link."""
    email = payload.email.lower()
    phone = payload.phone.strip()

    if payload.expiry_date and payload.expiry_date.replace(tzinfo=None) <= utc_now():
        raise ValidationError("Expiry date must be in the future")
    if session.exec(select(User).where(User.email == email)).first():
        raise ConflictError("A user with this email already exists")
    if session.exec(select(User).where(User.phone == phone)).first():
        raise ConflictError("A user with this phone number already exists")

    user = User(
        email=email,
        phone=phone,
        name=(payload.name or "").strip(),
        role=payload.role.value,
        status=UserStatus.PENDING.value,
        expiry_date=payload.expiry_date.replace(tzinfo=None) if payload.expiry_date else None,
        created_by_id=admin.id,
        created_reason="Admin invitation",
        created_method="admin-invite",
    )
    user.add_audit_entry("created", performed_by_id=admin.id, details={"role": user.role})
    _commit_user(session, user)

    # the invite token embeds the user id, so it is issued after the insert
    token = _issue_invite(user)
    user.add_audit_entry("invite_sent", performed_by_id=admin.id)
    _commit_user(session, user)

    background_tasks.add_task(mailer.send_invite_email, user.email, token)
    logger.info(f"📨 {admin.email} invited {user.email} as {user.role}")
    return serialize_user(user, detail=True)


# ----------------------------------------------------------------------
# ✅ Get User
# ----------------------------------------------------------------------
@router.get("/{user_id}", response_model=UserDetailRead)
def get_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return serialize_user(_get_user(session, user_id), detail=True)


# ----------------------------------------------------------------------
# ✅ Update User / Actions
# ----------------------------------------------------------------------
@router.put("/{user_id}", response_model=UserDetailRead)
def update_user(
    user_id: int,
    payload: UserUpdate,
    background_tasks: BackgroundTasks,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    user = _get_user(session, user_id)
    is_self = user.id == admin.id

    if payload.action:
        _apply_action(payload.action, user, admin, is_self, background_tasks, mailer)
        _commit_user(session, user)
        return serialize_user(user, detail=True)

    changes = {}
    if payload.email is not None and payload.email.lower() != user.email:
        email = payload.email.lower()
        if session.exec(select(User).where(User.email == email, User.id != user.id)).first():
            raise ConflictError("A user with this email already exists")
        changes["email"] = [user.email, email]
        user.email = email
    if payload.phone is not None and payload.phone.strip() != user.phone:
        phone = payload.phone.strip()
        if session.exec(select(User).where(User.phone == phone, User.id != user.id)).first():
            raise ConflictError("A user with this phone number already exists")
        changes["phone"] = [user.phone, phone]
        user.phone = phone
    if payload.name is not None:
        user.name = payload.name.strip()
    if payload.role is not None and payload.role.value != user.role:
        if is_self:
            raise ValidationError("You cannot change your own role")
        changes["role"] = [user.role, payload.role.value]
        user.role = payload.role.value
    if payload.status is not None and payload.status.value != user.status:
        if is_self and payload.status != UserStatus.ACTIVE:
            raise ValidationError("You cannot deactivate your own account")
        if payload.status != UserStatus.PENDING and not user.has_password:
            raise ValidationError("Users without a password stay pending until they accept their invitation")
        changes["status"] = [user.status, payload.status.value]
        user.status = payload.status.value
    if payload.clear_expiry:
        user.expiry_date = None
        changes["expiry_date"] = "cleared"
    elif payload.expiry_date is not None:
        expiry = payload.expiry_date.replace(tzinfo=None)
        if expiry <= utc_now():
            raise ValidationError("Expiry date must be in the future")
        user.expiry_date = expiry
        changes["expiry_date"] = expiry.isoformat()

    user.touch()
    user.add_audit_entry("updated", performed_by_id=admin.id, details={k: str(v) for k, v in changes.items()})
    return serialize_user(_commit_user(session, user), detail=True)


def _apply_action(action: UserAction, user: User, admin: User, is_self: bool, background_tasks: BackgroundTasks, mailer: EmailService) -> None:
    if action == UserAction.RESEND_INVITE:
        if user.has_password:
            raise ValidationError("User has already accepted the invitation")
        token = _issue_invite(user)
        background_tasks.add_task(mailer.send_invite_email, user.email, token)
    elif action == UserAction.SEND_PASSWORD_RESET:
        if not user.has_password:
            raise ValidationError("User has not set a password yet")
        token = create_reset_token(user)
        user.reset_password_token = token
        user.reset_password_expiry = utc_now() + timedelta(hours=settings.RESET_TOKEN_EXPIRE_HOURS)
        background_tasks.add_task(mailer.send_password_reset_email, user.email, user.name, token)
    elif action in (UserAction.ACTIVATE, UserAction.DEACTIVATE) and not user.has_password:
        raise ValidationError("Users without a password stay pending until they accept their invitation")
    elif action == UserAction.ACTIVATE:
        user.status = UserStatus.ACTIVE.value
    elif action == UserAction.DEACTIVATE:
        if is_self:
            raise ValidationError("You cannot deactivate your own account")
        user.status = UserStatus.INACTIVE.value

    user.touch()
    user.add_audit_entry(action.value, performed_by_id=admin.id)
    logger.info(f"🛠️ {admin.email} ran {action.value} on {user.email}")


# ----------------------------------------------------------------------
# ✅ Delete User (hard)
# ----------------------------------------------------------------------
@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    admin: User = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    user = _get_user(session, user_id)
    if user.id == admin.id:
        raise ValidationError("You cannot delete your own account")

    for subscription in session.exec(select(Subscription).where(Subscription.user_id == user.id)).all():
        session.delete(subscription)
    for payment_session in session.exec(select(PaymentSession).where(PaymentSession.user_id == user.id)).all():
        payment_session.user_id = None
        session.add(payment_session)

    email = user.email
    session.delete(user)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"❌ Failed to delete user {user_id}")
        raise AppError("A database error occurred while deleting the user.")

    logger.info(f"🗑️ {admin.email} deleted user {email}")
    return {"message": "User deleted successfully"}
