# routes/setup.py
import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.database import get_session
from core.errors import AuthorizationError, ConflictError
from core.security import create_session_token, hash_password, set_session_cookie, validate_password_strength
from models.models import User, UserRole, UserStatus, utc_now
from schemas.auth_schema import CreateFirstAdmin, LoginResponse
from schemas.user_schema import serialize_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Setup"])


def admin_exists(session: Session) -> bool:
    return session.exec(select(User).where(User.role == UserRole.ADMIN.value)).first() is not None


def create_admin_user(session: Session, *, name: str, email: str, phone: str, password: str, method: str) -> User:
    """Create an active admin account. Shared by the setup endpoint and the CLI."""
    validate_password_strength(password)
    email = email.strip().lower()
    if session.exec(select(User).where(User.email == email)).first():
        raise ConflictError("A user with this email already exists")

    now = utc_now()
    user = User(
        name=name.strip(),
        email=email,
        phone=phone.strip() if phone else None,
        password_hash=hash_password(password),
        role=UserRole.ADMIN.value,
        status=UserStatus.ACTIVE.value,
        email_verified=True,
        verified_at=now,
        verification_method=method,
        created_reason="Initial administrator",
        created_method=method,
    )
    user.add_audit_entry("created", details={"method": method})
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("A user with this email or phone already exists")
    session.refresh(user)
    logger.info(f"👑 Admin account {user.email} created via {method}")
    return user


@router.post("/create-admin", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
def create_first_admin(payload: CreateFirstAdmin, response: Response, session: Session = Depends(get_session)):
    """Bootstrap the first administrator. Closed once any admin exists."""
    if admin_exists(session):
        raise AuthorizationError("An administrator already exists")

    user = create_admin_user(
        session, name=payload.name, email=payload.email, phone=payload.phone,
        password=payload.password, method="setup",
    )
    token = create_session_token(user)
    set_session_cookie(response, token)
    return LoginResponse(message="Administrator created successfully", user=serialize_user(user), token=token)
