# core/security.py
from datetime import timedelta
from enum import Enum
from typing import Optional, Dict, Any
import logging
import re
import secrets

from fastapi import Depends, Request, Response
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode
from passlib.context import CryptContext
from sqlmodel import Session

from core.config import settings
from core.database import get_session
from core.errors import AuthError, AuthorizationError, ValidationError
from models.models import User, utc_now

logger = logging.getLogger(__name__)


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SESSION_COOKIE_NAME = "token"

# auto_error=False so the cookie can be tried when no header is sent
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

PASSWORD_RULES = [
    (re.compile(r".{8,}"), "Password must be at least 8 characters long"),
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"\d"), "Password must contain at least one number"),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain at least one special character"),
]


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify password using Argon2. Accounts without a password never match."""
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def validate_password_strength(password: str) -> None:
    """Raise ValidationError listing the first rule the password breaks."""
    for pattern, message in PASSWORD_RULES:
        if not pattern.search(password or ""):
            raise ValidationError(message)


def generate_random_token() -> str:
    """Opaque 64-hex token for email verification links."""
    return secrets.token_hex(32)


# ========================================
# 🔑 Typed Tokens
# ========================================
class TokenKind(str, Enum):
    INVITE = "invite"
    RESET = "reset"
    SESSION = "session"


class InvalidTokenError(Exception):
    """Token signature, expiry or type check failed."""


def default_ttl(kind: TokenKind) -> timedelta:
    if kind == TokenKind.INVITE:
        return timedelta(days=settings.INVITE_TOKEN_EXPIRE_DAYS)
    if kind == TokenKind.RESET:
        return timedelta(hours=settings.RESET_TOKEN_EXPIRE_HOURS)
    return timedelta(hours=settings.SESSION_TIMEOUT_HOURS)


def issue_token(kind: TokenKind, claims: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
    to_encode = dict(claims)
    now = utc_now()
    to_encode.update({
        "type": kind.value,
        "iat": now,
        "exp": now + (ttl or default_ttl(kind)),
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str, kind: TokenKind) -> Dict[str, Any]:
    """Decode a token and check it carries the expected ``type`` claim."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e

    # base64url leaves spare bits in the last signature character; only the
    # canonical encoding is accepted so every token string has one spelling
    signature = token.rsplit(".", 1)[-1]
    if base64url_encode(base64url_decode(signature.encode("utf-8"))).decode("ascii") != signature:
        raise InvalidTokenError("Signature is not canonically encoded")

    if payload.get("type") != kind.value:
        raise InvalidTokenError(f"Expected {kind.value} token, got {payload.get('type')!r}")
    return payload


def _user_claims(user: User) -> Dict[str, Any]:
    return {"sub": str(user.id), "email": user.email, "role": user.role}


def create_invite_token(user: User) -> str:
    return issue_token(TokenKind.INVITE, _user_claims(user))


def create_reset_token(user: User) -> str:
    return issue_token(TokenKind.RESET, _user_claims(user))


def create_session_token(user: User) -> str:
    return issue_token(TokenKind.SESSION, _user_claims(user))


def verify_invite_token(token: str) -> Dict[str, Any]:
    return verify_token(token, TokenKind.INVITE)


def verify_reset_token(token: str) -> Dict[str, Any]:
    return verify_token(token, TokenKind.RESET)


def verify_session_token(token: str) -> Dict[str, Any]:
    return verify_token(token, TokenKind.SESSION)


# ========================================
# 🍪 Session Cookie
# ========================================
def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TIMEOUT_HOURS * 3600,
        httponly=True,
        samesite="strict",
        secure=settings.IS_PRODUCTION,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        samesite="strict",
        secure=settings.IS_PRODUCTION,
        path="/",
    )


# ========================================
# 👤 Authentication & Role Checks
# ========================================
def _resolve_user(request: Request, token: Optional[str], session: Session) -> User:
    token = token or request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise AuthError("Authentication required")

    try:
        claims = verify_session_token(token)
    except InvalidTokenError:
        raise AuthError("Invalid or expired token")

    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise AuthError("Invalid token payload")

    user = session.get(User, user_id)
    if not user:
        raise AuthError("User not found")
    if not user.is_access_valid():
        raise AuthorizationError("Account is inactive or has expired")
    return user


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Bearer header first, then the session cookie."""
    user = _resolve_user(request, token, session)

    if settings.TRACK_LAST_LOGIN:
        user.last_login = utc_now()
        session.add(user)
        session.commit()
        session.refresh(user)
    return user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require the admin role."""
    if not current_user.is_admin:
        raise AuthorizationError("Admin privileges required")
    return current_user


def get_optional_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> Optional[User]:
    """Like get_current_user, but anonymous callers get None."""
    try:
        return _resolve_user(request, token, session)
    except (AuthError, AuthorizationError):
        return None
