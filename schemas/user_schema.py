# user_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserAction(str, Enum):
    RESEND_INVITE = "resend_invite"
    SEND_PASSWORD_RESET = "send_password_reset"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


# ---------------------------
# Read
# ---------------------------
class SubscriptionSnapshot(BaseModel):
    plan_id: Optional[int] = None
    plan_name: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[datetime] = None
    provider: Optional[str] = None


class UserRead(BaseModel):
    id: int
    email: EmailStr
    phone: Optional[str] = None
    name: str
    role: str
    status: str
    expiry_date: Optional[datetime] = None
    last_login: Optional[datetime] = None
    email_verified: bool = False
    has_password: bool = False
    created_at: datetime
    updated_at: datetime
    subscription: Optional[SubscriptionSnapshot] = None

    model_config = ConfigDict(from_attributes=True)


class AuditEntryRead(BaseModel):
    action: str
    performed_by_id: Optional[int] = None
    timestamp: datetime
    details: Dict[str, Any] = {}

    model_config = ConfigDict(from_attributes=True)


class UserDetailRead(UserRead):
    created_by_id: Optional[int] = None
    created_reason: Optional[str] = None
    created_method: Optional[str] = None
    audit: List[AuditEntryRead] = []


class UserListResponse(BaseModel):
    users: List[UserRead]
    total: int
    page: int
    limit: int
    pages: int


# ---------------------------
# Admin create / update
# ---------------------------
class UserCreate(BaseModel):
    email: EmailStr
    phone: str = Field(..., min_length=5, max_length=30)
    name: Optional[str] = Field(default=None, max_length=100)
    role: UserRole = UserRole.USER
    expiry_date: Optional[datetime] = None


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=5, max_length=30)
    name: Optional[str] = Field(default=None, max_length=100)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    expiry_date: Optional[datetime] = None
    clear_expiry: bool = False
    action: Optional[UserAction] = None


def serialize_user(user, detail: bool = False) -> UserRead:
    """Build the API view of a User row, folding in the subscription snapshot."""
    data = UserRead.model_validate(user).model_dump()
    if user.subscription_plan_id or user.subscription_status:
        data["subscription"] = SubscriptionSnapshot(
            plan_id=user.subscription_plan_id,
            plan_name=user.subscription_plan_name,
            status=user.subscription_status,
            start_date=user.subscription_start_date,
            provider=user.subscription_provider,
        )
    if not detail:
        return UserRead(**data)
    return UserDetailRead(
        **data,
        created_by_id=user.created_by_id,
        created_reason=user.created_reason,
        created_method=user.created_method,
        audit=[AuditEntryRead.model_validate(entry) for entry in user.audit_entries],
    )
