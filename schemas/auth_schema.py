# auth_schema.py
from pydantic import BaseModel, EmailStr, Field
from typing import Optional

from .user_schema import UserRead


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    message: str
    user: UserRead
    token: str


class AcceptInvite(BaseModel):
    token: str
    name: str = Field(..., min_length=1, max_length=100)
    password: str


class ForgotPassword(BaseModel):
    email: EmailStr


class ResetPassword(BaseModel):
    token: str
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class VerifyEmail(BaseModel):
    token: str


class ResendVerification(BaseModel):
    email: EmailStr


class SignupWithPayment(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=30)
    password: str
    signup_token: str = Field(..., min_length=64, max_length=64)


class CreateFirstAdmin(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=30)
    password: str


class MessageResponse(BaseModel):
    message: str
