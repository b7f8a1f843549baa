"""
Authentication Pydantic schemas.

Defines request and response schemas for the user endpoints.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from tenapay.app.models.enums import UserRole


class UserRegister(BaseModel):
    """
    Schema for user registration.

    Used by POST /users/register. New wallets start at a zero balance.
    """
    email: EmailStr = Field(..., description="User email address")
    phone: str = Field(..., pattern=r"^251\d{9}$", description="Telebirr phone (251XXXXXXXXX)")
    password: str = Field(..., min_length=6, description="Password (min 6 characters)")


class UserLogin(BaseModel):
    """Login with email or phone."""
    identifier: str = Field(..., description="Email or phone")
    password: str = Field(..., description="Password")


class TokenResponse(BaseModel):
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    user_id: str
    email: str
    phone: str
    role: UserRole


class UserResponse(BaseModel):
    """Used by GET /users/me."""
    class Config:
        from_attributes = True

    id: str
    email: str
    phone: str
    role: UserRole
    balance: Decimal
    is_active: bool
    created_at: datetime
