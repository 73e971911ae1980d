from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime, date
import re
import uuid

from telecare.domain.auth.models import UserRole, Gender


def validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError('Password must be at least 8 characters long')
    if not any(c.isupper() for c in v):
        raise ValueError('Password must contain at least one uppercase letter')
    if not any(c.islower() for c in v):
        raise ValueError('Password must contain at least one lowercase letter')
    if not any(c.isdigit() for c in v):
        raise ValueError('Password must contain at least one digit')
    return v


def validate_username(v: Optional[str]) -> Optional[str]:
    # A username that looks like an email or a contact number could never be used to log in
    if v is not None and ("@" in v or re.fullmatch(r"[0-9]{11}", v)):
        raise ValueError('Username must not be an email address or a contact number')
    return v


class BaseUserSchema(BaseModel):
    """Base schema for user data"""
    name: str = Field(..., min_length=1, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    contact_number: str = Field(..., pattern=r"^[0-9]{11}$")
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None

    @field_validator('name')
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class UserCreate(BaseUserSchema):
    """Schema for self-registration; roles are only granted by an admin"""
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator('password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @field_validator('username')
    @classmethod
    def check_username(cls, v: Optional[str]) -> Optional[str]:
        return validate_username(v)


class UserUpdate(BaseModel):
    """Schema for updating user information"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    contact_number: Optional[str] = Field(None, pattern=r"^[0-9]{11}$")
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    password: Optional[str] = Field(None, min_length=8, max_length=72)
    role: Optional[UserRole] = None

    @field_validator('password')
    @classmethod
    def check_password(cls, v: Optional[str]) -> Optional[str]:
        return validate_password_strength(v) if v is not None else v

    @field_validator('username')
    @classmethod
    def check_username(cls, v: Optional[str]) -> Optional[str]:
        return validate_username(v)


class UserResponse(BaseUserSchema):
    """Schema for user response data"""
    id: uuid.UUID
    role: UserRole
    verified: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    """Schema for paginated user list response"""
    items: List[UserResponse]
    total: int
    page: int
    limit: int
    pages: int


class LoginRequest(BaseModel):
    """Schema for login request; login is an email, 11-digit contact number or username"""
    login: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenDetail(BaseModel):
    token: str
    expires: datetime


class AuthTokens(BaseModel):
    access_token: TokenDetail = Field(..., alias="accessToken")
    refresh_token: TokenDetail = Field(..., alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class LoginResponse(BaseModel):
    user: UserResponse
    tokens: AuthTokens


class RefreshTokenRequest(BaseModel):
    """Schema for refresh and logout requests"""
    refresh_token: Optional[str] = Field(None, alias="refreshToken")

    model_config = ConfigDict(populate_by_name=True)


class AccessTokenResponse(BaseModel):
    access_token: str = Field(..., alias="accessToken")
    expires: datetime

    model_config = ConfigDict(populate_by_name=True)


class ReferenceRequest(BaseModel):
    """Email address or contact number a one-time code should be sent to"""
    reference: str = Field(..., min_length=1, max_length=255)


class ResetTokenResponse(BaseModel):
    token: str


class PasswordResetConfirm(BaseModel):
    new_password: str = Field(..., alias="newPassword", min_length=8, max_length=72)
    confirm_password: str = Field(..., alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('new_password')
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)

    @model_validator(mode='after')
    def passwords_match(self) -> 'PasswordResetConfirm':
        if self.new_password != self.confirm_password:
            raise ValueError('Passwords do not match')
        return self


class AcceptedResponse(BaseModel):
    message: str
    channel: str


class MessageResponse(BaseModel):
    message: str
