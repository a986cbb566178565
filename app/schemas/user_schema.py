from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime

from app.core.domain import UserRole


class UserLogin(BaseModel):
    """Schema for user login"""
    email: str = Field(..., min_length=3, description="Email address")
    password: str = Field(..., min_length=1, description="User password")

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        return v.lower().strip()


class UserCreate(BaseModel):
    """Schema for an administrator creating an account"""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=6, description="User password")
    role: UserRole = Field(UserRole.USER, description="Global role: admin or user")


class UserResponse(BaseModel):
    """Schema for user response (without sensitive data)"""
    id: int
    email: str
    role: UserRole
    is_active: bool = True
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class Token(BaseModel):
    """Schema for token response"""
    access_token: str
    token_type: str = "bearer"


class UserLoginResponse(BaseModel):
    """Schema for login response with user data and token"""
    user: UserResponse
    access_token: str
    token_type: str = "bearer"
