"""
Pydantic schemas for account-related requests and responses.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    """Base account schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=50)


class UserCreate(UserBase):
    """Schema for creating a new account."""
    role: str = Field("user", description="Initial role: user, admin or superadmin")


class UserUpdate(BaseModel):
    """Schema for updating account details. Role changes go through /permissions."""
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None


class UserResponse(UserBase):
    """Schema for account responses."""
    id: str
    role: str
    is_active: bool
    permissions: List[str] = []
    created_by_id: Optional[str] = None
    updated_by_id: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserListResponse(BaseModel):
    success: bool = True
    count: int
    total: int
    users: List[UserResponse]


class UserActionResponse(BaseModel):
    success: bool = True
    message: str
    user: Optional[UserResponse] = None
