"""User Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from app.models.user import Role


# Properties to receive via API on creation
class UserCreate(BaseModel):
    """Schema for user registration."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    avatar: str | None = Field(None, max_length=255)


# Properties to receive via API on update
class UserUpdate(BaseModel):
    """Schema for user update. The target user is selected by ``id``."""

    id: int
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    avatar: str | None = Field(None, max_length=255)
    password: str | None = Field(None, min_length=8, max_length=100)
    role: Role | None = None


class UserLogin(BaseModel):
    """Login credentials. Emptiness is reported by the token service."""

    email: str = ""
    password: str = ""


class UserSearch(BaseModel):
    """Paginated, sorted search over name and email."""

    search_term: str = ""
    sort_by: Literal["id", "name", "email", "created_at", "modified_at"] = "created_at"
    order_by: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=100)


# Additional properties to return via API
class User(BaseModel):
    """User schema for API responses."""

    id: int
    name: str
    email: EmailStr
    avatar: str | None = None
    role: Role
    created_at: datetime
    modified_at: datetime

    model_config = {"from_attributes": True}
