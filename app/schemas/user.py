"""User and authentication schemas."""

import re
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from app.schemas.base import CamelModel

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    return value


class UserCreate(CamelModel):
    email: str = Field(..., max_length=255)
    username: str = Field(..., min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=6, max_length=72)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _normalize_email(value)


class UserLogin(CamelModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdate(CamelModel):
    """Profile fields a user may change. Omitted fields are left as is."""

    username: Optional[str] = Field(None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    avatar: Optional[str] = Field(None, max_length=512)
    bio: Optional[str] = Field(None, max_length=2000)


class UserSummary(CamelModel):
    """Public owner details embedded in tree responses."""

    id: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None


class UserRead(UserSummary):
    email: str
    bio: Optional[str] = None
    is_verified: bool = False
    created_at: Optional[datetime] = None


class AuthResponse(CamelModel):
    user: UserRead
    token: str
