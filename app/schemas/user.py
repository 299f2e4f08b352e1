"""User-related Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from .base import BaseSchema


class UserLoginRequest(BaseSchema):
    """Schema for user login request."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseSchema):
    """Schema for a successful login."""

    access_token: str
    token_type: str = "bearer"


class UserCreateRequest(BaseSchema):
    """Schema for the admin user creation request."""

    username: str = Field(..., max_length=100, description="Login name")
    password: str = Field(..., min_length=1, description="Plain text password")
    max_tokens: Optional[int] = Field(None, ge=0, description="Daily token cap, defaults to the configured one")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate that username is not empty."""
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")
        return v.strip()


class UserInfoResponse(BaseSchema):
    """Schema for the current user's profile and quota."""

    username: str
    tokens_remaining: int
    max_tokens: int
    personal_prompt: str = ""


class UserSummary(BaseSchema):
    """Schema for one row of the admin user list."""

    username: str
    max_tokens: int
    tokens_used_today: int
    created_at: Optional[datetime] = None


class PersonalPromptUpdate(BaseSchema):
    """Schema for updating the personal prompt."""

    personal_prompt: str = Field(default="", max_length=5000)


class UserProfile(BaseSchema):
    """What the relay needs to know about a user to build the system prompt."""

    username: str
    personal_prompt: str = ""
    is_active: bool = True
