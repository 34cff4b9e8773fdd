"""
API request and response models for Stallmarket REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Credentials (passwords, OTP codes) are never stripped or otherwise rewritten:
a code is compared exactly as the client sent it.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuthResult, Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", something on each side, a dot in the domain.
# Deliverability is proven by the OTP round trip, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

PASSWORD_MIN_LENGTH = 8
# bcrypt only looks at the first 72 bytes; the cap keeps input sizes sane.
PASSWORD_MAX_LENGTH = 128


class _EmailMixin(BaseModel):
    email: str = Field(min_length=3, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        if not re.match(EMAIL_PATTERN, v):
            raise ValueError("Must be a valid email address.")
        return v


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/register."""

    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    name: str = Field(min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank.")
        return v


class VerifyEmailRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/verify-email."""

    code: str = Field(max_length=12)


class EmailOnlyRequest(_EmailMixin):
    """Request body for resend-verification, forgot-password and dev/verify-email."""


class LoginRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/login. No length rules -- a wrong password is just a 401."""

    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class ResetPasswordRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/reset-password."""

    code: str = Field(max_length=12)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


class DevResetPasswordRequest(_EmailMixin):
    """Request body for POST /api/v1/auth/dev/reset-password."""

    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


class RoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}/role."""

    role: Role


class PasswordChange(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}/password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PublicUser(BaseModel):
    """The user fields safe to return to a client. No hash, no pending code."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: Role
    is_verified: bool
    created_at: str = ""

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(
            id=str(user.id),
            email=user.email,
            name=user.name,
            role=user.role,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
        )


class AuthResponse(BaseModel):
    """Success envelope for every /auth endpoint: message, plus token and user when issued."""

    model_config = ConfigDict(frozen=True)

    message: str
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    user: Optional[PublicUser] = None

    @classmethod
    def from_result(cls, result: AuthResult, expires_in: int) -> "AuthResponse":
        """Factory Method: the AuthResult -> wire mapping lives beside the wire model."""
        has_token = result.token is not None
        return cls(
            message=result.message,
            access_token=result.token,
            token_type="bearer" if has_token else None,  # noqa: S106 # nosec B106 -- token type, not a password
            expires_in=expires_in if has_token else None,
            user=PublicUser.from_user(result.user) if result.user is not None else None,
        )


class UserPage(BaseModel):
    """Paginated response for GET /api/v1/users."""

    model_config = ConfigDict(frozen=True)

    data: list[PublicUser]
    total: int
    page: int
    last_page: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
