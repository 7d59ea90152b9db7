"""
API request and response models for CourseGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Envelope: every success body carries success=True; every failure body is an
ErrorResponse (success=False, message, and stack outside production).
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User
from auth.passwords import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Character bounds. The 72-byte bcrypt limit is checked separately because
# multi-byte characters reach it well before PASSWORD_MAX.
PASSWORD_MIN = 6
PASSWORD_MAX = 64


def _check_password_bytes(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    avatar: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class ActivateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    activation_token: str = Field(min_length=1)
    activation_code: str = Field(min_length=1, max_length=16)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class SocialAuthRequest(BaseModel):
    """Identity asserted by an upstream provider the frontend already verified."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=2048)


class UpdateInfoRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)


class UpdatePasswordRequest(BaseModel):
    old_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def new_password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class UpdateAvatarRequest(BaseModel):
    avatar: str = Field(min_length=1, max_length=2048)


class UpdateRoleRequest(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    role: Literal["user", "admin"]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a user. There is deliberately no password field."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    avatar: Optional[str] = None
    courses: list[str] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.public())


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    activation_token: str
    activation_code: Optional[str] = None


class SessionResponse(BaseModel):
    success: bool = True
    user: UserOut
    access_token: str


class TokenResponse(BaseModel):
    success: bool = True
    access_token: str


class UserResponse(BaseModel):
    success: bool = True
    user: UserOut


class UserInfoResponse(BaseModel):
    success: bool = True
    user: UserOut
    source: Literal["cache", "directory"]


class UserListResponse(BaseModel):
    success: bool = True
    users: list[UserOut]


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    stack: Optional[str] = None


class HealthResponse(BaseModel):
    success: bool = True
    status: str = "healthy"
    version: str
    components: dict[str, str]
