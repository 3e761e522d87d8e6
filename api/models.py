"""
API request and response models for tokengate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Opaque keys only ever appear here as encode_key() text.
"""

from datetime import date, datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import User

# Coarse character cap at the edge. bcrypt's real limit is 72 UTF-8 bytes,
# which AuthService checks and reports as WeakPasswordError (400).
_MAX_PASSWORD = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/users. The password is taken verbatim."""

    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    birthdate: date


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. username may be an email address."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    stay_logged_in: bool = False


class PasswordChangeRequest(BaseModel):
    old_password: str = Field(min_length=1, max_length=_MAX_PASSWORD)
    new_password: str = Field(min_length=1, max_length=_MAX_PASSWORD)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    birthdate: Optional[date] = None
    created: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            birthdate=user.birthdate,
            created=user.created,
            last_seen=user.last_seen,
        )


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login.

    session_key is the bearer credential for every session-authenticated route.
    """

    session_key: str
    expires: datetime
    user: UserResponse


class TokenResponse(BaseModel):
    """Response for POST /oauth/token (RFC 6749 section 5.1 field names)."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    message: str


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
