"""
API request and response models for the Inkwell auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Any ValueError raised by a validator below surfaces as RequestValidationError,
which api/main.py renders as 400 ERR_VALIDATION_FAILED.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from auth.models import RefreshTokenRecord, Role, TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES, exceeds_bcrypt_limit

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9]+$"
# Shape check only. Deliverability is not our problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
MIN_PASSWORD_LENGTH = 8

# Identifiers and display names are trimmed. Passwords never are: the bytes
# the user typed are the bytes that get hashed.
Trimmed = Annotated[str, StringConstraints(strip_whitespace=True)]


def _check_password_bytes(value: str) -> str:
    if exceeds_bcrypt_limit(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: Trimmed = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Trimmed = Field(max_length=100, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    name: Optional[Trimmed] = Field(default=None, min_length=2, max_length=100)
    role: Optional[Role] = None

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Callers identify themselves with either username or email. When both are
    sent, email wins.
    """

    username: Optional[Trimmed] = Field(default=None, max_length=100)
    email: Optional[Trimmed] = Field(default=None, max_length=100)
    password: str = Field(min_length=1, max_length=256)

    @model_validator(mode="after")
    def require_identifier(self) -> "LoginRequest":
        if not self.username and not self.email:
            raise ValueError("Either username or email is required.")
        return self

    @property
    def identifier(self) -> str:
        return self.email or self.username or ""


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: Trimmed = Field(min_length=1, max_length=512)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout. The body itself is optional."""

    refresh_token: Optional[Trimmed] = Field(default=None, max_length=512)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("New password and confirmation do not match.")
        return self


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/profile. Omitted fields are left alone."""

    name: Optional[Trimmed] = Field(default=None, min_length=2, max_length=100)
    username: Optional[Trimmed] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Optional[Trimmed] = Field(default=None, max_length=100, pattern=EMAIL_PATTERN)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    name: str
    role: Role
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class LoginResponse(TokenResponse):
    """Response for POST /api/v1/auth/login -- the token pair plus the account."""

    user: UserResponse

    @classmethod
    def from_login(cls, pair: TokenPair, user: User) -> "LoginResponse":
        return cls(
            **TokenResponse.from_pair(pair).model_dump(),
            user=UserResponse.from_user(user),
        )


class SessionResponse(BaseModel):
    """One active refresh-token session. The token itself is never returned."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: datetime
    expires_at: datetime

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> "SessionResponse":
        return cls(id=record.id, created_at=record.created_at, expires_at=record.expires_at)


class RevokedResponse(BaseModel):
    """Response for POST /api/v1/auth/logout-all."""

    model_config = ConfigDict(frozen=True)

    message: str
    revoked: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

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

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
