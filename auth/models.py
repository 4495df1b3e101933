"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; api/models.py owns the HTTP shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles. Unknown strings fail at construction."""

    admin = "admin"
    author = "author"


@dataclass
class User:
    """An account as held by the user store.

    hashed_password is populated only inside the store/service boundary.
    Every User the AuthService hands back has it set to None.
    """

    username: str
    email: str
    name: str
    role: Role = Role.author
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public(self) -> User:
        """Return a copy with the password hash stripped."""
        return User(
            id=self.id,
            username=self.username,
            email=self.email,
            name=self.name,
            role=self.role,
            hashed_password=None,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class AccessClaims:
    """Verified contents of an access token."""

    user_id: int
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshTokenRecord:
    """One persisted refresh token. The raw token string is never stored."""

    id: int
    user_id: int
    created_at: datetime
    expires_at: datetime
    revoked: bool


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "Bearer"
