"""
auth/errors.py -- Error taxonomy for the auth subsystem.

Every failure a caller can observe is an AuthError subclass carrying a stable
(status_code, code) pair. api/main.py turns them into the standard error
envelope; nothing else about the failure (storage errors, stack traces,
which of username/password was wrong) crosses the HTTP boundary.

Layer rule: no imports from api/ and no FastAPI imports -- these are plain
exceptions so services stay framework-free.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses override the three class attributes."""

    status_code: int = 500
    code: str = "ERR_INTERNAL"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "ERR_VALIDATION_FAILED"
    message = "Request validation failed."


class UniquenessConflict(AuthError):
    status_code = 409
    code = "ERR_CONFLICT"
    message = "A user with those details already exists."


class UsernameTaken(UniquenessConflict):
    code = "ERR_USERNAME_EXISTS"
    message = "Username already exists."


class EmailTaken(UniquenessConflict):
    code = "ERR_EMAIL_EXISTS"
    message = "Email already exists."


class InvalidCredentials(AuthError):
    """Login failure. Deliberately identical for unknown user and bad password."""

    status_code = 401
    code = "ERR_INVALID_CREDENTIALS"
    message = "Invalid username, email or password."


class InvalidCurrentPassword(AuthError):
    status_code = 401
    code = "ERR_INVALID_CURRENT_PASSWORD"
    message = "Current password is incorrect."


class MissingToken(AuthError):
    status_code = 401
    code = "ERR_AUTH_MISSING_TOKEN"
    message = "Authorization header required."


class TokenInvalid(AuthError):
    status_code = 401
    code = "ERR_AUTH_TOKEN_INVALID"
    message = "Invalid access token."


class TokenMalformed(TokenInvalid):
    """Structurally unparseable token. Shares TokenInvalid's HTTP code."""

    message = "Malformed access token."


class TokenExpired(AuthError):
    status_code = 401
    code = "ERR_AUTH_TOKEN_EXPIRED"
    message = "Access token has expired."


class RefreshTokenInvalid(AuthError):
    status_code = 401
    code = "ERR_REFRESH_TOKEN_INVALID"
    message = "Invalid or expired refresh token."


class UserNotFound(AuthError):
    status_code = 404
    code = "ERR_USER_NOT_FOUND"
    message = "User not found."


class RateLimitExceeded(AuthError):
    status_code = 429
    code = "ERR_RATE_LIMIT"
    message = "Too many requests. Please try again later."

    def __init__(self, *, remaining: int = 0, reset_after: int = 60) -> None:
        super().__init__()
        self.remaining = remaining
        self.reset_after = reset_after


class InternalError(AuthError):
    """Storage or infrastructure failure. Carries no detail on purpose."""
