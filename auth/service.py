"""
auth/service.py -- Account operations: register, login, refresh, logout,
password change and profile management.

AuthService composes the user store, the password hasher and the token
service. It is the only layer route handlers call, and it only raises
AuthError subclasses -- IntegrityError and other storage exceptions are
translated here (or in TokenService) before they can reach the HTTP layer.

Security notes:
  [C1] login() always runs exactly one bcrypt verification, against the real
       hash or a dummy one, so unknown identities and wrong passwords cost the
       same and raise the same InvalidCredentials.
  change_password() revokes every refresh token of the user afterwards.
       Every other device has to sign in again; we accept that inconvenience.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    EmailTaken,
    InternalError,
    InvalidCredentials,
    InvalidCurrentPassword,
    UniquenessConflict,
    UserNotFound,
    UsernameTaken,
    ValidationError,
)
from auth.models import RefreshTokenRecord, Role, TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher, exceeds_bcrypt_limit
from auth.store import UserStore
from auth.token_service import TokenService

logger = logging.getLogger("inkwell.auth.service")


class AuthService:
    """Usage:
    svc = AuthService(user_store, hasher, token_service)
    user = svc.register("alice", "a@x.com", "pw12345678", name="Alice")
    pair, user = svc.login("alice", "pw12345678")
    pair = svc.refresh_token(pair.refresh_token)
    """

    def __init__(self, users: UserStore, hasher: PasswordHasher, tokens: TokenService) -> None:
        self.users = users
        self.hasher = hasher
        self.tokens = tokens

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        name: str | None = None,
        role: Role | None = None,
    ) -> User:
        """Create an account. Raises UsernameTaken / EmailTaken on conflict."""
        email = _normalize_email(email)
        _check_password_length(password)

        conflict = self._conflict_for(username, email, exclude_id=None)
        if conflict is not None:
            raise conflict

        try:
            hashed = self.hasher.hash(password)
        except (ValueError, TypeError) as exc:
            logger.exception("Password hashing failed during registration")
            raise InternalError() from exc

        user = User(
            username=username,
            email=email,
            name=name or username,
            role=Role(role) if role is not None else Role.author,
            hashed_password=hashed,
        )
        try:
            user.id = self.users.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration.
            raise (self._conflict_for(username, email, exclude_id=None) or UniquenessConflict()) from exc
        except SQLAlchemyError as exc:
            logger.exception("User insert failed during registration")
            raise InternalError() from exc

        logger.info("Registered user_id=%s role=%s", user.id, user.role.value)
        created = self._get_user(user.id)
        return created.public()

    def login(self, identifier: str, password: str) -> tuple[TokenPair, User]:
        """Authenticate by username or email. Raises InvalidCredentials on any mismatch."""
        try:
            if "@" in identifier:
                user = self.users.get_by_email(_normalize_email(identifier))
            else:
                user = self.users.get_by_username(identifier)
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed during login")
            raise InternalError() from exc

        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.hasher.dummy_check(password)
            logger.info("Login failed: unknown identity")
            raise InvalidCredentials()
        if not self.hasher.check(password, user.hashed_password):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise InvalidCredentials()

        pair = self.tokens.issue_token_pair(user.id, user.role)
        logger.info("Login succeeded for user_id=%s", user.id)
        return pair, user.public()

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def refresh_token(self, refresh_token: str) -> TokenPair:
        return self.tokens.refresh_access_token(refresh_token)

    def logout(self, user_id: int, refresh_token: str | None) -> None:
        """Revoke the presented refresh token. Never fails from the caller's view."""
        if not refresh_token:
            return
        try:
            self.tokens.revoke_refresh_token(refresh_token, user_id=user_id)
        except InternalError:
            logger.warning("Logout revoke failed for user_id=%s; ignoring", user_id)

    def logout_all(self, user_id: int) -> int:
        return self.tokens.revoke_all_user_tokens(user_id)

    def list_sessions(self, user_id: int) -> list[RefreshTokenRecord]:
        return self.tokens.list_sessions(user_id)

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Verify, re-hash, persist, then revoke every refresh token of the user."""
        _check_password_length(new_password)
        user = self._get_user(user_id)
        if not self.hasher.check(current_password, user.hashed_password):
            logger.info("Password change rejected for user_id=%s: bad current password", user_id)
            raise InvalidCurrentPassword()

        try:
            hashed = self.hasher.hash(new_password)
        except (ValueError, TypeError) as exc:
            logger.exception("Password hashing failed during password change")
            raise InternalError() from exc
        try:
            self.users.update_user(user_id, hashed_password=hashed)
        except SQLAlchemyError as exc:
            logger.exception("Password update failed for user_id=%s", user_id)
            raise InternalError() from exc

        self.tokens.revoke_all_user_tokens(user_id)
        logger.info("Password changed for user_id=%s; all sessions revoked", user_id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: int) -> User:
        return self._get_user(user_id).public()

    def update_profile(
        self,
        user_id: int,
        *,
        name: str | None = None,
        username: str | None = None,
        email: str | None = None,
    ) -> User:
        """Update non-sensitive fields. Username/email must be unique among other users."""
        user = self._get_user(user_id)
        updates: dict = {}
        if name is not None:
            updates["name"] = name
        if username is not None and username != user.username:
            updates["username"] = username
        if email is not None:
            email = _normalize_email(email)
            if email != user.email:
                updates["email"] = email
        if not updates:
            return user.public()

        conflict = self._conflict_for(updates.get("username"), updates.get("email"), exclude_id=user_id)
        if conflict is not None:
            raise conflict
        try:
            self.users.update_user(user_id, **updates)
        except IntegrityError as exc:
            raise (
                self._conflict_for(updates.get("username"), updates.get("email"), exclude_id=user_id)
                or UniquenessConflict()
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception("Profile update failed for user_id=%s", user_id)
            raise InternalError() from exc
        return self._get_user(user_id).public()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_user(self, user_id: int) -> User:
        try:
            user = self.users.get_by_id(user_id)
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed for user_id=%s", user_id)
            raise InternalError() from exc
        if user is None:
            raise UserNotFound()
        return user

    def _conflict_for(
        self, username: str | None, email: str | None, exclude_id: int | None
    ) -> UniquenessConflict | None:
        """Return the conflict error for the first taken field, if any."""
        try:
            if username is not None:
                other = self.users.get_by_username(username)
                if other is not None and other.id != exclude_id:
                    return UsernameTaken()
            if email is not None:
                other = self.users.get_by_email(email)
                if other is not None and other.id != exclude_id:
                    return EmailTaken()
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed during uniqueness check")
            raise InternalError() from exc
        return None


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _check_password_length(password: str) -> None:
    if exceeds_bcrypt_limit(password):
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
