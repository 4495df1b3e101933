"""
auth/token_service.py -- Token-pair issuance, rotation and revocation.

Session lifecycle (derived from refresh-token state, never stored as a field):

    Active --refresh--> Revoked   (and a new Active token is issued)
    Active --logout---> Revoked
    Active --time-----> Expired   (treated exactly like Revoked)
    Revoked/Expired are terminal: any refresh fails with RefreshTokenInvalid.

Rotation-on-use limits a stolen refresh token to one hop. When a token that
exists but is already revoked comes back, that is the classic sign of a
leaked-and-replayed token: we log it at WARNING with the owning user id. The
caller still gets the same RefreshTokenInvalid as for an unknown token.

Error translation: storage exceptions (SQLAlchemyError) never leave this
module. They are logged and replaced with InternalError so callers learn
nothing about why a lookup failed. Nothing here retries -- a retried refresh
would consume a second token behind the client's back.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import InternalError, RefreshTokenInvalid
from auth.models import AccessClaims, RefreshTokenRecord, Role, TokenPair, User
from auth.refresh_store import RefreshTokenStore
from auth.tokens import TokenCodec

logger = logging.getLogger("inkwell.auth.token_service")


class UserLookup(Protocol):
    def get_by_id(self, user_id: int) -> User | None: ...


class TokenService:
    def __init__(self, codec: TokenCodec, refresh_store: RefreshTokenStore, users: UserLookup) -> None:
        self.codec = codec
        self.refresh_store = refresh_store
        self.users = users

    def issue_token_pair(self, user_id: int, role: Role) -> TokenPair:
        """Create one refresh token and one access token for a fresh login."""
        try:
            refresh_token, refresh_expires_at = self.refresh_store.create(user_id)
        except SQLAlchemyError as exc:
            logger.exception("Refresh token create failed for user_id=%s", user_id)
            raise InternalError() from exc
        return self._pair(user_id, role, refresh_token, refresh_expires_at)

    def refresh_access_token(self, refresh_token: str) -> TokenPair:
        """Consume refresh_token and return a new pair. See module docstring."""
        try:
            record, new_refresh, new_expires_at = self.refresh_store.rotate(refresh_token)
        except RefreshTokenInvalid:
            self._log_rejected_refresh(refresh_token)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Refresh token rotation failed")
            raise InternalError() from exc

        # Role comes from the user record, not the old token, so role changes
        # apply from the next refresh on.
        try:
            user = self.users.get_by_id(record.user_id)
        except SQLAlchemyError as exc:
            logger.exception("User lookup failed during refresh for user_id=%s", record.user_id)
            raise InternalError() from exc
        if user is None:
            logger.warning("Refresh for deleted user_id=%s rejected", record.user_id)
            self.revoke_refresh_token(new_refresh)
            raise RefreshTokenInvalid()

        return self._pair(record.user_id, user.role, new_refresh, new_expires_at)

    def verify_access_token(self, token: str) -> AccessClaims:
        return self.codec.verify_access_token(token)

    def revoke_refresh_token(self, refresh_token: str, user_id: int | None = None) -> bool:
        try:
            return self.refresh_store.revoke(refresh_token, user_id=user_id)
        except SQLAlchemyError as exc:
            logger.exception("Refresh token revoke failed")
            raise InternalError() from exc

    def revoke_all_user_tokens(self, user_id: int) -> int:
        try:
            count = self.refresh_store.revoke_all_for_user(user_id)
        except SQLAlchemyError as exc:
            logger.exception("Revoke-all failed for user_id=%s", user_id)
            raise InternalError() from exc
        logger.info("Revoked %d refresh token(s) for user_id=%s", count, user_id)
        return count

    def list_sessions(self, user_id: int) -> list[RefreshTokenRecord]:
        try:
            return self.refresh_store.list_active_for_user(user_id)
        except SQLAlchemyError as exc:
            logger.exception("Session listing failed for user_id=%s", user_id)
            raise InternalError() from exc

    def purge_expired(self) -> int:
        try:
            return self.refresh_store.purge_expired()
        except SQLAlchemyError as exc:
            logger.exception("Refresh token purge failed")
            raise InternalError() from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pair(self, user_id: int, role: Role, refresh_token: str, refresh_expires_at) -> TokenPair:
        access_token, access_expires_at = self.codec.issue_access_token(user_id, role)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.ttl_seconds,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def _log_rejected_refresh(self, refresh_token: str) -> None:
        """Tell a replayed (revoked) token apart from an unknown/expired one, for logs only."""
        try:
            record = self.refresh_store.find(refresh_token)
        except SQLAlchemyError:
            logger.exception("Lookup of rejected refresh token failed")
            return
        if record is not None and record.revoked:
            logger.warning(
                "Refresh token reuse detected: revoked token id=%s presented again for user_id=%s",
                record.id,
                record.user_id,
            )
        else:
            logger.info("Refresh rejected: unknown or expired token")
