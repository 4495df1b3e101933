"""
auth/tokens.py -- Access-token codec (JWT) and refresh-token fingerprinting.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry sub, user_id, role, type, iat and
       exp, signed with SECRET_KEY. Verification distinguishes three failure
       kinds so the HTTP layer can return a precise code:
         TokenMalformed -- not a structurally valid JWT
         TokenInvalid   -- bad signature/algorithm, wrong type, bad claims
         TokenExpired   -- signature fine, exp in the past
       The signature is checked before expiry. A forged token never reports
       "expired".

  Expiry clock: jose's built-in exp check reads the wall clock directly. We
       disable it and compare exp against the codec's injected clock instead,
       so issuance and verification share one time source and the leeway
       setting applies in one place.

  Refresh tokens are opaque (see auth/refresh_store.py). fingerprint() gives
       HMAC-SHA256(SECRET_KEY, token) so the store can look rows up in O(1)
       without persisting the raw value. The tokens carry 256 bits of
       entropy, so bcrypt's slowness buys nothing here.

  The secret is read-only after construction and shared by all request
  threads without locking.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed
from auth.models import AccessClaims, Role

logger = logging.getLogger("inkwell.auth.tokens")

_ALGORITHM = "HS256"
_TOKEN_TYPE = "access"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


class TokenCodec:
    """Creates and verifies signed, expiring access tokens.

    Usage:
        codec = TokenCodec(settings.secret_key, ttl_seconds=900)
        token, expires_at = codec.issue_access_token(42, Role.author)
        claims = codec.verify_access_token(token)   # AccessClaims(user_id=42, ...)
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = 15 * 60,
        leeway_seconds: int = 0,
        clock: Clock | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenCodec requires a non-empty secret key")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self.leeway_seconds = leeway_seconds
        self._clock = clock or utc_now

    def issue_access_token(self, user_id: int, role: Role) -> tuple[str, datetime]:
        """Encode identity and role; return (token, expires_at)."""
        # JWT timestamps are whole seconds; truncate so expires_at matches exp.
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=self.ttl_seconds)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "role": Role(role).value,
            "type": _TOKEN_TYPE,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), expires_at

    def verify_access_token(self, token: str) -> AccessClaims:
        """Verify signature, type and expiry. Raises a TokenInvalid/TokenExpired subtype."""
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Access token rejected: %s", exc)
            raise TokenInvalid() from exc

        if payload.get("type") != _TOKEN_TYPE:
            raise TokenInvalid()
        claims = _claims_from_payload(payload)

        if self._clock() > claims.expires_at + timedelta(seconds=self.leeway_seconds):
            raise TokenExpired()
        return claims


def _claims_from_payload(payload: dict) -> AccessClaims:
    user_id = payload.get("user_id")
    iat = payload.get("iat")
    exp = payload.get("exp")
    # bool is an int subclass; reject it explicitly.
    if not all(isinstance(v, int) and not isinstance(v, bool) for v in (user_id, iat, exp)):
        raise TokenInvalid()
    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        raise TokenInvalid() from exc
    return AccessClaims(
        user_id=user_id,
        role=role,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
    )
