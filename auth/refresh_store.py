"""
auth/refresh_store.py -- SQLAlchemy Core persistence for refresh tokens.

Pattern: Repository + Data Mapper (same as auth/store.py).

Security design:
  Refresh tokens are opaque: secrets.token_urlsafe(32) gives 256 bits of
  entropy. Only HMAC-SHA256(SECRET_KEY, token) is stored (token_hash), so a
  copy of the database does not hand out working sessions. The raw token is
  returned once from create()/rotate() and is unrecoverable afterwards.

Concurrency:
  rotate() is the single-use guarantee. Inside one transaction it flips
  revoked 0 -> 1 with a compare-and-swap UPDATE:
      UPDATE refresh_tokens SET revoked = 1
      WHERE token_hash = :h AND revoked = 0 AND expires_at > :now
  The database serializes writers on the row, so of N concurrent callers
  presenting the same token exactly one sees rowcount == 1. The others see 0
  and get RefreshTokenInvalid. The replacement row is inserted in the same
  transaction, so a token is never left revoked without a successor.

  Revocation is monotonic: no statement in this module sets revoked back to 0.

Timestamps are stored as epoch seconds (REAL) so expiry comparisons happen in
SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.errors import RefreshTokenInvalid
from auth.models import RefreshTokenRecord
from auth.store import make_engine
from auth.tokens import fingerprint, utc_now

_DEFAULT_DB_URL = "sqlite:///inkwell_auth.db"
_TOKEN_BYTES = 32

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for refresh tokens.

    Usage:
        store = RefreshTokenStore(db_url, secret_key=settings.secret_key)
        token, expires_at = store.create(user_id=7)
        record = store.find_valid(token)
        record, new_token, new_expires = store.rotate(token)
        store.revoke(new_token)
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        *,
        secret_key: str,
        ttl_seconds: int = 7 * 24 * 3600,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine: Engine = make_engine(db_url, timeout_seconds)
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock or utc_now
        _metadata.create_all(self.engine)

    def _hash(self, raw_token: str) -> str:
        return fingerprint(self._secret_key, raw_token)

    def _new_token(self, now: datetime) -> tuple[str, datetime, dict]:
        raw = secrets.token_urlsafe(_TOKEN_BYTES)
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        values = {
            "token_hash": self._hash(raw),
            "created_at": now.timestamp(),
            "expires_at": expires_at.timestamp(),
            "revoked": 0,
        }
        return raw, expires_at, values

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user_id: int) -> tuple[str, datetime]:
        """Persist a new unrevoked token for user_id; return (raw_token, expires_at)."""
        raw, expires_at, values = self._new_token(self._clock())
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(user_id=user_id, **values))
        return raw, expires_at

    def rotate(self, raw_token: str) -> tuple[RefreshTokenRecord, str, datetime]:
        """Consume raw_token and issue its successor atomically.

        Returns (consumed_record, new_raw_token, new_expires_at). Raises
        RefreshTokenInvalid if the token is unknown, revoked or expired --
        including when a concurrent caller consumed it first.
        """
        token_hash = self._hash(raw_token)
        now = self._clock()
        new_raw, new_expires_at, values = self._new_token(now)
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.token_hash == token_hash)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > now.timestamp())
                )
                .values(revoked=1)
            )
            if result.rowcount != 1:
                raise RefreshTokenInvalid()
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
            conn.execute(_refresh_tokens.insert().values(user_id=row.user_id, **values))
        return _row_to_record(row), new_raw, new_expires_at

    def revoke(self, raw_token: str, user_id: int | None = None) -> bool:
        """Mark a token revoked. Idempotent; never errors for unknown tokens.

        When user_id is given, only a token owned by that user is touched.
        Returns True if this call flipped the flag.
        """
        condition = (_refresh_tokens.c.token_hash == self._hash(raw_token)) & (_refresh_tokens.c.revoked == 0)
        if user_id is not None:
            condition = condition & (_refresh_tokens.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.update().where(condition).values(revoked=1))
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every still-active token for user_id. Returns how many were flipped."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete rows past their expiry. Returns number of rows removed.

        Revoked-but-unexpired rows are kept on purpose: find() still reports
        them, which is what lets the token service log a reused token.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= self._clock().timestamp())
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, raw_token: str) -> RefreshTokenRecord | None:
        """Return the record in any state (revoked/expired included), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == self._hash(raw_token))
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_valid(self, raw_token: str) -> RefreshTokenRecord:
        """Return the record only if it exists, is unrevoked and unexpired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == self._hash(raw_token))
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > self._clock().timestamp())
                )
            ).fetchone()
        if row is None:
            raise RefreshTokenInvalid()
        return _row_to_record(row)

    def list_active_for_user(self, user_id: int) -> list[RefreshTokenRecord]:
        """Return the user's unrevoked, unexpired tokens, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > self._clock().timestamp())
                )
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        created_at=datetime.fromtimestamp(row.created_at, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        revoked=bool(row.revoked),
    )
