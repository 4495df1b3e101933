"""
auth/passwords.py -- bcrypt password hashing and verification.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt 4.x a >72-byte password, which it now rejects. The API
layer caps passwords at 72 UTF-8 bytes, so truncation never applies to input
we accept; check() still returns False (not an exception) for longer input.

The dummy hash enables timing equalization in login [C1]: an unknown
username costs one bcrypt verification, same as a wrong password, so response
time does not reveal which accounts exist.
"""

from __future__ import annotations

import bcrypt

_DUMMY_PLAINTEXT = b"inkwell_timing_dummy"

# bcrypt only looks at the first 72 bytes; longer input would be truncated.
MAX_PASSWORD_BYTES = 72


def exceeds_bcrypt_limit(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


class PasswordHasher:
    """Salted adaptive hashing with a fixed work factor.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        hashed = hasher.hash("s3cret-pass")
        hasher.check("s3cret-pass", hashed)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Same rounds as real hashes, otherwise the dummy check is cheaper.
        self._dummy_hash = bcrypt.hashpw(_DUMMY_PLAINTEXT, bcrypt.gensalt(rounds))

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Raises only if the salt source fails."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(self.rounds)).decode("utf-8")

    def check(self, plain: str, hashed: str | None) -> bool:
        """Return True if plain matches hashed. Never raises for user input."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def dummy_check(self, plain: str) -> bool:
        """Burn one verification's worth of CPU. Always returns False."""
        try:
            bcrypt.checkpw(plain.encode("utf-8"), self._dummy_hash)
        except (ValueError, TypeError):
            pass
        return False
