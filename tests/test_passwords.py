"""Unit tests for auth/passwords.py -- bcrypt hashing and verification.

Covers:
- hash() output verifies with check() and is salted (two hashes differ)
- check() rejects wrong passwords, empty/None/malformed hashes without raising
- the configured work factor is embedded in the hash
- dummy_check() always reports False
- the 72-byte bcrypt limit counts UTF-8 bytes, not characters
"""

from auth.passwords import MAX_PASSWORD_BYTES, PasswordHasher, exceeds_bcrypt_limit


def test_hash_round_trip(hasher: PasswordHasher) -> None:
    hashed = hasher.hash("correct horse")
    assert hashed != "correct horse"
    assert hasher.check("correct horse", hashed) is True


def test_hash_is_salted(hasher: PasswordHasher) -> None:
    assert hasher.hash("same-password") != hasher.hash("same-password")


def test_wrong_password_rejected(hasher: PasswordHasher) -> None:
    hashed = hasher.hash("correct horse")
    assert hasher.check("battery staple", hashed) is False


def test_work_factor_is_embedded(hasher: PasswordHasher) -> None:
    # bcrypt hashes look like $2b$04$<salt+digest>
    assert hasher.hash("x" * 8).split("$")[2] == "04"


def test_check_handles_missing_or_malformed_hash(hasher: PasswordHasher) -> None:
    assert hasher.check("anything", None) is False
    assert hasher.check("anything", "") is False
    assert hasher.check("anything", "not-a-bcrypt-hash") is False


def test_unicode_password(hasher: PasswordHasher) -> None:
    hashed = hasher.hash("pässwörd-日本")
    assert hasher.check("pässwörd-日本", hashed) is True
    assert hasher.check("passwort-日本", hashed) is False


def test_dummy_check_is_always_false(hasher: PasswordHasher) -> None:
    assert hasher.dummy_check("inkwell_timing_dummy") is False
    assert hasher.dummy_check("") is False


def test_bcrypt_limit_counts_bytes() -> None:
    assert exceeds_bcrypt_limit("a" * MAX_PASSWORD_BYTES) is False
    assert exceeds_bcrypt_limit("a" * (MAX_PASSWORD_BYTES + 1)) is True
    # "é" is two bytes in UTF-8
    assert exceeds_bcrypt_limit("é" * 36) is False
    assert exceeds_bcrypt_limit("é" * 37) is True
