"""Unit tests for core/config.py -- Settings validation.

Covers:
- production mode refuses to start without SECRET_KEY
- debug mode generates a key
- short keys are rejected in every mode
- BCRYPT_ROUNDS below 12 only in debug mode
- env vars override defaults, including rate limit strings
"""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

LONG_KEY = "k" * 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32
    assert Settings(debug=True, secret_key="").secret_key != settings.secret_key


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(debug=True, secret_key="too-short")


def test_low_bcrypt_rounds_only_in_debug() -> None:
    with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
        Settings(debug=False, secret_key=LONG_KEY, bcrypt_rounds=4)
    assert Settings(debug=True, secret_key=LONG_KEY, bcrypt_rounds=4).bcrypt_rounds == 4


def test_defaults() -> None:
    settings = Settings(debug=False, secret_key=LONG_KEY, bcrypt_rounds=12)
    assert settings.access_token_ttl_seconds == 900
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 3600
    assert settings.token_leeway_seconds == 0
    assert settings.rate_limit_login == "5/minute"
    assert settings.rate_limit_refresh == "10/minute"
    assert settings.rate_limit_enabled is True


def test_leeway_is_bounded() -> None:
    with pytest.raises(ValidationError):
        Settings(debug=True, secret_key=LONG_KEY, token_leeway_seconds=31)


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SECRET_KEY", LONG_KEY)
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "300")
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "20/hour")
    monkeypatch.setenv("RATE_LIMIT_LOGIN_BURST", "4")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("ALLOWED_HOSTS", '["api.example.com", "*.example.com"]')
    settings = Settings()
    assert settings.secret_key == LONG_KEY
    assert settings.access_token_ttl_seconds == 300
    assert settings.rate_limit_login == "20/hour"
    assert settings.rate_limit_login_burst == 4
    assert settings.rate_limit_enabled is False
    assert settings.allowed_hosts == ["api.example.com", "*.example.com"]


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
