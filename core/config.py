"""
core/config.py -- Inkwell auth settings, read from the environment.

Every environment lookup lives in this module; nothing else touches os.environ.
get_settings() builds the Settings object once and the app factory passes it
down to each component, so no module reads configuration from globals.

Settings is a pydantic-settings model: each field maps to the upper-cased env
var of the same name (bcrypt_rounds -> BCRYPT_ROUNDS) and may also come from a
local .env file. The after-validators apply the cross-field rules. With
DEBUG=true a missing SECRET_KEY is generated and BCRYPT_ROUNDS may go below 12
so the test suite stays fast.

Security notes:
  [M6] SECRET_KEY must be at least 32 characters. It signs access tokens and
       keys the refresh-token fingerprints.

  [M7] Outside DEBUG, starting without SECRET_KEY is an error.

Layer rule: core/ imports nothing from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("inkwell.config")

_MIN_PRODUCTION_ROUNDS = 12


class Settings(BaseSettings):
    """Environment-backed settings for the auth service.

    Every field has a default, so tests can build Settings() with no .env
    file as long as DEBUG=true.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or fails startup.
    secret_key: str = ""
    database_url: str = "sqlite:///inkwell_auth.db"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    # Host header allow-list; "*.example.com" wildcards are accepted.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    token_leeway_seconds: int = Field(default=0, ge=0, le=30)
    # Expired refresh rows get deleted on this cadence.
    token_purge_interval_seconds: int = Field(default=6 * 60 * 60, gt=0)

    # ------------------------------------------------------------------
    # Passwords and storage
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    # SQLite busy timeout; writers wait at most this long for a row lock.
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting -- "N/period" strings parsed by limits.parse().
    # Burst defaults to N when the matching *_burst field is unset.
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_login: str = "5/minute"
    rate_limit_login_burst: Optional[int] = None
    rate_limit_register: str = "3/minute"
    rate_limit_register_burst: Optional[int] = None
    rate_limit_refresh: str = "10/minute"
    rate_limit_refresh_burst: Optional[int] = None
    rate_limit_write: str = "30/minute"
    rate_limit_write_burst: Optional[int] = None
    rate_limit_read: str = "60/minute"
    rate_limit_read_burst: Optional[int] = None
    rate_limit_max_buckets: int = Field(default=10_000, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        DEBUG=true: generate a throwaway key and log a warning.
            Issued tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_bcrypt_rounds(self) -> "Settings":
        """Keep the production work factor at 12 or above."""
        if self.bcrypt_rounds < _MIN_PRODUCTION_ROUNDS and not self.debug:
            raise ValueError(f"BCRYPT_ROUNDS must be at least {_MIN_PRODUCTION_ROUNDS} in production mode.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call and return the same instance afterwards.

    Tests that change environment variables call get_settings.cache_clear()
    before and after.
    """
    return Settings()
