"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the platform happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): field names map to env var names
      (e.g. refresh_secret_key -> REFRESH_SECRET_KEY). Type coercion and
      validation are built in.

  @model_validator(mode="after"): dev mode generates signing keys with a
      warning, production mode refuses to start without them.

Security notes:
  Access and refresh tokens are signed with separate keys so a leaked access
  key cannot mint refresh tokens. Keys shorter than 32 chars are rejected.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or tracker/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("vmp.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'vmp.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel, resolved by the validator.
    secret_key: str = ""
    refresh_secret_key: str = ""
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    default_rate_limit: str = "300/minute"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Scheduling windows (days)
    # ------------------------------------------------------------------

    due_soon_window_days: int = Field(default=7, ge=1)
    retest_offset_days: int = Field(default=30, ge=0)
    retest_lookahead_days: int = Field(default=30, ge=1)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    seed_user_password: str = "password123"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Resolve SECRET_KEY and REFRESH_SECRET_KEY.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Issued tokens will not survive a restart.

        Production mode: refuse to start if either key is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        for name in ("secret_key", "refresh_secret_key"):
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        f"Set {name.upper()} in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, name, value)
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
