"""
core/config.py -- Taskboard settings (pydantic-settings).

Every tunable value is a field on Settings and is read from the environment
or a local .env file; field names map to upper-case variable names
(token_expire_seconds -> TOKEN_EXPIRE_SECONDS). Nothing else in the code base
reads os.environ.

get_settings() is cached with lru_cache, so the environment is parsed once
per process. Tests set DEBUG and RATE_LIMIT_ENABLED before the first call.

SECRET_KEY rules (enforced by validate_secret_key):
  - DEBUG=true and no key: a random key is generated and a warning is
    logged. Every restart invalidates existing sessions.
  - DEBUG unset or false and no key: startup fails.
  - Any key shorter than 32 characters: startup fails.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or tracker/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("taskboard.config")

_SEVEN_DAYS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Process-wide configuration. Every field has a default except the secret key."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    token_expire_seconds: int = Field(default=_SEVEN_DAYS, gt=0)
    # Tolerance applied to the exp check so tokens are not rejected at the
    # exact boundary instant because of small clock differences.
    token_leeway_seconds: int = Field(default=0, ge=0, le=30)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///taskboard.db"
    # Upper bound on how long a store call may wait for a locked database.
    database_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origin: str = "http://localhost:4321"
    # JSON list in the environment, e.g. ALLOWED_HOSTS='["tasks.example.com"]'
    allowed_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1", "*.localhost"])
    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key or refuse to start, see the module docstring."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings instance (built on first call)."""
    return Settings()
