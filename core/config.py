"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CourseGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or accept a Settings instance through its constructor.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation of the three signing
      secrets once every field is resolved.

Security notes:
  [S1] Each token kind (access, refresh, activation) is signed with its own
       secret. Reusing one secret for two kinds would let an activation token
       verify as an access token. Reused secrets are rejected at startup.

  [S2] Secrets shorter than 32 chars are rejected outright. HMAC-SHA256 JWT
       signing relies on key entropy.

  [S3] In production a missing secret is a hard startup failure. Development
       mode generates random secrets with a warning.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
cache/, or mail/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("coursegate.config")

_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "activation_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in development
    and test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    environment: Literal["development", "production"] = "production"

    # ------------------------------------------------------------------
    # Token signing -- empty string means "not configured" [S3]
    # ------------------------------------------------------------------

    access_token_secret: str = ""
    refresh_token_secret: str = ""
    activation_secret: str = ""

    access_token_expire_minutes: int = 5
    refresh_token_expire_days: int = 7
    activation_token_expire_seconds: int = 300

    # Echo the activation code in the register response as well as emailing it.
    # Off by default: it lets anyone who can read the response skip the inbox.
    expose_activation_code: bool = False

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    cookie_domain: str = ""

    # ------------------------------------------------------------------
    # User directory
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///coursegate_users.db"
    db_timeout_seconds: float = 5.0
    db_connect_retries: int = 5
    db_retry_backoff_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Session cache (empty URL = in-process memory cache)
    # ------------------------------------------------------------------

    redis_url: str = ""
    redis_timeout_seconds: float = 2.0

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = ""
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [S1][S2][S3].

        Development: any missing secret is replaced by a random one. Tokens
            will not survive a restart -- acceptable for local work.

        Production: every secret must be set explicitly.

        Both modes: secrets must be at least 32 characters and pairwise distinct.
        """
        for name in _SECRET_FIELDS:
            if getattr(self, name):
                continue
            if self.is_production:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set ENVIRONMENT=development."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())

        values = [getattr(self, name) for name in _SECRET_FIELDS]
        for name, value in zip(_SECRET_FIELDS, values):
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if len(set(values)) != len(values):
            raise ValueError("Access, refresh and activation secrets must all be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and pass it to the component under test.
    """
    return Settings()
