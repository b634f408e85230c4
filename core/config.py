"""
core/config.py -- E-Tax API settings, read once from the environment.

Every environment read in the project goes through get_settings(). auth/
receives plain values (secrets, TTLs, cost parameters) from the objects
built in api/main.py and never touches os.environ itself.

How values are resolved:
  pydantic-settings maps each field to its upper-cased env var
      (lockout_window_minutes -> LOCKOUT_WINDOW_MINUTES), falling back to a
      .env file in the working directory and then to the defaults below.
      The signing secret also answers to JWT_SECRET for older deployments.

  get_settings() is lru_cached, so the first caller builds the instance and
      everyone after shares it. api/limiter.py reads it at import time.

  The secret policy runs as an after-validator once all fields are known:
      DEBUG=true without a secret gets a random per-process key and a
      warning; anything else without a secret refuses to start.

Security notes:
  [M6] Signing keys under 32 characters are rejected in every mode. HS256 is
       only as strong as the key it is fed.

  [M7] Outside debug mode a missing key is a startup failure. No fallback key
       exists anywhere in the tree.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("etax.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'etax_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except the secret have defaults so Settings() can be
    instantiated in test environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". JWT_SECRET is
    # accepted for compatibility with existing deployments.
    secret_key: str = Field(default="", validation_alias=AliasChoices("SECRET_KEY", "JWT_SECRET"))
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    jwt_issuer: str = "e-tax-api"
    access_token_ttl_minutes: int = Field(default=15, gt=0)
    refresh_token_ttl_days: int = Field(default=7, gt=0)
    session_ttl_hours: int = Field(default=24, gt=0)

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    lockout_max_failures: int = Field(default=5, gt=0)
    lockout_window_minutes: int = Field(default=15, gt=0)

    # ------------------------------------------------------------------
    # Password hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_memory_cost: int = Field(default=64 * 1024, ge=8)  # KiB
    argon2_time_cost: int = Field(default=3, ge=1)
    argon2_parallelism: int = Field(default=2, ge=1)
    argon2_salt_length: int = Field(default=16, ge=16)
    argon2_hash_length: int = Field(default=32, ge=16)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "https://localhost:3000",
        "http://localhost:8080",
        "https://localhost:8080",
    ]
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Issued tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY (or JWT_SECRET) in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the shared Settings instance, building it on first use.

    The cache outlives environment changes. Tests that need different values
    construct Settings() directly or call get_settings.cache_clear().
    """
    return Settings()
