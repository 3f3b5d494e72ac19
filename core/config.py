"""
core/config.py -- Coursehub auth settings, read once from the environment.

Every environment lookup goes through Settings; other modules take values
from get_settings() (or have them passed in) and never read os.environ.

How it is put together:
  Settings is a pydantic-settings BaseSettings. Each field is filled from the
      environment variable of the same name in upper case (bcrypt_rounds ->
      BCRYPT_ROUNDS), falling back to .env, then to the field default.

  get_settings() is wrapped in lru_cache, so the first call builds Settings
      and later calls return that same object.

  The "after" model_validator applies the SECRET_KEY policy once every field
      is resolved.

Security notes:
  [M6] A SECRET_KEY under 32 characters is refused. Session tokens are only
       as unforgeable as the key is long.

  [M7] Without DEBUG=true, a missing SECRET_KEY stops startup.

  Raw internal error text reaches API clients only when
  ENVIRONMENT=development (see expose_error_detail).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("coursehub.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'coursehub_auth.db'}"

_SEVEN_DAYS = 7 * 24 * 60 * 60


class Settings(BaseSettings):
    """Runtime configuration for the auth service.

    Every field has a default, so tests can build Settings() with no .env
    file present. Unsafe production values are rejected at construction.
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
    # "development" or "production". Only development leaks error detail.
    environment: str = "production"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_expire_seconds: int = _SEVEN_DAYS
    google_token_expire_seconds: int = _SEVEN_DAYS
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Google sign-in (empty client ID means ID-token verification is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    google_jwks_cache_seconds: int = 3600
    # Floor between refetches triggered by an unknown key ID.
    google_jwks_min_refresh_seconds: int = 60
    # Accept a pre-verified profile posted by the frontend instead of an ID token.
    google_accept_client_claims: bool = True

    # ------------------------------------------------------------------
    # Rate limiting (register, login, forgot-password)
    # ------------------------------------------------------------------

    auth_rate_limit_attempts: int = 5
    auth_rate_limit_window_seconds: int = 15 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        # bcrypt.gensalt() accepts 4..31
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the SECRET_KEY policy [M6][M7].

        No key + DEBUG: generate one; issued tokens die with the process.
        No key otherwise: fail. Any key under 32 characters: fail.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a throwaway key (DEBUG=true). Sessions end on restart.")
            else:
                raise ValueError("SECRET_KEY must be set (environment or .env) unless DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def expose_error_detail(self) -> bool:
        """True when raw internal error text may be returned to clients."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first use.

    Tests that change environment variables after import must call
    get_settings.cache_clear() first.
    """
    return Settings()
