"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ProgressTrack happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  AuthConfig: the frozen subset of Settings that the auth services need. It is
      built once at startup (Settings.auth_config()) and injected into
      CredentialManager, TokenService and ResetTokenService, so none of them
      read ambient global state.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. This prevents accidentally running with a random
       key in production (where session persistence is required).

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or notify/.
"""

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("progresstrack.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'progresstrack_auth.db'}"


@dataclass(frozen=True)
class AuthConfig:
    """Immutable auth configuration shared by the domain services."""

    secret_key: str
    token_expire_seconds: int = 7 * 24 * 3600
    reset_token_expire_seconds: int = 10 * 60
    bcrypt_rounds: int = 10
    client_url: str = "http://localhost:5173"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `debug` reads from DEBUG.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Session tokens live 7 days; there is no server-side revocation.
    token_expire_seconds: int = 7 * 24 * 3600
    reset_token_expire_seconds: int = 10 * 60
    bcrypt_rounds: int = 10

    # Browser origin allowed by CORS; also the base for links in emails.
    client_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Email (SMTP). Empty smtp_host drops mail in debug mode and fails
    # delivery otherwise.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: float = 10.0
    email_from: str = "ProgressTrack <no-reply@progresstrack.local>"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
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
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return self

    def auth_config(self) -> AuthConfig:
        """Snapshot the auth-related fields into an immutable AuthConfig."""
        return AuthConfig(
            secret_key=self.secret_key,
            token_expire_seconds=self.token_expire_seconds,
            reset_token_expire_seconds=self.reset_token_expire_seconds,
            bcrypt_rounds=self.bcrypt_rounds,
            client_url=self.client_url.rstrip("/"),
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
