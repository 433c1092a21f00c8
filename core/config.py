"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for DevGuild Access happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      lifespan in api/main.py builds the token verifier and role catalog from
      this instance, so configuration is resolved exactly once per process.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET, jwt_expire_seconds -> JWT_EXPIRE_SECONDS).

  @field_validator(mode="before"): Expiry fields accept plain seconds or short
      duration strings ("30m", "4h", "7d") so existing deployment env files can
      be reused unchanged.

  @model_validator(mode="after"): Cross-field validation for the two signing
      secrets. Dev mode generates them with a warning; production mode refuses
      to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. HS256 signing
       relies on key entropy -- a short key weakens every token.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       JWT_REFRESH_SECRET is a hard startup failure. The generated fallback
       secrets exist for local development only.

  [M8] Access and refresh secrets must differ, so a refresh token can never be
       replayed as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("devguild.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

_MIN_SECRET_LENGTH = 32


def parse_duration(value: int | str) -> int:
    """Convert "45", "30m", "4h" or "7d" into a number of seconds.

    Raises ValueError for anything else, including zero and negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value))
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}. Use seconds or a suffix of s, m, h, d.")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError("Durations must be positive.")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = "sqlite:///devguild_access.db"

    # ------------------------------------------------------------------
    # HTTP
    #
    # List values are read as JSON from the environment, e.g.
    # ALLOWED_HOSTS='["api.example.com"]'.
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens
    #
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_expire_seconds: int = 4 * 3600
    jwt_refresh_secret: str = ""
    jwt_refresh_expire_seconds: int = 7 * 86400

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Registration and bootstrap
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    seed_roles_on_startup: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expire_seconds", "jwt_refresh_expire_seconds", mode="before")
    @classmethod
    def normalize_duration(cls, value: int | str) -> int:
        return parse_duration(value)

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing.
        """
        for field in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, field)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, field, secrets.token_hex(32))
                logger.warning(
                    "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                    field.upper(),
                )
            elif len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{field.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be different.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
