"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the helpdesk API happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
and pass the Settings instance to the component that needs it.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The app
      lifespan hands that instance to api.main.wire_services(), which builds
      TokenService, RevocationStore and LoginThrottle from it.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

Security notes:
  The two signing secrets are NOT validated here. TokenService.validate_secrets()
  runs once in the lifespan so a weak configuration fails startup with a
  ConfigurationError naming the exact problem, instead of a pydantic error
  raised from whichever module first touched settings.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or cache/.
"""

import logging
import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("helpdesk.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """Convert a duration such as "8h", "7d", "15m", "90s" or "3600" to seconds.

    Raises ValueError for anything else, including zero.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value))
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}. Use <number>[s|m|h|d].")
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field has a default so Settings() can be instantiated in test
    environments without a real .env file. Empty secrets are allowed to load;
    they are rejected by TokenService.validate_secrets() at startup.
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
    database_url: str = "sqlite:///helpdesk_auth.db"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # JWT
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_expiration: str = "8h"
    jwt_refresh_expiration: str = "7d"
    jwt_issuer: str = "helpdesk-api"
    jwt_audience: str = "helpdesk-client"

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    # Empty string selects the in-process MemoryCacheStore (single worker only).
    redis_url: str = ""
    # Policy when the cache is unreachable during a revocation check.
    # True keeps the service available and accepts revoked-but-unexpired
    # tokens for the duration of the outage.
    revocation_fail_open: bool = True

    # ------------------------------------------------------------------
    # Login throttling
    # ------------------------------------------------------------------

    login_max_attempts: int = 5
    login_lockout_seconds: int = 15 * 60
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expiration", "jwt_refresh_expiration")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        """Reject TTL strings that parse_duration() cannot read."""
        parse_duration(value)
        return value

    @property
    def access_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_expiration)

    @property
    def refresh_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_expiration)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly.
    """
    return Settings()
