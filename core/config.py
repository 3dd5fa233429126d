"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for localauth happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): values come from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. bcrypt_rounds -> BCRYPT_ROUNDS).

  @field_validator: range checks run at startup so a bad cost factor or a
      short token length is a hard failure, not a silent weakening.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("localauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'localauth.db'}"

# bcrypt accepts cost factors 4..31. Each step doubles the work.
_MIN_BCRYPT_ROUNDS = 4
_MAX_BCRYPT_ROUNDS = 31

# Access tokens carry at least 48 random bytes (384 bits).
_MIN_TOKEN_BYTES = 48


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests
    without a real .env file.
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
    database_url: str = _DEFAULT_DB_URL
    # Seconds a SQLite connection waits on a locked database before failing.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    access_token_bytes: int = _MIN_TOKEN_BYTES

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        if not _MIN_BCRYPT_ROUNDS <= value <= _MAX_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be between {_MIN_BCRYPT_ROUNDS} and {_MAX_BCRYPT_ROUNDS}.")
        if value < 10:
            logger.warning("BCRYPT_ROUNDS=%d is below the recommended minimum of 10.", value)
        return value

    @field_validator("access_token_bytes")
    @classmethod
    def validate_access_token_bytes(cls, value: int) -> int:
        if value < _MIN_TOKEN_BYTES:
            raise ValueError(f"ACCESS_TOKEN_BYTES must be at least {_MIN_TOKEN_BYTES}.")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive.")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
