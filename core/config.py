"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for RoleGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. bcrypt_rounds -> BCRYPT_ROUNDS). Type coercion and validation are
      built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Sample accounts (user/password, admin/admin) are only seeded in
      debug mode; production mode refuses to start with them enabled.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rolegate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rolegate.db'}"

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


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
    # Credentials
    # ------------------------------------------------------------------

    # bcrypt cost factor. Each +1 doubles the hashing time.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    # JSON list of {"username", "password", "enabled", "roles"} objects.
    seed_file: str = ""
    seed_sample_users: bool = False
    # JSON list of {"pattern", "roles", "match"} objects. Empty = DEFAULT_POLICY.
    policy_file: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        """bcrypt accepts cost factors 4..31 only."""
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @model_validator(mode="after")
    def validate_sample_users(self) -> "Settings":
        """Refuse to seed well-known sample passwords outside debug mode.

        The sample accounts (user/password, admin/admin) are convenient for
        local development and demo scripts. In production they would be a
        standing backdoor, so SEED_SAMPLE_USERS without DEBUG is a hard
        startup failure rather than a warning.
        """
        if self.seed_sample_users:
            if not self.debug:
                raise ValueError(
                    "SEED_SAMPLE_USERS is only allowed in development mode. "
                    "Set DEBUG=true or provide SEED_FILE instead."
                )
            logger.warning("WARNING: Seeding sample accounts with well-known passwords.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
