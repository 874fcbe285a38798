"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. gitlab_admin_token -> GITLAB_ADMIN_TOKEN).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Dev mode tolerates a missing GitLab admin token with a warning;
      production mode refuses to start without one.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or gitlab_api/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("mlreef.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'mlreef_auth.db'}"


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
    auth_db_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # GitLab
    # ------------------------------------------------------------------

    gitlab_root_url: str = "http://localhost:10080"
    # Admin personal access token, sent as PRIVATE-TOKEN on admin endpoints.
    # Empty string is the "not configured" sentinel; see the validator below.
    gitlab_admin_token: str = ""
    gitlab_timeout_seconds: float = 10.0

    # Development-only: when GitLab answers 409 on user creation, adopt the
    # existing GitLab user with the same username instead of failing. Never
    # enable this against a shared GitLab instance.
    gitlab_allow_existing_user: bool = False

    gitlab_user_name_prefix: str = "mlreef-user-"
    gitlab_group_name_prefix: str = "mlreef-group-"
    gitlab_token_name: str = "mlreef-user-token"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    rate_limit_storage_uri: str = "memory://"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_gitlab_admin_token(self) -> "Settings":
        """Require a GitLab admin token outside of dev mode.

        Dev mode (DEBUG=true): start anyway with a warning. Registration will
            fail at the first admin call, login of existing accounts still works.

        Production mode: refuse to start. Every registration needs the admin
            token, so a missing one would only surface on the first sign-up.
        """
        if not self.gitlab_admin_token:
            if self.debug:
                logger.warning("WARNING: GITLAB_ADMIN_TOKEN is not set. Registration will fail.")
            else:
                raise ValueError(
                    "GITLAB_ADMIN_TOKEN is required in production mode. "
                    "Set GITLAB_ADMIN_TOKEN in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.gitlab_timeout_seconds <= 0:
            raise ValueError("GITLAB_TIMEOUT_SECONDS must be positive.")
        if self.gitlab_allow_existing_user and not self.debug:
            logger.warning("GITLAB_ALLOW_EXISTING_USER is enabled outside of debug mode.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
