"""
core/config.py -- Shelfnote settings, read once from the environment.

Every tunable lives on Settings. Modules call get_settings() and never read
os.environ themselves; the only exception is the test suite, which sets
DEBUG and BCRYPT_ROUNDS before the first get_settings() call.

Values come from environment variables or a local .env file. Field names
are matched case-insensitively, so session_expire_seconds is configured as
SESSION_EXPIRE_SECONDS.

SECRET_KEY signs the session JWTs and the short-lived OAuth state cookie.
With DEBUG=true a throwaway key is generated (every restart logs everyone
out). Without DEBUG the app refuses to start unless a key of at least 32
characters is supplied.

Layer rule: core/ imports nothing from api/, web/, auth/, or library/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shelfnote.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Shelfnote configuration. Every field has a usable local default."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Server
    debug: bool = False
    secret_key: str = ""  # "" means unset; see _resolve_secret_key
    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'shelfnote.db'}"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # Sessions and passwords
    secure_cookies: bool = False
    session_expire_seconds: int = Field(default=24 * 60 * 60, gt=0)
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    self_registration_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # OAuth -- a provider is offered only when both of its values are set
    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    @model_validator(mode="after")
    def _resolve_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set (or run with DEBUG=true for a throwaway key).")
            self.secret_key = secrets.token_hex(_MIN_SECRET_LENGTH)
            logger.warning("DEBUG is on and SECRET_KEY is unset; generated a key for this process only.")
        if len(self.secret_key) < _MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {_MIN_SECRET_LENGTH} characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first use.

    Tests that need different environment values must call
    get_settings.cache_clear() after changing them.
    """
    return Settings()
