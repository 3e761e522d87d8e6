"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for tokengate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. bcrypt_rounds -> BCRYPT_ROUNDS). Type coercion is built in, so
      OAUTH_CLIENTS can be given as a JSON object.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Rejects a "remember me" lifetime that is not longer than the
      ordinary session lifetime, and bcrypt costs outside what bcrypt accepts.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokengate.config")

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tokengate.db'}"

_FIVE_YEARS = 5 * 365 * 24 * 60 * 60


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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt embeds the cost in every hash, so raising this later does not
    # invalidate stored hashes.
    bcrypt_rounds: int = 12
    min_password_length: int = 15
    min_user_age_years: int = 18

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_key_bytes: int = 64
    session_ttl_seconds: int = 3600
    session_remember_ttl_seconds: int = _FIVE_YEARS

    # ------------------------------------------------------------------
    # OAuth grant
    # ------------------------------------------------------------------

    auth_code_bytes: int = 64
    auth_code_ttl_seconds: int = 600
    access_token_bytes: int = 64
    access_token_ttl_seconds: int = 3600
    # client_id -> client_secret, e.g. OAUTH_CLIENTS='{"alexa": "s3cret"}'
    oauth_clients: dict[str, str] = {}
    # client_id -> allowed redirect URIs, matched exactly. Every client in
    # OAUTH_CLIENTS needs a non-empty entry,
    # e.g. OAUTH_REDIRECT_URIS='{"alexa": ["https://.../callback"]}'
    oauth_redirect_uris: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Reject settings that would break the session and token policy.

        bcrypt only accepts cost factors 4..31. A remember-me session that is
        not longer than an ordinary session makes the stay_logged_in flag
        meaningless. Key lengths below 16 bytes are not unguessable enough for
        bearer credentials. A client without registered redirect URIs could
        have codes delivered anywhere.
        """
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.session_remember_ttl_seconds <= self.session_ttl_seconds:
            raise ValueError("SESSION_REMEMBER_TTL_SECONDS must be greater than SESSION_TTL_SECONDS.")
        for name in ("session_key_bytes", "auth_code_bytes", "access_token_bytes"):
            if getattr(self, name) < 16:
                raise ValueError(f"{name.upper()} must be at least 16.")
        missing = sorted(c for c in self.oauth_clients if not self.oauth_redirect_uris.get(c))
        if missing:
            raise ValueError(f"OAUTH_REDIRECT_URIS has no entry for client(s): {', '.join(missing)}.")
        if self.debug and not self.oauth_clients:
            logger.warning("No OAUTH_CLIENTS configured; the token endpoint will reject every client.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
