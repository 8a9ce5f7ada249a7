"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  Nested settings: each token kind owns a {duration_seconds, signing_key}
      pair. pydantic-settings maps ACCESS_TOKEN__SIGNING_KEY onto
      Settings.access_token.signing_key via env_nested_delimiter="__".

  @model_validator(mode="after"): cross-field validation after every field is
      resolved. Dev mode generates missing signing keys with a warning;
      production mode refuses to start without them.

Security notes:
  Signing keys shorter than 32 chars are rejected outright. HMAC-SHA256 relies
  on key entropy -- a short key weakens every token issued with it.

  The access and refresh keys must differ. A refresh token must never verify
  as an access token (and vice versa); separate keys are what keep the two
  signing contexts independent.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tokenauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'tokenauth.db'}"

_MIN_KEY_LENGTH = 32


class TokenSettings(BaseModel):
    """Duration and HMAC key for one token kind.

    An empty signing_key is the sentinel for "not configured". The Settings
    validator either generates a dev key or raises, so codecs never see "".
    """

    duration_seconds: int = Field(default=900, gt=0)
    signing_key: str = ""


class AccessTokenSettings(TokenSettings):
    duration_seconds: int = Field(default=900, gt=0)  # 15 minutes


class RefreshTokenSettings(TokenSettings):
    duration_seconds: int = Field(default=7 * 24 * 3600, gt=0)  # 7 days


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true fills in the keys).

    Environment variable name mapping: field names are uppercased, nested
    fields are joined with a double underscore.
    E.g. `bcrypt_cost` reads from BCRYPT_COST, `refresh_token.signing_key`
    reads from REFRESH_TOKEN__SIGNING_KEY.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    issuer: str = Field(default="tokenauth", min_length=1)
    access_token: AccessTokenSettings = Field(default_factory=AccessTokenSettings)
    refresh_token: RefreshTokenSettings = Field(default_factory=RefreshTokenSettings)

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Each +1 doubles hashing time; 12 is ~250ms on
    # commodity hardware.
    bcrypt_cost: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Registry maintenance
    # ------------------------------------------------------------------

    # How often the API process deletes naturally expired refresh tokens.
    purge_interval_seconds: int = Field(default=6 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def token_settings(self, kind: str) -> TokenSettings:
        """Return the {duration, signing key} pair for "access" or "refresh"."""
        if kind == "access":
            return self.access_token
        if kind == "refresh":
            return self.refresh_token
        raise ValueError(f"Unknown token kind: {kind!r}")

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_signing_keys(self) -> "Settings":
        """Enforce the signing key policy.

        Dev mode (DEBUG=true): auto-generate each missing key with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            key is missing.

        Both modes: reject keys shorter than 32 characters, and reject a
            configuration where both kinds share one key.
        """
        for name, token in (("ACCESS_TOKEN", self.access_token), ("REFRESH_TOKEN", self.refresh_token)):
            if not token.signing_key:
                if self.debug:
                    token.signing_key = secrets.token_hex(32)
                    logger.warning(
                        "WARNING: Using auto-generated %s__SIGNING_KEY. Tokens will not survive restarts.", name
                    )
                else:
                    raise ValueError(
                        f"{name}__SIGNING_KEY is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(token.signing_key) < _MIN_KEY_LENGTH:
                raise ValueError(f"{name}__SIGNING_KEY must be at least {_MIN_KEY_LENGTH} characters.")
        if self.access_token.signing_key == self.refresh_token.signing_key:
            raise ValueError("ACCESS_TOKEN__SIGNING_KEY and REFRESH_TOKEN__SIGNING_KEY must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
