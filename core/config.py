"""
core/config.py -- SiteGuard settings, read from the environment and .env.

Every tunable of the service lives on Settings: the signing secret, the auth
database URL, session and reset-token lifetimes, the Argon2id work factor,
rate limits, and the HTTP allow-lists. Nothing else in the tree reads
os.environ; callers take a Settings from get_settings() (CLI) or from
app.state (API requests).

Loading:
  pydantic-settings maps each field to the upper-cased env var of the same
  name (argon2_memory_cost -> ARGON2_MEMORY_COST, allowed_hosts ->
  ALLOWED_HOSTS as a JSON list).
  get_settings() is lru_cached, so the environment is parsed once per process.

Startup checks (model validators):
  [M6] SECRET_KEY keys the HMAC behind every session and reset-token lookup.
       Fewer than 32 characters is refused.

  [M7] Without DEBUG a missing SECRET_KEY stops the process. With DEBUG a
       throwaway key is generated and logged as a warning; every session
       then dies with the process.

  The Argon2id parameters and both TTLs are checked here too. A bad work
  factor fails at boot rather than at the first login.

  expose_reset_token is left unset to mean "same as DEBUG". Production
  forgot-password responses never carry the token; the notifier delivers it.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("siteguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'siteguard_auth.db'}"


class Settings(BaseSettings):
    """Runtime configuration for the auth core, the API, and the CLI.

    Every field has a default, so a bare Settings() works in a debug shell or a
    test run. The validators below turn unsafe production values into errors.
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
    # "" means unset; validate_secret_key replaces it or refuses to start.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Fixed window from creation, not renewed on activity.
    session_ttl_seconds: int = 7 * 24 * 60 * 60
    session_cookie_name: str = "session_id"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    reset_token_ttl_seconds: int = 60 * 60
    # None means "follow debug". Resolved to a bool by the validator.
    expose_reset_token: Optional[bool] = None

    # ------------------------------------------------------------------
    # Password hashing (Argon2id work factor)
    # ------------------------------------------------------------------

    argon2_time_cost: int = 3
    # KiB
    argon2_memory_cost: int = 65536
    argon2_parallelism: int = 4

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY and expose_reset_token [M6] [M7].

        Missing key: generated under DEBUG, fatal otherwise. Short key: fatal.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("DEBUG: generated a throwaway SECRET_KEY; sessions end when this process exits.")
            else:
                raise ValueError(
                    "SECRET_KEY is not set. Provide it via the environment or .env "
                    "(or set DEBUG=true for a throwaway development key)."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.expose_reset_token is None:
            self.expose_reset_token = self.debug
        return self

    @model_validator(mode="after")
    def validate_work_factor(self) -> "Settings":
        """Reject Argon2id parameters the KDF would refuse at hash time.

        Time cost and parallelism must be positive; memory cost needs at
        least 8 KiB per lane. A misconfigured work factor is a startup
        failure, never a silent fallback to weaker hashing.
        """
        if self.argon2_time_cost < 1 or self.argon2_parallelism < 1:
            raise ValueError("ARGON2_TIME_COST and ARGON2_PARALLELISM must be positive integers.")
        if self.argon2_memory_cost < 8 * self.argon2_parallelism:
            raise ValueError("ARGON2_MEMORY_COST must be at least 8 KiB per lane (8 * ARGON2_PARALLELISM).")
        if self.session_ttl_seconds <= 0 or self.reset_token_ttl_seconds <= 0:
            raise ValueError("Session and reset-token TTLs must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Parse the environment once and return the shared Settings.

    Tests that need other values build their own with model_copy(update=...)
    instead of clearing this cache.
    """
    return Settings()
