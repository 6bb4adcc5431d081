"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AccountGuard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. lockout_threshold -> LOCKOUT_THRESHOLD). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Rejects policies that would make lockout
      or TOTP verification meaningless.

Layer rule: core/ is the kernel. This module may not import from security/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accountguard.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'accountguard.db'}"


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
    # Two-factor authentication
    # ------------------------------------------------------------------

    totp_issuer: str = "AccountGuard"
    # Steps of 30s accepted either side of the current one (2 = +/-60s drift).
    totp_window_steps: int = 2
    backup_code_count: int = 10

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    lockout_threshold: int = 5
    lockout_minutes: int = 30

    # ------------------------------------------------------------------
    # Suspicious activity heuristics
    # ------------------------------------------------------------------

    suspicious_failure_threshold: int = 5
    suspicious_window_minutes: int = 30
    known_ip_window_days: int = 7

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_hours: int = 24

    # ------------------------------------------------------------------
    # Geo lookup (optional -- empty string means disabled)
    # ------------------------------------------------------------------

    # URL template with an {ip} placeholder, e.g. "http://ip-api.com/json/{ip}"
    geo_lookup_url: str = ""
    geo_lookup_timeout: float = 2.0

    # ------------------------------------------------------------------
    # Audit queries
    # ------------------------------------------------------------------

    audit_max_page_size: int = 100

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_policy(self) -> "Settings":
        """Refuse to start with a policy that silently disables a control.

        A lockout threshold below 1 would lock on every request; a zero
        duration would never lock at all. A negative TOTP window rejects every
        code. A geo lookup URL without an {ip} placeholder would resolve every
        address to the same location.
        """
        if self.lockout_threshold < 1:
            raise ValueError("LOCKOUT_THRESHOLD must be at least 1.")
        if self.lockout_minutes < 1:
            raise ValueError("LOCKOUT_MINUTES must be at least 1.")
        if self.totp_window_steps < 0:
            raise ValueError("TOTP_WINDOW_STEPS must not be negative.")
        if self.backup_code_count < 1:
            raise ValueError("BACKUP_CODE_COUNT must be at least 1.")
        if self.geo_lookup_url and "{ip}" not in self.geo_lookup_url:
            raise ValueError("GEO_LOOKUP_URL must contain an {ip} placeholder.")
        if self.totp_window_steps > 4:
            logger.warning(
                "TOTP_WINDOW_STEPS=%d accepts codes up to %ds old -- consider a smaller window.",
                self.totp_window_steps,
                self.totp_window_steps * 30,
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Components receive the values they need through their constructors; only
    the CLI and AccountSecurityService.from_settings() read this directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
