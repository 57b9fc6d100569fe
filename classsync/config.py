"""
Application Configuration.

Pydantic Settings model for the ClassSync core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, model_validator


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    PROFILES_TABLE: str = "user_profiles"
    NOTIFICATIONS_TABLE: str = "notifications"

    # --- Local storage ---
    LOCAL_DB_PATH: str = "classsync_local.db"
    SECURE_STORE_SALT_PATH: str = str(Path.home() / ".classsync_store_salt")

    # --- Deep links ---
    CONFIRMATION_REDIRECT_URL: str = "classsync://auth/confirm"
    PASSWORD_RESET_REDIRECT_URL: str = "classsync://auth/reset-password"

    # --- Auth flow ---
    MIN_PASSWORD_LENGTH: int = 6
    RESEND_COOLDOWN_S: float = 60.0
    CONFIRMATION_SETTLE_DELAY_S: float = 1.0

    # --- Notifications ---
    NOTIFICATION_POLL_INTERVAL_S: float = 30.0

    # --- Logging ---
    LOG_FILE: str = "classsync.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing.
        This validator logs a warning so operators know the core is running
        with placeholder values.
        """
        _log = logging.getLogger("classsync.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty; identity, profile and notification "
                "calls will fail until it is configured."
            )

        return self


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern to avoid the lock overhead on the fast path while remaining
    thread-safe during first initialisation.

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
