"""
Application Configuration.

Pydantic Settings model for the AC Whisk identity core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Profile Store ---
    PROFILES_TABLE: str = "profiles"

    # --- Session Source ---
    SESSION_PROBE_TIMEOUT_S: float = Field(default=5.0, gt=0)
    PASSWORD_RESET_REDIRECT_URL: str = "http://localhost:3000/reset-password"

    # Expose raw backend error text in AuthResult.detail (developer builds only).
    DIAGNOSTIC_ERRORS: bool = False

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "acwhisk.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line instead of a silent offline app.
        """
        _log = logging.getLogger("acwhisk.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found — all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL or not self.SUPABASE_ANON_KEY.get_secret_value():
            _log.warning(
                "SUPABASE_URL / SUPABASE_ANON_KEY are empty — the identity "
                "provider is unreachable and every session will be anonymous."
            )

        if self.DIAGNOSTIC_ERRORS:
            _log.warning(
                "DIAGNOSTIC_ERRORS is enabled — raw backend errors will be "
                "attached to auth results. Do not ship this setting."
            )

        return self

    @property
    def log_level(self) -> int:
        """``LOG_LEVEL`` resolved to a ``logging`` constant (INFO if unknown)."""
        level = logging.getLevelName(self.LOG_LEVEL.strip().upper())
        return level if isinstance(level, int) else logging.INFO


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    Uses a check-lock-check pattern so the fast path skips the lock.
    Prefer constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
