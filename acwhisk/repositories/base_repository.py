"""
Base Repository.

Provides shared infrastructure for the Supabase adapters:
- DatabaseManager reference
- Logger reference
- Translation of raw SDK exceptions into the adapter's error types
"""

from __future__ import annotations

from typing import ClassVar

from supabase import AsyncClient

from acwhisk.database import DatabaseManager
from acwhisk.errors import BackendError, normalize_error
from acwhisk.logger import StructuredLogger


class BaseRepository:
    """Base class for all adapters. Receives dependencies via __init__."""

    TABLE: str = ""
    ERROR_TYPE: ClassVar[type[BackendError]] = BackendError

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> AsyncClient:
        """Returns the Supabase client.  Raises ``RuntimeError`` offline."""
        return self._db.supabase

    def _translate(self, exc: BaseException, operation: str) -> BackendError:
        """Normalise *exc* into ``ERROR_TYPE`` and log the raw text.

        The raw message is logged here and only here; callers receive
        the typed error and decide what, if anything, the user sees.
        """
        err = normalize_error(exc)
        if isinstance(exc, RuntimeError) and not self._db.is_online:
            err = BackendError(err.message, code="offline")

        self._logger.warning(
            "%s failed: %s",
            operation,
            err.message,
            extra={
                "event": "BACKEND_ERROR",
                "operation": operation,
                "error_code": err.code or "none",
            },
        )
        return self.ERROR_TYPE.from_error(err)
