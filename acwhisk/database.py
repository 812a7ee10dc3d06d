"""
Backend Connection Layer.

Owns the single Supabase ``AsyncClient`` used by the Session Source and
Profile Store adapters.  Connection objects only; no query logic lives
here.

Usage (dependency injection at app startup)::

    from acwhisk.database import DatabaseManager
    from acwhisk.logger import StructuredLogger

    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        logger=StructuredLogger(name="acwhisk.database"),
    )
    await db.connect()
    # Inject `db` into repositories / adapters that need it.
    ...
    await db.close()
"""

from __future__ import annotations

from typing import Optional

from supabase import AsyncClient, acreate_client

from acwhisk.logger import StructuredLogger


class DatabaseManager:
    """Manages the connection to the Supabase project.

    When ``supabase_url`` or ``supabase_key`` is empty no client is
    created and the app runs offline: the ``supabase`` property raises
    ``RuntimeError``, which the adapters translate into their normal
    failure types.

    Parameters
    ----------
    supabase_url:
        The Supabase project URL (e.g. ``https://xyz.supabase.co``).
    supabase_key:
        The project's anonymous key.
    logger:
        A ``StructuredLogger`` for structured JSON log output.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        logger: StructuredLogger,
    ) -> None:
        self._url: str = supabase_url
        self._key: str = supabase_key
        self._logger: StructuredLogger = logger
        self._supabase: Optional[AsyncClient] = None

    async def connect(self) -> None:
        """Create the async Supabase client.  Idempotent.

        Credential or network failures are logged and leave the manager
        in offline mode; they never raise.
        """
        if self._supabase is not None:
            return

        if not (self._url and self._key):
            self._logger.warning(
                "Supabase credentials not configured — running in offline mode."
            )
            return

        try:
            self._supabase = await acreate_client(self._url, self._key)
            self._logger.info("Supabase client initialized.")
        except (ValueError, TypeError) as exc:
            self._logger.warning(
                "Supabase credential format error: %s. Running in offline mode.",
                exc,
            )
        except Exception as exc:
            self._logger.error(
                "Unexpected Supabase initialization failure: %s. "
                "Running in offline mode.",
                exc,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> AsyncClient:
        """Return the initialised Supabase client.

        Raises
        ------
        RuntimeError
            If no client exists (offline mode or ``connect()`` not called).
        """
        if self._supabase is None:
            raise RuntimeError(
                "Supabase client is not initialised. "
                "The application is running in offline mode."
            )
        return self._supabase

    @property
    def is_configured(self) -> bool:
        """``True`` when both URL and key were supplied."""
        return bool(self._url and self._key)

    @property
    def is_online(self) -> bool:
        """``True`` when the Supabase client is available."""
        return self._supabase is not None

    async def close(self) -> None:
        """Release the client.  Safe to call multiple times."""
        if self._supabase is None:
            return
        self._supabase = None
        self._logger.info("Supabase client released.")
