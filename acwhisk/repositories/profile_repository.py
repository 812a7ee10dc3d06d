"""
Profile Repository.

Supabase-backed Profile Store.  Every failure is re-raised as one of
three distinguishable classes so the identity core can choose between
creation, degraded mode and a real error:

- ``ProfileTableMissingError``: the table is not provisioned
- ``ProfileRowMissingError``: no row for this identity / zero rows affected
- ``ProfileStoreError``: anything else
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from acwhisk.database import DatabaseManager
from acwhisk.errors import (
    BackendError,
    ProfileRowMissingError,
    ProfileStoreError,
    ProfileTableMissingError,
    is_row_missing,
    is_table_missing,
)
from acwhisk.logger import StructuredLogger
from acwhisk.models.user import ProfileRow
from acwhisk.repositories.base_repository import BaseRepository


class ProfileRepository(BaseRepository):
    """Data access layer for ``profiles`` rows, keyed by identity id."""

    TABLE = "profiles"
    ERROR_TYPE = ProfileStoreError

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        table: Optional[str] = None,
    ) -> None:
        super().__init__(db, logger)
        if table:
            self.TABLE = table

    async def get_by_id(self, user_id: str) -> Optional[ProfileRow]:
        """Fetch the profile row for *user_id*, or ``None`` if absent."""
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("id", user_id)
                .maybe_single()
                .execute()
            )
        except Exception as exc:
            err = self._translate(exc, f"get_by_id ({self.TABLE})")
            if isinstance(err, ProfileRowMissingError):
                return None
            raise err from exc

        # Newer postgrest clients return None instead of raising on 0 rows.
        if response is None or not response.data:
            return None
        return ProfileRow.model_validate(response.data)

    async def insert(self, row: ProfileRow) -> ProfileRow:
        """Insert a new row.  Fails on duplicate ids."""
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .insert(row.to_record())
                .execute()
            )
        except Exception as exc:
            raise self._translate(exc, f"insert ({self.TABLE})") from exc

        self._logger.info("Profile inserted: %s", row.id)
        return self._first_row(response.data, fallback=row)

    async def upsert(self, row: ProfileRow) -> ProfileRow:
        """Insert-or-update keyed by ``id``.

        Concurrent upserts of the same new identity converge on one row.
        """
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .upsert(row.to_record(), on_conflict="id")
                .execute()
            )
        except Exception as exc:
            raise self._translate(exc, f"upsert ({self.TABLE})") from exc

        self._logger.info("Profile upserted: %s", row.id)
        return self._first_row(response.data, fallback=row)

    async def update(self, user_id: str, fields: dict[str, object]) -> ProfileRow:
        """Apply *fields* to the row for *user_id*.

        Raises ``ProfileRowMissingError`` when no row was affected.
        """
        payload: dict[str, object] = {
            **fields,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = await (
                self.supabase.table(self.TABLE)
                .update(payload)
                .eq("id", user_id)
                .execute()
            )
        except Exception as exc:
            raise self._translate(exc, f"update ({self.TABLE})") from exc

        if not response.data:
            raise ProfileRowMissingError(
                f"No {self.TABLE} row for {user_id}; 0 rows updated.",
                code="PGRST116",
            )

        self._logger.info("Profile updated: %s (%s)", user_id, ", ".join(sorted(fields)))
        return ProfileRow.model_validate(response.data[0])

    async def probe(self) -> None:
        """Cheap reachability check: select one id from the table."""
        try:
            await self.supabase.table(self.TABLE).select("id").limit(1).execute()
        except Exception as exc:
            raise self._translate(exc, f"probe ({self.TABLE})") from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _translate(self, exc: BaseException, operation: str) -> ProfileStoreError:
        err: BackendError = super()._translate(exc, operation)
        if is_table_missing(err):
            return ProfileTableMissingError.from_error(err)
        if is_row_missing(err):
            return ProfileRowMissingError.from_error(err)
        return err

    @staticmethod
    def _first_row(data: object, fallback: ProfileRow) -> ProfileRow:
        # RLS with ``return=minimal`` yields no representation.
        if isinstance(data, list) and data:
            return ProfileRow.model_validate(data[0])
        return fallback
