"""
Profile Resolution Service.

Derives a full ``User`` from a session's embedded identity by reading,
or creating, the matching ``profiles`` row.

Resolution strategy:
    - Read the row by identity id.
    - Table absent: synthesize a fallback user, never write.
    - Any other read failure: log, synthesize a fallback user.
    - No row: upsert one with best-effort defaults (keyed by id, so
      concurrent resolutions converge on one row).  If the upsert
      fails, synthesize a fallback user.
    - Row present: map it, computing ``profile_complete``.

``resolve()`` never raises; every branch ends in a concrete ``User``.
"""

from __future__ import annotations

from typing import Optional

from acwhisk.errors import ProfileStoreError, ProfileTableMissingError
from acwhisk.logger import StructuredLogger
from acwhisk.models.auth_models import SessionIdentity
from acwhisk.models.user import ProfileRow, User, default_display_name, default_role
from acwhisk.repositories.protocols import ProfileStore
from acwhisk.services.base_service import BaseService
from acwhisk.utils.audit import log_audit_event


class ProfileResolutionService(BaseService):
    """Resolves ``SessionIdentity`` -> ``User`` against the Profile Store."""

    def __init__(self, store: ProfileStore, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._store = store

    async def resolve(self, identity: SessionIdentity) -> User:
        """Return the ``User`` for *identity*.  Never raises."""
        try:
            return await self._resolve(identity)
        except Exception as exc:
            self._logger.error(
                "Profile resolution: unexpected error for %s: %s",
                identity.id,
                exc,
                exc_info=True,
            )
            return User.synthesize(identity)

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    async def _resolve(self, identity: SessionIdentity) -> User:
        try:
            row: Optional[ProfileRow] = await self._store.get_by_id(identity.id)
        except ProfileTableMissingError:
            self._logger.warning(
                "Profile table is missing; using a local profile for %s.",
                identity.id,
                extra={"event": "PROFILE_DEGRADED", "user_id": identity.id},
            )
            return User.synthesize(identity)
        except ProfileStoreError as exc:
            self._logger.warning(
                "Profile lookup failed for %s (%s); using a local profile.",
                identity.id,
                exc.code or "no code",
                extra={"event": "PROFILE_LOOKUP_FAILED", "user_id": identity.id},
            )
            return User.synthesize(identity)

        if row is None:
            return await self._provision(identity)

        return User.from_profile(row, identity)

    async def _provision(self, identity: SessionIdentity) -> User:
        """Create the missing row with defaults from session metadata."""
        new_row = ProfileRow(
            id=identity.id,
            name=default_display_name(identity),
            email=identity.email or None,
            role=default_role(identity),
        )

        self._logger.info(
            "Profile resolution: creating profile for %s (role: %s)",
            identity.id,
            new_row.role,
        )

        try:
            created: ProfileRow = await self._store.upsert(new_row)
        except ProfileStoreError as exc:
            self._logger.warning(
                "Profile creation failed for %s (%s); using a local profile.",
                identity.id,
                exc.code or "no code",
                extra={"event": "PROFILE_CREATE_FAILED", "user_id": identity.id},
            )
            return User.synthesize(identity)

        log_audit_event(
            logger=self._logger,
            action="PROFILE_CREATE",
            entity_type="Profile",
            entity_id=identity.id,
            user_id=identity.id,
            details={"role": str(created.role), "name": created.name},
        )

        return User.from_profile(created, identity)
