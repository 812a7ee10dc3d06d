"""
Identity Reconciler.

Owns the authoritative ``(session, user)`` pair and keeps it in step
with the identity provider.

Event sources:
    - bootstrap: one bounded probe of the current session at startup
    - change stream: every session change pushed by the Session Source
      (sign-in, token refresh, sign-out in another tab, ...)
    - profile updates requested through the public session API

The change-stream handler is the single writer of identity state.
Sign-in / sign-up operations never assign ``user`` or ``session``
themselves; they wait for the stream to deliver the new session.

Every transition bumps a generation counter.  A profile resolution
captures the generation and session it started with and is discarded
at commit time if either has moved on, so a slow resolution can never
resurrect a signed-out user or overwrite a newer identity.  A second
counter, the profile revision, moves with every profile update; a
resolution that overlapped an update keeps the updated user instead of
its own, possibly older, read.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Coroutine, Iterator, Optional

from acwhisk.auth import SessionState
from acwhisk.errors import (
    ProfileRowMissingError,
    ProfileTableMissingError,
    SessionSourceError,
)
from acwhisk.logger import StructuredLogger
from acwhisk.models.auth_models import Session
from acwhisk.models.user import ProfileRow, User
from acwhisk.repositories.protocols import ProfileStore, SessionSource, Unsubscribe
from acwhisk.services.base_service import BaseService
from acwhisk.services.profile_resolution import ProfileResolutionService
from acwhisk.utils.audit import log_audit_event


class IdentityReconciler(BaseService):
    """Reconciles the provider's session stream with the profile store.

    Parameters
    ----------
    source:
        Session Source (identity provider adapter).
    resolver:
        Resolves a session identity to a ``User``; never raises.
    store:
        Profile Store used by profile updates.
    state:
        The ``(session, user)`` holder this reconciler writes to.
    logger:
        Structured JSON logger.
    probe_timeout_s:
        Upper bound for the bootstrap session probe.
    """

    def __init__(
        self,
        source: SessionSource,
        resolver: ProfileResolutionService,
        store: ProfileStore,
        state: SessionState,
        logger: StructuredLogger,
        probe_timeout_s: float = 5.0,
    ) -> None:
        super().__init__(logger)
        self._source = source
        self._resolver = resolver
        self._store = store
        self._state = state
        self._probe_timeout_s = probe_timeout_s

        self._initial_loading: bool = True
        self._pending_operations: int = 0
        self._last_error: Optional[str] = None

        self._generation: int = 0
        self._profile_revision: int = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._started: bool = False
        self._closed: bool = False

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[Session]:
        return self._state.session

    @property
    def user(self) -> Optional[User]:
        return self._state.user

    @property
    def initial_loading(self) -> bool:
        return self._initial_loading

    @property
    def operation_loading(self) -> bool:
        return self._pending_operations > 0

    @property
    def loading(self) -> bool:
        """``initial_loading or operation_loading``."""
        return self._initial_loading or self.operation_loading

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def is_closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to the change stream, then bootstrap.  Runs once.

        Subscribing first means no change is lost while the bootstrap
        probe is in flight; if the stream delivers something first,
        the probe result is dropped.
        """
        if self._started or self._closed:
            return
        self._started = True

        try:
            self._unsubscribe = self._source.subscribe_to_changes(self._on_session_change)
        except Exception as exc:
            self._logger.error(
                "Could not subscribe to session changes: %s", exc, exc_info=True,
            )

        await self.bootstrap()

    async def bootstrap(self) -> None:
        """Probe the current session and resolve its profile.

        ``initial_loading`` is cleared only after resolution finishes,
        so the first state readers observe already holds a best-effort
        ``user``.
        """
        start_generation = self._generation
        try:
            session = await self._probe_session()
            if self._closed:
                return
            if self._generation != start_generation:
                self._logger.debug("Bootstrap superseded by the change stream.")
                await self.wait_idle()
                return
            if session is None or session.identity is None:
                self._logger.info("Bootstrap: no active session.")
                return

            generation = self._begin_transition(session)
            await self._resolve_and_commit(session, generation)
        finally:
            self._initial_loading = False

    def close(self) -> None:
        """Unsubscribe and stop mutating state.  Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        if self._unsubscribe is not None:
            try:
                self._unsubscribe()
            except Exception as exc:
                self._logger.warning("Unsubscribe failed: %s", exc)
            self._unsubscribe = None

        for task in list(self._tasks):
            task.cancel()

        self._logger.info("Identity reconciler closed.")

    async def wait_idle(self) -> None:
        """Wait until no profile resolution is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Operation bookkeeping (used by the public session API)
    # ------------------------------------------------------------------

    @contextmanager
    def operation(self, clear_error: bool = True) -> Iterator[None]:
        """Mark a user-triggered operation as in flight.

        Clears ``last_error`` on entry unless *clear_error* is false.
        Overlapping operations are counted, so ``operation_loading``
        stays set until all finish.
        """
        if clear_error:
            self._last_error = None
        self._pending_operations += 1
        try:
            yield
        finally:
            self._pending_operations -= 1

    def record_error(self, message: str) -> None:
        self._last_error = message

    def discard_session(self) -> None:
        """End the local session when the provider could not be told.

        In-flight resolutions are invalidated like on a stream sign-out.
        """
        if self._closed or self._state.session is None:
            return
        self._begin_transition(None)
        self._logger.info(
            "Local session discarded.", extra={"event": "SESSION_DISCARDED"},
        )

    # ------------------------------------------------------------------
    # Change stream
    # ------------------------------------------------------------------

    def _on_session_change(self, session: Optional[Session]) -> None:
        if self._closed:
            return

        if session is None or session.identity is None:
            self._begin_transition(None)
            self._logger.info(
                "Session ended.", extra={"event": "SESSION_ENDED"},
            )
            return

        generation = self._begin_transition(session)
        self._spawn(self._resolve_and_commit(session, generation))

    def _begin_transition(self, session: Optional[Session]) -> int:
        self._generation += 1
        if session is None:
            self._state.clear()
        else:
            self._state.set_session(session)
        return self._generation

    def _is_current(self, session: Session, generation: int) -> bool:
        return (
            not self._closed
            and generation == self._generation
            and self._state.session is session
        )

    async def _resolve_and_commit(self, session: Session, generation: int) -> None:
        identity = session.identity
        if identity is None:
            return

        revision = self._profile_revision
        user = await self._resolver.resolve(identity)

        if not self._is_current(session, generation):
            self._logger.debug(
                "Discarding stale profile for %s (generation %d, now %d).",
                identity.id,
                generation,
                self._generation,
            )
            return

        # A same-identity user survives set_session(); it is the one the
        # profile update below wrote to.
        current = self._state.user
        if current is not None and revision != self._profile_revision:
            self._logger.debug(
                "Profile for %s changed during resolution; keeping the local copy.",
                identity.id,
            )
            return
        if current is not None and current.is_fallback and user.is_fallback:
            # Unpersisted edits from degraded mode outlive token refreshes.
            user = current.model_copy(update={"email": user.email})

        self._state.commit_user(user)
        self._logger.info(
            "Identity resolved: %s (role: %s%s)",
            user.id,
            user.role,
            ", local profile" if user.is_fallback else "",
            extra={"event": "IDENTITY_RESOLVED", "user_id": user.id},
        )

    def _spawn(self, coro: Coroutine[object, object, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "Profile resolution task failed: %s", exc, exc_info=exc,
            )

    async def _probe_session(self) -> Optional[Session]:
        try:
            return await asyncio.wait_for(
                self._source.get_current_session(),
                timeout=self._probe_timeout_s,
            )
        except asyncio.TimeoutError:
            self._logger.warning(
                "Session probe timed out after %.1fs; starting signed out.",
                self._probe_timeout_s,
                extra={"event": "BOOTSTRAP_TIMEOUT"},
            )
        except SessionSourceError as exc:
            self._logger.warning(
                "Session probe failed (%s); starting signed out.",
                exc.code or "no code",
                extra={"event": "BOOTSTRAP_FAILED"},
            )
        except Exception as exc:
            self._logger.error(
                "Unexpected session probe failure: %s", exc, exc_info=True,
            )
        return None

    # ------------------------------------------------------------------
    # Profile updates
    # ------------------------------------------------------------------

    async def apply_profile_update(self, fields: dict[str, str]) -> User:
        """Persist *fields* for the current user and commit the result.

        Falls back to an insert when the row is missing.  When the
        profile table is absent the fields are merged locally and the
        update counts as saved.

        Raises:
            LookupError: No user is signed in.
            ProfileStoreError: The store rejected the change.  Local
                state is left untouched.
        """
        user = self._state.user
        if user is None:
            raise LookupError("No signed-in user.")
        if not fields:
            return user

        # Bumped before and after the write, so a resolution that read
        # the row at any point in between is not committed over it.
        self._profile_revision += 1
        try:
            row = await self._persist_profile(user, fields)
        except ProfileTableMissingError:
            self._logger.warning(
                "Profile table is missing; keeping changes for %s locally.",
                user.id,
                extra={"event": "PROFILE_DEGRADED", "user_id": user.id},
            )
            updated = user.merged(fields)
        else:
            updated = self._user_from_row(row, fallback=user.merged(fields))
            log_audit_event(
                logger=self._logger,
                action="PROFILE_UPDATE",
                entity_type="Profile",
                entity_id=user.id,
                user_id=user.id,
                details={"fields": ", ".join(sorted(fields))},
            )

        self._profile_revision += 1
        if self._closed or self._state.user is None or self._state.user.id != user.id:
            self._logger.debug("Identity changed during profile update; not committing.")
            return updated

        self._state.commit_user(updated)
        return updated

    async def _persist_profile(self, user: User, fields: dict[str, str]) -> ProfileRow:
        try:
            return await self._store.update(user.id, fields)
        except ProfileRowMissingError:
            self._logger.info(
                "No profile row for %s; inserting instead of updating.", user.id,
            )

        row = await self._store.insert(user.merged(fields).to_profile_row())
        log_audit_event(
            logger=self._logger,
            action="PROFILE_INSERT_FALLBACK",
            entity_type="Profile",
            entity_id=user.id,
            user_id=user.id,
            details={"fields": ", ".join(sorted(fields))},
        )
        return row

    def _user_from_row(self, row: ProfileRow, fallback: User) -> User:
        session = self._state.session
        if session is None or session.identity is None or session.identity.id != row.id:
            return fallback
        return User.from_profile(row, session.identity)
