"""
Collaborator protocols for the identity core.

The reconciler and the public session API depend on these structural
types only.  Production code binds them to the Supabase adapters; tests
bind them to in-memory fakes.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from acwhisk.models.auth_models import Session, SignUpOutcome
from acwhisk.models.user import ProfileRow

SessionHandler = Callable[[Optional[Session]], None]
Unsubscribe = Callable[[], None]


class SessionSource(Protocol):
    """Identity provider boundary.

    Every coroutine raises ``acwhisk.errors.SessionSourceError`` on
    failure; no other exception type crosses this boundary.
    """

    async def get_current_session(self) -> Optional[Session]:
        """One-shot fetch of the current session, or ``None``."""
        ...

    def subscribe_to_changes(self, handler: SessionHandler) -> Unsubscribe:
        """Register *handler* for session changes, in upstream order.

        The handler receives the new session, or ``None`` once the
        session has ended.  Returns a callable that unsubscribes.
        """
        ...

    async def sign_in(self, email: str, password: str) -> Optional[Session]:
        ...

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, object],
    ) -> SignUpOutcome:
        ...

    async def sign_out(self) -> None:
        ...

    async def request_password_reset(self, email: str, redirect_to: str) -> None:
        ...


class ProfileStore(Protocol):
    """Keyed profile record store.

    Failures raise ``ProfileTableMissingError`` when the table is
    absent, ``ProfileRowMissingError`` when the row is absent or zero
    rows were affected, and ``ProfileStoreError`` otherwise.
    """

    async def get_by_id(self, user_id: str) -> Optional[ProfileRow]:
        """Return the row for *user_id*, or ``None`` when there is none."""
        ...

    async def insert(self, row: ProfileRow) -> ProfileRow:
        ...

    async def update(self, user_id: str, fields: dict[str, object]) -> ProfileRow:
        ...

    async def upsert(self, row: ProfileRow) -> ProfileRow:
        """Insert-or-update keyed by ``id``."""
        ...
