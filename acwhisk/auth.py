"""
Authentication & Session State.

Holds the authoritative in-memory ``(session, user)`` pair.  Only the
``IdentityReconciler`` writes to it; everything else reads.

The pair obeys one invariant: ``user is not None`` implies
``session is not None`` and ``user.id`` equals the session's identity
id.  The converse need not hold (a session may exist while its profile
is still being resolved).

Usage::

    from acwhisk.auth import SessionState

    state = SessionState()
    state.set_session(session)
    state.commit_user(user)
    state.user.name
"""

from __future__ import annotations

from typing import Optional

from acwhisk.models.auth_models import Session
from acwhisk.models.user import User


class SessionState:
    """Injectable holder for the current session and resolved user.

    All access happens on one event loop, between suspension points,
    so no locking is required.
    """

    def __init__(self) -> None:
        self._session: Optional[Session] = None
        self._user: Optional[User] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def identity_id(self) -> Optional[str]:
        """Identity id embedded in the current session, if any."""
        if self._session is None or self._session.identity is None:
            return None
        return self._session.identity.id

    def set_session(self, session: Session) -> None:
        """Record *session* as current.

        A user belonging to a different identity is dropped at once; a
        user of the same identity is kept until its replacement is
        committed (e.g. across a token refresh).
        """
        self._session = session
        if self._user is not None and self._user.id != self.identity_id:
            self._user = None

    def commit_user(self, user: User) -> None:
        """Record *user* as the resolved identity for the current session.

        Raises:
            RuntimeError: If there is no session or *user* belongs to a
                different identity.
        """
        if self._session is None:
            raise RuntimeError("Cannot commit a user without a session.")
        if user.id != self.identity_id:
            raise RuntimeError(
                f"User {user.id} does not match session identity {self.identity_id}."
            )
        self._user = user

    def clear(self) -> None:
        """Remove the session and user, ending the local session."""
        self._session = None
        self._user = None

    @property
    def access_token(self) -> Optional[str]:
        """Return the current access token, or ``None`` if not set."""
        return self._session.access_token if self._session else None

    @property
    def is_token_expired(self) -> bool:
        """``True`` when the access token has expired or was never set."""
        if self._session is None:
            return True
        return self._session.is_expired

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a resolved user is present."""
        return self._user is not None
