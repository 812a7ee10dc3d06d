"""
Supabase Session Source.

Adapter over ``supabase.auth`` implementing the ``SessionSource``
protocol.  Converts SDK sessions into read-only ``Session`` snapshots
and every SDK failure into ``SessionSourceError``.
"""

from __future__ import annotations

from typing import Optional

from acwhisk.errors import SessionSourceError
from acwhisk.models.auth_models import Session, SessionIdentity, SignUpOutcome
from acwhisk.repositories.base_repository import BaseRepository
from acwhisk.repositories.protocols import SessionHandler, Unsubscribe


def to_session(raw: object) -> Optional[Session]:
    """Map an SDK session object to a ``Session`` snapshot.

    Returns ``None`` for a missing session or one without an access
    token.  The embedded identity is ``None`` when the SDK session has
    no user attached.
    """
    if raw is None:
        return None

    access_token = getattr(raw, "access_token", None)
    if not access_token:
        return None

    identity: Optional[SessionIdentity] = None
    raw_user = getattr(raw, "user", None)
    user_id = getattr(raw_user, "id", None) if raw_user is not None else None
    if user_id:
        metadata = getattr(raw_user, "user_metadata", None)
        identity = SessionIdentity(
            id=str(user_id),
            email=getattr(raw_user, "email", None) or "",
            user_metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    expires_at = getattr(raw, "expires_at", None)
    return Session(
        access_token=access_token,
        refresh_token=getattr(raw, "refresh_token", None),
        expires_at=int(expires_at) if expires_at is not None else None,
        identity=identity,
    )


class SupabaseSessionSource(BaseRepository):
    """Session Source backed by the Supabase auth client."""

    ERROR_TYPE = SessionSourceError

    async def get_current_session(self) -> Optional[Session]:
        try:
            raw = await self.supabase.auth.get_session()
        except Exception as exc:
            raise self._translate(exc, "get_session") from exc
        return to_session(raw)

    def subscribe_to_changes(self, handler: SessionHandler) -> Unsubscribe:
        """Forward every auth state change to *handler*.

        Offline, there is nothing to subscribe to; the returned
        unsubscribe callable is then a no-op.
        """
        def _listener(event: object, raw_session: object) -> None:
            self._logger.debug("Auth state change: %s", event)
            handler(to_session(raw_session))

        try:
            subscription = self.supabase.auth.on_auth_state_change(_listener)
        except RuntimeError as exc:
            self._logger.warning("Auth change stream unavailable: %s", exc)
            return lambda: None

        return subscription.unsubscribe

    async def sign_in(self, email: str, password: str) -> Optional[Session]:
        try:
            response = await self.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as exc:
            raise self._translate(exc, "sign_in_with_password") from exc
        return to_session(getattr(response, "session", None))

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, object],
    ) -> SignUpOutcome:
        try:
            response = await self.supabase.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata},
            })
        except Exception as exc:
            raise self._translate(exc, "sign_up") from exc

        session = to_session(getattr(response, "session", None))
        return SignUpOutcome(
            session=session,
            identity_created_without_session=(
                getattr(response, "user", None) is not None and session is None
            ),
        )

    async def sign_out(self) -> None:
        try:
            await self.supabase.auth.sign_out()
        except Exception as exc:
            raise self._translate(exc, "sign_out") from exc

    async def request_password_reset(self, email: str, redirect_to: str) -> None:
        try:
            await self.supabase.auth.reset_password_for_email(
                email, {"redirect_to": redirect_to},
            )
        except Exception as exc:
            raise self._translate(exc, "reset_password_for_email") from exc
