"""Shared fixtures: in-memory Session Source / Profile Store fakes."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Optional

import pytest

from acwhisk.auth import SessionState
from acwhisk.config import AppConfig
from acwhisk.errors import (
    ProfileRowMissingError,
    ProfileStoreError,
    ProfileTableMissingError,
    SessionSourceError,
)
from acwhisk.logger import StructuredLogger
from acwhisk.models.auth_models import Session, SessionIdentity, SignUpOutcome
from acwhisk.models.user import ProfileRow
from acwhisk.repositories.protocols import SessionHandler, Unsubscribe
from acwhisk.services.auth_service import AuthService
from acwhisk.services.identity_reconciler import IdentityReconciler
from acwhisk.services.profile_resolution import ProfileResolutionService


def make_session(
    user_id: str = "user-1",
    email: str = "chef@example.com",
    metadata: Optional[dict[str, object]] = None,
    token: Optional[str] = None,
) -> Session:
    return Session(
        access_token=token or f"token-{user_id}-{uuid.uuid4().hex[:6]}",
        refresh_token="refresh",
        expires_at=None,
        identity=SessionIdentity(id=user_id, email=email, user_metadata=metadata or {}),
    )


class FakeSessionSource:
    """Scriptable identity provider.

    ``emit()`` pushes a change to every subscriber, in call order.
    Successful ``sign_in`` emits ``sign_in_session`` the way the real
    provider notifies listeners before returning.
    """

    def __init__(self) -> None:
        self.current: Optional[Session] = None
        self.probe_gate: Optional[asyncio.Event] = None
        self.probe_error: Optional[Exception] = None
        self.handlers: list[SessionHandler] = []

        self.sign_in_session: Optional[Session] = None
        self.sign_in_error: Optional[Exception] = None
        self.sign_up_outcome: SignUpOutcome = SignUpOutcome(
            session=None, identity_created_without_session=True,
        )
        self.sign_up_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.sign_out_emits: bool = True
        self.reset_error: Optional[Exception] = None

        self.calls: list[tuple[object, ...]] = []

    async def get_current_session(self) -> Optional[Session]:
        if self.probe_gate is not None:
            await self.probe_gate.wait()
        if self.probe_error is not None:
            raise self.probe_error
        return self.current

    def subscribe_to_changes(self, handler: SessionHandler) -> Unsubscribe:
        self.handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self.handlers:
                self.handlers.remove(handler)

        return _unsubscribe

    def emit(self, session: Optional[Session]) -> None:
        self.current = session
        for handler in list(self.handlers):
            handler(session)

    async def sign_in(self, email: str, password: str) -> Optional[Session]:
        self.calls.append(("sign_in", email))
        if self.sign_in_error is not None:
            raise self.sign_in_error
        if self.sign_in_session is not None:
            self.emit(self.sign_in_session)
        return self.sign_in_session

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, object],
    ) -> SignUpOutcome:
        self.calls.append(("sign_up", email, dict(metadata)))
        if self.sign_up_error is not None:
            raise self.sign_up_error
        return self.sign_up_outcome

    async def sign_out(self) -> None:
        self.calls.append(("sign_out",))
        # The provider fails before it drops its session or notifies.
        if self.sign_out_error is not None:
            raise self.sign_out_error
        if self.sign_out_emits:
            self.emit(None)

    async def request_password_reset(self, email: str, redirect_to: str) -> None:
        self.calls.append(("reset", email, redirect_to))
        if self.reset_error is not None:
            raise self.reset_error


class FakeProfileStore:
    """Dict-backed profile table with failure injection and read gates."""

    def __init__(self) -> None:
        self.rows: dict[str, ProfileRow] = {}
        self.table_missing: bool = False
        self.failure: Optional[ProfileStoreError] = None
        self.read_gates: dict[str, asyncio.Event] = {}
        self.write_gate: Optional[asyncio.Event] = None
        # Gated reads return the row as it was when the read started.
        self.snapshot_reads: bool = False
        self.calls: list[tuple[str, str]] = []

    def _check(self) -> None:
        if self.table_missing:
            raise ProfileTableMissingError(
                'relation "public.profiles" does not exist', code="42P01",
            )
        if self.failure is not None:
            raise self.failure

    async def get_by_id(self, user_id: str) -> Optional[ProfileRow]:
        self.calls.append(("get_by_id", user_id))
        snapshot = self.rows.get(user_id)
        gate = self.read_gates.get(user_id)
        if gate is not None:
            await gate.wait()
        self._check()
        return snapshot if self.snapshot_reads else self.rows.get(user_id)

    async def insert(self, row: ProfileRow) -> ProfileRow:
        self.calls.append(("insert", row.id))
        self._check()
        if row.id in self.rows:
            raise ProfileStoreError(
                "duplicate key value violates unique constraint", code="23505",
            )
        stored = row.model_copy(update={"created_at": datetime.now(timezone.utc)})
        self.rows[row.id] = stored
        return stored

    async def update(self, user_id: str, fields: dict[str, object]) -> ProfileRow:
        self.calls.append(("update", user_id))
        if self.write_gate is not None:
            await self.write_gate.wait()
        self._check()
        if user_id not in self.rows:
            raise ProfileRowMissingError("0 rows updated", code="PGRST116")
        stored = self.rows[user_id].model_copy(update=dict(fields))
        self.rows[user_id] = stored
        return stored

    async def upsert(self, row: ProfileRow) -> ProfileRow:
        self.calls.append(("upsert", row.id))
        self._check()
        existing = self.rows.get(row.id)
        if existing is None:
            stored = row.model_copy(update={"created_at": datetime.now(timezone.utc)})
        else:
            stored = existing.model_copy(update=row.model_dump(exclude_none=True))
        self.rows[row.id] = stored
        return stored


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name=f"acwhisk.test.{uuid.uuid4().hex[:8]}", log_file="")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        _env_file=None,
        SUPABASE_URL="",
        SUPABASE_ANON_KEY="",
        PASSWORD_RESET_REDIRECT_URL="https://acwhisk.test/reset",
        LOG_FILE="",
    )


@pytest.fixture
def source() -> FakeSessionSource:
    return FakeSessionSource()


@pytest.fixture
def store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def resolver(store: FakeProfileStore, logger: StructuredLogger) -> ProfileResolutionService:
    return ProfileResolutionService(store=store, logger=logger)


@pytest.fixture
def reconciler(
    source: FakeSessionSource,
    store: FakeProfileStore,
    resolver: ProfileResolutionService,
    logger: StructuredLogger,
) -> IdentityReconciler:
    return IdentityReconciler(
        source=source,
        resolver=resolver,
        store=store,
        state=SessionState(),
        logger=logger,
        probe_timeout_s=0.5,
    )


@pytest.fixture
def auth_service(
    source: FakeSessionSource,
    reconciler: IdentityReconciler,
    config: AppConfig,
    logger: StructuredLogger,
) -> AuthService:
    return AuthService(source=source, reconciler=reconciler, config=config, logger=logger)


@pytest.fixture
def source_error():
    """Factory for provider failures with a given message / code."""
    def _make(message: str, code: Optional[str] = None) -> SessionSourceError:
        return SessionSourceError(message, code=code, status=400)
    return _make
