"""
Identity Core Services Package.

Services depend on the adapter layer (``acwhisk.repositories``) for
backend access and on ``acwhisk.auth.SessionState`` for identity state.

The ``create_services()`` factory wires every adapter and service
together, returning a typed dict the application entry point can
consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from acwhisk.auth import SessionState
from acwhisk.config import AppConfig
from acwhisk.database import DatabaseManager
from acwhisk.logger import StructuredLogger, get_logger
from acwhisk.repositories.profile_repository import ProfileRepository
from acwhisk.repositories.session_source import SupabaseSessionSource
from acwhisk.services.auth_service import AuthService
from acwhisk.services.diagnostics import DiagnosticsService
from acwhisk.services.identity_reconciler import IdentityReconciler
from acwhisk.services.profile_resolution import ProfileResolutionService


class ServiceContainer(TypedDict):
    """Typed container for the identity core."""

    session_state: SessionState
    profile_repository: ProfileRepository
    session_source: SupabaseSessionSource
    profile_resolution_service: ProfileResolutionService
    identity_reconciler: IdentityReconciler
    auth_service: AuthService
    diagnostics_service: DiagnosticsService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    logger: Optional[StructuredLogger] = None,
) -> ServiceContainer:
    """
    Wire all adapters and services together.

    The single composition root for the identity core.  Call once at
    startup, then ``await container["auth_service"].start()``; call
    ``close()`` on it at shutdown.

    Args:
        db: DatabaseManager (connected, or offline).
        config: Application configuration.
        logger: Parent logger; defaults to ``acwhisk.services``.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = logger or get_logger("acwhisk.services")

    # ------------------------------------------------------------------
    # 1. Adapters (Session Source + Profile Store)
    # ------------------------------------------------------------------
    profile_repo = ProfileRepository(
        db=db,
        logger=logger.child("profiles"),
        table=config.PROFILES_TABLE,
    )
    session_source = SupabaseSessionSource(db=db, logger=logger.child("session_source"))

    # ------------------------------------------------------------------
    # 2. Identity core
    # ------------------------------------------------------------------
    state = SessionState()
    resolution_service = ProfileResolutionService(
        store=profile_repo,
        logger=logger.child("resolution"),
    )
    reconciler = IdentityReconciler(
        source=session_source,
        resolver=resolution_service,
        store=profile_repo,
        state=state,
        logger=logger.child("reconciler"),
        probe_timeout_s=config.SESSION_PROBE_TIMEOUT_S,
    )

    # ------------------------------------------------------------------
    # 3. Public session API + tooling
    # ------------------------------------------------------------------
    auth_service = AuthService(
        source=session_source,
        reconciler=reconciler,
        config=config,
        logger=logger.child("auth"),
    )
    diagnostics_service = DiagnosticsService(
        db=db,
        profile_repo=profile_repo,
        logger=logger.child("diagnostics"),
    )

    return ServiceContainer(
        session_state=state,
        profile_repository=profile_repo,
        session_source=session_source,
        profile_resolution_service=resolution_service,
        identity_reconciler=reconciler,
        auth_service=auth_service,
        diagnostics_service=diagnostics_service,
    )
