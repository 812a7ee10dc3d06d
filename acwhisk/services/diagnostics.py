"""
Backend Diagnostics Service.

Read-only readiness checks an operator can run when sign-in or profile
loading misbehaves: is the identity provider configured and reachable,
and is the profile table provisioned?
"""

from __future__ import annotations

import time

from acwhisk.database import DatabaseManager
from acwhisk.errors import ProfileStoreError, ProfileTableMissingError
from acwhisk.logger import StructuredLogger
from acwhisk.models.diagnostic_models import DiagnosticResult
from acwhisk.models.enums import DiagnosticStatus
from acwhisk.repositories.profile_repository import ProfileRepository
from acwhisk.services.base_service import BaseService


class DiagnosticsService(BaseService):
    """Runs backend readiness checks.  ``run()`` never raises."""

    def __init__(
        self,
        db: DatabaseManager,
        profile_repo: ProfileRepository,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._profile_repo = profile_repo

    async def run(self) -> list[DiagnosticResult]:
        results: list[DiagnosticResult] = [self._check_configuration()]
        if self._db.is_online:
            results.append(await self._check_profile_table())

        for result in results:
            self._logger.info(
                "Diagnostic %s: %s — %s", result.test, result.status, result.message,
                extra={"event": "DIAGNOSTIC", "status": str(result.status)},
            )
        return results

    def _check_configuration(self) -> DiagnosticResult:
        if not self._db.is_configured:
            return DiagnosticResult(
                test="Project Configuration",
                status=DiagnosticStatus.FAIL,
                message="Supabase URL or anon key is not configured.",
                solution="Set SUPABASE_URL and SUPABASE_ANON_KEY in the environment or .env file.",
            )
        if not self._db.is_online:
            return DiagnosticResult(
                test="Project Configuration",
                status=DiagnosticStatus.FAIL,
                message="Supabase credentials are set but the client could not be created.",
                solution="Check the project URL format and anon key.",
            )
        return DiagnosticResult(
            test="Project Configuration",
            status=DiagnosticStatus.PASS,
            message="Supabase client initialised.",
        )

    async def _check_profile_table(self) -> DiagnosticResult:
        started = time.perf_counter()
        try:
            await self._profile_repo.probe()
        except ProfileTableMissingError:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            return DiagnosticResult(
                test="Database Connection",
                status=DiagnosticStatus.WARNING,
                message=(
                    f"Connected to Supabase but the {self._profile_repo.TABLE} "
                    f"table doesn't exist ({elapsed_ms}ms)."
                ),
                solution=f"Run the database setup to create the {self._profile_repo.TABLE} table.",
            )
        except ProfileStoreError as exc:
            return DiagnosticResult(
                test="Database Connection",
                status=DiagnosticStatus.FAIL,
                message=f"Database error ({exc.code or 'no code'}).",
                solution="Check the Supabase project settings and row-level security policies.",
            )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return DiagnosticResult(
            test="Database Connection",
            status=DiagnosticStatus.PASS,
            message=f"Successfully connected to Supabase ({elapsed_ms}ms).",
        )
