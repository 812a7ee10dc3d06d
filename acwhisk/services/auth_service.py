"""
Authentication Service.

The public session API consumed by the rest of the platform: current
``user`` / ``session``, the ``loading`` and ``last_error`` flags, and
the sign-in, sign-up, sign-out, reset-password and update-profile
operations.

Every operation returns an ``AuthResult`` and never raises.  Identity
state is written exclusively by the ``IdentityReconciler``'s change
stream handler; successful sign-in / sign-up here only report success.
"""

from __future__ import annotations

import re
from typing import Optional, Union

from pydantic import ValidationError

from acwhisk.config import AppConfig
from acwhisk.errors import ProfileStoreError, RawError, normalize_error
from acwhisk.logger import StructuredLogger
from acwhisk.models.auth_models import (
    AUTH_ERROR_MESSAGES,
    PASSWORD_RESET_NOTICE,
    SIGNUP_CONFIRMATION_MESSAGE,
    AuthResult,
    Session,
    ValidationResult,
)
from acwhisk.models.enums import AuthErrorCode, UserRole
from acwhisk.models.user import ProfileUpdate, User
from acwhisk.repositories.protocols import SessionSource
from acwhisk.services.base_service import BaseService
from acwhisk.services.error_classifier import classify_error
from acwhisk.services.identity_reconciler import IdentityReconciler


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# C0 controls, DEL and C1 controls.
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x1f\x7f-\x9f]")

_PASSWORD_MIN_LENGTH: int = 8

_PASSWORD_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Z]"), "at least one uppercase letter"),
    (re.compile(r"[a-z]"), "at least one lowercase letter"),
    (re.compile(r"\d"), "at least one number"),
    (re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>?/`~]"), "at least one special character (!@#$%^&*)"),
)

# Compared lowercased.
_COMMON_PASSWORDS: frozenset[str] = frozenset({
    "12345678",
    "password",
    "password1",
    "password123",
    "password123!",
    "passw0rd",
    "passw0rd!",
    "admin123",
    "admin123!",
    "qwerty123",
    "qwerty123!",
    "welcome1!",
    "welcome123!",
})

_SIGN_IN_FALLBACK: str = "Sign in failed. Please try again."
_SIGN_UP_FALLBACK: str = "Sign up failed. Please try again."
_RESET_FALLBACK: str = "Could not send the password reset email. Please try again."
_PROFILE_FALLBACK: str = "Could not save your profile. Please try again."


class AuthService(BaseService):
    """Public session API.

    Parameters
    ----------
    source:
        Session Source the operations delegate to.
    reconciler:
        Owner of identity state and the loading / error flags.
    config:
        Application configuration (reset redirect, diagnostic errors).
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        source: SessionSource,
        reconciler: IdentityReconciler,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._source = source
        self._reconciler = reconciler
        self._config = config

    # ==================================================================
    # State
    # ==================================================================

    @property
    def user(self) -> Optional[User]:
        return self._reconciler.user

    @property
    def session(self) -> Optional[Session]:
        return self._reconciler.session

    @property
    def loading(self) -> bool:
        return self._reconciler.loading

    @property
    def last_error(self) -> Optional[str]:
        return self._reconciler.last_error

    async def start(self) -> None:
        """Bootstrap identity state and subscribe to session changes."""
        await self._reconciler.start()

    def close(self) -> None:
        """Unsubscribe from session changes; state is frozen afterwards."""
        self._reconciler.close()

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def normalize_email(email: str) -> str:
        """Strip whitespace and lowercase."""
        return email.strip().lower()

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="Please enter your email address.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.INVALID_EMAIL,
                error_message=AUTH_ERROR_MESSAGES[AuthErrorCode.INVALID_EMAIL],
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_password(password: str) -> ValidationResult:
        """Enforce the sign-up password policy.

        Policy: at least 8 characters, not one of the well-known weak
        passwords, and containing an uppercase letter, a lowercase
        letter, a digit and a special character.
        """
        if len(password) < _PASSWORD_MIN_LENGTH:
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.WEAK_PASSWORD,
                error_message=(
                    f"Password must be at least {_PASSWORD_MIN_LENGTH} characters long."
                ),
            )

        if password.lower() in _COMMON_PASSWORDS:
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.WEAK_PASSWORD,
                error_message="Please choose a stronger password. Avoid common passwords.",
            )

        missing = [label for rule, label in _PASSWORD_RULES if not rule.search(password)]
        if missing:
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.WEAK_PASSWORD,
                error_message=f"Password must contain {', '.join(missing)}.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def validate_name(name: str) -> ValidationResult:
        """Require a printable display name of at least 2 characters."""
        stripped = (name or "").strip()
        if len(stripped) < 2:
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="Name must be at least 2 characters long.",
            )
        if _CONTROL_CHAR_RE.search(stripped):
            return ValidationResult(
                is_valid=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message="Name contains invalid characters.",
            )
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Sign in
    # ==================================================================

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        On success the new session arrives through the change stream;
        this method does not touch ``user`` or ``session``.
        """
        with self._reconciler.operation():
            try:
                if not email or not password:
                    return self._invalid(ValidationResult(
                        is_valid=False,
                        error_code=AuthErrorCode.VALIDATION_ERROR,
                        error_message="Please fill in both email and password fields.",
                    ))
                check = self.validate_email(email)
                if not check.is_valid:
                    return self._invalid(check)

                email = self.normalize_email(email)
                await self._source.sign_in(email, password)
            except Exception as exc:
                return self._failure(exc, _SIGN_IN_FALLBACK, event="SIGN_IN_FAILED")

            self._logger.info(
                "Sign-in accepted for %s.", email,
                extra={"event": "SIGN_IN", "email": email},
            )
            return AuthResult(success=True)

    # ==================================================================
    # Sign up
    # ==================================================================

    async def sign_up(
        self,
        email: str,
        password: str,
        name: str,
        role: Union[UserRole, str] = UserRole.STUDENT,
    ) -> AuthResult:
        """Register a new account.

        ``name`` and ``role`` travel as sign-up metadata and seed the
        profile row on first resolution.  When the provider withholds a
        session pending email confirmation the result is
        ``success=True`` with an informational ``error`` message.
        """
        with self._reconciler.operation():
            try:
                for check in (
                    self.validate_name(name),
                    self.validate_email(email),
                    self.validate_password(password),
                ):
                    if not check.is_valid:
                        return self._invalid(check)

                email = self.normalize_email(email)
                resolved_role = UserRole.parse(role) or UserRole.STUDENT
                metadata: dict[str, object] = {
                    "name": name.strip(),
                    "role": str(resolved_role),
                }
                outcome = await self._source.sign_up(email, password, metadata)
            except Exception as exc:
                return self._failure(exc, _SIGN_UP_FALLBACK, event="SIGN_UP_FAILED")

            self._logger.info(
                "Account registered: %s (role: %s).", email, resolved_role,
                extra={"event": "SIGN_UP", "email": email},
            )

            if outcome.identity_created_without_session or outcome.session is None:
                return AuthResult(success=True, error=SIGNUP_CONFIRMATION_MESSAGE)
            return AuthResult(success=True)

    # ==================================================================
    # Sign out
    # ==================================================================

    async def sign_out(self) -> None:
        """Sign out.  Best effort: failures are logged, never surfaced.

        The change stream clears ``user`` and ``session``.  If the
        provider cannot be reached the local session is discarded
        anyway.  An earlier ``last_error`` is left in place.
        """
        with self._reconciler.operation(clear_error=False):
            user_id = self.user.id if self.user else "anonymous"
            try:
                await self._source.sign_out()
            except Exception as exc:
                self._logger.warning(
                    "Server-side sign-out failed for %s: %s", user_id, exc,
                    extra={"event": "SIGN_OUT_FAILED"},
                )
                self._reconciler.discard_session()
                return

            self._logger.info(
                "Signed out: %s", user_id,
                extra={"event": "SIGN_OUT", "user_id": user_id},
            )

    # ==================================================================
    # Password reset
    # ==================================================================

    async def reset_password(self, email: str) -> AuthResult:
        """Request a password-reset email.

        A successful request reports ``success=True`` with a generic
        notice.  "No such account" gets the same response, so the
        result never reveals whether an email is registered.
        """
        with self._reconciler.operation():
            try:
                check = self.validate_email(email)
                if not check.is_valid:
                    return self._invalid(check)

                email = self.normalize_email(email)
                await self._source.request_password_reset(
                    email, self._config.PASSWORD_RESET_REDIRECT_URL,
                )
            except Exception as exc:
                code, _ = classify_error(exc)
                if code != AuthErrorCode.ACCOUNT_MISSING:
                    return self._failure(exc, _RESET_FALLBACK, event="PASSWORD_RESET_FAILED")
                self._logger.info("Password reset requested for unknown account.")

            self._logger.info(
                "Password reset requested for %s.", email,
                extra={"event": "PASSWORD_RESET_REQUESTED", "email": email},
            )
            return AuthResult(success=True, error=PASSWORD_RESET_NOTICE)

    # ==================================================================
    # Profile update
    # ==================================================================

    async def update_profile(
        self,
        partial: Union[ProfileUpdate, dict[str, object]],
    ) -> AuthResult:
        """Save profile changes for the signed-in user.

        A store that lacks the profile table keeps the changes locally
        and reports success.  Any other store failure reports
        ``success=False`` and leaves the local user unchanged.
        """
        with self._reconciler.operation():
            if self.user is None:
                return AuthResult(
                    success=False,
                    error="Please sign in to update your profile.",
                    error_code=AuthErrorCode.VALIDATION_ERROR,
                )

            try:
                update = (
                    partial if isinstance(partial, ProfileUpdate)
                    else ProfileUpdate.model_validate(partial)
                )
            except ValidationError as exc:
                self._logger.warning("Rejected profile update: %s", exc)
                return self._invalid(ValidationResult(
                    is_valid=False,
                    error_code=AuthErrorCode.VALIDATION_ERROR,
                    error_message="Some profile fields cannot be changed here.",
                ))

            try:
                await self._reconciler.apply_profile_update(update.changed_fields())
            except LookupError:
                return AuthResult(
                    success=False,
                    error="Please sign in to update your profile.",
                    error_code=AuthErrorCode.VALIDATION_ERROR,
                )
            except Exception as exc:
                return self._failure(exc, _PROFILE_FALLBACK, event="PROFILE_UPDATE_FAILED")

            return AuthResult(success=True)

    # ==================================================================
    # Private helpers
    # ==================================================================

    def _invalid(self, check: ValidationResult) -> AuthResult:
        message = check.error_message or AUTH_ERROR_MESSAGES[AuthErrorCode.VALIDATION_ERROR]
        self._reconciler.record_error(message)
        return AuthResult(
            success=False,
            error=message,
            error_code=check.error_code or AuthErrorCode.VALIDATION_ERROR,
        )

    def _failure(self, raw: RawError, fallback: str, *, event: str) -> AuthResult:
        """Classify *raw*, record it as ``last_error`` and build the result.

        The raw text goes to the log; it reaches the result only in
        diagnostic builds.
        """
        code, message = classify_error(raw, fallback)
        err = normalize_error(raw)

        if code == AuthErrorCode.UNKNOWN and not isinstance(raw, ProfileStoreError):
            self._logger.error(
                "%s: %s", event, err.message,
                exc_info=raw if isinstance(raw, BaseException) else None,
                extra={"event": event, "error_code": str(code)},
            )
        else:
            self._logger.warning(
                "%s: %s", event, err.message,
                extra={"event": event, "error_code": str(code)},
            )

        self._reconciler.record_error(message)
        return AuthResult(
            success=False,
            error=message,
            error_code=code,
            detail=err.message if self._config.DIAGNOSTIC_ERRORS else None,
        )
