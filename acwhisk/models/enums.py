"""
Shared Enumerations for AC Whisk Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == 'student'`` continues to work.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional


class UserRole(StrEnum):
    """Valid platform roles.

    New profiles default to ``STUDENT`` unless the identity provider's
    sign-up metadata carries a recognised role hint.
    """

    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: object) -> Optional[UserRole]:
        """Return the matching role for *value*, or ``None`` if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class AuthErrorCode(StrEnum):
    """User-facing error categories.

    Every category maps to exactly one stable message in
    ``acwhisk.models.auth_models.AUTH_ERROR_MESSAGES``.
    ``VALIDATION_ERROR`` is raised locally, before any network call.
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    UNCONFIRMED_EMAIL = "unconfirmed_email"
    RATE_LIMITED = "rate_limited"
    ACCOUNT_MISSING = "account_missing"
    ALREADY_REGISTERED = "already_registered"
    SIGNUP_DISABLED = "signup_disabled"
    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    CAPTCHA_FAILED = "captcha_failed"
    BACKEND_NOT_PROVISIONED = "backend_not_provisioned"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


class DiagnosticStatus(StrEnum):
    """Outcome of a single backend diagnostic check."""

    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    INFO = "info"
