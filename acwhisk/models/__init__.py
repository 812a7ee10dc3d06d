from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from acwhisk.models import User, ProfileRow, Session, AuthResult
    from acwhisk.models import UserRole, AuthErrorCode
"""

from acwhisk.models.auth_models import (
    AuthResult,
    Session,
    SessionIdentity,
    SignUpOutcome,
    ValidationResult,
)
from acwhisk.models.diagnostic_models import DiagnosticResult
from acwhisk.models.enums import AuthErrorCode, DiagnosticStatus, UserRole
from acwhisk.models.user import ProfileRow, ProfileUpdate, User

__all__ = [
    "AuthErrorCode",
    "AuthResult",
    "DiagnosticResult",
    "DiagnosticStatus",
    "ProfileRow",
    "ProfileUpdate",
    "Session",
    "SessionIdentity",
    "SignUpOutcome",
    "User",
    "UserRole",
    "ValidationResult",
]
