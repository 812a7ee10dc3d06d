"""
Authentication Pipeline Models.

Pydantic models for the contracts between the Session Source adapter,
the ``IdentityReconciler`` and the public ``AuthService``, plus the
error-pattern table used by the classifier.

Every public auth operation returns an ``AuthResult`` rather than raw
strings or exceptions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field

from acwhisk.models.enums import AuthErrorCode


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionIdentity(BaseModel):
    """Minimal identity embedded in a session by the identity provider."""

    id: str
    email: str = ""
    user_metadata: dict[str, object] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def metadata_str(self, *keys: str) -> Optional[str]:
        """Return the first non-blank string value among *keys*."""
        for key in keys:
            value = self.user_metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


class Session(BaseModel):
    """Read-only copy of an identity-provider session.

    Attributes
    ----------
    access_token:
        The short-lived JWT access token.
    refresh_token:
        Token used by the provider to renew the session.
    expires_at:
        Unix timestamp (seconds) when *access_token* expires, if known.
    identity:
        Embedded identity, or ``None`` when the provider emitted a
        session without a user.
    """

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    identity: Optional[SessionIdentity] = None

    model_config = {"frozen": True}

    @property
    def is_expired(self) -> bool:
        """``True`` when the access token expires within 30 seconds."""
        if self.expires_at is None:
            return False
        expiry = datetime.fromtimestamp(self.expires_at, tz=timezone.utc)
        return datetime.now(timezone.utc) >= expiry - timedelta(seconds=30)


class SignUpOutcome(BaseModel):
    """Result of a successful sign-up call.

    ``identity_created_without_session`` is ``True`` when the provider
    created the account but withheld a session pending email
    confirmation.
    """

    session: Optional[Session] = None
    identity_created_without_session: bool = False


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None


class AuthResult(BaseModel):
    """Uniform ``{success, error?}`` envelope for every public operation.

    Attributes
    ----------
    success:
        ``True`` when the operation completed.
    error:
        User-safe message.  On failure this is the classified category
        message.  On success it may carry an informational notice
        (e.g. "check your inbox"), never a failure.
    error_code:
        Category of the failure, ``None`` on success.
    detail:
        Raw backend text.  Populated only when ``DIAGNOSTIC_ERRORS`` is
        enabled; always ``None`` in regular builds.
    """

    success: bool
    error: Optional[str] = None
    error_code: Optional[AuthErrorCode] = None
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Error classification table
# ---------------------------------------------------------------------------

AUTH_ERROR_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.CAPTCHA_FAILED: (
        "🛡️ Security verification failed. CAPTCHA protection is enabled "
        "on the authentication service; disable it in the auth settings "
        "and try again."
    ),
    AuthErrorCode.INVALID_CREDENTIALS: (
        "❌ Invalid email or password. Please check your credentials and try again."
    ),
    AuthErrorCode.UNCONFIRMED_EMAIL: (
        "📧 Please confirm your email address before signing in. "
        "Check your inbox for the confirmation link."
    ),
    AuthErrorCode.RATE_LIMITED: (
        "⏳ Too many attempts. Please wait a few minutes before trying again."
    ),
    AuthErrorCode.ACCOUNT_MISSING: (
        "🔍 No account found with this email. Please sign up first."
    ),
    AuthErrorCode.ALREADY_REGISTERED: (
        "👤 An account with this email already exists. Please sign in instead."
    ),
    AuthErrorCode.SIGNUP_DISABLED: (
        "🚫 New registrations are currently closed. Please contact an administrator."
    ),
    AuthErrorCode.INVALID_EMAIL: (
        "✉️ Please enter a valid email address (e.g., chef@example.com)."
    ),
    AuthErrorCode.WEAK_PASSWORD: (
        "🔒 Password does not meet the security requirements. Use at least "
        "8 characters with upper and lower case letters, a number and a "
        "special character."
    ),
    AuthErrorCode.BACKEND_NOT_PROVISIONED: (
        "🛠️ The platform database is not set up yet. Please ask an "
        "administrator to complete the database setup."
    ),
    AuthErrorCode.VALIDATION_ERROR: (
        "⚠️ Please check the highlighted fields and try again."
    ),
    AuthErrorCode.UNKNOWN: (
        "⚠️ An unexpected error occurred. Please try again later."
    ),
}

# Ordered: the first family with a matching pattern wins.  Each pattern
# is a tuple of lowercase fragments that must ALL appear in the raw
# "<message> <code>" text.
AUTH_ERROR_PATTERNS: tuple[tuple[AuthErrorCode, tuple[tuple[str, ...], ...]], ...] = (
    (AuthErrorCode.CAPTCHA_FAILED, (
        ("captcha",),
    )),
    (AuthErrorCode.INVALID_CREDENTIALS, (
        ("invalid login",),
        ("invalid credentials",),
        ("invalid_credentials",),
        ("invalid_grant",),
    )),
    (AuthErrorCode.UNCONFIRMED_EMAIL, (
        ("email not confirmed",),
        ("email_not_confirmed",),
    )),
    (AuthErrorCode.RATE_LIMITED, (
        ("rate limit",),
        ("rate_limit",),
        ("too many requests",),
        ("too many",),
    )),
    (AuthErrorCode.ACCOUNT_MISSING, (
        ("user not found",),
        ("user_not_found",),
    )),
    (AuthErrorCode.ALREADY_REGISTERED, (
        ("already registered",),
        ("already_registered",),
        ("already been registered",),
        ("user already exists",),
        ("user_already_exists",),
        ("email_exists",),
    )),
    (AuthErrorCode.SIGNUP_DISABLED, (
        ("signup", "disabled"),
        ("signups not allowed",),
        ("signup_disabled",),
    )),
    (AuthErrorCode.INVALID_EMAIL, (
        ("invalid email",),
        ("unable to validate email",),
        ("email_address_invalid",),
        ("email", "invalid format"),
    )),
    (AuthErrorCode.WEAK_PASSWORD, (
        ("password should be at least",),
        ("password is too short",),
        ("password too short",),
        ("weak password",),
        ("weak_password",),
    )),
    (AuthErrorCode.BACKEND_NOT_PROVISIONED, (
        ("42p01",),
        ("pgrst205",),
        ("pgrst106",),
        ("relation", "does not exist"),
        ("could not find the table",),
        ("schema cache",),
        ("database schema",),
        ("database error saving new user",),
    )),
)

SIGNUP_CONFIRMATION_MESSAGE: str = (
    "📧 Account created! Please check your email and click the "
    "confirmation link before signing in."
)

PASSWORD_RESET_NOTICE: str = (
    "📧 If an account exists for this email, you will receive a "
    "password reset link shortly."
)
