"""
Error Classifier.

Pure mapping from a raw Session Source / Profile Store failure to one
stable, user-safe category message.  Classification is total: every
input, including ``None`` and unrecognised text, yields a string.

The raw backend text never appears in the returned message.
"""

from __future__ import annotations

from typing import Optional

from acwhisk.errors import RawError, normalize_error
from acwhisk.models.auth_models import AUTH_ERROR_MESSAGES, AUTH_ERROR_PATTERNS
from acwhisk.models.enums import AuthErrorCode

__all__ = ["classify", "classify_error", "match_category"]


def match_category(raw: RawError) -> Optional[AuthErrorCode]:
    """Return the first matching category for *raw*, or ``None``.

    Matching is case-insensitive against ``"<message> <code>"``.
    """
    err = normalize_error(raw)
    haystack = f"{err.message} {err.code or ''}".lower()

    for category, patterns in AUTH_ERROR_PATTERNS:
        for parts in patterns:
            if all(part in haystack for part in parts):
                return category
    return None


def classify_error(
    raw: RawError,
    fallback: Optional[str] = None,
) -> tuple[AuthErrorCode, str]:
    """Classify *raw* into ``(category, message)``.

    Unmatched input maps to ``AuthErrorCode.UNKNOWN`` with *fallback*
    as the message (or the default unknown message).
    """
    category = match_category(raw)
    if category is None:
        return AuthErrorCode.UNKNOWN, fallback or AUTH_ERROR_MESSAGES[AuthErrorCode.UNKNOWN]
    return category, AUTH_ERROR_MESSAGES[category]


def classify(raw: RawError, fallback: Optional[str] = None) -> str:
    """Return the user-facing message for *raw*."""
    return classify_error(raw, fallback)[1]
