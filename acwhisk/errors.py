"""
Backend Error Adapter.

Normalises the ad-hoc error shapes produced by the Supabase SDKs into a
single ``BackendError`` shape before anything reaches the classifier or
the reconciler.

Upstream failures arrive in several forms:

- ``postgrest.exceptions.APIError`` with ``.message`` / ``.code`` /
  ``.details`` / ``.hint``
- auth errors carrying ``.message`` / ``.code`` / ``.status``
- plain exceptions (``ConnectionError``, ``RuntimeError`` when offline)
- bare strings or dicts from older SDK versions

Usage::

    from acwhisk.errors import normalize_error

    try:
        await client.table("profiles").select("*").execute()
    except Exception as exc:
        err = normalize_error(exc)
        if is_table_missing(err):
            ...
"""

from __future__ import annotations

from typing import Optional, Union

__all__ = [
    "BackendError",
    "ProfileRowMissingError",
    "ProfileStoreError",
    "ProfileTableMissingError",
    "SessionSourceError",
    "is_row_missing",
    "is_table_missing",
    "normalize_error",
]


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------

class BackendError(Exception):
    """Uniform failure raised across the Session Source / Profile Store
    boundary.

    Attributes
    ----------
    message:
        Raw backend text.  Eligible for developer logging only.
    code:
        Backend error code (SQL state, PostgREST code, auth error code),
        or ``None`` when the upstream error carried none.
    status:
        HTTP status, when known.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        self.message: str = message
        self.code: Optional[str] = code
        self.status: Optional[int] = status
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"code={self.code!r}, status={self.status!r})"
        )

    @classmethod
    def from_error(cls, err: BackendError) -> BackendError:
        """Re-type an already-normalised error as *cls*."""
        return cls(err.message, code=err.code, status=err.status)


class SessionSourceError(BackendError):
    """Failure reported by the identity provider (sign-in, sign-up, ...)."""


class ProfileStoreError(BackendError):
    """Generic Profile Store failure: the store is reachable but rejected
    the operation."""


class ProfileTableMissingError(ProfileStoreError):
    """The profile table / relation / schema does not exist."""


class ProfileRowMissingError(ProfileStoreError):
    """No row exists for the requested identity, or zero rows affected."""


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------

# SQL state / PostgREST codes meaning "the table is not there".  Schemas
# vary across environments, so this is a set rather than a single code.
_TABLE_MISSING_CODES: frozenset[str] = frozenset({
    "42P01",     # undefined_table
    "3F000",     # invalid_schema_name
    "PGRST205",  # table not found in schema cache
    "PGRST106",  # schema not exposed
})

# Message fragments, each tuple matches when ALL parts are present.
_TABLE_MISSING_MARKERS: tuple[tuple[str, ...], ...] = (
    ("relation", "does not exist"),
    ("could not find the table",),
    ("schema cache",),
    ("database schema",),
)

_ROW_MISSING_CODES: frozenset[str] = frozenset({
    "PGRST116",  # single object requested, 0 rows returned
    "204",       # maybe_single() on older postgrest clients
})

_ROW_MISSING_MARKERS: tuple[tuple[str, ...], ...] = (
    ("0 rows",),
    ("no rows",),
    ("row not found",),
    ("missing response",),
)


def _matches(text: str, markers: tuple[tuple[str, ...], ...]) -> bool:
    return any(all(part in text for part in parts) for parts in markers)


def is_table_missing(err: BackendError) -> bool:
    """``True`` when *err* says the profile table is absent."""
    if err.code and err.code.upper() in _TABLE_MISSING_CODES:
        return True
    return _matches(err.message.lower(), _TABLE_MISSING_MARKERS)


def is_row_missing(err: BackendError) -> bool:
    """``True`` when *err* says the requested row is absent."""
    if err.code and err.code.upper() in _ROW_MISSING_CODES:
        return True
    return _matches(err.message.lower(), _ROW_MISSING_MARKERS)


# ---------------------------------------------------------------------------
# Normaliser
# ---------------------------------------------------------------------------

RawError = Union[BaseException, str, dict, None]


def normalize_error(raw: RawError) -> BackendError:
    """Convert any upstream error shape into a ``BackendError``.

    Already-normalised errors are returned unchanged.  Never raises.
    """
    if isinstance(raw, BackendError):
        return raw

    if raw is None:
        return BackendError("")

    if isinstance(raw, str):
        return BackendError(raw)

    if isinstance(raw, dict):
        code = raw.get("code")
        status = raw.get("status")
        return BackendError(
            str(raw.get("message") or raw.get("msg") or raw.get("error_description") or ""),
            code=str(code) if code is not None else None,
            status=status if isinstance(status, int) else None,
        )

    message = getattr(raw, "message", None)
    if not isinstance(message, str) or not message:
        message = str(raw) or type(raw).__name__

    code = getattr(raw, "code", None)
    status = getattr(raw, "status", None)
    if status is None:
        status = getattr(raw, "status_code", None)

    return BackendError(
        message,
        code=str(code) if code is not None else None,
        status=status if isinstance(status, int) else None,
    )
