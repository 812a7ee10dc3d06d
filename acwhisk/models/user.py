"""
User & Profile Models.

``ProfileRow`` mirrors one row of the ``profiles`` table.  ``User`` is
the application-level identity the rest of the platform consumes: it
joins a profile row (or a synthesized stand-in) with the email address
from the identity provider.
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from acwhisk.models.auth_models import SessionIdentity
from acwhisk.models.enums import UserRole

_EXTENDED_FIELDS: tuple[str, ...] = (
    "avatar_url",
    "bio",
    "year_level",
    "specialization",
    "phone",
    "location",
)


def default_display_name(identity: SessionIdentity) -> str:
    """Display name hint: metadata ``name``/``full_name``, else the
    local part of the email address."""
    hinted = identity.metadata_str("name", "full_name")
    if hinted:
        return hinted
    local_part = identity.email.split("@", 1)[0].strip()
    return local_part or "User"


def default_role(identity: SessionIdentity) -> UserRole:
    """Role hint from sign-up metadata, else ``student``."""
    return UserRole.parse(identity.user_metadata.get("role")) or UserRole.STUDENT


class ProfileRow(BaseModel):
    """A persisted ``profiles`` row keyed by identity id."""

    model_config = ConfigDict(
        from_attributes=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.STUDENT
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    year_level: Optional[str] = None
    specialization: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: object) -> UserRole:
        # Rows written by older clients may hold unknown or null roles.
        return UserRole.parse(value) or UserRole.STUDENT

    def to_record(self) -> dict[str, object]:
        """Serialise for a PostgREST write, dropping unset columns."""
        return self.model_dump(mode="json", exclude_none=True)


class ProfileUpdate(BaseModel):
    """Self-service profile edit.

    Fields left as ``None`` are not touched.  ``id``, ``email``,
    ``role`` and ``created_at`` are not editable here; unknown keys are
    rejected.
    """

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    year_level: Optional[str] = None
    specialization: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None

    def changed_fields(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class User(BaseModel):
    """Application-level identity.

    ``email`` always comes from the session, never from the profile
    row.  Synthesized users (``is_fallback=True``) carry no extended
    fields and are never ``profile_complete``.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: UserRole = UserRole.STUDENT
    profile_complete: bool = False
    created_at: Optional[datetime] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    year_level: Optional[str] = None
    specialization: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    is_fallback: bool = False

    @classmethod
    def from_profile(cls, row: ProfileRow, identity: SessionIdentity) -> User:
        """Map a persisted row to a ``User``."""
        name = (row.name or "").strip() or default_display_name(identity)
        return cls(
            id=row.id,
            email=identity.email,
            name=name,
            role=row.role,
            profile_complete=bool((row.name or "").strip() and (row.bio or "").strip()),
            created_at=row.created_at,
            **{field: getattr(row, field) for field in _EXTENDED_FIELDS},
        )

    @classmethod
    def synthesize(cls, identity: SessionIdentity) -> User:
        """Build a minimal, non-persisted user from session metadata only."""
        return cls(
            id=identity.id,
            email=identity.email,
            name=default_display_name(identity),
            role=default_role(identity),
            is_fallback=True,
        )

    def merged(self, fields: Mapping[str, object]) -> User:
        """Return a copy with *fields* applied locally (no persistence).

        ``profile_complete`` is recomputed for row-backed users only.
        """
        updated = self.model_copy(update=dict(fields))
        if not updated.is_fallback:
            updated.profile_complete = bool(
                updated.name.strip() and (updated.bio or "").strip()
            )
        return updated

    def to_profile_row(self) -> ProfileRow:
        return ProfileRow(
            id=self.id,
            name=self.name,
            email=self.email or None,
            role=self.role,
            **{field: getattr(self, field) for field in _EXTENDED_FIELDS},
        )
