"""
Adapter Layer Package.

Provides the Supabase-backed Session Source and Profile Store.  All
backend access flows through these adapters; services never touch
``db.supabase`` directly.

Usage:
    from acwhisk.repositories.profile_repository import ProfileRepository
    from acwhisk.repositories.session_source import SupabaseSessionSource
"""

from acwhisk.repositories.base_repository import BaseRepository
from acwhisk.repositories.profile_repository import ProfileRepository
from acwhisk.repositories.protocols import ProfileStore, SessionSource
from acwhisk.repositories.session_source import SupabaseSessionSource

__all__ = [
    "BaseRepository",
    "ProfileRepository",
    "ProfileStore",
    "SessionSource",
    "SupabaseSessionSource",
]
