"""
Repository Layer Package.

Provides data-access abstractions over the Supabase tables the core
reads and writes.  Services never call ``db.supabase.table(...)``
directly.

Usage:
    from classsync.repositories.profile_repository import ProfileRepository
    from classsync.repositories.notification_repository import NotificationRepository
"""

from classsync.repositories.base_repository import BaseRepository
from classsync.repositories.notification_repository import (
    NotificationRepository,
    NotificationSyncError,
)
from classsync.repositories.profile_repository import ProfileRepository

__all__ = [
    "BaseRepository",
    "NotificationRepository",
    "NotificationSyncError",
    "ProfileRepository",
]
