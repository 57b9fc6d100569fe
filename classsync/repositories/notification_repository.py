"""
Notification Repository.

Data access for the ``notifications`` table in Supabase.  Every backend
failure is re-raised as :class:`NotificationSyncError` so the sync engine
has a single exception type to recover from.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError

from classsync.models.enums import NotificationType
from classsync.models.notification import Notification
from classsync.repositories.base_repository import BaseRepository


class NotificationSyncError(Exception):
    """A notification read or write could not reach the backend."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class NotificationRepository(BaseRepository):
    """Data access layer for Notification rows.

    The only mutation the client performs is ``is_read: false -> true``;
    there is deliberately no way to write ``False`` or delete a row.
    """

    TABLE = "notifications"

    def list_by_user(self, user_id: str) -> list[Notification]:
        """Return every notification for *user_id*, newest first."""
        try:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise NotificationSyncError(
                f"Failed to list notifications for {user_id}: {exc}",
                original_error=exc,
            ) from exc

        notifications: list[Notification] = []
        for row in self._rows(response):
            try:
                notifications.append(Notification(**row))
            except ValidationError as exc:
                self._logger.warning(
                    "Skipping malformed notification %s: %s",
                    row.get("id", "<no id>"),
                    exc.errors(include_url=False),
                )
        return notifications

    def update_read_flag(self, notification_id: str, user_id: str) -> None:
        """Mark a single notification as read."""
        try:
            (
                self.supabase.table(self.TABLE)
                .update({"is_read": True})
                .eq("id", notification_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            raise NotificationSyncError(
                f"Failed to mark notification {notification_id} as read: {exc}",
                original_error=exc,
            ) from exc

    def bulk_update_read_flag(self, user_id: str) -> None:
        """Mark every unread notification of *user_id* as read."""
        try:
            (
                self.supabase.table(self.TABLE)
                .update({"is_read": True})
                .eq("user_id", user_id)
                .eq("is_read", False)
                .execute()
            )
        except Exception as exc:
            raise NotificationSyncError(
                f"Failed to mark all notifications as read for {user_id}: {exc}",
                original_error=exc,
            ) from exc

    def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        data: dict[str, Any],
    ) -> None:
        """Insert a new unread notification addressed to *user_id*."""
        try:
            (
                self.supabase.table(self.TABLE)
                .insert({
                    "user_id": user_id,
                    "type": str(notification_type),
                    "data": data,
                    "is_read": False,
                })
                .execute()
            )
        except Exception as exc:
            raise NotificationSyncError(
                f"Failed to create {notification_type} notification for {user_id}: {exc}",
                original_error=exc,
            ) from exc
        self._logger.info(
            "Notification created: %s for %s", notification_type, user_id,
        )
