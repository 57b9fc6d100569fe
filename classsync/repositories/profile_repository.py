"""
Profile Repository.

Data access for the ``user_profiles`` table in Supabase.  Every write that
may race with another client goes through an upsert keyed on ``id`` so a
second concurrent creation can never produce a duplicate row.
"""

from __future__ import annotations

from typing import Optional

from classsync.models.identity import Profile
from classsync.repositories.base_repository import BaseRepository


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so an email matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ProfileRepository(BaseRepository):
    """Data access layer for Profile rows.

    Methods propagate backend exceptions; the provisioning service decides
    which of them are fatal.
    """

    TABLE = "user_profiles"

    def get_by_id(self, user_id: str) -> Optional[Profile]:
        """Fetch a profile by primary key, ``None`` when absent."""
        response = (
            self.supabase.table(self.TABLE)
            .select("*")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        row = self._first_row(response)
        return Profile(**row) if row else None

    def find_by_email_case_insensitive(self, email: str) -> Optional[Profile]:
        """Fetch the first profile whose email matches *email* ignoring case."""
        response = (
            self.supabase.table(self.TABLE)
            .select("*")
            .ilike("email", _escape_like(email.strip()))
            .limit(1)
            .execute()
        )
        row = self._first_row(response)
        return Profile(**row) if row else None

    def upsert(self, profile: Profile) -> Profile:
        """Insert or update *profile*, resolving conflicts on ``id``."""
        data = profile.model_dump(mode="json", exclude_none=True)
        response = (
            self.supabase.table(self.TABLE)
            .upsert(data, on_conflict="id")
            .execute()
        )
        row = self._first_row(response)
        result = Profile(**row) if row else profile
        self._logger.info("Profile upserted: %s", result.id)
        return result

    def reassign_id(self, old_id: str, new_id: str) -> Optional[Profile]:
        """Re-key an existing profile to *new_id*.

        Used to merge a profile created out of band (matching email,
        different id) into the current identity instead of creating a
        second row.
        """
        response = (
            self.supabase.table(self.TABLE)
            .update({"id": new_id})
            .eq("id", old_id)
            .execute()
        )
        row = self._first_row(response)
        if row is None:
            return None
        self._logger.info("Profile re-keyed: %s -> %s", old_id, new_id)
        return Profile(**row)
