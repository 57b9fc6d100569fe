"""
Profile Synchronisation Service.

Ensures that every authenticated identity has exactly one row in the
``user_profiles`` table and returns the authoritative role from it.

Sync strategy:
    - Look the profile up by the identity id (primary key).
    - On auth events, optionally merge a profile created out of band with
      the same email (any case) by re-keying it to the identity id.
    - Otherwise create it lazily with the role requested at sign-up
      (default ``student``) through an upsert keyed on ``id``.
    - Race handling: if the upsert fails, retry the lookup once.
"""

from __future__ import annotations

from typing import Optional

from classsync.logger import StructuredLogger
from classsync.models.enums import UserRole
from classsync.models.identity import BackendSession, Profile
from classsync.repositories.profile_repository import ProfileRepository
from classsync.services.base_service import BaseService
from classsync.utils.audit import log_audit_event


class ProfileSyncError(Exception):
    """Custom exception for profile read/write failures."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class ProfileSyncService(BaseService):
    """Fetch-or-create of the role profile behind an identity."""

    def __init__(self, repo: ProfileRepository, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._repo = repo

    def ensure_profile(
        self,
        session: BackendSession,
        merge_by_email: bool = False,
    ) -> Profile:
        """Return the profile of *session*'s user, creating it if needed.

        Args:
            session: The authenticated backend session.
            merge_by_email: Also adopt an existing profile whose email
                matches case-insensitively but whose id differs.

        Returns:
            The stored (or freshly created) profile.

        Raises:
            ProfileSyncError: If the profile cannot be read or written.
        """
        try:
            return self._sync(session, merge_by_email)
        except ProfileSyncError:
            raise
        except Exception as exc:
            self._logger.error(
                "Profile sync: unexpected error for %s: %s",
                session.user_id,
                exc,
                exc_info=True,
            )
            raise ProfileSyncError(
                f"Unexpected error during profile sync: {exc}",
                original_error=exc,
            ) from exc

    def change_role(self, user_id: str, email: str, role: UserRole) -> Profile:
        """Write *role* to the profile of *user_id* (upsert keyed on id).

        Raises:
            ProfileSyncError: If the write fails.
        """
        try:
            profile = self._repo.upsert(Profile(id=user_id, email=email, role=role))
        except Exception as exc:
            raise ProfileSyncError(
                f"Failed to change role of {user_id} to {role}",
                original_error=exc,
            ) from exc

        log_audit_event(
            logger=self._logger,
            action="UPDATE_ROLE",
            entity_type="Profile",
            entity_id=user_id,
            user_id=user_id,
            details={"role": str(role)},
        )
        return profile

    # ------------------------------------------------------------------
    # Private implementation
    # ------------------------------------------------------------------

    def _sync(self, session: BackendSession, merge_by_email: bool) -> Profile:
        existing = self._repo.get_by_id(session.user_id)
        if existing is not None:
            return existing

        if merge_by_email and session.email:
            merged = self._merge_by_email(session)
            if merged is not None:
                return merged

        return self._create(session)

    def _merge_by_email(self, session: BackendSession) -> Optional[Profile]:
        match = self._repo.find_by_email_case_insensitive(session.email)
        if match is None or match.id == session.user_id:
            return match

        self._logger.info(
            "Profile sync: adopting profile %s for %s by email match.",
            match.id,
            session.user_id,
        )
        merged = self._repo.reassign_id(match.id, session.user_id)
        if merged is None:
            return None

        log_audit_event(
            logger=self._logger,
            action="PROFILE_MERGE",
            entity_type="Profile",
            entity_id=session.user_id,
            user_id=session.user_id,
            details={"previous_id": match.id, "email": session.email},
        )
        return merged

    def _create(self, session: BackendSession) -> Profile:
        role = session.metadata_role or UserRole.STUDENT
        new_profile = Profile(id=session.user_id, email=session.email, role=role)

        try:
            created = self._repo.upsert(new_profile)
        except Exception as exc:
            # Possible race: another client created the row first
            self._logger.warning(
                "Profile sync: upsert failed for %s, retrying lookup. Error: %s",
                session.user_id,
                exc,
            )
            retried = self._repo.get_by_id(session.user_id)
            if retried is None:
                raise ProfileSyncError(
                    f"Failed to create profile for {session.user_id}",
                    original_error=exc,
                ) from exc
            return retried

        log_audit_event(
            logger=self._logger,
            action="PROFILE_CREATE",
            entity_type="Profile",
            entity_id=session.user_id,
            user_id=session.user_id,
            details={"email": session.email, "role": str(role)},
        )
        return created
