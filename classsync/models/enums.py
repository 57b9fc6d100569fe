"""
Shared Enumerations for ClassSync Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == "teacher"`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum
from typing import Optional


class UserRole(StrEnum):
    """Roles an identity can hold.  The set is closed."""

    TEACHER = "teacher"
    STUDENT = "student"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["UserRole"]:
        """Case-insensitive lookup; ``None`` for missing or unknown values.

        Profiles written by older clients store ``"STUDENT"`` while the
        sign-up metadata uses ``"student"``; both map to the same member.
        """
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ResolverState(StrEnum):
    """Session Resolver state machine."""

    INITIALIZING = "INITIALIZING"
    RESOLVED_NO_SESSION = "RESOLVED_NO_SESSION"
    RESOLVED_WITH_IDENTITY = "RESOLVED_WITH_IDENTITY"


class AuthFlowPhase(StrEnum):
    """Where the user is in the sign-up / confirmation flow.

    Any phase other than ``IDLE`` suppresses automatic role-based
    navigation.
    """

    IDLE = "IDLE"
    SIGNING_UP = "SIGNING_UP"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"


class AuthEventType(StrEnum):
    """Auth events emitted by the identity backend."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    USER_UPDATED = "USER_UPDATED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class AppState(StrEnum):
    """Application lifecycle states reported by the platform."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class NotificationType(StrEnum):
    """Backend-side events that produce a notification."""

    TASK_ASSIGNED = "task_assigned"
    TASK_SUBMITTED = "task_submitted"
    RATING_UPDATED = "rating_updated"
    GROUP_INVITATION = "group_invitation"
