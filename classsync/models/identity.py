"""
Identity Models.

``Identity`` is what the core knows about the signed-in user,
``Profile`` is the backend row keyed by the identity id, and
``BackendSession`` is the edge representation of a Supabase session.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from classsync.models.enums import UserRole


class Identity(BaseModel):
    """The current authenticated user as known to this core."""

    id: str  # Supabase UUID
    email: str
    role: UserRole

    model_config = {"frozen": True}


class Profile(BaseModel):
    """Row of the ``user_profiles`` table.

    ``full_name`` is optional because profiles created lazily during
    session resolution only know the email and role.
    """

    id: str
    email: str
    role: UserRole
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BackendSession(BaseModel):
    """A session handed back by the identity backend.

    Attributes
    ----------
    user_id:
        Supabase UUID of the session user.
    email:
        Email of the session user (may be empty for phone sign-ups).
    user_metadata:
        Free-form metadata written at sign-up; carries ``role``.
    confirmation_sent_at:
        Set when a confirmation email was sent for this user.
    email_confirmed_at:
        Set once the user followed the confirmation link.
    """

    user_id: str
    email: str = ""
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    confirmation_sent_at: Optional[datetime] = None
    email_confirmed_at: Optional[datetime] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def is_unconfirmed_signup(self) -> bool:
        """``True`` while a sign-up is waiting for its email confirmation."""
        return self.confirmation_sent_at is not None and self.email_confirmed_at is None

    @property
    def metadata_role(self) -> Optional[UserRole]:
        """Role requested at sign-up, if present and valid."""
        return UserRole.parse(self.user_metadata.get("role"))
