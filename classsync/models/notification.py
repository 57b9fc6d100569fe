"""
Notification Model.

Rows of the ``notifications`` table.  Created by backend-side events
(task assignment, grading, group invitation); the client only ever flips
``is_read`` from ``False`` to ``True`` and never deletes a row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from classsync.models.enums import NotificationType


class Notification(BaseModel):
    """A single feed entry.

    ``type`` is kept as a plain string so that a notification type added
    on the backend never breaks parsing of the whole feed; known values
    are listed in :class:`~classsync.models.enums.NotificationType`.
    """

    id: str
    user_id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("data", mode="before")
    @classmethod
    def parse_data(cls: type[Notification], v: object) -> object:
        if v is None:
            return {}
        return v

    @property
    def known_type(self) -> Optional[NotificationType]:
        try:
            return NotificationType(self.type)
        except ValueError:
            return None

    @property
    def message(self) -> str:
        """Display text written by the producer, empty when absent."""
        return str(self.data.get("message", ""))
