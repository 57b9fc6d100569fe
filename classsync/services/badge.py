"""
OS Badge.

In-process implementation of the badge contract used by the notification
sync engine: ``set_badge_count(n)`` and ``request_permission()``.  A
platform integration subclasses :class:`Badge` and overrides the two
``_apply`` / ``_ask`` hooks.
"""

from __future__ import annotations

import threading

from classsync.logger import StructuredLogger
from classsync.services.base_service import BaseService


class Badge(BaseService):
    """Holds the badge number shown on the app icon."""

    def __init__(self, logger: StructuredLogger, permission_granted: bool = True) -> None:
        super().__init__(logger)
        self._lock = threading.Lock()
        self._count: int = 0
        self._permission_granted = permission_granted

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def set_badge_count(self, count: int) -> None:
        """Show *count* on the app icon; negative values are clamped to 0."""
        count = max(0, int(count))
        with self._lock:
            changed = count != self._count
            self._count = count
        self._apply(count)
        if changed:
            self._logger.debug("Badge count -> %d", count)

    def request_permission(self) -> bool:
        """Ask the platform for notification permission."""
        granted = self._ask()
        self._logger.info("Notification permission %s.", "granted" if granted else "denied")
        return granted

    # ------------------------------------------------------------------
    # Platform hooks
    # ------------------------------------------------------------------

    def _apply(self, count: int) -> None:
        """Push *count* to the platform.  No-op in-process."""

    def _ask(self) -> bool:
        return self._permission_granted
