"""
Notification Sync Engine.

Keeps the notification feed of the current identity and the OS badge in
step with the ``notifications`` table.

Follows the daemon-thread lifecycle of the other background workers:
the caller invokes :meth:`start` / :meth:`stop`, and the worker wakes up
every ``NOTIFICATION_POLL_INTERVAL_S`` seconds.  The timer is gated, not
torn down: a wake-up only fetches while the app is ``active`` and when no
fetch happened within the last interval.

Thread Safety
-------------
Feed state is guarded by an ``RLock``.  ``fetch`` holds a separate
lock for the whole round-trip so timer, lifecycle and identity-change
fetches never interleave.  Read flips are optimistic: a failed backend
write keeps the local ``is_read=True`` and queues the id; the next fetch
re-sends it and does not let the server's stale ``False`` win.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from classsync.config import AppConfig
from classsync.logger import StructuredLogger
from classsync.models.enums import AppState, NotificationType
from classsync.models.notification import Notification
from classsync.repositories.notification_repository import (
    NotificationRepository,
    NotificationSyncError,
)
from classsync.services.badge import Badge
from classsync.services.base_service import BaseService
from classsync.services.lifecycle import AppLifecycle
from classsync.session import SessionState


class NotificationSyncService(BaseService):
    """Feed, unread count and badge for the current identity.

    Parameters
    ----------
    repo:
        Notification data access.
    session_state:
        Shared session state; an identity change resets the feed.
    badge:
        OS badge contract.
    config:
        Application configuration (poll interval).
    logger:
        Structured JSON logger.
    lifecycle:
        Optional app lifecycle to subscribe to on :meth:`start`.
    clock:
        Monotonic clock used for the poll gate.
    """

    # Timer wake-ups can land a hair before the interval elapses.
    _GATE_TOLERANCE_S: float = 0.05

    def __init__(
        self,
        repo: NotificationRepository,
        session_state: SessionState,
        badge: Badge,
        config: AppConfig,
        logger: StructuredLogger,
        lifecycle: Optional[AppLifecycle] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._session_state = session_state
        self._badge = badge
        self._lifecycle = lifecycle
        self._clock = clock
        self._interval: float = config.NOTIFICATION_POLL_INTERVAL_S

        self._state_lock: threading.RLock = threading.RLock()
        self._fetch_lock: threading.Lock = threading.Lock()

        self._feed: list[Notification] = []
        self._unread_count: int = 0
        self._pending_reads: set[str] = set()
        # Ids flipped by this client that the server has not yet echoed as read.
        self._read_locally: set[str] = set()
        self._last_fetch_at: Optional[float] = None
        self._identity_id: Optional[str] = None
        self._app_state: AppState = lifecycle.state if lifecycle else AppState.ACTIVE

        self._thread: Optional[threading.Thread] = None
        self._stop_event: threading.Event = threading.Event()
        self._unsubscribers: list[Callable[[], None]] = []
        self._permission_requested: bool = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to identity and app-state changes and start polling.

        Idempotent.  Push permission is requested on the first call only;
        a denial or error is logged and otherwise ignored.
        """
        if self._thread is not None and self._thread.is_alive():
            self._logger.debug("Notification sync already running.")
            return

        self._request_push_permission()

        if not self._unsubscribers:
            self._unsubscribers.append(self._session_state.subscribe(self._on_session_change))
            if self._lifecycle is not None:
                self._unsubscribers.append(self._lifecycle.subscribe(self.on_app_state_change))

        self._on_session_change(self._session_state)

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="NotificationSync",
            daemon=True,
        )
        self._thread.start()
        self._logger.info("Notification sync started.")

    def stop(self) -> None:
        """Stop polling and unsubscribe.  Safe to call when not running."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=10.0)
        if self._thread.is_alive():
            self._logger.warning("Notification sync thread did not terminate within 10 s.")
        else:
            self._logger.info("Notification sync stopped.")
        self._thread = None

    @property
    def is_running(self) -> bool:
        """``True`` when the polling thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def feed(self) -> list[Notification]:
        """Notifications of the current identity, newest first."""
        with self._state_lock:
            return list(self._feed)

    @property
    def unread_count(self) -> int:
        with self._state_lock:
            return self._unread_count

    @property
    def app_state(self) -> AppState:
        with self._state_lock:
            return self._app_state

    @property
    def pending_reads(self) -> frozenset[str]:
        """Ids flipped locally whose backend write has not landed yet."""
        with self._state_lock:
            return frozenset(self._pending_reads)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def tick(self) -> bool:
        """Timer callback.  Fetches only while active and when the last
        fetch is at least one interval old.  Returns ``True`` if it did."""
        with self._state_lock:
            if self._app_state != AppState.ACTIVE:
                return False
            last = self._last_fetch_at
        if last is not None and self._clock() - last < self._interval - self._GATE_TOLERANCE_S:
            return False
        self.fetch()
        return True

    def fetch(self) -> list[Notification]:
        """Replace the feed with the backend's, newest first.

        Backend errors are logged; the previous feed and count are kept.
        Entries this client already flipped stay read until the server
        echoes the flip, even when the rows were read before it.
        """
        identity = self._session_state.identity
        if identity is None:
            return self.feed

        if self._adopt_identity(identity.id):
            self._mirror_badge(0)

        with self._fetch_lock:
            with self._state_lock:
                self._last_fetch_at = self._clock()

            self._flush_pending_reads(identity.id)

            try:
                rows = self._repo.list_by_user(identity.id)
            except NotificationSyncError as exc:
                self._logger.warning("Notification fetch failed: %s", exc.message)
                return self.feed

            with self._state_lock:
                if self._identity_id != identity.id:
                    self._logger.debug("Identity changed during fetch; result dropped.")
                    return list(self._feed)
                self._read_locally -= {n.id for n in rows if n.is_read}
                read_locally = self._read_locally | self._pending_reads
                self._feed = [
                    n.model_copy(update={"is_read": True})
                    if n.id in read_locally and not n.is_read
                    else n
                    for n in rows
                ]
                self._unread_count = sum(1 for n in self._feed if not n.is_read)
                count = self._unread_count
                feed = list(self._feed)

        self._mirror_badge(count)
        self._logger.debug("Fetched %d notifications (%d unread).", len(feed), count)
        return feed

    def mark_as_read(self, notification_id: str) -> bool:
        """Flip one notification to read, optimistically.

        Returns ``False`` when the id is unknown or already read (the
        count is unchanged); ``True`` after a local flip, even when the
        backend write failed and was queued.
        """
        identity = self._session_state.identity
        if identity is None:
            return False

        with self._state_lock:
            index = next(
                (i for i, n in enumerate(self._feed) if n.id == notification_id),
                None,
            )
            if index is None or self._feed[index].is_read:
                return False
            self._feed[index] = self._feed[index].model_copy(update={"is_read": True})
            self._read_locally.add(notification_id)
            self._unread_count = max(0, self._unread_count - 1)
            count = self._unread_count

        self._mirror_badge(count)

        try:
            self._repo.update_read_flag(notification_id, identity.id)
        except NotificationSyncError as exc:
            self._logger.warning(
                "Read flag for %s not saved; will retry on next fetch: %s",
                notification_id,
                exc.message,
            )
            with self._state_lock:
                self._pending_reads.add(notification_id)
        return True

    def mark_all_as_read(self) -> int:
        """Flip every unread notification; returns how many were flipped."""
        identity = self._session_state.identity
        if identity is None:
            return 0

        with self._state_lock:
            flipped = [n.id for n in self._feed if not n.is_read]
            self._feed = [
                n if n.is_read else n.model_copy(update={"is_read": True})
                for n in self._feed
            ]
            self._unread_count = 0
            self._read_locally.update(flipped)

        self._mirror_badge(0)

        try:
            self._repo.bulk_update_read_flag(identity.id)
        except NotificationSyncError as exc:
            self._logger.warning(
                "Bulk read flag not saved; %d ids queued for retry: %s",
                len(flipped),
                exc.message,
            )
            with self._state_lock:
                self._pending_reads.update(flipped)
        return len(flipped)

    def on_app_state_change(self, new_state: AppState) -> None:
        """Foreground entry fetches; entering background mirrors the badge."""
        new_state = AppState(new_state)
        with self._state_lock:
            previous = self._app_state
            self._app_state = new_state
            count = self._unread_count

        if new_state == AppState.ACTIVE and previous != AppState.ACTIVE:
            self.fetch()
        elif new_state == AppState.BACKGROUND and previous != AppState.BACKGROUND:
            self._mirror_badge(count)

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def notify_task_assigned(self, student_id: str, task_title: str, task_id: str) -> bool:
        """Tell *student_id* about a newly assigned task.

        Returns ``False`` without writing when *student_id* is empty.

        Raises:
            NotificationSyncError: If the row cannot be created.
        """
        if not student_id:
            self._logger.error("Cannot notify a task assignment without a student id.")
            return False
        self._repo.create(
            student_id,
            NotificationType.TASK_ASSIGNED,
            {"message": f"New task assigned: {task_title}", "taskId": task_id},
        )
        return True

    def notify_group_invitation(self, student_id: str, group_name: str, group_id: str) -> bool:
        """Invite *student_id* to a group.

        Raises:
            NotificationSyncError: If the row cannot be created.
        """
        if not student_id:
            self._logger.error("Cannot send a group invitation without a student id.")
            return False
        self._repo.create(
            student_id,
            NotificationType.GROUP_INVITATION,
            {"message": f"You've been invited to join group: {group_name}", "groupId": group_id},
        )
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Main loop executed on the daemon thread."""
        try:
            while not self._stop_event.wait(timeout=self._interval):
                try:
                    self.tick()
                except Exception:
                    self._logger.warning("Notification poll failed", exc_info=True)
        except Exception:
            self._logger.error(
                "Notification sync thread terminated due to unhandled exception.",
                exc_info=True,
            )

    def _on_session_change(self, state: SessionState) -> None:
        identity = state.identity
        new_id = identity.id if identity is not None else None
        if not self._adopt_identity(new_id):
            return
        self._mirror_badge(0)
        if new_id is not None and self.app_state == AppState.ACTIVE:
            self.fetch()

    def _adopt_identity(self, identity_id: Optional[str]) -> bool:
        """Reset feed state when *identity_id* differs; ``True`` if it did."""
        with self._state_lock:
            if identity_id == self._identity_id:
                return False
            self._identity_id = identity_id
            self._feed = []
            self._unread_count = 0
            self._pending_reads = set()
            self._read_locally = set()
            self._last_fetch_at = None
        self._logger.info("Notification feed reset for identity %s.", identity_id)
        return True

    def _flush_pending_reads(self, user_id: str) -> None:
        with self._state_lock:
            pending = list(self._pending_reads)
        for notification_id in pending:
            try:
                self._repo.update_read_flag(notification_id, user_id)
            except NotificationSyncError as exc:
                self._logger.debug("Read flag retry for %s failed: %s", notification_id, exc.message)
                continue
            with self._state_lock:
                self._pending_reads.discard(notification_id)

    def _mirror_badge(self, count: int) -> None:
        try:
            self._badge.set_badge_count(count)
        except Exception as exc:
            self._logger.warning("Could not update the badge: %s", exc)

    def _request_push_permission(self) -> None:
        if self._permission_requested:
            return
        self._permission_requested = True
        try:
            granted = self._badge.request_permission()
        except Exception as exc:
            self._logger.warning("Push permission request failed: %s", exc)
            return
        if not granted:
            self._logger.info("Push permission denied; badge updates may not show.")
