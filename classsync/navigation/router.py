"""
In-process Router.

Holds the active route as a segment tuple, replaces it on request and
notifies subscribers after every change.  The most recent navigations
are kept so callers (and tests) can see which redirects were issued.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable

from classsync.logger import StructuredLogger
from classsync.navigation.routes import path_to_segments, segments_to_path

RouteListener = Callable[[tuple[str, ...]], None]


class Router:
    """Observable route holder.

    Only the most recent ``HISTORY_LIMIT`` paths are kept.

    Parameters
    ----------
    logger:
        Structured logger for navigation events.
    initial_path:
        Route active at construction time.
    """

    HISTORY_LIMIT: int = 50

    def __init__(self, logger: StructuredLogger, initial_path: str = "/") -> None:
        self._logger = logger
        self._lock: threading.RLock = threading.RLock()
        self._segments: tuple[str, ...] = path_to_segments(initial_path)
        self._history: deque[str] = deque(maxlen=self.HISTORY_LIMIT)
        self._listeners: list[RouteListener] = []

    def subscribe(self, listener: RouteListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def replace(self, path: str) -> None:
        """Make *path* the active route and notify listeners."""
        with self._lock:
            self._segments = path_to_segments(path)
            self._history.append(path)
            segments = self._segments
            listeners = list(self._listeners)
        self._logger.info("Navigated to %s", path)
        for listener in listeners:
            listener(segments)

    def replace_if_needed(self, path: str) -> bool:
        """Navigate to *path* unless it is already active.

        Returns ``True`` when a navigation was issued.
        """
        if self.current_path == path:
            return False
        self.replace(path)
        return True

    @property
    def segments(self) -> tuple[str, ...]:
        with self._lock:
            return self._segments

    @property
    def current_path(self) -> str:
        with self._lock:
            return segments_to_path(self._segments)

    @property
    def history(self) -> list[str]:
        """Recent paths passed to :meth:`replace`, oldest first."""
        with self._lock:
            return list(self._history)
