"""
App Lifecycle.

Observable holder of the platform's foreground state
(``active`` / ``inactive`` / ``background``).  The platform layer calls
:meth:`AppLifecycle.transition`; the notification sync engine subscribes.
"""

from __future__ import annotations

import threading
from typing import Callable

from classsync.logger import StructuredLogger
from classsync.models.enums import AppState

LifecycleListener = Callable[[AppState], None]


class AppLifecycle:
    """Current app state plus change listeners.

    Listeners run after the state is updated, outside the lock, and only
    when the state actually changes.
    """

    def __init__(self, logger: StructuredLogger, initial: AppState = AppState.ACTIVE) -> None:
        self._logger = logger
        self._lock = threading.RLock()
        self._state: AppState = initial
        self._listeners: list[LifecycleListener] = []

    @property
    def state(self) -> AppState:
        with self._lock:
            return self._state

    def subscribe(self, listener: LifecycleListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def transition(self, new_state: AppState) -> None:
        new_state = AppState(new_state)
        with self._lock:
            if new_state == self._state:
                return
            previous = self._state
            self._state = new_state
            listeners = list(self._listeners)
        self._logger.info("App state %s -> %s", previous, new_state)
        for listener in listeners:
            listener(new_state)
