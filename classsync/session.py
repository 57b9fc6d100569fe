"""
Session State.

Provides an injectable ``SessionState`` that holds the current
``Identity``, the ``loading`` flag and the Session Resolver's state
machine position.  The Navigation Guard and the Notification Sync Engine
subscribe to it instead of reading ambient globals.

Usage::

    from classsync.session import SessionState

    state = SessionState()
    state.subscribe(lambda s: print(s.identity))
    state.set_identity(Identity(id="abc-123", email="a@b.com", role="student"))
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from classsync.models.enums import ResolverState
from classsync.models.identity import Identity

SessionListener = Callable[["SessionState"], None]


class SessionState:
    """Injectable holder for the current identity.

    Each instance maintains its own state.  Pass a single ``SessionState``
    through the composition root so every component shares it.  Listeners
    are called after every change, outside the internal lock, in
    subscription order.
    """

    def __init__(self) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._identity: Optional[Identity] = None
        self._loading: bool = True
        self._resolver_state: ResolverState = ResolverState.INITIALIZING
        self._navigation_suppressed: bool = False
        self._listeners: list[SessionListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(self)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin_resolution(self) -> None:
        """Enter ``INITIALIZING``; the guard holds off until resolved."""
        with self._lock:
            self._loading = True
            self._resolver_state = ResolverState.INITIALIZING
        self._notify()

    def set_identity(self, identity: Identity, *, navigation_suppressed: bool = False) -> None:
        """Record *identity* as current and mark the session resolved."""
        with self._lock:
            self._identity = identity
            self._loading = False
            self._resolver_state = ResolverState.RESOLVED_WITH_IDENTITY
            self._navigation_suppressed = navigation_suppressed
        self._notify()

    def clear(self) -> None:
        """Remove the current identity, ending the session."""
        with self._lock:
            self._identity = None
            self._loading = False
            self._resolver_state = ResolverState.RESOLVED_NO_SESSION
            self._navigation_suppressed = False
        self._notify()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def identity(self) -> Optional[Identity]:
        """The current identity, or ``None`` when signed out."""
        with self._lock:
            return self._identity

    @property
    def loading(self) -> bool:
        with self._lock:
            return self._loading

    @property
    def resolver_state(self) -> ResolverState:
        with self._lock:
            return self._resolver_state

    @property
    def navigation_suppressed(self) -> bool:
        """``True`` while the session belongs to an unconfirmed sign-up."""
        with self._lock:
            return self._navigation_suppressed
