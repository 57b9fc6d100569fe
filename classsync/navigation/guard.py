"""
Navigation Guard.

Keeps the active route consistent with the current identity's role.

The rules are pure functions of ``(identity, loading, segments,
suppressed)`` so they can be tested exhaustively; :class:`NavigationGuard`
wires them to the ``SessionState`` and the ``Router`` and re-evaluates on
every change of either.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from classsync.logger import StructuredLogger
from classsync.models.enums import UserRole
from classsync.models.identity import Identity
from classsync.navigation.router import Router
from classsync.navigation.routes import (
    AUTH_SEGMENT,
    LOGIN_ROUTE,
    home_route_for,
    is_confirm_screen,
    segments_to_path,
)
from classsync.session import SessionState


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def evaluate_root(
    identity: Optional[Identity],
    loading: bool,
    segments: Sequence[str],
    suppressed: bool,
) -> Optional[str]:
    """Return the redirect target for the root layout, or ``None``.

    - While *loading*, never redirect.
    - Signed out outside the auth area: go to login, unless already there.
    - Signed in inside the auth area: go to the role home, except on the
      confirmation screen and while auto-navigation is *suppressed*.
    """
    if loading:
        return None

    path = segments_to_path(segments)
    in_auth_area = bool(segments) and segments[0] == AUTH_SEGMENT

    if identity is None:
        if not in_auth_area and path != LOGIN_ROUTE:
            return LOGIN_ROUTE
        return None

    if not in_auth_area:
        return None
    if is_confirm_screen(segments) or suppressed:
        return None

    target = home_route_for(identity.role)
    return target if target != path else None


def evaluate_role_layout(
    required_role: UserRole,
    identity: Optional[Identity],
    loading: bool,
    segments: Sequence[str],
) -> Optional[str]:
    """Return the redirect target of a role-scoped layout, or ``None``.

    The layout only guards while one of its own routes is active; any
    identity without *required_role* is sent to login.
    """
    if loading:
        return None
    if not segments or segments[0] != required_role.value:
        return None
    if identity is not None and identity.role == required_role:
        return None
    if segments_to_path(segments) == LOGIN_ROUTE:
        return None
    return LOGIN_ROUTE


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

class NavigationGuard:
    """Re-evaluates the routing rules on every identity or route change.

    The guard never caches its decision: every call to :meth:`evaluate`
    recomputes the target from the live inputs.  It only suppresses a
    repeat ``replace`` for exactly the same inputs and target, so two
    evaluations in a row with nothing changed issue at most one redirect.

    Parameters
    ----------
    session:
        Shared session state (identity, loading, unconfirmed sign-up flag).
    router:
        Router whose active segments are guarded.
    is_suppressed:
        Callable returning ``True`` while the durable auth-flow state
        suppresses automatic navigation.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        session: SessionState,
        router: Router,
        is_suppressed: Callable[[], bool],
        logger: StructuredLogger,
    ) -> None:
        self._session = session
        self._router = router
        self._is_suppressed = is_suppressed
        self._logger = logger
        self._last_issued: Optional[tuple[object, ...]] = None
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        """Subscribe to session and route changes and evaluate once."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self._session.subscribe(lambda _state: self.evaluate()),
            self._router.subscribe(lambda _segments: self.evaluate()),
        ]
        self.evaluate()

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def evaluate(self) -> Optional[str]:
        """Apply the rules to the current inputs; returns the issued redirect."""
        identity = self._session.identity
        loading = self._session.loading
        segments = self._router.segments
        suppressed = self._session.navigation_suppressed or self._is_suppressed()

        target = (
            evaluate_root(identity, loading, segments, suppressed)
            or evaluate_role_layout(UserRole.TEACHER, identity, loading, segments)
            or evaluate_role_layout(UserRole.STUDENT, identity, loading, segments)
        )
        if target is None:
            self._last_issued = None
            return None

        inputs = (identity, loading, segments, suppressed, target)
        if inputs == self._last_issued:
            return None
        self._last_issued = inputs

        self._logger.info(
            "Navigation guard redirect: %s -> %s",
            segments_to_path(segments),
            target,
        )
        self._router.replace(target)
        return target
