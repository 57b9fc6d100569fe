"""
Session Resolver.

Determines the current identity on cold start and on every backend auth
event, makes sure its role profile exists, and decides whether the app
should be sent to the role's home route.

State machine (held by :class:`~classsync.session.SessionState`)::

    INITIALIZING -> RESOLVED_NO_SESSION
                 -> RESOLVED_WITH_IDENTITY

``resolve_on_start()`` re-enters ``INITIALIZING``.
"""

from __future__ import annotations

from typing import Callable, Optional

from classsync.logger import StructuredLogger
from classsync.models.enums import AuthEventType, UserRole
from classsync.models.identity import BackendSession, Identity
from classsync.navigation.router import Router
from classsync.navigation.routes import (
    LOGIN_ROUTE,
    home_route_for,
    is_auth_flow_screen,
    is_confirm_screen,
)
from classsync.services.auth_flow_state import AuthFlowStateStore
from classsync.services.base_service import BaseService
from classsync.services.identity_backend import SupabaseIdentityBackend
from classsync.services.profile_sync import ProfileSyncError, ProfileSyncService
from classsync.session import SessionState
from classsync.utils.audit import log_audit_event


class SessionResolver(BaseService):
    """Turns backend sessions into the current :class:`Identity`.

    Parameters
    ----------
    backend:
        Identity backend adapter.
    profiles:
        Profile fetch-or-create service.
    session_state:
        Shared session state updated by this resolver.
    router:
        Router used for the post-resolution redirect.
    flow_state:
        Durable auth-flow record; while it suppresses navigation no
        redirect to a role home is issued.
    logger:
        Structured logger.
    """

    def __init__(
        self,
        backend: SupabaseIdentityBackend,
        profiles: ProfileSyncService,
        session_state: SessionState,
        router: Router,
        flow_state: AuthFlowStateStore,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._backend = backend
        self._profiles = profiles
        self._session_state = session_state
        self._router = router
        self._flow_state = flow_state
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Start listening to backend auth events.  Idempotent."""
        if self._unsubscribe is None:
            self._unsubscribe = self._backend.on_auth_state_change(self.on_auth_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def resolve_on_start(self) -> Optional[Identity]:
        """Resolve the persisted session at cold start (or on re-check)."""
        self._session_state.begin_resolution()

        session = self._backend.get_session()
        if session is None:
            self._logger.info("No persisted session; resolved signed out.")
            self._session_state.clear()
            return None

        return self.establish(session)

    def on_auth_event(
        self,
        event: AuthEventType,
        session: Optional[BackendSession],
    ) -> None:
        """React to an auth event emitted by the backend."""
        if event == AuthEventType.SIGNED_OUT:
            self._handle_signed_out()
            return

        if event in (AuthEventType.SIGNED_IN, AuthEventType.USER_UPDATED):
            if session is None:
                self._logger.warning("Auth event %s arrived without a session.", event)
                return
            self.establish(session, merge_by_email=True)
            return

        self._logger.debug("Auth event %s ignored.", event)

    def establish(
        self,
        session: BackendSession,
        merge_by_email: bool = False,
    ) -> Identity:
        """Fetch or create the profile of *session* and make it current.

        The profile is settled before the identity is published and
        before any redirect decision.  Profile failures are logged and a
        best-effort identity (sign-up metadata role, default ``student``)
        is published instead.
        """
        fallback_role = session.metadata_role or UserRole.STUDENT

        if session.is_unconfirmed_signup:
            identity = Identity(id=session.user_id, email=session.email, role=fallback_role)
            self._session_state.set_identity(identity, navigation_suppressed=True)
            self._logger.info(
                "Session of %s awaits email confirmation; navigation held.",
                session.email,
            )
            return identity

        try:
            role = self._profiles.ensure_profile(session, merge_by_email=merge_by_email).role
        except ProfileSyncError as exc:
            self._logger.warning(
                "Profile unavailable for %s, using role %s: %s",
                session.user_id,
                fallback_role,
                exc.message,
            )
            role = fallback_role

        identity = Identity(id=session.user_id, email=session.email, role=role)
        self._session_state.set_identity(identity)
        self._logger.info(
            "Session resolved for %s (role: %s)",
            identity.email,
            identity.role,
            extra={"event": "SESSION_RESOLVED", "user_id": identity.id},
        )

        self._redirect_home(identity)
        return identity

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _redirect_home(self, identity: Identity) -> bool:
        if self._flow_state.is_suppressed():
            self._logger.debug("Auth flow in progress; home redirect suppressed.")
            return False
        if is_auth_flow_screen(self._router.segments):
            self._logger.debug("On an auth flow screen; home redirect skipped.")
            return False
        return self._router.replace_if_needed(home_route_for(identity.role))

    def _handle_signed_out(self) -> None:
        previous = self._session_state.identity
        self._session_state.clear()

        if previous is not None:
            log_audit_event(
                logger=self._logger,
                action="SIGN_OUT",
                entity_type="Session",
                entity_id=previous.id,
                user_id=previous.id,
            )

        if is_confirm_screen(self._router.segments):
            return
        self._router.replace_if_needed(LOGIN_ROUTE)
