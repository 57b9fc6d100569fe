"""
Auth Flow State Store.

Persists the :class:`~classsync.models.auth_models.AuthFlowState` record
(phase + pending confirmation email) as one JSON value in the secure
store, so the "suppress automatic navigation" decision survives an app
restart in the middle of a sign-up.

Older installs kept the same information in two separate keys
(``preventAutoNavigation`` and ``pendingConfirmationEmail``).  They are
folded into the record on first load and then removed.
"""

from __future__ import annotations

import json
import threading
from typing import Optional, Protocol

from pydantic import ValidationError

from classsync.logger import StructuredLogger
from classsync.models.auth_models import AuthFlowState
from classsync.models.enums import AuthFlowPhase
from classsync.services.base_service import BaseService

AUTH_FLOW_STATE_KEY: str = "auth_flow_state"
LEGACY_PREVENT_NAVIGATION_KEY: str = "preventAutoNavigation"
LEGACY_PENDING_EMAIL_KEY: str = "pendingConfirmationEmail"


class FlagStore(Protocol):
    """Durable string key/value store."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> bool: ...

    def delete(self, key: str) -> None: ...


class AuthFlowStateStore(BaseService):
    """Typed access to the durable auth-flow record.

    Every transition writes the whole record before returning, so
    callers can rely on it being durable before they touch the network.

    Parameters
    ----------
    store:
        Durable flag store (normally :class:`SecureStore`).
    logger:
        Structured logger.
    """

    def __init__(self, store: FlagStore, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._store = store
        self._lock: threading.RLock = threading.RLock()
        self._cached: Optional[AuthFlowState] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> AuthFlowState:
        """Return the current record, reading it from the store once."""
        with self._lock:
            if self._cached is None:
                self._cached = self._read()
            return self._cached

    def is_suppressed(self) -> bool:
        """``True`` while automatic role navigation must not fire."""
        return self.load().prevent_auto_navigation

    @property
    def pending_email(self) -> Optional[str]:
        return self.load().pending_email

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin_sign_up(self, email: str) -> AuthFlowState:
        """Record ``SIGNING_UP`` for *email*."""
        return self._write(
            AuthFlowState(phase=AuthFlowPhase.SIGNING_UP, pending_email=email)
        )

    def await_confirmation(self, email: Optional[str] = None) -> AuthFlowState:
        """Record ``AWAITING_CONFIRMATION``, keeping the pending email
        unless a new one is given."""
        with self._lock:
            pending = email if email is not None else self.load().pending_email
            return self._write(
                AuthFlowState(
                    phase=AuthFlowPhase.AWAITING_CONFIRMATION,
                    pending_email=pending,
                )
            )

    def clear(self) -> AuthFlowState:
        """Conclude the flow: back to ``IDLE`` with no pending email."""
        with self._lock:
            state = AuthFlowState()
            self._cached = state
            self._store.delete(AUTH_FLOW_STATE_KEY)
        self._logger.info("Auth flow state cleared.")
        return state

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _write(self, state: AuthFlowState) -> AuthFlowState:
        with self._lock:
            self._cached = state
            persisted = self._store.set(AUTH_FLOW_STATE_KEY, state.model_dump_json())
        if not persisted:
            self._logger.warning(
                "Auth flow state %s could not be persisted; it will not "
                "survive a restart.",
                state.phase,
            )
        else:
            self._logger.info("Auth flow state -> %s", state.phase)
        return state

    def _read(self) -> AuthFlowState:
        raw = self._store.get(AUTH_FLOW_STATE_KEY)
        if raw is None:
            return self._migrate_legacy_keys()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._logger.warning("Auth flow state is not valid JSON; resetting: %s", exc)
            return AuthFlowState()

        if not isinstance(data, dict) or data.get("version") != AuthFlowState.CURRENT_VERSION:
            self._logger.warning(
                "Auth flow state has unknown version %r; resetting.",
                data.get("version") if isinstance(data, dict) else None,
            )
            return AuthFlowState()

        try:
            return AuthFlowState(**data)
        except ValidationError as exc:
            self._logger.warning("Auth flow state is malformed; resetting: %s", exc)
            return AuthFlowState()

    def _migrate_legacy_keys(self) -> AuthFlowState:
        flag = self._store.get(LEGACY_PREVENT_NAVIGATION_KEY)
        email = self._store.get(LEGACY_PENDING_EMAIL_KEY)
        if flag is None and email is None:
            return AuthFlowState()

        if flag == "true":
            phase = (
                AuthFlowPhase.AWAITING_CONFIRMATION if email else AuthFlowPhase.SIGNING_UP
            )
            state = AuthFlowState(phase=phase, pending_email=email or None)
            self._store.set(AUTH_FLOW_STATE_KEY, state.model_dump_json())
        else:
            state = AuthFlowState()

        self._store.delete(LEGACY_PREVENT_NAVIGATION_KEY)
        self._store.delete(LEGACY_PENDING_EMAIL_KEY)
        self._logger.info("Migrated legacy auth flow keys -> %s", state.phase)
        return state
