"""
Identity Backend Adapter.

Thin adapter over ``supabase.auth`` (GoTrue).  Every call returns a
structured :class:`AuthResult` or a plain value; no backend exception
escapes this module.  Heterogeneous error shapes (``AuthApiError``
messages, HTTP status codes, network failures, a missing client) are
mapped onto the closed :class:`AuthErrorCode` set here, once.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Optional

from classsync.database import DatabaseManager
from classsync.logger import StructuredLogger
from classsync.models.auth_models import (
    RATE_LIMIT_MARKERS,
    SUPABASE_ERROR_MAP,
    AuthErrorCode,
    AuthResult,
)
from classsync.models.enums import AuthEventType
from classsync.models.identity import BackendSession
from classsync.services.base_service import BaseService

AuthEventCallback = Callable[[AuthEventType, Optional[BackendSession]], None]

_RETRY_HINT_RE = re.compile(r"after\s+(\d+)\s*(?:s\b|sec|second)", re.IGNORECASE)

_NETWORK_MESSAGE = "Cannot reach the server. Check your internet connection."


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def parse_retry_after(message: str) -> Optional[int]:
    """Extract the wait hint from a rate-limit message.

    ``"For security purposes, you can only request this after 42
    seconds."`` -> ``42``.  ``None`` when no hint is present.
    """
    match = _RETRY_HINT_RE.search(message or "")
    return int(match.group(1)) if match else None


def classify_auth_error(exc: BaseException) -> AuthResult:
    """Map a backend or network exception to a failed :class:`AuthResult`.

    Order: missing client / network, rate limit (status 429 or a known
    marker), the ``SUPABASE_ERROR_MAP`` table, then ``UNKNOWN_ERROR``.
    """
    if isinstance(exc, (RuntimeError, ConnectionError, TimeoutError)):
        return AuthResult.failure(AuthErrorCode.NETWORK_ERROR, _NETWORK_MESSAGE)

    message = str(exc)
    haystack = " ".join(
        str(part).lower()
        for part in (message, getattr(exc, "code", None) or "")
    )

    if getattr(exc, "status", None) == 429 or any(
        marker in haystack for marker in RATE_LIMIT_MARKERS
    ):
        wait = parse_retry_after(message)
        text = (
            f"Too many requests. Please wait {wait} seconds."
            if wait is not None
            else "Too many requests. Please wait a moment and try again."
        )
        return AuthResult.failure(AuthErrorCode.RATE_LIMITED, text, retry_after_s=wait)

    for code_key, (error_code, human_message) in SUPABASE_ERROR_MAP.items():
        if code_key in haystack:
            return AuthResult.failure(error_code, human_message)

    return AuthResult.failure(
        AuthErrorCode.UNKNOWN_ERROR,
        message or "An unexpected error occurred. Please try again later.",
    )


def to_backend_session(session: Any = None, user: Any = None) -> Optional[BackendSession]:
    """Convert a GoTrue ``Session`` and/or ``User`` to :class:`BackendSession`."""
    user = user if user is not None else getattr(session, "user", None)
    if user is None:
        return None
    return BackendSession(
        user_id=str(user.id),
        email=getattr(user, "email", None) or "",
        user_metadata=getattr(user, "user_metadata", None) or {},
        confirmation_sent_at=getattr(user, "confirmation_sent_at", None),
        email_confirmed_at=getattr(user, "email_confirmed_at", None),
        access_token=getattr(session, "access_token", None),
        refresh_token=getattr(session, "refresh_token", None),
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class SupabaseIdentityBackend(BaseService):
    """Supabase Auth behind the identity backend contract.

    Parameters
    ----------
    db:
        ``DatabaseManager`` providing the Supabase client.  When the
        client is not configured every call yields ``NETWORK_ERROR``.
    logger:
        Structured logger.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._db = db

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any],
        redirect_url: str,
    ) -> AuthResult:
        """Create an account.  ``session`` is ``None`` while confirmation
        is pending; the user part is still returned."""
        try:
            response = self._db.supabase.auth.sign_up({
                "email": email,
                "password": password,
                "options": {
                    "data": metadata,
                    "email_redirect_to": redirect_url,
                },
            })
        except Exception as exc:
            return self._failed("sign_up", exc)

        session = to_backend_session(response.session, response.user)
        return AuthResult(
            success=True,
            user_id=session.user_id if session else None,
            email=email,
            session=session,
        )

    def sign_in(self, email: str, password: str) -> AuthResult:
        try:
            response = self._db.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except Exception as exc:
            return self._failed("sign_in", exc)

        session = to_backend_session(response.session, response.user)
        if session is None:
            return AuthResult.failure(
                AuthErrorCode.UNKNOWN_ERROR, "Sign-in returned no session.",
            )
        return AuthResult(
            success=True, user_id=session.user_id, email=session.email, session=session,
        )

    def sign_out(self) -> AuthResult:
        try:
            self._db.supabase.auth.sign_out()
        except Exception as exc:
            return self._failed("sign_out", exc)
        return AuthResult(success=True)

    def set_session(self, access_token: str, refresh_token: str) -> AuthResult:
        """Exchange confirmation-link tokens for a live session."""
        try:
            response = self._db.supabase.auth.set_session(access_token, refresh_token)
        except Exception as exc:
            return self._failed("set_session", exc)

        session = to_backend_session(response.session, response.user)
        if session is None:
            return AuthResult.failure(
                AuthErrorCode.INVALID_TOKEN,
                "This confirmation link is invalid. Please request a new one.",
            )
        return AuthResult(
            success=True, user_id=session.user_id, email=session.email, session=session,
        )

    # ------------------------------------------------------------------
    # Emails
    # ------------------------------------------------------------------

    def reset_password_for_email(self, email: str, redirect_url: str) -> AuthResult:
        try:
            self._db.supabase.auth.reset_password_for_email(
                email, {"redirect_to": redirect_url},
            )
        except Exception as exc:
            return self._failed("reset_password_for_email", exc)
        return AuthResult(success=True, email=email)

    def resend_confirmation(self, email: str, redirect_url: str) -> AuthResult:
        try:
            self._db.supabase.auth.resend({
                "type": "signup",
                "email": email,
                "options": {"email_redirect_to": redirect_url},
            })
        except Exception as exc:
            return self._failed("resend_confirmation", exc)
        return AuthResult(success=True, email=email)

    # ------------------------------------------------------------------
    # Session observation
    # ------------------------------------------------------------------

    def get_session(self) -> Optional[BackendSession]:
        """Return the persisted session, ``None`` when signed out or offline."""
        try:
            session = self._db.supabase.auth.get_session()
        except Exception as exc:
            self._logger.warning("Could not read the current session: %s", exc)
            return None
        return to_backend_session(session) if session is not None else None

    def on_auth_state_change(self, callback: AuthEventCallback) -> Callable[[], None]:
        """Forward backend auth events to *callback*.

        Event names outside :class:`AuthEventType` are dropped.  Returns a
        callable that unsubscribes.
        """
        def _handler(event: str, session: Any) -> None:
            try:
                event_type = AuthEventType(str(event))
            except ValueError:
                self._logger.debug("Ignoring unknown auth event %s", event)
                return
            callback(event_type, to_backend_session(session) if session else None)

        try:
            subscription = self._db.supabase.auth.on_auth_state_change(_handler)
        except RuntimeError as exc:
            self._logger.warning("Auth events unavailable: %s", exc)
            return lambda: None

        return subscription.unsubscribe

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _failed(self, operation: str, exc: Exception) -> AuthResult:
        result = classify_auth_error(exc)
        self._logger.warning(
            "Auth %s failed (%s): %s",
            operation,
            result.error_code,
            exc,
            extra={"event": "AUTH_BACKEND_ERROR", "error_code": str(result.error_code)},
        )
        return result
