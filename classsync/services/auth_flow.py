"""
Auth Flow Controller.

Drives every user-initiated auth action: sign-up with email
confirmation, resend with cooldown, the confirmation landing flow,
sign-in, sign-out, password reset and role change.

Every public method returns a structured :class:`AuthResult`; the
caller never inspects raw backend exceptions.  The durable auth-flow
record is always written before the backend is contacted, so a process
killed mid-sign-up still suppresses automatic navigation on restart.
"""

from __future__ import annotations

import math
import re
import threading
import time
from typing import Callable, Optional, Union

from classsync.config import AppConfig
from classsync.logger import StructuredLogger
from classsync.models.auth_models import AuthErrorCode, AuthFlowState, AuthResult, ValidationResult
from classsync.models.enums import UserRole
from classsync.navigation.router import Router
from classsync.navigation.routes import LOGIN_ROUTE, home_route_for
from classsync.services.auth_flow_state import AuthFlowStateStore
from classsync.services.base_service import BaseService
from classsync.services.identity_backend import SupabaseIdentityBackend
from classsync.services.profile_sync import ProfileSyncError, ProfileSyncService
from classsync.services.session_resolver import SessionResolver
from classsync.session import SessionState
from classsync.utils.audit import log_audit_event


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

_RESET_NOTICE: str = (
    "If this email is registered, you will receive a password reset link."
)


class AuthFlowController(BaseService):
    """Orchestrates the sign-up, confirmation and sign-in flows.

    Parameters
    ----------
    backend:
        Identity backend adapter (never raises).
    resolver:
        Session resolver; publishes identities and decides redirects.
    profiles:
        Profile service used by the confirmation flow and role changes.
    session_state:
        Shared session state.
    router:
        Router for explicit navigation to login / role homes.
    flow_state:
        Durable auth-flow record.
    config:
        Application configuration (password policy, deep links,
        cooldowns).
    logger:
        Structured JSON logger.
    clock:
        Monotonic clock used for the resend cooldown.
    sleep:
        Sleep function used for the post-confirmation settle delay.
    """

    def __init__(
        self,
        backend: SupabaseIdentityBackend,
        resolver: SessionResolver,
        profiles: ProfileSyncService,
        session_state: SessionState,
        router: Router,
        flow_state: AuthFlowStateStore,
        config: AppConfig,
        logger: StructuredLogger,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(logger)
        self._backend = backend
        self._resolver = resolver
        self._profiles = profiles
        self._session_state = session_state
        self._router = router
        self._flow_state = flow_state
        self._config = config
        self._clock = clock
        self._sleep = sleep

        self._resend_lock: threading.Lock = threading.Lock()
        self._resend_available_at: float = float("-inf")

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Validate an email address against a simplified RFC 5322 regex."""
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Email address is required.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    def validate_password(self, password: str) -> ValidationResult:
        """Enforce the minimum password length."""
        minimum = self._config.MIN_PASSWORD_LENGTH
        if not password or len(password) < minimum:
            return ValidationResult(
                is_valid=False,
                error_message=f"Password must be at least {minimum} characters.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    # ==================================================================
    # Sign-up and confirmation
    # ==================================================================

    def sign_up(
        self,
        email: str,
        password: str,
        role: Union[UserRole, str],
    ) -> AuthResult:
        """Register an account that must confirm its email.

        Steps:

        1. Record ``SIGNING_UP`` with the pending email (durable).
        2. Validate the email format and the password length.
        3. Try to sign in with the credentials; if they already work the
           flow is concluded and the regular resolved-session path runs.
        4. Otherwise create the account with ``{role}`` metadata and the
           confirmation deep link, then record ``AWAITING_CONFIRMATION``.

        Returns
        -------
        AuthResult
            ``user_created=True`` when an account now awaits confirmation,
            ``user_created=False`` when existing credentials signed in.
        """
        normalized = self.normalize_email(email or "")
        self._flow_state.begin_sign_up(normalized)

        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")

        pw_check = self.validate_password(password)
        if not pw_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, pw_check.error_message or "")

        parsed_role = UserRole.parse(str(role))
        if parsed_role is None:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR,
                "Please choose whether you are a teacher or a student.",
            )

        # --- Existing credentials short-circuit ---
        existing = self._backend.sign_in(normalized, password)
        if existing.success and existing.session is not None:
            self._flow_state.clear()
            identity = self._resolver.establish(existing.session)
            self._logger.info(
                "Sign-up for %s matched existing credentials; signed in.", normalized,
            )
            return AuthResult(
                success=True,
                user_created=False,
                user_id=identity.id,
                email=identity.email,
                role=identity.role,
                session=existing.session,
            )

        # --- Account creation ---
        created = self._backend.sign_up(
            normalized,
            password,
            {"role": str(parsed_role)},
            self._config.CONFIRMATION_REDIRECT_URL,
        )
        if not created.success:
            return created

        self._flow_state.await_confirmation(normalized)
        log_audit_event(
            logger=self._logger,
            action="SIGN_UP",
            entity_type="Account",
            entity_id=created.user_id or normalized,
            user_id=created.user_id or normalized,
            details={"email": normalized, "role": str(parsed_role)},
        )
        return AuthResult(
            success=True,
            user_created=True,
            user_id=created.user_id,
            email=normalized,
            role=parsed_role,
            session=created.session,
        )

    def resend_confirmation(self, email: Optional[str] = None) -> AuthResult:
        """Re-send the confirmation email, at most once per cooldown.

        The cooldown starts at the attempt, whether or not the backend
        call succeeds.  A backend rate limit carrying a wait hint extends
        it to that hint.
        """
        target = email if email is not None else (self._flow_state.pending_email or "")
        email_check = self.validate_email(target)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")
        target = self.normalize_email(target)

        with self._resend_lock:
            now = self._clock()
            if now < self._resend_available_at:
                wait = math.ceil(self._resend_available_at - now)
                return AuthResult.failure(
                    AuthErrorCode.RATE_LIMITED,
                    f"Please wait {wait} seconds before requesting another email.",
                    retry_after_s=wait,
                )
            self._resend_available_at = now + self._config.RESEND_COOLDOWN_S

        result = self._backend.resend_confirmation(
            target, self._config.CONFIRMATION_REDIRECT_URL,
        )

        if result.error_code == AuthErrorCode.RATE_LIMITED:
            with self._resend_lock:
                if result.retry_after_s is not None:
                    self._resend_available_at = max(
                        self._resend_available_at, now + result.retry_after_s,
                    )
                wait = math.ceil(self._resend_available_at - now)
            return AuthResult.failure(
                AuthErrorCode.RATE_LIMITED,
                result.error_message or f"Please wait {wait} seconds.",
                retry_after_s=wait,
            )

        if result.success:
            self._logger.info("Confirmation email re-sent to %s.", target)
        return result

    @property
    def resend_cooldown_remaining(self) -> int:
        """Whole seconds until :meth:`resend_confirmation` may be called."""
        with self._resend_lock:
            return max(0, math.ceil(self._resend_available_at - self._clock()))

    def enter_confirmation(self) -> AuthFlowState:
        """The confirmation screen is showing: hold automatic navigation."""
        return self._flow_state.await_confirmation()

    def confirm_email(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str],
    ) -> AuthResult:
        """Complete the email-confirmation deep link.

        Exchanges the link tokens for a session, waits for the backend to
        settle, makes sure the profile exists (failure is not fatal),
        then signs out so the user logs in explicitly.
        """
        if not access_token or not refresh_token:
            return AuthResult.failure(
                AuthErrorCode.INVALID_TOKEN,
                "This confirmation link is invalid. Please request a new one.",
            )

        exchanged = self._backend.set_session(access_token, refresh_token)
        if not exchanged.success or exchanged.session is None:
            return exchanged
        session = exchanged.session

        self._sleep(self._config.CONFIRMATION_SETTLE_DELAY_S)

        try:
            self._profiles.ensure_profile(session)
        except ProfileSyncError as exc:
            self._logger.warning(
                "Profile could not be created after confirmation for %s: %s",
                session.email,
                exc.message,
            )

        signed_out = self._backend.sign_out()
        if not signed_out.success:
            self._logger.warning(
                "Sign-out after confirmation failed: %s", signed_out.error_message,
            )
        self._session_state.clear()

        log_audit_event(
            logger=self._logger,
            action="EMAIL_CONFIRMED",
            entity_type="Account",
            entity_id=session.user_id,
            user_id=session.user_id,
            details={"email": session.email},
        )
        return AuthResult(success=True, user_id=session.user_id, email=session.email)

    def go_to_login(self, password: Optional[str] = None) -> AuthResult:
        """Leave the confirmation flow.

        Clears the flow record; with a pending email and a *password*,
        attempts an automatic sign-in.  Otherwise, or when that fails,
        routes to the login screen.
        """
        email = self._flow_state.pending_email
        self._flow_state.clear()

        if email and password:
            result = self.sign_in(email, password)
            if result.success:
                return result
            self._logger.info("Auto-login after confirmation failed: %s", result.error_code)
            self._router.replace_if_needed(LOGIN_ROUTE)
            return result

        self._router.replace_if_needed(LOGIN_ROUTE)
        return AuthResult(success=True, email=email)

    def navigate_to_login(self) -> None:
        """Abandon the current auth flow and show the login screen."""
        self._flow_state.clear()
        self._router.replace_if_needed(LOGIN_ROUTE)

    # ==================================================================
    # Sign-in / sign-out
    # ==================================================================

    def sign_in(self, email: str, password: str) -> AuthResult:
        """Authenticate, settle the profile and go to the role home."""
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")
        if not password:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, "Password is required.")

        normalized = self.normalize_email(email)
        result = self._backend.sign_in(normalized, password)
        if not result.success or result.session is None:
            return result

        # A successful sign-in concludes any sign-up flow left pending.
        self._flow_state.clear()
        identity = self._resolver.establish(result.session)
        # An explicit sign-in leaves the auth screens even from /auth/confirm.
        self._router.replace_if_needed(home_route_for(identity.role))
        log_audit_event(
            logger=self._logger,
            action="SIGN_IN",
            entity_type="Session",
            entity_id=identity.id,
            user_id=identity.id,
            details={"email": identity.email, "role": str(identity.role)},
        )
        return AuthResult(
            success=True,
            user_id=identity.id,
            email=identity.email,
            role=identity.role,
            session=result.session,
        )

    def sign_out(self) -> AuthResult:
        """Sign out server-side (best effort), clear the identity, go to login."""
        identity = self._session_state.identity

        result = self._backend.sign_out()
        if not result.success:
            self._logger.warning(
                "Server-side sign-out failed for %s: %s",
                identity.email if identity else "unknown",
                result.error_message,
            )

        self._session_state.clear()
        self._router.replace_if_needed(LOGIN_ROUTE)

        self._logger.info(
            "User signed out: %s",
            identity.email if identity else "unknown",
            extra={"event": "SIGN_OUT", "user_id": identity.id if identity else "unknown"},
        )
        return AuthResult(success=True)

    # ==================================================================
    # Password reset / role
    # ==================================================================

    def request_password_reset(self, email: str) -> AuthResult:
        """Send a password-reset email.

        Uses an anti-enumeration response: the same success message is
        returned whether or not the address is registered.  Only rate
        limits and network failures are surfaced.
        """
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, email_check.error_message or "")

        normalized = self.normalize_email(email)
        result = self._backend.reset_password_for_email(
            normalized, self._config.PASSWORD_RESET_REDIRECT_URL,
        )
        if result.error_code in (AuthErrorCode.RATE_LIMITED, AuthErrorCode.NETWORK_ERROR):
            return result
        if not result.success:
            self._logger.warning(
                "Password reset error for %s: %s", normalized, result.error_message,
            )

        return AuthResult(success=True, error_message=_RESET_NOTICE)

    def set_user_role(self, role: Union[UserRole, str]) -> AuthResult:
        """Change the current identity's role and go to the new home."""
        identity = self._session_state.identity
        if identity is None:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, "Sign in before choosing a role.",
            )

        parsed_role = UserRole.parse(str(role))
        if parsed_role is None:
            return AuthResult.failure(AuthErrorCode.VALIDATION_ERROR, f"Unknown role: {role}")

        try:
            self._profiles.change_role(identity.id, identity.email, parsed_role)
        except ProfileSyncError as exc:
            self._logger.warning("Role change failed for %s: %s", identity.id, exc.message)
            return AuthResult.failure(
                AuthErrorCode.UNKNOWN_ERROR,
                "Your role could not be saved. Please try again.",
            )

        updated = identity.model_copy(update={"role": parsed_role})
        self._session_state.set_identity(updated)
        self._router.replace_if_needed(home_route_for(parsed_role))
        return AuthResult(
            success=True, user_id=updated.id, email=updated.email, role=parsed_role,
        )
