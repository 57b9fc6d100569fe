"""
Authentication Pipeline Models.

Pydantic models and enumerations for the auth request/response
contracts between the identity backend adapter, the ``AuthFlowController``
and its callers.

Every auth operation returns a structured, inspectable ``AuthResult``
rather than raw backend payloads or exception side-channels.  The
heterogeneous error shapes of the backend are mapped onto the closed
``AuthErrorCode`` set once, at the adapter.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar, Optional

from pydantic import BaseModel

from classsync.models.enums import AuthFlowPhase, UserRole
from classsync.models.identity import BackendSession


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories.

    ``VALIDATION_ERROR`` is raised client-side before any network call.
    ``RATE_LIMITED`` results carry ``retry_after_s``.  Everything else is
    a backend-reported auth failure surfaced with its message.
    """

    VALIDATION_ERROR = "validation_error"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    INVALID_TOKEN = "invalid_token"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Supabase error-code mapping
# ---------------------------------------------------------------------------

# Checked in order against the lower-cased error text.
SUPABASE_ERROR_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "email_not_confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please confirm your email address before signing in.",
    ),
    "email not confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please confirm your email address before signing in.",
    ),
    "invalid_credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid login credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid_grant": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "user_already_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "already registered": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "otp_expired": (
        AuthErrorCode.INVALID_TOKEN,
        "This confirmation link has expired. Please request a new one.",
    ),
    "invalid jwt": (
        AuthErrorCode.INVALID_TOKEN,
        "This confirmation link is invalid. Please request a new one.",
    ),
    "bad_jwt": (
        AuthErrorCode.INVALID_TOKEN,
        "This confirmation link is invalid. Please request a new one.",
    ),
}

# Markers of a backend rate-limit response.
RATE_LIMIT_MARKERS: tuple[str, ...] = (
    "over_email_send_rate_limit",
    "over_request_rate_limit",
    "rate limit",
    "for security purposes",
    "too many requests",
)


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every auth operation.

    Callers inspect ``success`` to choose the happy path, and
    ``error_code`` to decide which feedback to display.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success, or an
        informational message such as the password-reset notice).
    retry_after_s:
        Seconds until the action may be retried; set on ``RATE_LIMITED``.
    user_created:
        ``True`` when sign-up created (or re-sent) an account awaiting
        confirmation.
    session:
        The backend session when the operation produced one.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    retry_after_s: Optional[int] = None
    user_created: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    session: Optional[BackendSession] = None

    @classmethod
    def failure(
        cls,
        code: AuthErrorCode,
        message: str,
        retry_after_s: Optional[int] = None,
    ) -> "AuthResult":
        return cls(
            success=False,
            error_code=code,
            error_message=message,
            retry_after_s=retry_after_s,
        )


# ---------------------------------------------------------------------------
# Durable auth-flow state
# ---------------------------------------------------------------------------

class AuthFlowState(BaseModel):
    """Typed, versioned record of the sign-up / confirmation flow.

    Persisted as a single encrypted value so the suppression flag and the
    pending email can never be written half-way.

    Attributes
    ----------
    version:
        Record layout version.  Unknown versions are discarded on load.
    phase:
        Current phase; anything but ``IDLE`` suppresses auto-navigation.
    pending_email:
        Address awaiting confirmation, consumed by the confirmation screen
        and by auto-login afterwards.
    """

    CURRENT_VERSION: ClassVar[int] = 1

    version: int = 1
    phase: AuthFlowPhase = AuthFlowPhase.IDLE
    pending_email: Optional[str] = None

    @property
    def prevent_auto_navigation(self) -> bool:
        return self.phase != AuthFlowPhase.IDLE
