"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from classsync.models import Identity, Profile, Notification, UserRole
"""

from __future__ import annotations

from classsync.models.enums import (
    AppState,
    AuthEventType,
    AuthFlowPhase,
    NotificationType,
    ResolverState,
    UserRole,
)
from classsync.models.identity import BackendSession, Identity, Profile
from classsync.models.auth_models import (
    AuthErrorCode,
    AuthFlowState,
    AuthResult,
    ValidationResult,
)
from classsync.models.notification import Notification

__all__ = [
    "AppState",
    "AuthEventType",
    "AuthFlowPhase",
    "NotificationType",
    "ResolverState",
    "UserRole",
    "BackendSession",
    "Identity",
    "Profile",
    "AuthErrorCode",
    "AuthFlowState",
    "AuthResult",
    "ValidationResult",
    "Notification",
]
