"""
Shared fixtures: in-memory fakes for every external collaborator.

Why:
    The core talks to Supabase (auth, profiles, notifications), the OS
    badge and the secure store only through narrow interfaces, so each
    test wires real services against deterministic fakes.
"""
from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest

from classsync.config import AppConfig
from classsync.logger import StructuredLogger
from classsync.models.auth_models import AuthErrorCode, AuthResult
from classsync.models.enums import AuthEventType, NotificationType, UserRole
from classsync.models.identity import BackendSession, Profile
from classsync.models.notification import Notification
from classsync.navigation.router import Router
from classsync.repositories.notification_repository import NotificationSyncError
from classsync.services.auth_flow import AuthFlowController
from classsync.services.auth_flow_state import AuthFlowStateStore
from classsync.services.badge import Badge
from classsync.services.profile_sync import ProfileSyncService
from classsync.services.session_resolver import SessionResolver
from classsync.session import SessionState


# ---------------------------------------------------------------------------
# Plain fakes
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryFlagStore:
    """Dict-backed flag store; survives "restarts" by sharing the dict."""

    def __init__(self, data: Optional[dict[str, str]] = None) -> None:
        self.data: dict[str, str] = data if data is not None else {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class RecordingBadge(Badge):
    """Badge that remembers every count pushed to the platform."""

    def __init__(self, logger: StructuredLogger, permission_granted: bool = True) -> None:
        super().__init__(logger, permission_granted=permission_granted)
        self.history: list[int] = []
        self.permission_requests = 0

    def _apply(self, count: int) -> None:
        self.history.append(count)

    def _ask(self) -> bool:
        self.permission_requests += 1
        return super()._ask()


def make_session(
    user_id: str = "user-1",
    email: str = "ana@example.com",
    role: Optional[str] = "student",
    confirmed: bool = True,
) -> BackendSession:
    sent = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return BackendSession(
        user_id=user_id,
        email=email,
        user_metadata={"role": role} if role else {},
        confirmation_sent_at=sent,
        email_confirmed_at=sent if confirmed else None,
        access_token="access",
        refresh_token="refresh",
    )


class FakeIdentityBackend:
    """Scriptable stand-in for ``SupabaseIdentityBackend``.

    ``accounts`` maps email -> (password, session).  Auth events are
    delivered synchronously to subscribers, like the Supabase client does.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, BackendSession]] = {}
        self.current: Optional[BackendSession] = None
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.sign_up_result: Optional[AuthResult] = None
        self.resend_result: AuthResult = AuthResult(success=True)
        self.reset_result: AuthResult = AuthResult(success=True)
        self.sign_out_result: AuthResult = AuthResult(success=True)
        self.set_session_result: Optional[AuthResult] = None
        self._listeners: list[Callable[[AuthEventType, Optional[BackendSession]], None]] = []

    # -- events ---------------------------------------------------------

    def on_auth_state_change(self, callback):
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def emit(self, event: AuthEventType, session: Optional[BackendSession]) -> None:
        for listener in list(self._listeners):
            listener(event, session)

    # -- contract -------------------------------------------------------

    def get_session(self) -> Optional[BackendSession]:
        self.calls.append(("get_session", ()))
        return self.current

    def sign_in(self, email: str, password: str) -> AuthResult:
        self.calls.append(("sign_in", (email,)))
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            return AuthResult.failure(
                AuthErrorCode.INVALID_CREDENTIALS, "Incorrect email or password.",
            )
        self.current = account[1]
        self.emit(AuthEventType.SIGNED_IN, account[1])
        return AuthResult(success=True, user_id=account[1].user_id, email=email, session=account[1])

    def sign_up(self, email, password, metadata, redirect_url) -> AuthResult:
        self.calls.append(("sign_up", (email, dict(metadata), redirect_url)))
        if self.sign_up_result is not None:
            return self.sign_up_result
        return AuthResult(success=True, user_id="new-user", email=email, session=None)

    def sign_out(self) -> AuthResult:
        self.calls.append(("sign_out", ()))
        self.current = None
        self.emit(AuthEventType.SIGNED_OUT, None)
        return self.sign_out_result

    def set_session(self, access_token: str, refresh_token: str) -> AuthResult:
        self.calls.append(("set_session", (access_token, refresh_token)))
        if self.set_session_result is not None:
            return self.set_session_result
        session = make_session(user_id="confirmed-user", email="new@example.com", role="teacher")
        self.current = session
        self.emit(AuthEventType.SIGNED_IN, session)
        return AuthResult(success=True, user_id=session.user_id, email=session.email, session=session)

    def resend_confirmation(self, email: str, redirect_url: str) -> AuthResult:
        self.calls.append(("resend_confirmation", (email,)))
        return self.resend_result

    def reset_password_for_email(self, email: str, redirect_url: str) -> AuthResult:
        self.calls.append(("reset_password_for_email", (email, redirect_url)))
        return self.reset_result

    def called(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeProfileRepository:
    """Dict-backed ``user_profiles`` table with an id uniqueness constraint."""

    def __init__(self) -> None:
        self.rows: dict[str, Profile] = {}
        self.fail_reads = False
        self.fail_upserts = False
        self.upserts = 0

    def get_by_id(self, user_id: str) -> Optional[Profile]:
        if self.fail_reads:
            raise RuntimeError("profiles unavailable")
        return self.rows.get(user_id)

    def find_by_email_case_insensitive(self, email: str) -> Optional[Profile]:
        for row in self.rows.values():
            if row.email.lower() == email.strip().lower():
                return row
        return None

    def upsert(self, profile: Profile) -> Profile:
        self.upserts += 1
        if self.fail_upserts:
            raise RuntimeError("upsert rejected")
        existing = self.rows.get(profile.id)
        merged = existing.model_copy(update=profile.model_dump(exclude_none=True)) if existing else profile
        self.rows[profile.id] = merged
        return merged

    def reassign_id(self, old_id: str, new_id: str) -> Optional[Profile]:
        row = self.rows.pop(old_id, None)
        if row is None:
            return None
        moved = row.model_copy(update={"id": new_id})
        self.rows[new_id] = moved
        return moved


class FakeNotificationRepository:
    """In-memory ``notifications`` table with switchable failures."""

    def __init__(self) -> None:
        self.rows: list[Notification] = []
        self.fail_reads = False
        self.fail_writes = False
        self.list_calls = 0
        self.update_calls: list[str] = []
        self.created: list[tuple[str, NotificationType, dict[str, Any]]] = []

    def add(self, notification_id: str, user_id: str = "user-1", is_read: bool = False, minute: int = 0) -> None:
        self.rows.append(Notification(
            id=notification_id,
            user_id=user_id,
            type="task_assigned",
            data={"message": f"Task {notification_id}"},
            is_read=is_read,
            created_at=datetime(2024, 5, 1, 12, minute, tzinfo=timezone.utc),
        ))

    def list_by_user(self, user_id: str) -> list[Notification]:
        self.list_calls += 1
        if self.fail_reads:
            raise NotificationSyncError("list failed")
        rows = [n for n in self.rows if n.user_id == user_id]
        return sorted(rows, key=lambda n: n.created_at, reverse=True)

    def update_read_flag(self, notification_id: str, user_id: str) -> None:
        self.update_calls.append(notification_id)
        if self.fail_writes:
            raise NotificationSyncError("update failed")
        self.rows = [
            n.model_copy(update={"is_read": True}) if n.id == notification_id and n.user_id == user_id else n
            for n in self.rows
        ]

    def bulk_update_read_flag(self, user_id: str) -> None:
        if self.fail_writes:
            raise NotificationSyncError("bulk update failed")
        self.rows = [
            n.model_copy(update={"is_read": True}) if n.user_id == user_id else n
            for n in self.rows
        ]

    def create(self, user_id: str, notification_type: NotificationType, data: dict[str, Any]) -> None:
        if self.fail_writes:
            raise NotificationSyncError("insert failed")
        self.created.append((user_id, notification_type, data))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def logger(tmp_path_factory) -> StructuredLogger:
    log_file = tmp_path_factory.mktemp("logs") / "classsync-tests.log"
    return StructuredLogger(name="classsync.tests", stream=io.StringIO(), log_file=str(log_file))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        SUPABASE_URL="",
        RESEND_COOLDOWN_S=60.0,
        CONFIRMATION_SETTLE_DELAY_S=1.0,
        NOTIFICATION_POLL_INTERVAL_S=30.0,
        MIN_PASSWORD_LENGTH=6,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def flag_store() -> MemoryFlagStore:
    return MemoryFlagStore()


@pytest.fixture
def flow_state(flag_store, logger) -> AuthFlowStateStore:
    return AuthFlowStateStore(store=flag_store, logger=logger)


@pytest.fixture
def session_state() -> SessionState:
    return SessionState()


@pytest.fixture
def router(logger) -> Router:
    return Router(logger=logger, initial_path="/")


@pytest.fixture
def backend() -> FakeIdentityBackend:
    return FakeIdentityBackend()


@pytest.fixture
def profile_repo() -> FakeProfileRepository:
    return FakeProfileRepository()


@pytest.fixture
def profiles(profile_repo, logger) -> ProfileSyncService:
    return ProfileSyncService(repo=profile_repo, logger=logger)


@pytest.fixture
def resolver(backend, profiles, session_state, router, flow_state, logger) -> SessionResolver:
    resolver = SessionResolver(
        backend=backend,
        profiles=profiles,
        session_state=session_state,
        router=router,
        flow_state=flow_state,
        logger=logger,
    )
    resolver.attach()
    return resolver


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def controller(
    backend, resolver, profiles, session_state, router, flow_state, config, logger, clock, sleeps,
) -> AuthFlowController:
    return AuthFlowController(
        backend=backend,
        resolver=resolver,
        profiles=profiles,
        session_state=session_state,
        router=router,
        flow_state=flow_state,
        config=config,
        logger=logger,
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture
def badge(logger) -> RecordingBadge:
    return RecordingBadge(logger)


@pytest.fixture
def notification_repo() -> FakeNotificationRepository:
    return FakeNotificationRepository()


@pytest.fixture
def teacher_profile() -> Profile:
    return Profile(id="user-1", email="ana@example.com", role=UserRole.TEACHER)
