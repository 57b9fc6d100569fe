"""
Session resolver: cold start, auth events and redirect decisions.

Why:
    The profile must be settled before the identity is published and
    before any redirect; sign-up in progress must never be yanked to a
    role home; SIGNED_OUT always lands on login.
"""
from __future__ import annotations

from classsync.models.enums import AuthEventType, ResolverState, UserRole
from classsync.models.identity import Profile
from classsync.navigation.routes import LOGIN_ROUTE

from conftest import make_session


def test_cold_start_without_session_resolves_signed_out(resolver, session_state, router):
    assert resolver.resolve_on_start() is None

    assert session_state.resolver_state == ResolverState.RESOLVED_NO_SESSION
    assert session_state.loading is False
    assert router.history == []


def test_cold_start_uses_profile_role(resolver, backend, profile_repo, session_state, router):
    profile_repo.rows["user-1"] = Profile(id="user-1", email="ana@example.com", role=UserRole.TEACHER)
    backend.current = make_session(role="student")

    identity = resolver.resolve_on_start()

    assert identity.role == UserRole.TEACHER
    assert session_state.resolver_state == ResolverState.RESOLVED_WITH_IDENTITY
    assert router.current_path == "/teacher/dashboard"


def test_cold_start_creates_missing_profile_from_metadata(resolver, backend, profile_repo):
    backend.current = make_session(role="teacher")

    identity = resolver.resolve_on_start()

    assert identity.role == UserRole.TEACHER
    assert profile_repo.rows["user-1"].role == UserRole.TEACHER


def test_missing_metadata_role_defaults_to_student(resolver, backend, profile_repo):
    backend.current = make_session(role=None)

    identity = resolver.resolve_on_start()

    assert identity.role == UserRole.STUDENT
    assert profile_repo.rows["user-1"].role == UserRole.STUDENT


def test_unconfirmed_signup_neither_fetches_profile_nor_redirects(
    resolver, backend, profile_repo, session_state, router,
):
    router.replace("/auth/confirm")
    backend.current = make_session(confirmed=False)

    resolver.resolve_on_start()

    assert profile_repo.upserts == 0
    assert session_state.navigation_suppressed is True
    assert router.current_path == "/auth/confirm"


def test_durable_suppression_survives_restart_and_blocks_redirect(
    resolver, backend, flow_state, router,
):
    flow_state.begin_sign_up("ana@example.com")
    router.replace("/auth/login")
    backend.current = make_session()

    resolver.resolve_on_start()

    assert router.current_path == "/auth/login"


def test_auth_flow_screen_blocks_redirect(resolver, backend, router):
    router.replace("/auth/signup")
    backend.current = make_session()

    resolver.resolve_on_start()

    assert router.current_path == "/auth/signup"


def test_no_redirect_when_already_home(resolver, backend, router):
    router.replace("/student/dashboard")
    backend.current = make_session()
    before = list(router.history)

    resolver.resolve_on_start()

    assert router.history == before


def test_repeated_resolution_never_duplicates_profile(resolver, backend, profile_repo):
    backend.current = make_session()

    resolver.resolve_on_start()
    resolver.resolve_on_start()
    backend.emit(AuthEventType.SIGNED_IN, backend.current)

    assert list(profile_repo.rows) == ["user-1"]
    assert profile_repo.upserts == 1


def test_signed_out_event_forces_login(resolver, backend, session_state, router):
    backend.current = make_session()
    resolver.resolve_on_start()

    backend.emit(AuthEventType.SIGNED_OUT, None)

    assert session_state.identity is None
    assert router.current_path == LOGIN_ROUTE


def test_signed_out_event_ignores_suppression(resolver, backend, flow_state, router):
    backend.current = make_session()
    resolver.resolve_on_start()
    flow_state.begin_sign_up("ana@example.com")

    backend.emit(AuthEventType.SIGNED_OUT, None)

    assert router.current_path == LOGIN_ROUTE


def test_signed_out_event_keeps_confirm_screen(resolver, backend, router):
    router.replace("/auth/confirm")
    history = list(router.history)

    backend.emit(AuthEventType.SIGNED_OUT, None)

    assert router.history == history


def test_signed_out_on_login_does_not_renavigate(resolver, backend, router):
    router.replace("/auth/login")

    backend.emit(AuthEventType.SIGNED_OUT, None)

    assert router.history == ["/auth/login"]


def test_signed_in_event_merges_profile_by_email(resolver, backend, profile_repo, session_state):
    profile_repo.rows["legacy-id"] = Profile(
        id="legacy-id", email="Ana@Example.com", role=UserRole.TEACHER,
    )

    backend.emit(AuthEventType.SIGNED_IN, make_session(role="student"))

    assert set(profile_repo.rows) == {"user-1"}
    assert session_state.identity.role == UserRole.TEACHER


def test_other_events_are_ignored(resolver, backend, session_state):
    backend.emit(AuthEventType.TOKEN_REFRESHED, make_session())
    backend.emit(AuthEventType.INITIAL_SESSION, make_session())

    assert session_state.identity is None


def test_profile_failure_still_yields_best_effort_identity(resolver, backend, profile_repo, router):
    profile_repo.fail_reads = True
    backend.current = make_session(role="teacher")

    identity = resolver.resolve_on_start()

    assert identity.role == UserRole.TEACHER
    assert router.current_path == "/teacher/dashboard"
