"""
Notification sync engine: feed, unread count, badge and polling gate.

Why:
    ``unread_count`` must always equal the unread entries in the feed,
    read flips never go backwards, and the poll timer only fetches while
    the app is in the foreground.
"""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from classsync.models.enums import AppState, NotificationType, UserRole
from classsync.models.identity import Identity
from classsync.repositories.notification_repository import (
    NotificationRepository,
    NotificationSyncError,
)
from classsync.services.lifecycle import AppLifecycle
from classsync.services.notification_sync import NotificationSyncService

from conftest import FakeNotificationRepository, RecordingBadge

ANA = Identity(id="user-1", email="ana@example.com", role=UserRole.STUDENT)
BEN = Identity(id="user-2", email="ben@example.com", role=UserRole.STUDENT)


@pytest.fixture
def engine(notification_repo, session_state, badge, config, logger, clock) -> NotificationSyncService:
    return NotificationSyncService(
        repo=notification_repo,
        session_state=session_state,
        badge=badge,
        config=config,
        logger=logger,
        clock=clock,
    )


def _unread_matches(engine: NotificationSyncService) -> bool:
    return engine.unread_count == sum(1 for n in engine.feed if not n.is_read)


def test_fetch_orders_newest_first_and_counts_unread(engine, notification_repo, session_state, badge):
    notification_repo.add("n1", minute=1)
    notification_repo.add("n2", minute=3, is_read=True)
    notification_repo.add("n3", minute=2)
    notification_repo.add("other", user_id="user-2")
    session_state.set_identity(ANA)

    feed = engine.fetch()

    assert [n.id for n in feed] == ["n2", "n3", "n1"]
    assert engine.unread_count == 2
    assert badge.count == 2
    assert _unread_matches(engine)


def test_fetch_without_identity_is_a_no_op(engine, notification_repo):
    assert engine.fetch() == []
    assert notification_repo.list_calls == 0


def test_fetch_failure_keeps_previous_values(engine, notification_repo, session_state):
    notification_repo.add("n1")
    session_state.set_identity(ANA)
    engine.fetch()
    notification_repo.fail_reads = True

    engine.fetch()

    assert [n.id for n in engine.feed] == ["n1"]
    assert engine.unread_count == 1


def test_mark_as_read_decrements_by_one_and_updates_badge(engine, notification_repo, session_state, badge):
    notification_repo.add("n1", minute=1)
    notification_repo.add("n2", minute=2)
    notification_repo.add("n3", minute=3, is_read=True)
    session_state.set_identity(ANA)
    engine.fetch()
    assert engine.unread_count == 2

    assert engine.mark_as_read("n1") is True

    assert engine.unread_count == 1
    assert badge.count == 1
    assert next(n for n in engine.feed if n.id == "n1").is_read is True


def test_mark_as_read_twice_does_not_double_count(engine, notification_repo, session_state):
    notification_repo.add("n1")
    notification_repo.add("n2")
    session_state.set_identity(ANA)
    engine.fetch()

    engine.mark_as_read("n1")
    assert engine.mark_as_read("n1") is False

    assert engine.unread_count == 1


def test_failed_read_write_is_reconciled_on_next_fetch(engine, notification_repo, session_state):
    notification_repo.add("n1")
    session_state.set_identity(ANA)
    engine.fetch()
    notification_repo.fail_writes = True

    engine.mark_as_read("n1")
    assert engine.pending_reads == frozenset({"n1"})

    # Server still says unread; the local flip wins.
    engine.fetch()
    assert engine.feed[0].is_read is True
    assert engine.unread_count == 0

    notification_repo.fail_writes = False
    engine.fetch()
    assert engine.pending_reads == frozenset()
    assert notification_repo.rows[0].is_read is True
    assert notification_repo.update_calls.count("n1") == 3


def test_mark_all_as_read_zeroes_count(engine, notification_repo, session_state, badge):
    for i in range(3):
        notification_repo.add(f"n{i}", minute=i)
    session_state.set_identity(ANA)
    engine.fetch()

    assert engine.mark_all_as_read() == 3

    assert engine.unread_count == 0
    assert badge.count == 0
    assert all(n.is_read for n in notification_repo.rows)


def test_mark_all_failure_queues_each_id(engine, notification_repo, session_state):
    notification_repo.add("n1")
    notification_repo.add("n2", is_read=True)
    session_state.set_identity(ANA)
    engine.fetch()
    notification_repo.fail_writes = True

    engine.mark_all_as_read()

    assert engine.pending_reads == frozenset({"n1"})
    engine.fetch()
    assert engine.unread_count == 0


def test_identity_change_resets_feed(engine, notification_repo, session_state, badge):
    notification_repo.add("a1", user_id="user-1")
    notification_repo.add("b1", user_id="user-2")
    notification_repo.add("b2", user_id="user-2")
    session_state.set_identity(ANA)
    engine.fetch()

    session_state.set_identity(BEN)
    engine.fetch()

    assert [n.user_id for n in engine.feed] == ["user-2", "user-2"]
    assert engine.unread_count == 2
    assert 0 in badge.history


def test_started_engine_follows_session(notification_repo, session_state, badge, config, logger, clock):
    notification_repo.add("a1", user_id="user-1")
    engine = NotificationSyncService(
        repo=notification_repo, session_state=session_state, badge=badge,
        config=config, logger=logger, clock=clock,
    )
    engine.start()
    try:
        session_state.set_identity(ANA)
        assert engine.unread_count == 1

        session_state.clear()
        assert engine.feed == []
        assert badge.count == 0
    finally:
        engine.stop()

    assert engine.is_running is False


def test_permission_is_requested_once_and_denial_is_not_fatal(
    notification_repo, session_state, config, logger, clock,
):
    badge = RecordingBadge(logger, permission_granted=False)
    engine = NotificationSyncService(
        repo=notification_repo, session_state=session_state, badge=badge,
        config=config, logger=logger, clock=clock,
    )
    engine.start()
    engine.stop()
    engine.start()
    engine.stop()

    assert badge.permission_requests == 1


def test_polling_is_gated_by_foreground_state(engine, notification_repo, session_state, clock):
    session_state.set_identity(ANA)
    engine.fetch()  # t=0, active
    assert notification_repo.list_calls == 1

    clock.advance(10)
    engine.on_app_state_change(AppState.BACKGROUND)
    for _ in range(2):  # timer wake-ups at t=30 and t=60
        clock.advance(25)
        assert engine.tick() is False
    assert notification_repo.list_calls == 1

    clock.advance(10)  # t=70
    engine.on_app_state_change(AppState.ACTIVE)
    assert notification_repo.list_calls == 2

    clock.advance(20)  # t=90: last fetch was 20 s ago
    assert engine.tick() is False
    assert notification_repo.list_calls == 2

    clock.advance(10)  # t=100
    assert engine.tick() is True
    assert notification_repo.list_calls == 3


def test_inactive_to_active_also_fetches(engine, notification_repo, session_state):
    session_state.set_identity(ANA)
    engine.on_app_state_change(AppState.INACTIVE)
    engine.on_app_state_change(AppState.ACTIVE)
    engine.on_app_state_change(AppState.ACTIVE)

    assert notification_repo.list_calls == 1


def test_entering_background_mirrors_badge(engine, notification_repo, session_state, badge):
    notification_repo.add("n1")
    session_state.set_identity(ANA)
    engine.fetch()
    pushes = len(badge.history)

    engine.on_app_state_change(AppState.BACKGROUND)

    assert badge.history[pushes:] == [1]


def test_lifecycle_subscription(notification_repo, session_state, badge, config, logger, clock):
    lifecycle = AppLifecycle(logger)
    engine = NotificationSyncService(
        repo=notification_repo, session_state=session_state, badge=badge,
        config=config, logger=logger, lifecycle=lifecycle, clock=clock,
    )
    session_state.set_identity(ANA)
    engine.start()
    try:
        calls = notification_repo.list_calls
        lifecycle.transition(AppState.BACKGROUND)
        lifecycle.transition(AppState.ACTIVE)
        assert notification_repo.list_calls == calls + 1
    finally:
        engine.stop()


def test_notify_helpers_write_rows(engine, notification_repo):
    assert engine.notify_task_assigned("s-1", "Essay", "task-9") is True
    assert engine.notify_group_invitation("s-1", "Physics", "g-2") is True
    assert engine.notify_task_assigned("", "Essay", "task-9") is False

    assert notification_repo.created == [
        ("s-1", NotificationType.TASK_ASSIGNED, {"message": "New task assigned: Essay", "taskId": "task-9"}),
        (
            "s-1",
            NotificationType.GROUP_INVITATION,
            {"message": "You've been invited to join group: Physics", "groupId": "g-2"},
        ),
    ]


def test_notify_failure_propagates(engine, notification_repo):
    notification_repo.fail_writes = True

    with pytest.raises(NotificationSyncError):
        engine.notify_group_invitation("s-1", "Physics", "g-2")


# ---------------------------------------------------------------------------
# Malformed rows
# ---------------------------------------------------------------------------

class _Query:
    def __init__(self, rows):
        self._rows = rows

    def select(self, *_):
        return self

    def eq(self, *_):
        return self

    def order(self, *_, **__):
        return self

    def execute(self):
        return SimpleNamespace(data=self._rows)


def _supabase_repo(rows, logger) -> NotificationRepository:
    client = SimpleNamespace(table=lambda _name: _Query(rows))
    return NotificationRepository(db=SimpleNamespace(supabase=client), logger=logger)


SERVER_ROWS = [
    {
        "id": "n2", "user_id": "user-1", "type": "grade_posted", "data": None,
        "is_read": False, "created_at": "2024-05-01T12:02:00+00:00",
    },
    {"user_id": "user-1", "type": "task_assigned", "data": {}, "is_read": False},
    {
        "id": "n1", "user_id": "user-1", "type": "task_assigned",
        "data": {"message": "New task assigned: Essay"}, "is_read": True,
        "created_at": "2024-05-01T12:01:00+00:00",
    },
]


def test_list_skips_rows_that_fail_validation(logger):
    rows = _supabase_repo(SERVER_ROWS, logger).list_by_user("user-1")

    assert [n.id for n in rows] == ["n2", "n1"]
    assert rows[0].data == {}
    assert rows[0].message == ""


def test_malformed_rows_do_not_break_sign_in(session_state, badge, config, logger, clock):
    engine = NotificationSyncService(
        repo=_supabase_repo(SERVER_ROWS, logger), session_state=session_state,
        badge=badge, config=config, logger=logger, clock=clock,
    )
    engine.start()
    try:
        session_state.set_identity(ANA)
    finally:
        engine.stop()

    assert engine.unread_count == 1
    assert badge.count == 1


# ---------------------------------------------------------------------------
# Read flips racing an in-flight fetch
# ---------------------------------------------------------------------------

class FlipDuringListRepository(FakeNotificationRepository):
    """Runs ``during_list`` after the rows were read, before they return."""

    def __init__(self) -> None:
        super().__init__()
        self.during_list = None

    def list_by_user(self, user_id):
        rows = super().list_by_user(user_id)
        if self.during_list is not None:
            hook, self.during_list = self.during_list, None
            hook()
        return rows


@pytest.fixture
def racing_repo() -> FlipDuringListRepository:
    repo = FlipDuringListRepository()
    repo.add("n1", minute=1)
    repo.add("n2", minute=2)
    return repo


@pytest.fixture
def racing_engine(racing_repo, session_state, badge, config, logger, clock):
    engine = NotificationSyncService(
        repo=racing_repo, session_state=session_state, badge=badge,
        config=config, logger=logger, clock=clock,
    )
    session_state.set_identity(ANA)
    engine.fetch()
    return engine


def test_stale_fetch_does_not_revert_read_flip(racing_engine, racing_repo, badge):
    racing_repo.during_list = lambda: racing_engine.mark_as_read("n1")

    racing_engine.fetch()

    assert next(n for n in racing_engine.feed if n.id == "n1").is_read is True
    assert racing_engine.unread_count == 1
    assert badge.count == 1

    # The next fetch sees the server's own ``true``.
    racing_engine.fetch()
    assert next(n for n in racing_engine.feed if n.id == "n1").is_read is True
    assert _unread_matches(racing_engine)


def test_stale_fetch_does_not_revert_mark_all(racing_engine, racing_repo, badge):
    racing_repo.during_list = racing_engine.mark_all_as_read

    racing_engine.fetch()

    assert all(n.is_read for n in racing_engine.feed)
    assert racing_engine.unread_count == 0
    assert badge.count == 0
