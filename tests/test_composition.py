"""
Composition root against an offline database.

Why:
    The core must wire up and resolve to a signed-out state when the
    Supabase client is unavailable, instead of failing at startup.
"""
from __future__ import annotations

import pytest

from classsync.database import DatabaseManager
from classsync.models.auth_models import AuthErrorCode
from classsync.models.enums import ResolverState
from classsync.navigation.routes import LOGIN_ROUTE
from classsync.schema import initialize_schema
from classsync.services import create_services


@pytest.fixture
def services(config, logger, tmp_path):
    db = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=":memory:",
        logger=logger,
    )
    initialize_schema(db.sqlite, logger)
    config = config.model_copy(update={"SECURE_STORE_SALT_PATH": str(tmp_path / "salt")})
    container = create_services(db, config)
    yield container
    container["notification_sync_service"].stop()
    container["session_resolver"].detach()
    container["navigation_guard"].detach()
    db.close()


def test_offline_cold_start_lands_on_login(services):
    services["navigation_guard"].attach()
    services["session_resolver"].attach()

    assert services["session_resolver"].resolve_on_start() is None

    assert services["session_state"].resolver_state == ResolverState.RESOLVED_NO_SESSION
    assert services["router"].current_path == LOGIN_ROUTE


def test_offline_sign_in_reports_network_error(services):
    result = services["auth_flow_controller"].sign_in("ana@example.com", "secret1")

    assert result.error_code == AuthErrorCode.NETWORK_ERROR
    assert services["session_state"].identity is None


def test_notification_engine_starts_without_identity(services):
    engine = services["notification_sync_service"]

    engine.start()

    assert engine.is_running is True
    assert engine.feed == []
    assert services["badge"].count == 0
