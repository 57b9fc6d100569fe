"""
Services Package.

Contains the session, auth-flow and notification services of the core.
Services depend on the Repository layer for data access and on the
shared ``SessionState`` / ``Router`` for identity and navigation.

The ``create_services()`` factory wires every repository and service together,
returning a typed dict that the application layer can consume without
knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from classsync.config import AppConfig
from classsync.database import DatabaseManager
from classsync.logger import get_logger
from classsync.navigation.guard import NavigationGuard
from classsync.navigation.router import Router
from classsync.repositories.notification_repository import NotificationRepository
from classsync.repositories.profile_repository import ProfileRepository
from classsync.services.auth_flow import AuthFlowController
from classsync.services.auth_flow_state import AuthFlowStateStore
from classsync.services.badge import Badge
from classsync.services.identity_backend import SupabaseIdentityBackend
from classsync.services.lifecycle import AppLifecycle
from classsync.services.notification_sync import NotificationSyncService
from classsync.services.profile_sync import ProfileSyncService
from classsync.services.secure_store import SecureStore
from classsync.services.session_resolver import SessionResolver
from classsync.session import SessionState


class ServiceContainer(TypedDict):
    """Typed container for all core services."""

    # --- State holders ---
    session_state: SessionState
    router: Router
    lifecycle: AppLifecycle
    badge: Badge

    # --- Storage ---
    secure_store: SecureStore
    auth_flow_state: AuthFlowStateStore

    # --- Auth ---
    identity_backend: SupabaseIdentityBackend
    profile_sync_service: ProfileSyncService
    session_resolver: SessionResolver
    auth_flow_controller: AuthFlowController

    # --- Navigation / notifications ---
    navigation_guard: NavigationGuard
    notification_sync_service: NotificationSyncService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    session_state: Optional[SessionState] = None,
    router: Optional[Router] = None,
    lifecycle: Optional[AppLifecycle] = None,
    badge: Optional[Badge] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    entry-point calls this once at startup; nothing is attached or
    started here.

    Args:
        db: Initialised DatabaseManager with Supabase + SQLite ready.
        config: Application configuration.
        session_state: Shared session state (created when omitted).
        router: Platform router (in-process ``Router`` when omitted).
        lifecycle: Platform lifecycle signal (in-process when omitted).
        badge: Platform badge (in-process when omitted).

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. State holders
    # ------------------------------------------------------------------
    session_state = session_state or SessionState()
    router = router or Router(logger=get_logger("router"))
    lifecycle = lifecycle or AppLifecycle(logger=logger)
    badge = badge or Badge(logger=logger)

    # ------------------------------------------------------------------
    # 2. Repositories (data-access layer)
    # ------------------------------------------------------------------
    profile_repo = ProfileRepository(db=db, logger=logger, table=config.PROFILES_TABLE)
    notification_repo = NotificationRepository(
        db=db, logger=logger, table=config.NOTIFICATIONS_TABLE,
    )

    # ------------------------------------------------------------------
    # 3. Leaf services
    # ------------------------------------------------------------------
    secure_store = SecureStore(
        db=db,
        logger=get_logger("secure_store"),
        salt_path=config.SECURE_STORE_SALT_PATH,
    )
    auth_flow_state = AuthFlowStateStore(store=secure_store, logger=logger)
    identity_backend = SupabaseIdentityBackend(db=db, logger=get_logger("auth"))
    profile_sync_service = ProfileSyncService(repo=profile_repo, logger=logger)

    # ------------------------------------------------------------------
    # 4. Orchestration services
    # ------------------------------------------------------------------
    session_resolver = SessionResolver(
        backend=identity_backend,
        profiles=profile_sync_service,
        session_state=session_state,
        router=router,
        flow_state=auth_flow_state,
        logger=logger,
    )
    auth_flow_controller = AuthFlowController(
        backend=identity_backend,
        resolver=session_resolver,
        profiles=profile_sync_service,
        session_state=session_state,
        router=router,
        flow_state=auth_flow_state,
        config=config,
        logger=get_logger("auth"),
    )
    navigation_guard = NavigationGuard(
        session=session_state,
        router=router,
        is_suppressed=auth_flow_state.is_suppressed,
        logger=get_logger("router"),
    )
    notification_sync_service = NotificationSyncService(
        repo=notification_repo,
        session_state=session_state,
        badge=badge,
        config=config,
        logger=get_logger("notifications"),
        lifecycle=lifecycle,
    )

    return ServiceContainer(
        session_state=session_state,
        router=router,
        lifecycle=lifecycle,
        badge=badge,
        secure_store=secure_store,
        auth_flow_state=auth_flow_state,
        identity_backend=identity_backend,
        profile_sync_service=profile_sync_service,
        session_resolver=session_resolver,
        auth_flow_controller=auth_flow_controller,
        navigation_guard=navigation_guard,
        notification_sync_service=notification_sync_service,
    )
