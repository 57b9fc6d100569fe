"""
ClassSync Core Entry Point.

Bootstraps the entire dependency graph via constructor injection,
initialises the local SQLite schema, resolves the persisted session and
keeps the notification feed in sync until interrupted.  Every subsystem
is wired here; there are no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
import threading
import traceback
from pathlib import Path

from classsync.config import get_config
from classsync.database import DatabaseManager
from classsync.logger import StructuredLogger, get_logger
from classsync.schema import initialize_schema
from classsync.services import create_services


def main() -> None:
    """Wire dependencies, resolve the session and run until interrupted."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting ClassSync core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="database"),
    )

    # DatabaseManager.close() is idempotent.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(db=db, config=config)

    # ------------------------------------------------------------------
    # 5. Navigation guard + auth events, then cold-start resolution
    # ------------------------------------------------------------------
    services["navigation_guard"].attach()
    services["session_resolver"].attach()
    identity = services["session_resolver"].resolve_on_start()
    logger.info(
        "Session resolved: %s",
        f"{identity.email} ({identity.role})" if identity else "signed out",
    )

    # ------------------------------------------------------------------
    # 6. Notification sync (daemon thread)
    # ------------------------------------------------------------------
    notifications = services["notification_sync_service"]
    notifications.start()

    # ------------------------------------------------------------------
    # 7. Run until interrupted
    # ------------------------------------------------------------------
    shutdown = threading.Event()
    try:
        while not shutdown.wait(timeout=1.0):
            pass
    finally:
        notifications.stop()
        services["session_resolver"].detach()
        services["navigation_guard"].detach()
        db.close()
        logger.info("ClassSync core shut down.")


def _report_fatal_error(exc: BaseException) -> None:
    """Write the fatal error to stderr so a crashed launch is never silent."""
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _report_fatal_error(exc)
        sys.exit(1)
