"""
Database Connection Layer.

Owns the two stores the core talks to:

- **Supabase (cloud PostgreSQL + Auth)**: the authoritative identity,
  profile and notification backend.
- **SQLite (local)**: device-local durable state that must survive a
  process restart, i.e. the encrypted ``secure_store`` rows holding the
  auth-flow state.

Data access is performed through repositories and services.  This module
only manages the raw *connections*; it contains no query logic.

Usage (dependency injection at app startup)::

    from classsync.database import DatabaseManager
    from classsync.logger import StructuredLogger

    db = DatabaseManager(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path("classsync_local.db"),
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from supabase import create_client, Client as SupabaseClient

from classsync.logger import StructuredLogger


class DatabaseManager:
    """Manages connections to the local SQLite database and the Supabase instance.

    Fully configured at construction time via dependency injection.

    When ``supabase_url`` or ``supabase_key`` is empty the Supabase client
    is **not** created.  The ``supabase`` property then raises
    ``RuntimeError``, which the backend adapter and repositories translate
    into network errors / sync errors.

    Parameters
    ----------
    supabase_url:
        The Supabase project URL (e.g. ``https://xyz.supabase.co``).
    supabase_key:
        The Supabase anonymous key.
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"``.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()

        self._supabase: Optional[SupabaseClient] = None
        if supabase_url and supabase_key:
            try:
                self._supabase = create_client(supabase_url, supabase_key)
                self._logger.info("Supabase client initialized.")
            except (ValueError, TypeError) as exc:
                self._logger.warning(
                    "Supabase credential format error: %s. Remote calls disabled.",
                    exc,
                )
            except Exception as exc:
                self._logger.warning(
                    "Supabase client could not be created: %s. Remote calls disabled.",
                    exc,
                )
        else:
            self._logger.warning(
                "Supabase credentials not configured; remote calls disabled."
            )

        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> SupabaseClient:
        """Return the initialised Supabase client.

        Raises
        ------
        RuntimeError
            If the Supabase client was not initialised.
        """
        if self._supabase is None:
            raise RuntimeError(
                "Supabase client is not initialised. "
                "Check SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        return self._supabase

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the write lock for thread-safe SQLite operations.

        All code that performs SQLite writes should acquire this lock
        first::

            with db.write_lock:
                db.sqlite.execute("INSERT ...")
                db.sqlite.commit()
        """
        return self._write_lock

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                # Already closed.
                pass

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open (or create) the local SQLite database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process.  Please check file permissions and try again."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
