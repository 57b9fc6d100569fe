"""
Local SQLite Schema Initialization.

Defines the schema for the device-local database and provides a single
entry-point -- :func:`initialize_schema` -- that creates all required
tables idempotently.  A ``schema_version`` table records which version
the file was created at so that later releases can roll it forward.

The local database only holds durable client state; profiles and
notifications live in Supabase.

Usage::

    import sqlite3
    from classsync.logger import StructuredLogger
    from classsync.schema import initialize_schema

    conn = sqlite3.connect("classsync_local.db")
    initialize_schema(conn, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3

from classsync.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 1

_TABLE_DEFINITIONS: list[str] = [
    # -- encrypted key/value rows (secure flag store) -------------------------
    """
    CREATE TABLE IF NOT EXISTS secure_store (
        key TEXT PRIMARY KEY,
        encrypted_payload BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    """Create the ``schema_version`` table if it does not yet exist."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version INTEGER NOT NULL,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    conn.commit()


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the current schema version, or ``0`` if unset."""
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return row[0] if row is not None else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Upsert the single-row version tracker.  Does **not** commit."""
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Ensure the local SQLite database matches the current schema version.

    Creates every table in a single transaction on a fresh database and
    records :data:`CURRENT_SCHEMA_VERSION`.  Safe to call on every
    startup; an up-to-date database is left untouched.  On failure the
    transaction is rolled back and the error re-raised.
    """
    _ensure_version_table(conn)
    current: int = _get_schema_version(conn)

    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    try:
        for ddl in _TABLE_DEFINITIONS:
            conn.execute(ddl)
        _set_schema_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except Exception:
        conn.rollback()
        logger.error(
            "Schema initialisation failed, rolled back to version %d.", current,
        )
        raise

    logger.info("Schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
