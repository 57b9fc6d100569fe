"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference
- Logger reference
- Convenience accessor for the Supabase client
- Helpers for unpacking PostgREST responses
"""

from __future__ import annotations

from typing import Any, Optional

from supabase import Client as SupabaseClient

from classsync.database import DatabaseManager
from classsync.logger import StructuredLogger


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        table: Optional[str] = None,
    ) -> None:
        self._db = db
        self._logger = logger
        if table:
            self.TABLE = table

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client for cloud operations."""
        return self._db.supabase

    @staticmethod
    def _rows(response: Any) -> list[dict[str, Any]]:
        """Return the row list of a PostgREST response.

        ``maybe_single()`` yields ``None`` instead of a response object
        when nothing matched, so both shapes are accepted.
        """
        if response is None or response.data is None:
            return []
        if isinstance(response.data, list):
            return response.data
        return [response.data]

    @classmethod
    def _first_row(cls, response: Any) -> Optional[dict[str, Any]]:
        rows = cls._rows(response)
        return rows[0] if rows else None
