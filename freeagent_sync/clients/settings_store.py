"""SQLite-backed key/value store for settings edited from the admin panel."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional


class SettingsStore:
    """Simple string settings table; values here override the environment."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS freeagent_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM freeagent_settings WHERE key = ?",
                (key,),
            ).fetchone()
        if not row:
            return None
        return row["value"]

    def set(self, key: str, value: Optional[str]) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO freeagent_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now(timezone.utc).isoformat()),
            )

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM freeagent_settings WHERE key = ?", (key,))

    def all(self) -> Dict[str, Optional[str]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM freeagent_settings").fetchall()
        return {row["key"]: row["value"] for row in rows}


__all__ = ["SettingsStore"]
