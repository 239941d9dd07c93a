"""SQLite-backed TTL cache, namespaced by owner."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteCache:
    """
    Short-lived JSON cache with per-entry expiry.

    Every entry carries the owner it belongs to, so one owner's entries can be
    dropped without touching anyone else's. Expired rows are pruned on read.
    """

    def __init__(self, db_path: str, namespace: str = "freeagent") -> None:
        self._db_path = Path(db_path)
        self._namespace = namespace
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    value TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS cache_entries_owner
                ON cache_entries (namespace, owner_id)
                """
            )

    def _prune(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "DELETE FROM cache_entries WHERE namespace = ? AND expires_at <= ?",
            (self._namespace, _utcnow().isoformat()),
        )

    def get(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            self._prune(conn)
            row = conn.execute(
                "SELECT value FROM cache_entries WHERE namespace = ? AND key = ?",
                (self._namespace, key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["value"])

    def put(self, key: str, value: Any, *, ttl_seconds: int, owner_id: str) -> None:
        expires_at = _utcnow() + timedelta(seconds=ttl_seconds)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cache_entries (namespace, key, owner_id, value, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    owner_id = excluded.owner_id,
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (
                    self._namespace,
                    key,
                    owner_id,
                    json.dumps(value),
                    expires_at.isoformat(),
                ),
            )

    def forget(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM cache_entries WHERE namespace = ? AND key = ?",
                (self._namespace, key),
            )

    def forget_owner(self, owner_id: str, *, key_prefix: str = "") -> int:
        """Drop the owner's entries, optionally only those under ``key_prefix``."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM cache_entries
                WHERE namespace = ? AND owner_id = ?
                    AND substr(key, 1, length(?)) = ?
                """,
                (self._namespace, owner_id, key_prefix, key_prefix),
            )
        return cursor.rowcount

    def owners(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT owner_id FROM cache_entries WHERE namespace = ?",
                (self._namespace,),
            ).fetchall()
        return [row["owner_id"] for row in rows]


__all__ = ["SQLiteCache"]
