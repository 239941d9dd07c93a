"""SQLite-backed store for FreeAgent OAuth tokens, one row per owner."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from freeagent_sync.models.oauth import OAuthToken

if TYPE_CHECKING:  # pragma: no cover
    from freeagent_sync.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class SQLiteTokenStore:
    """
    Persist encrypted token pairs keyed by owner id.

    ``owner_id`` is the primary key, so saving a token for an owner replaces
    whatever was stored before. Refreshes update the row in place; two racing
    refreshes resolve to whichever writes last.
    """

    def __init__(self, db_path: str, cipher: "TokenCipherService") -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
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
                CREATE TABLE IF NOT EXISTS freeagent_oauth_tokens (
                    owner_id TEXT PRIMARY KEY,
                    access_token_encrypted TEXT NOT NULL,
                    refresh_token_encrypted TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def get(self, owner_id: str) -> Optional[OAuthToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM freeagent_oauth_tokens WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        if not row:
            return None
        try:
            return OAuthToken(
                owner_id=row["owner_id"],
                access_token=self._cipher.decrypt(row["access_token_encrypted"]),
                refresh_token=self._cipher.decrypt(row["refresh_token_encrypted"]),
                expires_at=datetime.fromisoformat(row["expires_at"]),
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
        except ValueError:
            logger.warning(
                "Stored FreeAgent token could not be decrypted; discarding it",
                extra={"owner_id": owner_id},
            )
            self.delete(owner_id)
            return None

    def save(self, token: OAuthToken) -> OAuthToken:
        """Store ``token``, superseding any token held for the same owner."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM freeagent_oauth_tokens WHERE owner_id = ?",
                (token.owner_id,),
            )
            conn.execute(
                """
                INSERT INTO freeagent_oauth_tokens (
                    owner_id,
                    access_token_encrypted,
                    refresh_token_encrypted,
                    expires_at,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    token.owner_id,
                    self._cipher.encrypt(token.access_token),
                    self._cipher.encrypt(token.refresh_token),
                    token.expires_at.isoformat(),
                    token.created_at.isoformat(),
                    token.updated_at.isoformat(),
                ),
            )
        return token

    def update(self, token: OAuthToken) -> OAuthToken:
        """Rewrite the secret fields and expiry of an existing token row."""
        token.updated_at = datetime.now(timezone.utc)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE freeagent_oauth_tokens
                SET access_token_encrypted = ?,
                    refresh_token_encrypted = ?,
                    expires_at = ?,
                    updated_at = ?
                WHERE owner_id = ?
                """,
                (
                    self._cipher.encrypt(token.access_token),
                    self._cipher.encrypt(token.refresh_token),
                    token.expires_at.isoformat(),
                    token.updated_at.isoformat(),
                    token.owner_id,
                ),
            )
        if cursor.rowcount == 0:
            # Revoked while the refresh was in flight.
            logger.info(
                "Refreshed token has no stored row; not re-creating it",
                extra={"owner_id": token.owner_id},
            )
        return token

    def reencrypt(self, cipher: "TokenCipherService") -> int:
        """
        Rewrite every stored token under ``cipher`` and keep using it.

        Rows are decrypted with the current key first; a row that no longer
        decrypts is left as it is. Returns the number of rows rewritten.
        """
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM freeagent_oauth_tokens").fetchall()
            rewritten = 0
            for row in rows:
                try:
                    access_token = self._cipher.decrypt(row["access_token_encrypted"])
                    refresh_token = self._cipher.decrypt(row["refresh_token_encrypted"])
                except ValueError:
                    logger.warning(
                        "Stored FreeAgent token could not be decrypted; not re-encrypting it",
                        extra={"owner_id": row["owner_id"]},
                    )
                    continue
                conn.execute(
                    """
                    UPDATE freeagent_oauth_tokens
                    SET access_token_encrypted = ?,
                        refresh_token_encrypted = ?
                    WHERE owner_id = ?
                    """,
                    (
                        cipher.encrypt(access_token),
                        cipher.encrypt(refresh_token),
                        row["owner_id"],
                    ),
                )
                rewritten += 1
        self._cipher = cipher
        logger.info("FreeAgent tokens re-encrypted", extra={"tokens": rewritten})
        return rewritten

    def delete(self, owner_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM freeagent_oauth_tokens WHERE owner_id = ?",
                (owner_id,),
            )

    def owners(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT owner_id FROM freeagent_oauth_tokens ORDER BY owner_id"
            ).fetchall()
        return [row["owner_id"] for row in rows]


__all__ = ["SQLiteTokenStore"]
