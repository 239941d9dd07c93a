"""
Lifecycle of persisted FreeAgent OAuth tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from freeagent_sync.clients.freeagent_auth import FreeAgentOAuthClient
from freeagent_sync.clients.token_store import SQLiteTokenStore
from freeagent_sync.core.exceptions import OAuthError
from freeagent_sync.models.oauth import OAuthToken

logger = logging.getLogger(__name__)


class OAuthManager:
    """Issues, refreshes and revokes the token held for each owner."""

    def __init__(
        self,
        oauth_client: FreeAgentOAuthClient,
        token_store: SQLiteTokenStore,
    ) -> None:
        self._oauth = oauth_client
        self._store = token_store

    def build_authorization_url(self, state: str) -> str:
        return self._oauth.build_authorization_url(state)

    async def complete_authorization(self, code: str, owner_id: str) -> OAuthToken:
        """Exchange ``code`` and store the resulting token for ``owner_id``."""
        grant = await self._oauth.exchange_authorization_code(code)
        now = datetime.now(timezone.utc)
        token = OAuthToken(
            owner_id=owner_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            created_at=now,
            updated_at=now,
        )
        self._store.save(token)
        logger.info(
            "FreeAgent connection authorized",
            extra={"owner_id": owner_id, "expires_at": token.expires_at.isoformat()},
        )
        return token

    async def get_valid_token(self, owner_id: str) -> Optional[OAuthToken]:
        """
        Return a usable token for ``owner_id``, refreshing it when needed.

        A token inside the five minute refresh window is refreshed first. When
        the refresh fails the stored token is deleted and ``None`` is returned,
        so the owner has to reconnect.
        """
        token = self._store.get(owner_id)
        if token is None:
            return None

        if token.is_expired() or token.is_expiring_soon():
            try:
                token = await self.refresh(token)
            except OAuthError as exc:
                logger.warning(
                    "FreeAgent token refresh failed; dropping stored token",
                    extra={"owner_id": owner_id, "error": str(exc)},
                )
                self._store.delete(owner_id)
                return None

        return token

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        refreshed_at = datetime.now(timezone.utc)
        grant = await self._oauth.refresh_token(token.refresh_token)
        token.access_token = grant.access_token
        token.refresh_token = grant.refresh_token
        token.expires_at = refreshed_at + timedelta(seconds=grant.expires_in)
        self._store.update(token)
        logger.info(
            "FreeAgent token refreshed",
            extra={"owner_id": token.owner_id, "expires_at": token.expires_at.isoformat()},
        )
        return token

    def revoke(self, owner_id: str) -> None:
        self._store.delete(owner_id)
        logger.info("FreeAgent connection revoked", extra={"owner_id": owner_id})

    def stored_token(self, owner_id: str) -> Optional[OAuthToken]:
        return self._store.get(owner_id)

    def has_connection(self, owner_id: str) -> bool:
        token = self._store.get(owner_id)
        return token is not None and token.is_valid()

    def known_owners(self) -> list[str]:
        return self._store.owners()


__all__ = ["OAuthManager"]
