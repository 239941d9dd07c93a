"""
FreeAgent OAuth utilities.

These helpers build the consent URL, exchange authorization codes and refresh
tokens against the FreeAgent token endpoint.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import time
from hashlib import sha256
from typing import Any, Dict, NamedTuple, Optional
from urllib.parse import urlencode

import httpx

from freeagent_sync.core.config import FreeAgentConfig
from freeagent_sync.core.exceptions import ConfigurationError, OAuthError


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        payload = {**payload, "issued_at": int(time.time())}
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str, *, max_age: Optional[int] = None) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthError.invalid_callback("malformed state") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise OAuthError.invalid_callback("state signature mismatch")
        payload = json.loads(serialized)
        if max_age is not None:
            issued_at = int(payload.get("issued_at", 0))
            if time.time() - issued_at > max_age:
                raise OAuthError.invalid_callback("state has expired")
        return payload


class TokenGrant(NamedTuple):
    access_token: str
    refresh_token: str
    expires_in: int


class FreeAgentOAuthClient:
    """Build FreeAgent authorization URLs and talk to the token endpoint."""

    def __init__(
        self,
        config: FreeAgentConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._config = config
        self._transport = transport
        self._timeout = timeout

    @property
    def config(self) -> FreeAgentConfig:
        return self._config

    def build_authorization_url(self, state: str) -> str:
        """Construct the FreeAgent consent URL."""
        if not self._config.client_id:
            raise ConfigurationError("FreeAgent client ID is not configured.")
        params = {
            "client_id": self._config.client_id,
            "response_type": "code",
            "redirect_uri": self._config.redirect_uri,
            "state": state,
        }
        return f"{self._config.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for a token pair."""
        self._require_credentials()
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.redirect_uri,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        return await self._grant(payload, OAuthError.authorization_failed)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new token pair."""
        self._require_credentials()
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        return await self._grant(payload, OAuthError.refresh_failed)

    def _require_credentials(self) -> None:
        if not self._config.client_id or not self._config.client_secret:
            raise ConfigurationError("FreeAgent client credentials are not configured.")

    async def _grant(self, payload: Dict[str, Any], failure) -> TokenGrant:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self._config.token_url,
                    data=payload,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise failure(str(exc)) from exc

        if not response.is_success:
            raise failure(response.text or f"status {response.status_code}")

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise failure("token endpoint returned invalid JSON") from exc

        if not isinstance(token_payload, dict):
            raise failure("token endpoint returned an unexpected payload")

        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not refresh_token or not expires_in:
            raise failure("incomplete token payload returned from FreeAgent")

        try:
            lifetime = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise failure(f"invalid expires_in value {expires_in!r}") from exc

        return TokenGrant(access_token, refresh_token, lifetime)


__all__ = ["FreeAgentOAuthClient", "OAuthStateEncoder", "TokenGrant"]
