"""Symmetric encryption for OAuth tokens at rest."""

from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from freeagent_sync.core.exceptions import ConfigurationError


class TokenCipherService:
    """Encrypt and decrypt token strings with a Fernet key derived from a secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    @classmethod
    def from_secrets(
        cls, encryption_secret: Optional[str], client_secret: Optional[str]
    ) -> "TokenCipherService":
        """Prefer the dedicated encryption secret, else the OAuth client secret."""
        secret = encryption_secret or client_secret
        if not secret:
            raise ConfigurationError(
                "Set TOKEN_ENCRYPTION_SECRET or FREEAGENT_CLIENT_SECRET to store tokens."
            )
        return cls(secret=secret)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipherService"]
