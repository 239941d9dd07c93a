try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from freeagent_sync.core.exceptions import ConfigurationError
from freeagent_sync.services.token_cipher import TokenCipherService


def test_token_cipher_roundtrip() -> None:
    cipher = TokenCipherService(secret="super-secret-key")
    plaintext = "sensitive-token"

    encrypted = cipher.encrypt(plaintext)
    assert encrypted != plaintext

    decrypted = cipher.decrypt(encrypted)
    assert decrypted == plaintext


def test_token_cipher_rejects_bad_ciphertext() -> None:
    cipher = TokenCipherService(secret="another-secret")

    with pytest.raises(ValueError):
        cipher.decrypt("not-valid")


def test_token_cipher_rejects_other_key() -> None:
    encrypted = TokenCipherService(secret="first").encrypt("value")

    with pytest.raises(ValueError):
        TokenCipherService(secret="second").decrypt(encrypted)


def test_from_secrets_falls_back_to_client_secret() -> None:
    cipher = TokenCipherService.from_secrets(None, "client-secret")
    same_key = TokenCipherService(secret="client-secret")

    assert same_key.decrypt(cipher.encrypt("token")) == "token"


def test_from_secrets_requires_a_secret() -> None:
    with pytest.raises(ConfigurationError):
        TokenCipherService.from_secrets(None, None)
