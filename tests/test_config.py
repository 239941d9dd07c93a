try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest
from pydantic import ValidationError

from freeagent_sync.clients.settings_store import SettingsStore
from freeagent_sync.core.config import AppSettings, PaginationSettings, resolve_config


def test_production_urls_and_defaults(monkeypatch) -> None:
    monkeypatch.setenv("FREEAGENT_ENV", "production")
    monkeypatch.delenv("FREEAGENT_REDIRECT_URI", raising=False)
    monkeypatch.setenv("APP_URL", "https://panel.example.com/")

    config = resolve_config(AppSettings())

    assert config.api_url == "https://api.freeagent.com/v2"
    assert config.authorize_url == "https://api.freeagent.com/v2/approve_app"
    assert config.token_url == "https://api.freeagent.com/v2/token_endpoint"
    assert config.redirect_uri == "https://panel.example.com/freeagent/callback"
    assert config.invoices_ttl == 1800
    assert config.contacts_ttl == 3600
    assert config.rate_limit_per_minute == 120
    assert config.page_size == 100
    assert config.max_pages == 1000


def test_sandbox_environment_is_case_insensitive(monkeypatch) -> None:
    monkeypatch.setenv("FREEAGENT_ENV", "Sandbox")

    config = resolve_config(AppSettings())

    assert config.environment == "sandbox"
    assert config.api_url == "https://api.sandbox.freeagent.com/v2"


def test_settings_store_overrides_environment_credentials(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("FREEAGENT_CLIENT_ID", "env-id")
    monkeypatch.setenv("FREEAGENT_CLIENT_SECRET", "env-secret")
    store = SettingsStore(str(tmp_path / "settings.db"))
    store.set("client_id", "stored-id")

    config = resolve_config(AppSettings(), store)

    assert config.client_id == "stored-id"
    assert config.client_secret == "env-secret"


def test_blank_credentials_resolve_to_none(monkeypatch) -> None:
    monkeypatch.setenv("FREEAGENT_CLIENT_ID", "")
    monkeypatch.delenv("FREEAGENT_CLIENT_SECRET", raising=False)

    config = resolve_config(AppSettings())

    assert config.client_id is None
    assert config.client_secret is None


def test_page_size_above_api_maximum_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("FREEAGENT_PAGE_SIZE", "150")

    with pytest.raises(ValidationError):
        PaginationSettings()


def test_settings_store_roundtrip(tmp_path) -> None:
    store = SettingsStore(str(tmp_path / "settings.db"))
    store.set("client_id", "one")
    store.set("client_id", "two")
    store.set("client_secret", "secret")
    store.delete("client_secret")

    assert store.get("client_id") == "two"
    assert store.get("client_secret") is None
    assert store.all() == {"client_id": "two"}


@pytest.mark.parametrize("value", ["0", "-3"])
def test_page_cap_below_one_is_rejected(monkeypatch, value) -> None:
    monkeypatch.setenv("FREEAGENT_MAX_PAGES", value)

    with pytest.raises(ValidationError):
        PaginationSettings()
