"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest

from freeagent_sync.clients.cache import SQLiteCache
from freeagent_sync.clients.freeagent_api import FreeAgentApiClient
from freeagent_sync.clients.freeagent_auth import FreeAgentOAuthClient
from freeagent_sync.clients.mirror_store import MirrorStore
from freeagent_sync.clients.token_store import SQLiteTokenStore
from freeagent_sync.core.config import FreeAgentConfig
from freeagent_sync.models.oauth import OAuthToken
from freeagent_sync.services.oauth_manager import OAuthManager
from freeagent_sync.services.sync_engine import SyncEngine
from freeagent_sync.services.token_cipher import TokenCipherService
from freeagent_sync.utils.http import RetryConfig

try:
    from ._fake_freeagent import API_URL, FakeFreeAgent
except ImportError:  # pragma: no cover
    from _fake_freeagent import API_URL, FakeFreeAgent  # type: ignore


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def freeagent_config() -> FreeAgentConfig:
    return FreeAgentConfig(
        environment="sandbox",
        api_url=API_URL,
        authorize_url=f"{API_URL}/approve_app",
        token_url=f"{API_URL}/token_endpoint",
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri="https://app.example.com/freeagent/callback",
        connection_mode="system",
        invoices_ttl=1800,
        contacts_ttl=3600,
        projects_ttl=3600,
        rate_limit_per_minute=120,
        rate_limit_per_hour=3600,
        page_size=100,
        max_pages=1000,
    )


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "freeagent.db")


@pytest.fixture
def fake_api() -> FakeFreeAgent:
    return FakeFreeAgent()


@pytest.fixture
def token_store(db_path) -> SQLiteTokenStore:
    return SQLiteTokenStore(db_path, TokenCipherService(secret="test-secret"))


@pytest.fixture
def oauth_manager(freeagent_config, token_store, fake_api) -> OAuthManager:
    client = FreeAgentOAuthClient(freeagent_config, transport=fake_api.transport())
    return OAuthManager(client, token_store)


@pytest.fixture
def cache(db_path) -> SQLiteCache:
    return SQLiteCache(db_path)


@pytest.fixture
def mirror(db_path) -> MirrorStore:
    return MirrorStore(db_path)


@pytest.fixture
def make_api_client(oauth_manager, cache, fake_api):
    def factory(config: FreeAgentConfig) -> FreeAgentApiClient:
        return FreeAgentApiClient(
            config,
            oauth_manager,
            cache,
            transport=fake_api.transport(),
            retry_config=RetryConfig(attempts=3, backoff_seconds=0),
        )

    return factory


@pytest.fixture
def api_client(make_api_client, freeagent_config) -> FreeAgentApiClient:
    return make_api_client(freeagent_config)


@pytest.fixture
def sync_engine(api_client, mirror, cache, freeagent_config) -> SyncEngine:
    return SyncEngine(api_client, mirror, cache, freeagent_config)


@pytest.fixture
def connect_owner(token_store):
    """Store a fresh token for an owner so API calls are authorized."""

    def connect(owner_id: str = "system", *, expires_in: timedelta = timedelta(hours=1)):
        now = datetime.now(timezone.utc)
        return token_store.save(
            OAuthToken(
                owner_id=owner_id,
                access_token=f"access-for-{owner_id}",
                refresh_token=f"refresh-for-{owner_id}",
                expires_at=now + expires_in,
            )
        )

    return connect
