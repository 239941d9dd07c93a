"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from freeagent_sync.clients import (
    FreeAgentApiClient,
    FreeAgentOAuthClient,
    MirrorStore,
    OAuthStateEncoder,
    SettingsStore,
    SQLiteCache,
    SQLiteTokenStore,
)
from freeagent_sync.clients.freeagent_api import build_rate_limiter
from freeagent_sync.core.config import FreeAgentConfig, get_settings, resolve_config
from freeagent_sync.core.exceptions import ConfigurationError
from freeagent_sync.services import (
    InvoiceAccessPolicy,
    InvoiceService,
    OAuthManager,
    OwnerResolver,
    SyncEngine,
    TokenCipherService,
    build_owner_resolver,
)
from freeagent_sync.utils.rate_limit import RateLimiter


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_settings_store() -> SettingsStore:
    """Provide the admin-editable settings table."""
    return SettingsStore(_settings().db_path)


@lru_cache()
def get_freeagent_config() -> FreeAgentConfig:
    """Resolve FreeAgent configuration once per process."""
    return resolve_config(_settings(), get_settings_store())


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    return TokenCipherService.from_secrets(
        settings.security.token_encryption_secret,
        get_freeagent_config().client_secret,
    )


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder keyed on the encryption or client secret."""
    secret = (
        _settings().security.token_encryption_secret
        or get_freeagent_config().client_secret
    )
    if not secret:
        raise ConfigurationError(
            "Set TOKEN_ENCRYPTION_SECRET or FREEAGENT_CLIENT_SECRET to sign OAuth state."
        )
    return OAuthStateEncoder(secret_key=secret)


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    return SQLiteTokenStore(_settings().db_path, get_token_cipher_service())


@lru_cache()
def get_oauth_client() -> FreeAgentOAuthClient:
    """Create a singleton FreeAgent OAuth client."""
    return FreeAgentOAuthClient(get_freeagent_config())


@lru_cache()
def get_oauth_manager() -> OAuthManager:
    return OAuthManager(get_oauth_client(), get_token_store())


@lru_cache()
def get_cache() -> SQLiteCache:
    """Provide the short-lived response and staleness cache."""
    return SQLiteCache(_settings().db_path)


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter(get_freeagent_config())


@lru_cache()
def get_api_client() -> FreeAgentApiClient:
    """Provide the FreeAgent API gateway."""
    return FreeAgentApiClient(
        get_freeagent_config(),
        get_oauth_manager(),
        get_cache(),
        get_rate_limiter(),
    )


@lru_cache()
def get_mirror_store() -> MirrorStore:
    return MirrorStore(_settings().db_path)


@lru_cache()
def get_sync_engine() -> SyncEngine:
    return SyncEngine(
        get_api_client(),
        get_mirror_store(),
        get_cache(),
        get_freeagent_config(),
    )


@lru_cache()
def get_access_policy() -> InvoiceAccessPolicy:
    return InvoiceAccessPolicy()


@lru_cache()
def get_owner_resolver() -> OwnerResolver:
    return build_owner_resolver(get_freeagent_config().connection_mode)


def get_invoice_service() -> InvoiceService:
    """Build the invoice read facade from the shared clients."""
    return InvoiceService(
        policy=get_access_policy(),
        owners=get_owner_resolver(),
        oauth=get_oauth_manager(),
        sync_engine=get_sync_engine(),
        mirror=get_mirror_store(),
        api=get_api_client(),
    )


def reset_factories() -> None:
    """Drop every cached factory result, for example after credentials change."""
    for factory in (
        _settings,
        get_settings_store,
        get_freeagent_config,
        get_token_cipher_service,
        get_oauth_state_encoder,
        get_token_store,
        get_oauth_client,
        get_oauth_manager,
        get_cache,
        get_rate_limiter,
        get_api_client,
        get_mirror_store,
        get_sync_engine,
        get_access_policy,
        get_owner_resolver,
    ):
        factory.cache_clear()


__all__ = [
    "get_access_policy",
    "get_api_client",
    "get_cache",
    "get_freeagent_config",
    "get_invoice_service",
    "get_mirror_store",
    "get_oauth_client",
    "get_oauth_manager",
    "get_oauth_state_encoder",
    "get_owner_resolver",
    "get_rate_limiter",
    "get_settings_store",
    "get_sync_engine",
    "get_token_cipher_service",
    "get_token_store",
    "reset_factories",
]
