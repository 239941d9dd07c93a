"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_access_policy,
    get_api_client,
    get_cache,
    get_freeagent_config,
    get_invoice_service,
    get_mirror_store,
    get_oauth_client,
    get_oauth_manager,
    get_oauth_state_encoder,
    get_owner_resolver,
    get_rate_limiter,
    get_settings_store,
    get_sync_engine,
    get_token_cipher_service,
    get_token_store,
    reset_factories,
)
from .config import get_app_settings
from .principal import PRINCIPAL_HEADER, get_current_principal

__all__ = [
    "PRINCIPAL_HEADER",
    "get_access_policy",
    "get_api_client",
    "get_app_settings",
    "get_cache",
    "get_current_principal",
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
