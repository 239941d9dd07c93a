"""
Application configuration models and helpers.

Settings are read from the environment (and an optional ``.env`` file) by
pydantic-settings. OAuth client credentials may additionally be overridden from
the settings store; :func:`resolve_config` performs that two-stage resolution
once and hands plain values to the OAuth and API clients.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

if TYPE_CHECKING:  # pragma: no cover
    from freeagent_sync.clients.settings_store import SettingsStore


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


_API_URLS = {
    "production": "https://api.freeagent.com/v2",
    "sandbox": "https://api.sandbox.freeagent.com/v2",
}


class FreeAgentSettings(BaseSettings):
    """Connection details for the FreeAgent API."""

    environment: Literal["production", "sandbox"] = Field(
        "production", validation_alias="FREEAGENT_ENV"
    )
    client_id: Optional[str] = Field(None, validation_alias="FREEAGENT_CLIENT_ID")
    client_secret: Optional[str] = Field(
        None, validation_alias="FREEAGENT_CLIENT_SECRET"
    )
    redirect_uri: Optional[str] = Field(
        None,
        validation_alias="FREEAGENT_REDIRECT_URI",
        description="Defaults to APP_URL + /freeagent/callback when omitted.",
    )
    connection_mode: Literal["system", "per_user"] = Field(
        "system",
        validation_alias="FREEAGENT_CONNECTION_MODE",
        description="One shared connection, or one connection per principal.",
    )

    @field_validator("environment", "connection_mode", mode="before")
    @classmethod
    def _normalise(cls, value: str) -> str:
        return value.strip().lower() if isinstance(value, str) else value


class CacheSettings(BaseSettings):
    """Cache lifetimes in seconds, per resource kind."""

    invoices_ttl: int = Field(1800, validation_alias="FREEAGENT_CACHE_INVOICES")
    contacts_ttl: int = Field(3600, validation_alias="FREEAGENT_CACHE_CONTACTS")
    projects_ttl: int = Field(3600, validation_alias="FREEAGENT_CACHE_PROJECTS")


class RateLimitSettings(BaseSettings):
    """FreeAgent API rate limits per OAuth application."""

    per_minute: int = Field(120, validation_alias="FREEAGENT_RATE_LIMIT_PER_MINUTE")
    per_hour: int = Field(3600, validation_alias="FREEAGENT_RATE_LIMIT_PER_HOUR")


class PaginationSettings(BaseSettings):
    page_size: int = Field(100, validation_alias="FREEAGENT_PAGE_SIZE")
    max_pages: int = Field(1000, validation_alias="FREEAGENT_MAX_PAGES")

    @field_validator("page_size")
    @classmethod
    def _cap_page_size(cls, value: int) -> int:
        """FreeAgent rejects more than 100 records per page."""
        if value < 1 or value > 100:
            raise ValueError("page_size must be between 1 and 100")
        return value

    @field_validator("max_pages")
    @classmethod
    def _require_a_page(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_pages must be at least 1")
        return value


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application and CLI."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    app_url: str = Field("http://localhost:8000", validation_alias="APP_URL")
    frontend_base_url: Optional[str] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back after OAuth.",
    )
    db_path: str = Field("var/freeagent.db", validation_alias="FREEAGENT_DB_PATH")
    freeagent: FreeAgentSettings = Field(default_factory=FreeAgentSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


@dataclass(frozen=True)
class FreeAgentConfig:
    """Fully resolved values consumed by the OAuth and API clients."""

    environment: str
    api_url: str
    authorize_url: str
    token_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: str
    connection_mode: str
    invoices_ttl: int
    contacts_ttl: int
    projects_ttl: int
    rate_limit_per_minute: int
    rate_limit_per_hour: int
    page_size: int
    max_pages: int


def resolve_config(
    settings: AppSettings, store: Optional["SettingsStore"] = None
) -> FreeAgentConfig:
    """
    Resolve the effective FreeAgent configuration.

    Client credentials come from the settings store when present there, else
    from the environment. Everything else comes from ``settings``.
    """
    freeagent = settings.freeagent
    client_id = freeagent.client_id
    client_secret = freeagent.client_secret
    if store is not None:
        client_id = store.get("client_id") or client_id
        client_secret = store.get("client_secret") or client_secret

    api_url = _API_URLS[freeagent.environment]
    redirect_uri = freeagent.redirect_uri or (
        f"{settings.app_url.rstrip('/')}/freeagent/callback"
    )

    return FreeAgentConfig(
        environment=freeagent.environment,
        api_url=api_url,
        authorize_url=f"{api_url}/approve_app",
        token_url=f"{api_url}/token_endpoint",
        client_id=client_id or None,
        client_secret=client_secret or None,
        redirect_uri=redirect_uri,
        connection_mode=freeagent.connection_mode,
        invoices_ttl=settings.cache.invoices_ttl,
        contacts_ttl=settings.cache.contacts_ttl,
        projects_ttl=settings.cache.projects_ttl,
        rate_limit_per_minute=settings.rate_limit.per_minute,
        rate_limit_per_hour=settings.rate_limit.per_hour,
        page_size=settings.pagination.page_size,
        max_pages=settings.pagination.max_pages,
    )


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()


__all__ = [
    "AppSettings",
    "CacheSettings",
    "FreeAgentConfig",
    "FreeAgentSettings",
    "PaginationSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "get_settings",
    "resolve_config",
]
