"""Map principals onto the owner key their FreeAgent connection is stored under."""

from __future__ import annotations

from typing import Protocol

from freeagent_sync.core.exceptions import ConfigurationError
from freeagent_sync.models.principal import Principal

SYSTEM_OWNER_ID = "system"


class OwnerResolver(Protocol):
    def owner_for(self, principal: Principal) -> str: ...


class SystemOwnerResolver:
    """Every principal shares the single system-wide connection."""

    def owner_for(self, principal: Principal) -> str:
        return SYSTEM_OWNER_ID


class PerPrincipalOwnerResolver:
    """Each principal holds its own connection."""

    def owner_for(self, principal: Principal) -> str:
        return f"user:{principal.principal_id}"


def build_owner_resolver(mode: str) -> OwnerResolver:
    if mode == "system":
        return SystemOwnerResolver()
    if mode == "per_user":
        return PerPrincipalOwnerResolver()
    raise ConfigurationError(f"Unknown FreeAgent connection mode: {mode}")


__all__ = [
    "OwnerResolver",
    "PerPrincipalOwnerResolver",
    "SYSTEM_OWNER_ID",
    "SystemOwnerResolver",
    "build_owner_resolver",
]
