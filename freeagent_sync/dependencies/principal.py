"""
Resolve the calling principal from request headers.

Authentication happens upstream; this layer only maps the asserted principal
id onto the local principal directory.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException

from freeagent_sync.clients import MirrorStore
from freeagent_sync.dependencies.clients import get_mirror_store
from freeagent_sync.models.principal import DirectoryPrincipal, Principal

PRINCIPAL_HEADER = "X-Principal-Id"


def get_current_principal(
    mirror: Annotated[MirrorStore, Depends(get_mirror_store)],
    principal_id: Annotated[Optional[str], Header(alias=PRINCIPAL_HEADER)] = None,
) -> Principal:
    if not principal_id:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED,
            detail=f"Missing {PRINCIPAL_HEADER} header.",
        )
    principal = mirror.get_principal(principal_id)
    if principal is None:
        # Unknown principals are scoped users without a linked contact.
        return DirectoryPrincipal(principal_id=principal_id)
    return principal


__all__ = ["PRINCIPAL_HEADER", "get_current_principal"]
