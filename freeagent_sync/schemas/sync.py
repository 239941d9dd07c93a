"""Schemas describing sync runs and connection state."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field


class SyncStats(BaseModel):
    """Outcome of reconciling one resource kind into the local mirror."""

    total: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0


class SyncResponse(BaseModel):
    owner_id: str
    invoices: SyncStats
    synced_at: datetime


class CacheClearResponse(BaseModel):
    owners: list[str] = Field(default_factory=list)
    entries_removed: int = 0


class ConnectionStatus(BaseModel):
    owner_id: str
    connected: bool
    environment: str
    expires_at: Optional[datetime] = None
    stale: Dict[str, bool] = Field(default_factory=dict)
    mirrored: Dict[str, int] = Field(default_factory=dict)


__all__ = ["CacheClearResponse", "ConnectionStatus", "SyncResponse", "SyncStats"]
