"""
Reconcile FreeAgent resources into the local mirror.

Contacts are synced before anything that references them, projects before
invoices. Each run returns :class:`SyncStats`; a single malformed record is
logged and counted rather than aborting the batch, while API and OAuth
failures are logged and re-raised.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from freeagent_sync.core.exceptions import ApiError, OAuthError
from freeagent_sync.models.mirror import Invoice
from freeagent_sync.schemas.sync import SyncStats

if TYPE_CHECKING:  # pragma: no cover
    from freeagent_sync.clients.cache import SQLiteCache
    from freeagent_sync.clients.freeagent_api import FreeAgentApiClient
    from freeagent_sync.clients.mirror_store import MirrorStore
    from freeagent_sync.core.config import FreeAgentConfig

logger = logging.getLogger(__name__)

MARKER_PREFIX = "marker:"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """Pulls remote records through the API client and upserts them locally."""

    def __init__(
        self,
        api: "FreeAgentApiClient",
        mirror: "MirrorStore",
        cache: "SQLiteCache",
        config: "FreeAgentConfig",
    ) -> None:
        self._api = api
        self._mirror = mirror
        self._cache = cache
        self._ttls = {
            "contacts": config.contacts_ttl,
            "projects": config.projects_ttl,
            "invoices": config.invoices_ttl,
        }

    # Staleness markers

    def _marker_key(
        self, owner_id: str, kind: str, filters: Optional[Dict[str, Any]] = None
    ) -> str:
        """One marker per owner, kind and remote filter set."""
        digest = hashlib.sha256(
            json.dumps(filters or {}, sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()
        return f"{MARKER_PREFIX}{owner_id}:{kind}:{digest}"

    def is_stale(
        self, owner_id: str, kind: str, filters: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Whether ``kind`` needs syncing for ``owner_id`` under ``filters``.

        A fresh unfiltered sync covers every narrower scope; a scoped sync only
        covers itself.
        """
        scopes = [filters, None] if filters else [None]
        for scope in scopes:
            synced_at = self.last_synced(owner_id, kind, scope)
            if synced_at and synced_at + timedelta(seconds=self._ttls[kind]) > _utcnow():
                return False
        return True

    def last_synced(
        self, owner_id: str, kind: str, filters: Optional[Dict[str, Any]] = None
    ) -> Optional[datetime]:
        stamp = self._cache.get(self._marker_key(owner_id, kind, filters))
        return datetime.fromisoformat(stamp) if stamp else None

    def mark_synced(
        self,
        owner_id: str,
        kind: str,
        at: Optional[datetime] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> None:
        at = at or _utcnow()
        self._cache.put(
            self._marker_key(owner_id, kind, filters),
            at.isoformat(),
            ttl_seconds=self._ttls[kind],
            owner_id=owner_id,
        )

    # Sync runs

    async def sync_contacts(self, owner_id: str) -> SyncStats:
        started = time.perf_counter()
        try:
            records = await self._api.get_contacts(owner_id, use_cache=False)
        except (ApiError, OAuthError) as exc:
            self._log_failure("contacts", owner_id, exc)
            raise
        stats = self._reconcile("contact", records, self._mirror.upsert_contact)
        self.mark_synced(owner_id, "contacts")
        self._log_stats("contacts", owner_id, stats, started)
        return stats

    async def sync_projects(
        self, owner_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> SyncStats:
        started = time.perf_counter()
        try:
            if self.is_stale(owner_id, "contacts"):
                await self.sync_contacts(owner_id)
            records = await self._api.get_projects(owner_id, filters, use_cache=False)
        except (ApiError, OAuthError) as exc:
            self._log_failure("projects", owner_id, exc)
            raise
        stats = self._reconcile("project", records, self._mirror.upsert_project)
        self._log_stats("projects", owner_id, stats, started)
        return stats

    async def sync_invoices(
        self, owner_id: str, filters: Optional[Dict[str, Any]] = None
    ) -> SyncStats:
        """Sync contacts when stale, then projects, then invoices."""
        started = time.perf_counter()
        try:
            if self.is_stale(owner_id, "contacts"):
                await self.sync_contacts(owner_id)
            # Projects are refreshed on every invoice sync.
            await self.sync_projects(owner_id, filters)
            records = await self._api.get_invoices(owner_id, filters, use_cache=False)
        except (ApiError, OAuthError) as exc:
            self._log_failure("invoices", owner_id, exc)
            raise
        stats = self._reconcile("invoice", records, self._mirror.upsert_invoice)
        self.mark_synced(owner_id, "invoices", filters=filters)
        self._log_stats("invoices", owner_id, stats, started)
        return stats

    async def sync_one_invoice(self, owner_id: str, remote_id: str) -> Invoice:
        """Fetch one invoice and its contact, then upsert both."""
        payload = await self._api.get_invoice(owner_id, remote_id, use_cache=False)
        if payload.get("contact"):
            contact = await self._api.get_contact(
                owner_id, payload["contact"], use_cache=False
            )
            self._mirror.upsert_contact(contact)
        invoice, _ = self._mirror.upsert_invoice(payload)
        return invoice

    def _reconcile(
        self,
        label: str,
        records: List[Dict[str, Any]],
        upsert: Callable[[Dict[str, Any]], Tuple[Any, bool]],
    ) -> SyncStats:
        stats = SyncStats(total=len(records))
        for record in records:
            try:
                if not isinstance(record, dict):
                    raise TypeError(f"expected an object, got {type(record).__name__}")
                _, created = upsert(record)
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                stats.errors += 1
                if isinstance(record, dict):
                    remote_id = record.get("url", "unknown")
                else:
                    remote_id = repr(record)[:100]
                logger.error(
                    "Failed to sync FreeAgent %s",
                    label,
                    extra={"remote_id": remote_id, "error": str(exc)},
                )
                continue
            if created:
                stats.created += 1
            else:
                stats.updated += 1
        return stats

    @staticmethod
    def _log_stats(kind: str, owner_id: str, stats: SyncStats, started: float) -> None:
        logger.info(
            "FreeAgent %s synced: %s",
            kind,
            stats.model_dump(),
            extra={
                "owner_id": owner_id,
                "stats": stats.model_dump(),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )

    @staticmethod
    def _log_failure(kind: str, owner_id: str, exc: Exception) -> None:
        logger.error(
            "FreeAgent %s sync failed",
            kind,
            extra={"owner_id": owner_id, "error": str(exc)},
        )

    # Cache management

    def clear_cache(self, owner_id: str) -> int:
        """Forget the owner's staleness markers and cached API responses."""
        removed = self._cache.forget_owner(owner_id, key_prefix=MARKER_PREFIX)
        removed += self._api.clear_owner_cache(owner_id)
        logger.info(
            "FreeAgent cache cleared for owner",
            extra={"owner_id": owner_id, "entries": removed},
        )
        return removed

    def clear_all_caches(self) -> Dict[str, int]:
        return {owner: self.clear_cache(owner) for owner in self._cache.owners()}


__all__ = ["MARKER_PREFIX", "SyncEngine"]
