"""
Read facade over the mirror: scope, sync-on-access, then read.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from freeagent_sync.core.exceptions import AccessDeniedError, ApiError, OAuthError
from freeagent_sync.models.mirror import Invoice, InvoiceFilters
from freeagent_sync.models.principal import Principal
from freeagent_sync.schemas.sync import SyncStats
from freeagent_sync.services.access import InvoiceAccessPolicy
from freeagent_sync.services.owners import OwnerResolver

if TYPE_CHECKING:  # pragma: no cover
    from freeagent_sync.clients.freeagent_api import FreeAgentApiClient
    from freeagent_sync.clients.mirror_store import MirrorStore
    from freeagent_sync.services.oauth_manager import OAuthManager
    from freeagent_sync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class InvoiceService:
    """Serve invoice reads for a principal, syncing stale data first."""

    def __init__(
        self,
        *,
        policy: InvoiceAccessPolicy,
        owners: OwnerResolver,
        oauth: "OAuthManager",
        sync_engine: "SyncEngine",
        mirror: "MirrorStore",
        api: "FreeAgentApiClient",
    ) -> None:
        self._policy = policy
        self._owners = owners
        self._oauth = oauth
        self._sync = sync_engine
        self._mirror = mirror
        self._api = api

    def owner_for(self, principal: Principal) -> str:
        return self._owners.owner_for(principal)

    def sync_filters_for(self, principal: Principal) -> Optional[Dict[str, Any]]:
        """Remote filters matching what ``principal`` may see, or ``None`` for nothing."""
        scope = self._policy.visible_invoices_filter(principal)
        if scope.kind == "all":
            return {}
        if scope.kind == "contact":
            return {"contact": scope.contact_ref}
        return None

    async def list_invoices(
        self, principal: Principal, filters: Optional[InvoiceFilters] = None
    ) -> List[Invoice]:
        if not self._policy.can_view_any(principal):
            return []

        owner_id = self.owner_for(principal)
        remote_filters = self.sync_filters_for(principal)
        if (
            remote_filters is not None
            and self._oauth.has_connection(owner_id)
            and self._sync.is_stale(owner_id, "invoices", remote_filters)
        ):
            try:
                await self._sync.sync_invoices(owner_id, remote_filters)
            except (ApiError, OAuthError) as exc:
                logger.warning(
                    "On-access FreeAgent sync failed; serving mirrored invoices",
                    extra={"owner_id": owner_id, "error": str(exc)},
                )

        return self._mirror.list_invoices(
            self._policy.visible_invoices_filter(principal), filters
        )

    async def sync_now(self, principal: Principal) -> SyncStats:
        filters = self.sync_filters_for(principal)
        if filters is None:
            raise AccessDeniedError("Principal has no invoices to sync.")
        return await self._sync.sync_invoices(self.owner_for(principal), filters)

    async def download_pdf(
        self, principal: Principal, invoice_id: int
    ) -> Tuple[Invoice, bytes]:
        invoice = self._mirror.get_invoice_by_id(invoice_id)
        if invoice is None or not self._policy.can_download_pdf(principal, invoice):
            raise AccessDeniedError("You are not authorized to download this invoice.")
        content = await self._api.get_invoice_pdf(
            self.owner_for(principal), invoice.remote_id
        )
        return invoice, content


__all__ = ["InvoiceService"]
