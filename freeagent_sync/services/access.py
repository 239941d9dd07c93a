"""Two-tier invoice authorization: administrators see everything, scoped users their contact."""

from __future__ import annotations

from typing import Optional

from freeagent_sync.models.mirror import Invoice
from freeagent_sync.models.principal import InvoiceScope, Principal


class InvoiceAccessPolicy:
    """Decide which mirrored invoices a principal may read.

    Mirrored invoices are read-only; create, update and delete are always
    refused.
    """

    def visible_invoices_filter(self, principal: Principal) -> InvoiceScope:
        if principal.is_administrator():
            return InvoiceScope.all()
        contact_id = principal.linked_contact_id()
        if contact_id:
            return InvoiceScope.for_contact(contact_id)
        return InvoiceScope.nothing()

    def can_view_any(self, principal: Principal) -> bool:
        return principal.is_administrator() or bool(principal.linked_contact_id())

    def can_view_invoice(self, principal: Principal, invoice: Invoice) -> bool:
        return self.visible_invoices_filter(principal).allows(invoice.contact_ref)

    def can_download_pdf(self, principal: Principal, invoice: Invoice) -> bool:
        return self.can_view_invoice(principal, invoice)

    def can_manage_connection(self, principal: Principal) -> bool:
        return principal.is_administrator()

    def can_create(self, principal: Principal) -> bool:
        return False

    def can_update(self, principal: Principal, invoice: Optional[Invoice] = None) -> bool:
        return False

    def can_delete(self, principal: Principal, invoice: Optional[Invoice] = None) -> bool:
        return False


__all__ = ["InvoiceAccessPolicy"]
