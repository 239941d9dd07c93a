"""Outbound invoice representation for the HTTP boundary."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from freeagent_sync.models.mirror import Invoice


class InvoiceOut(BaseModel):
    id: int
    remote_id: str
    reference: Optional[str] = None
    contact_ref: Optional[str] = None
    project_ref: Optional[str] = None
    status: str
    status_label: str
    status_color: str
    is_overdue: bool
    dated_on: date
    due_on: Optional[date] = None
    currency: str
    net_value: Decimal
    tax_value: Decimal
    total_value: Decimal
    formatted_total: str
    synced_at: datetime

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceOut":
        return cls(
            id=invoice.id,
            remote_id=invoice.remote_id,
            reference=invoice.reference,
            contact_ref=invoice.contact_ref,
            project_ref=invoice.project_ref,
            status=invoice.status,
            status_label=invoice.status_label,
            status_color=invoice.status_color,
            is_overdue=invoice.is_overdue(),
            dated_on=invoice.dated_on,
            due_on=invoice.due_on,
            currency=invoice.currency,
            net_value=invoice.net_value,
            tax_value=invoice.tax_value,
            total_value=invoice.total_value,
            formatted_total=invoice.formatted_total,
            synced_at=invoice.synced_at,
        )


__all__ = ["InvoiceOut"]
