"""
Local mirror entities for FreeAgent contacts, projects and invoices.

Each entity is keyed by ``remote_id``, the FreeAgent resource URL. The
``from_api`` constructors map a raw API payload onto the mirror fields; a
payload missing a required key raises ``KeyError`` or a pydantic
``ValidationError`` and is treated as a malformed record by the sync engine.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SETTLED_STATUSES = ("paid", "cancelled", "written_off")
CLOSED_STATUSES = SETTLED_STATUSES + ("draft",)

_STATUS_COLORS = {
    "paid": "success",
    "sent": "warning",
    "scheduled": "warning",
    "open": "warning",
    "cancelled": "danger",
    "written_off": "danger",
    "draft": "gray",
}

_CURRENCY_SYMBOLS = {"GBP": "£", "EUR": "€", "USD": "$"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MirrorRecord(BaseModel):
    id: Optional[int] = None
    remote_id: str
    raw_payload: Dict[str, Any] = Field(default_factory=dict, repr=False)
    synced_at: datetime = Field(default_factory=_utcnow)


class Contact(MirrorRecord):
    organisation_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    type: Literal["organisation", "person"] = "person"
    is_active: bool = True

    @property
    def display_name(self) -> str:
        if self.organisation_name:
            return self.organisation_name
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or "Unnamed Contact"

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Contact":
        return cls(
            remote_id=payload["url"],
            organisation_name=payload.get("organisation_name"),
            first_name=payload.get("first_name"),
            last_name=payload.get("last_name"),
            email=payload.get("email"),
            phone=payload.get("phone_number"),
            type=(
                "organisation" if payload.get("contact_name_on_invoices") else "person"
            ),
            is_active=payload.get("status") == "active",
            raw_payload=payload,
        )


class Project(MirrorRecord):
    contact_ref: Optional[str] = None
    name: str = "Unnamed Project"
    status: Optional[str] = None
    description: Optional[str] = None
    starts_on: Optional[date] = None
    ends_on: Optional[date] = None
    budget: Optional[Decimal] = None
    budget_units: Optional[str] = None
    is_ir35: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == "Active"

    @classmethod
    def from_api(
        cls, payload: Dict[str, Any], *, contact_ref: Optional[str]
    ) -> "Project":
        return cls(
            remote_id=payload["url"],
            contact_ref=contact_ref,
            name=payload.get("name") or "Unnamed Project",
            status=payload.get("status"),
            description=payload.get("description"),
            starts_on=payload.get("starts_on"),
            ends_on=payload.get("ends_on"),
            budget=payload.get("budget"),
            budget_units=payload.get("budget_units"),
            is_ir35=bool(payload.get("is_ir35", False)),
            raw_payload=payload,
        )


class Invoice(MirrorRecord):
    contact_ref: Optional[str] = None
    project_ref: Optional[str] = None
    reference: Optional[str] = None
    status: str
    dated_on: date
    due_on: Optional[date] = None
    net_value: Decimal
    tax_value: Decimal = Decimal("0")
    total_value: Decimal
    currency: str
    pdf_url: Optional[str] = None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        if self.due_on is None:
            return False
        today = today or _utcnow().date()
        return self.due_on < today and self.status.lower() not in CLOSED_STATUSES

    @property
    def status_color(self) -> str:
        if self.is_overdue():
            return "danger"
        return _STATUS_COLORS.get(self.status.lower(), "gray")

    @property
    def status_label(self) -> str:
        if self.is_overdue():
            return "Overdue"
        label = self.status.replace("_", " ")
        return label[:1].upper() + label[1:]

    @property
    def formatted_total(self) -> str:
        return self._format_money(self.total_value)

    @property
    def formatted_net(self) -> str:
        return self._format_money(self.net_value)

    @property
    def formatted_tax(self) -> str:
        return self._format_money(self.tax_value)

    def _format_money(self, amount: Decimal) -> str:
        symbol = _CURRENCY_SYMBOLS.get(self.currency, self.currency)
        return f"{symbol}{amount:,.2f}"

    @classmethod
    def from_api(
        cls,
        payload: Dict[str, Any],
        *,
        contact_ref: Optional[str],
        project_ref: Optional[str],
    ) -> "Invoice":
        return cls(
            remote_id=payload["url"],
            contact_ref=contact_ref,
            project_ref=project_ref,
            reference=payload.get("reference"),
            status=payload["status"],
            dated_on=payload["dated_on"],
            due_on=payload.get("due_on"),
            net_value=payload["net_value"],
            tax_value=payload.get("sales_tax_value") or "0",
            total_value=payload["total_value"],
            currency=payload["currency"],
            pdf_url=f"{payload['url']}/pdf",
            raw_payload=payload,
        )


class InvoiceFilters(BaseModel):
    """Optional narrowing applied on top of the caller's invoice scope."""

    statuses: List[str] = Field(default_factory=list)
    paid: bool = False
    unpaid: bool = False
    overdue: bool = False
    from_date: Optional[date] = None
    to_date: Optional[date] = None


__all__ = [
    "CLOSED_STATUSES",
    "SETTLED_STATUSES",
    "Contact",
    "Invoice",
    "InvoiceFilters",
    "MirrorRecord",
    "Project",
]

