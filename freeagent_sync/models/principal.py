"""
Principal capability interface used for invoice scoping and owner resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Protocol, runtime_checkable


@runtime_checkable
class Principal(Protocol):
    """Anything that can ask for invoices: an administrator or a scoped user."""

    @property
    def principal_id(self) -> str: ...

    def linked_contact_id(self) -> Optional[str]: ...

    def is_administrator(self) -> bool: ...


@dataclass(frozen=True)
class DirectoryPrincipal:
    """Principal loaded from the local principal directory."""

    principal_id: str
    is_admin: bool = False
    contact_remote_id: Optional[str] = None

    def linked_contact_id(self) -> Optional[str]:
        return self.contact_remote_id or None

    def is_administrator(self) -> bool:
        return self.is_admin


@dataclass(frozen=True)
class InvoiceScope:
    """Which mirrored invoices a principal may read."""

    kind: Literal["all", "contact", "none"]
    contact_ref: Optional[str] = None

    @classmethod
    def all(cls) -> "InvoiceScope":
        return cls("all")

    @classmethod
    def for_contact(cls, contact_ref: str) -> "InvoiceScope":
        return cls("contact", contact_ref)

    @classmethod
    def nothing(cls) -> "InvoiceScope":
        return cls("none")

    def allows(self, contact_ref: Optional[str]) -> bool:
        if self.kind == "all":
            return True
        if self.kind == "contact":
            return contact_ref is not None and contact_ref == self.contact_ref
        return False


__all__ = ["DirectoryPrincipal", "InvoiceScope", "Principal"]
