"""Service layer exports."""

from .access import InvoiceAccessPolicy
from .invoices import InvoiceService
from .oauth_manager import OAuthManager
from .owners import (
    SYSTEM_OWNER_ID,
    OwnerResolver,
    PerPrincipalOwnerResolver,
    SystemOwnerResolver,
    build_owner_resolver,
)
from .sync_engine import SyncEngine
from .token_cipher import TokenCipherService

__all__ = [
    "InvoiceAccessPolicy",
    "InvoiceService",
    "OAuthManager",
    "OwnerResolver",
    "PerPrincipalOwnerResolver",
    "SYSTEM_OWNER_ID",
    "SyncEngine",
    "SystemOwnerResolver",
    "TokenCipherService",
    "build_owner_resolver",
]
