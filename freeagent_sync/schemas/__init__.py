"""Public schema exports."""

from .auth import AuthorizationStart, CallbackResult
from .invoice import InvoiceOut
from .sync import CacheClearResponse, ConnectionStatus, SyncResponse, SyncStats

__all__ = [
    "AuthorizationStart",
    "CacheClearResponse",
    "CallbackResult",
    "ConnectionStatus",
    "InvoiceOut",
    "SyncResponse",
    "SyncStats",
]
