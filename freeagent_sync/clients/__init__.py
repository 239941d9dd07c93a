"""Expose constructed client wrappers."""

from .cache import SQLiteCache
from .freeagent_api import FreeAgentApiClient
from .freeagent_auth import FreeAgentOAuthClient, OAuthStateEncoder
from .mirror_store import MirrorStore
from .settings_store import SettingsStore
from .token_store import SQLiteTokenStore

__all__ = [
    "FreeAgentApiClient",
    "FreeAgentOAuthClient",
    "MirrorStore",
    "OAuthStateEncoder",
    "SQLiteCache",
    "SQLiteTokenStore",
    "SettingsStore",
]
