"""
cachesync - client-side data synchronization and cache-coherence engine

Keeps locally cached copies of remote resources consistent under concurrent
reads, optimistic writes, TTL and tag invalidation, offline queuing and
pushed invalidation events. Transport-agnostic: callers supply fetch and
commit functions.
"""

__version__ = "0.1.0"

from .config import CacheSyncSettings, load_settings
from .core import (
    CacheEntry,
    EntryState,
    KeySelector,
    MutationStatus,
    NotifyReason,
    TagSelector,
)
from .engine import SyncEngine
from .services import SQLitePersistence
from .shared.errors import (
    CacheSyncError,
    CommitError,
    CommitTimeoutError,
    ConflictError,
    FetchError,
    QueueCapacityError,
)
from .shared.fingerprint import make_fingerprint

__all__ = [
    "CacheEntry",
    "CacheSyncError",
    "CacheSyncSettings",
    "CommitError",
    "CommitTimeoutError",
    "ConflictError",
    "EntryState",
    "FetchError",
    "KeySelector",
    "MutationStatus",
    "NotifyReason",
    "QueueCapacityError",
    "SQLitePersistence",
    "SyncEngine",
    "TagSelector",
    "load_settings",
    "make_fingerprint",
]
