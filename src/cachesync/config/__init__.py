"""cachesync configuration.

Please use:
    from cachesync.config import CacheSyncSettings, load_settings
"""

from __future__ import annotations

from cachesync.config.loader import load_settings
from cachesync.config.models import (
    CacheSettings,
    CacheSyncSettings,
    LoggingSettings,
    PersistenceSettings,
    QueueSettings,
    RetrySettings,
    SyncSettings,
)

__all__ = [
    "CacheSettings",
    "CacheSyncSettings",
    "LoggingSettings",
    "PersistenceSettings",
    "QueueSettings",
    "RetrySettings",
    "SyncSettings",
    "load_settings",
]
