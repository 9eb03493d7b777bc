"""Configuration domain models.

This module provides centralized access to all configuration models.
"""

from __future__ import annotations

from .app_settings import LoggingSettings
from .cache_settings import CacheSettings, PersistenceSettings
from .settings import CacheSyncSettings
from .sync_settings import QueueSettings, RetrySettings, SyncSettings

__all__ = [
    "CacheSettings",
    "CacheSyncSettings",
    "LoggingSettings",
    "PersistenceSettings",
    "QueueSettings",
    "RetrySettings",
    "SyncSettings",
]
