"""Cache and persistence configuration models.

This module contains the configuration models for the entry store's
default TTL and the optional SQLite snapshot.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from cachesync.shared.constants import CacheDefaults, PersistenceDefaults


class CacheSettings(BaseModel):
    """Entry store configuration."""

    default_ttl: float | None = Field(
        default=CacheDefaults.DEFAULT_TTL,
        ge=0,
        description="TTL in seconds applied to reads that pass none (None: no expiry)",
    )
    stale_while_revalidate: bool = Field(
        default=False,
        description="Serve stale values while refreshing them in the background",
    )
    use_last_known_good: bool = Field(
        default=True,
        description="Serve the previous value after a failed fetch",
    )
    fetch_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Per-attempt fetcher timeout in seconds (None: unbounded)",
    )


class PersistenceSettings(BaseModel):
    """SQLite snapshot configuration."""

    enabled: bool = Field(default=False, description="Write entries through to SQLite")
    db_path: str = Field(
        default=PersistenceDefaults.DB_FILENAME,
        min_length=1,
        description="Path to the SQLite snapshot file",
    )
    restore_on_start: bool = Field(
        default=True,
        description="Load the snapshot into the entry store on startup",
    )


__all__ = [
    "CacheSettings",
    "PersistenceSettings",
]
