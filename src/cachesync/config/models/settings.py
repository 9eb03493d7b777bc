"""cachesync Settings Configuration Model.

Main settings class that consolidates all configuration domains.
"""

from __future__ import annotations

import logging
from pathlib import Path

import toml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cachesync.config.models.app_settings import LoggingSettings
from cachesync.config.models.cache_settings import CacheSettings, PersistenceSettings
from cachesync.config.models.sync_settings import SyncSettings

logger = logging.getLogger(__name__)


class CacheSyncSettings(BaseSettings):
    """Settings facade providing unified configuration access.

    Values missing from the TOML file are read from the environment, e.g.
    ``CACHESYNC_SYNC__QUEUE__MAX_LENGTH=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="CACHESYNC_",
        env_nested_delimiter="__",
        env_ignore_empty=True,
        extra="ignore",
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_toml_file(cls, file_path: str | Path) -> CacheSyncSettings:
        """Load settings from a TOML file; the environment fills missing sections."""

        file_path = Path(file_path)
        if not file_path.exists():
            msg = f"Configuration file not found: {file_path}"
            raise FileNotFoundError(msg)

        raw_config = toml.load(file_path)
        return cls(**raw_config)

    def to_toml_file(self, file_path: str | Path) -> None:
        """Save settings to TOML file."""

        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = self.model_dump(mode="json", exclude_none=True)

        with open(file_path, "w", encoding="utf-8") as f:
            toml.dump(config_dict, f)
        logger.debug("Saved settings to %s", file_path)
