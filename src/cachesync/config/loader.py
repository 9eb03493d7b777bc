"""Settings loader.

Builds a fresh ``CacheSyncSettings`` from a TOML file, the default file
locations or the environment. There is no process-wide settings instance:
every engine receives the settings it was constructed with.
"""

from __future__ import annotations

import logging
from pathlib import Path

import toml
from pydantic import ValidationError

from cachesync.config.models.settings import CacheSyncSettings
from cachesync.shared.errors import ApplicationError, ErrorCode, ErrorContext

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = (
    Path("cachesync.toml"),
    Path("config/cachesync.toml"),
)


def load_settings(config_path: str | Path | None = None) -> CacheSyncSettings:
    """Load settings from a TOML configuration file or the environment.

    Args:
        config_path: Optional path to a TOML file. If None, the default
            locations are tried before falling back to environment variables.

    Returns:
        A new settings instance

    Raises:
        ApplicationError: If the file is missing, unparsable or invalid
    """
    if config_path is not None:
        return _load_file(Path(config_path))

    for candidate in DEFAULT_CONFIG_PATHS:
        if candidate.exists():
            logger.debug("Using configuration file %s", candidate)
            return _load_file(candidate)

    try:
        return CacheSyncSettings()
    except ValidationError as e:
        raise _invalid_config(e, None) from e


def _load_file(path: Path) -> CacheSyncSettings:
    try:
        return CacheSyncSettings.from_toml_file(path)
    except FileNotFoundError as e:
        raise ApplicationError(
            code=ErrorCode.CONFIG_MISSING,
            message=f"Configuration file not found: {path}",
            context=ErrorContext(
                operation="load_settings",
                additional_data={"config_path": str(path)},
            ),
            original_error=e,
        ) from e
    except toml.TomlDecodeError as e:
        raise ApplicationError(
            code=ErrorCode.CONFIG_ERROR,
            message=f"Failed to parse configuration file {path}: {e}",
            context=ErrorContext(
                operation="load_settings",
                additional_data={"config_path": str(path)},
            ),
            original_error=e,
        ) from e
    except ValidationError as e:
        raise _invalid_config(e, path) from e


def _invalid_config(error: ValidationError, path: Path | None) -> ApplicationError:
    return ApplicationError(
        code=ErrorCode.CONFIG_ERROR,
        message=f"Invalid configuration: {error.error_count()} validation error(s)",
        context=ErrorContext(
            operation="load_settings",
            additional_data={
                "config_path": str(path) if path else None,
                "errors": "; ".join(
                    f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in error.errors()
                ),
            },
        ),
        original_error=error,
    )


__all__ = ["DEFAULT_CONFIG_PATHS", "load_settings"]
