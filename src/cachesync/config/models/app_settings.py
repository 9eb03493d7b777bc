"""Logging configuration model."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator


class LoggingSettings(BaseModel):
    """Logging configuration.

    This class manages logging behavior including level, file output and
    console rendering.
    """

    level: str = Field(default="INFO", description="Logging level")
    file: str | None = Field(default=None, description="JSON log file path (None: no file)")
    console_output: bool = Field(default=True, description="Enable console logging")
    rich_console: bool = Field(
        default=True,
        description="Render console logs with Rich instead of JSON lines",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            msg = f"Unknown logging level: {v}"
            raise ValueError(msg)
        return level


__all__ = ["LoggingSettings"]
