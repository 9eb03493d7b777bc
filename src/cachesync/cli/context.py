"""CLI context shared by the callback and the commands."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import typer


class LogLevel(str, Enum):
    """Log level choices for ``--log-level``."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class CliContext:
    """Options parsed by the main callback."""

    log_level: LogLevel = LogLevel.WARNING
    json_output: bool = False


def get_cli_context(ctx: typer.Context) -> CliContext:
    """Return the context stored by the main callback (defaults if absent)."""
    if isinstance(ctx.obj, CliContext):
        return ctx.obj
    return CliContext()
