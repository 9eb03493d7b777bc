"""Config command handler.

Prints the settings an engine would be built with.
"""

from __future__ import annotations

from pathlib import Path

import toml
import typer
from rich.console import Console
from rich.syntax import Syntax

from cachesync.cli.json_formatter import format_success_output
from cachesync.config import load_settings
from cachesync.shared.constants import CLICommands


def config_command(config_file: Path | None, *, json_output: bool) -> None:
    """Show the resolved settings (file, then environment overrides)."""
    settings = load_settings(config_file)
    data = settings.model_dump(mode="json")

    if json_output:
        typer.echo(format_success_output(CLICommands.CONFIG, data).decode("utf-8"))
        return

    rendered = toml.dumps(settings.model_dump(mode="json", exclude_none=True))
    Console().print(Syntax(rendered, "toml", theme="ansi_dark"))
