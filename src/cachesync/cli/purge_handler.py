"""Purge command handler."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from cachesync.cli.json_formatter import format_success_output
from cachesync.services.sqlite_persistence import SQLitePersistence
from cachesync.shared.constants import CLICommands


def purge_command(db_path: Path, tag: str | None, *, expired: bool, json_output: bool) -> None:
    """Delete snapshot entries, optionally filtered by tag and expiry."""
    with SQLitePersistence(db_path) as persistence:
        purged = persistence.purge(tag, expired_only=expired)
        remaining = persistence.count()

    if json_output:
        payload = format_success_output(
            CLICommands.PURGE,
            {"db_path": str(db_path), "purged": purged, "remaining": remaining},
        )
        typer.echo(payload.decode("utf-8"))
        return

    Console().print(f"[green]Purged {purged} entries[/green] ({remaining} remaining)")
