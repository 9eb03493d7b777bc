"""Inspect command handler.

Lists the entries stored in a SQLite snapshot.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from cachesync.cli.json_formatter import format_success_output
from cachesync.core.models import CacheEntry, utcnow
from cachesync.services.sqlite_persistence import SQLitePersistence
from cachesync.shared.constants import CLICommands

logger = logging.getLogger(__name__)


def inspect_command(db_path: Path, tag: str | None, *, json_output: bool) -> None:
    """List the entries of the snapshot at ``db_path``."""
    with SQLitePersistence(db_path) as persistence:
        entries = persistence.list_entries(tag)
    logger.debug("Loaded %d entries from %s", len(entries), db_path)

    now = utcnow()
    rows = [_entry_row(entry, now) for entry in entries]

    if json_output:
        payload = format_success_output(
            CLICommands.INSPECT,
            {"db_path": str(db_path), "tag": tag, "count": len(rows), "entries": rows},
        )
        typer.echo(payload.decode("utf-8"))
        return

    console = Console()
    if not rows:
        console.print("[yellow]No entries found[/yellow]")
        return

    table = Table(title=f"Entries in {db_path}", show_header=True, header_style="bold magenta")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("State")
    table.add_column("Version", justify="right")
    table.add_column("Tags")
    table.add_column("Expires")

    for row in rows:
        state = "expired" if row["expired"] else row["state"]
        table.add_row(
            row["fingerprint"],
            state,
            str(row["version"]),
            ", ".join(row["tags"]),
            row["expires_at"] or "never",
        )
    console.print(table)


def _entry_row(entry: CacheEntry, now: Any) -> dict[str, Any]:
    return {
        "fingerprint": entry.fingerprint,
        "state": entry.state.value,
        "version": entry.version,
        "tags": sorted(entry.tags),
        "created_at": entry.created_at.isoformat(),
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
        "expired": entry.is_expired(now),
    }
