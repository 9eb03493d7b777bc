"""
cachesync Typer CLI Application

Offline maintenance of the SQLite snapshots written by ``SQLitePersistence``
and inspection of the resolved engine settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from cachesync.cli.config_handler import config_command
from cachesync.cli.context import CliContext, LogLevel, get_cli_context
from cachesync.cli.error_handler import handle_cli_error
from cachesync.cli.inspect_handler import inspect_command
from cachesync.cli.purge_handler import purge_command
from cachesync.shared.constants import CLICommands, CLIDefaults, CLIHelp
from cachesync.shared.logging import setup_structured_logger

__version__ = CLIDefaults.VERSION


def version_callback(value: bool) -> None:
    """Print version information and exit."""
    if value:
        typer.echo(CLIHelp.VERSION_TEXT.format(version=__version__))
        raise typer.Exit


app = typer.Typer(
    name=CLIHelp.APP_NAME,
    help=CLIHelp.APP_DESCRIPTION,
    add_completion=False,
    rich_markup_mode=CLIHelp.APP_STYLE,
    no_args_is_help=True,
)

DbPathArgument = Annotated[
    Path,
    typer.Argument(
        help=CLIHelp.DB_PATH_HELP,
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]
TagOption = Annotated[Optional[str], typer.Option("--tag", "-t", help=CLIHelp.TAG_HELP)]
JsonOption = Annotated[bool, typer.Option("--json", help=CLIHelp.JSON_HELP)]


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        LogLevel,
        typer.Option("--log-level", case_sensitive=False, help=CLIHelp.LOG_LEVEL_HELP),
    ] = LogLevel.WARNING,
    json_output: JsonOption = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Main CLI callback processing the common options."""
    setup_structured_logger(level=log_level.value, use_rich_console=not json_output)
    ctx.obj = CliContext(log_level=log_level, json_output=json_output)


@app.command(CLICommands.INSPECT)
def inspect_command_typer(
    ctx: typer.Context,
    db_path: DbPathArgument,
    tag: TagOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    List the entries stored in a snapshot database.

    Examples:
        # Show every entry
        cachesync inspect cachesync.db

        # Only entries tagged "users", as JSON
        cachesync --json inspect cachesync.db --tag users
    """
    json_output = json_output or get_cli_context(ctx).json_output
    try:
        inspect_command(db_path, tag, json_output=json_output)
    except Exception as e:  # noqa: BLE001
        raise typer.Exit(handle_cli_error(e, CLICommands.INSPECT, json_output=json_output)) from e


@app.command(CLICommands.PURGE)
def purge_command_typer(
    ctx: typer.Context,
    db_path: DbPathArgument,
    tag: TagOption = None,
    expired: Annotated[bool, typer.Option("--expired", help=CLIHelp.EXPIRED_HELP)] = False,
    json_output: JsonOption = False,
) -> None:
    """
    Delete entries from a snapshot database.

    Without filters every entry is deleted.

    Examples:
        cachesync purge cachesync.db --expired
        cachesync purge cachesync.db --tag users
    """
    json_output = json_output or get_cli_context(ctx).json_output
    try:
        purge_command(db_path, tag, expired=expired, json_output=json_output)
    except Exception as e:  # noqa: BLE001
        raise typer.Exit(handle_cli_error(e, CLICommands.PURGE, json_output=json_output)) from e


@app.command(CLICommands.CONFIG)
def config_command_typer(
    ctx: typer.Context,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help=CLIHelp.CONFIG_FILE_HELP, dir_okay=False),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Print the resolved settings.

    Values come from the TOML file (or the default locations) with
    ``CACHESYNC_`` environment variables applied.
    """
    json_output = json_output or get_cli_context(ctx).json_output
    try:
        config_command(config_file, json_output=json_output)
    except Exception as e:  # noqa: BLE001
        raise typer.Exit(handle_cli_error(e, CLICommands.CONFIG, json_output=json_output)) from e
