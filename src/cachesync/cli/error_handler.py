"""
CLI Error Handling Utilities

Maps exceptions to ``CliError`` exit codes and renders them either as a
plain message on stderr or as the JSON envelope on stdout.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import typer

from cachesync.cli.json_formatter import format_json_output
from cachesync.shared.errors import (
    ApplicationError,
    CacheSyncError,
    CliError,
    InfrastructureError,
    create_cli_error,
)

logger = logging.getLogger(__name__)


def handle_cli_error(
    error: Exception,
    command: str,
    *,
    json_output: bool = False,
) -> int:
    """Handle CLI errors with consistent formatting and logging.

    Args:
        error: The exception that occurred
        command: The CLI command being executed
        json_output: Whether to output JSON format

    Returns:
        Exit code for the CLI command
    """
    error_context: dict[str, Any] = {
        "command": command,
        "error_type": type(error).__name__,
    }
    cli_error = _map_error_to_cli_error(error, command, error_context)
    _log_error(command, cli_error, error_context)

    if json_output:
        output = format_json_output(
            success=False,
            command=command,
            errors=[cli_error.message],
            data={
                "error_code": error_context.get("error_code", cli_error.code.value),
                "error_type": type(error).__name__,
                "exit_code": cli_error.exit_code,
            },
        )
        typer.echo(output.decode("utf-8"))
    else:
        sys.stderr.write(f"Error: {cli_error.message}\n")

    return cli_error.exit_code


def _map_error_to_cli_error(
    error: Exception,
    command: str,
    error_context: dict[str, Any],
) -> CliError:
    if isinstance(error, CliError):
        error_context["error_code"] = error.code.value
        return error

    if isinstance(error, ApplicationError):
        error_context["error_code"] = error.code.value
        return create_cli_error(
            message=f"Application error: {error.message}",
            command=command,
            original_error=error,
        )

    if isinstance(error, InfrastructureError):
        error_context["error_code"] = error.code.value
        return create_cli_error(
            message=f"Infrastructure error: {error.message}",
            command=command,
            original_error=error,
        )

    if isinstance(error, CacheSyncError):
        error_context["error_code"] = error.code.value
        return create_cli_error(
            message=error.message,
            command=command,
            original_error=error,
        )

    if isinstance(error, OSError):
        error_context["error_category"] = "file_system"
        return create_cli_error(
            message=f"File system error: {error}",
            command=command,
            original_error=error,
        )

    error_context["error_category"] = "unexpected"
    return create_cli_error(
        message=f"Unexpected error: {error}",
        command=command,
        original_error=error,
    )


def _log_error(
    command: str,
    cli_error: CliError,
    error_context: dict[str, Any],
) -> None:
    logger.error(
        "CLI error in %s: %s",
        command,
        cli_error.message,
        extra={"context": error_context},
    )
