"""cachesync command-line interface."""

from cachesync.cli.typer_app import app

__all__ = ["app"]
