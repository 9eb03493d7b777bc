"""
cachesync Constants Module

This module provides centralized constants for cachesync. All magic values
and configuration defaults are defined here to ensure consistency across
the engine, its settings models and the CLI.
"""

from .cache import BASE_MINUTE, BASE_SECOND, CacheDefaults, PersistenceDefaults
from .cli import CLICommands, CLIDefaults, CLIHelp
from .sync import (
    ConflictPolicy,
    MutationDefaults,
    OverflowPolicy,
    QueueDefaults,
    RetryDefaults,
)

__all__ = [
    "BASE_MINUTE",
    "BASE_SECOND",
    "CLICommands",
    "CLIDefaults",
    "CLIHelp",
    "CacheDefaults",
    "ConflictPolicy",
    "MutationDefaults",
    "OverflowPolicy",
    "PersistenceDefaults",
    "QueueDefaults",
    "RetryDefaults",
]
