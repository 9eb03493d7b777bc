"""
CLI Constants

Command names, help strings and exit codes for the ``cachesync`` CLI.
"""


class CLIDefaults:
    """CLI default values."""

    VERSION = "0.1.0"

    EXIT_SUCCESS = 0
    EXIT_ERROR = 1


class CLICommands:
    """CLI command names."""

    INSPECT = "inspect"
    PURGE = "purge"
    CONFIG = "config"


class CLIHelp:
    """CLI help strings."""

    APP_NAME = "cachesync"
    APP_DESCRIPTION = "Inspect and maintain cachesync persistence snapshots."
    APP_STYLE = "rich"
    VERSION_TEXT = "cachesync v{version}"

    DB_PATH_HELP = "Path to the SQLite snapshot written by SQLitePersistence"
    TAG_HELP = "Only include entries carrying this tag"
    EXPIRED_HELP = "Only purge entries whose TTL has elapsed"
    JSON_HELP = "Output results in JSON format"
    CONFIG_FILE_HELP = "TOML configuration file to load"
    LOG_LEVEL_HELP = "Logging level (DEBUG, INFO, WARNING, ERROR)"
