"""
Cache Configuration Constants

TTL and persistence defaults shared by the entry store, the settings models
and the CLI.
"""

# Base time units for TTL calculations
BASE_SECOND = 1
BASE_MINUTE = 60 * BASE_SECOND
BASE_HOUR = 60 * BASE_MINUTE


class CacheDefaults:
    """Entry store defaults."""

    # None means entries never expire unless a TTL is passed per read
    DEFAULT_TTL: float | None = None
    SHORT_TTL = 30 * BASE_SECOND
    LONG_TTL = BASE_HOUR

    # Fingerprint formatting
    KEY_SEPARATOR = ":"
    PARAM_SEPARATOR = "="


class PersistenceDefaults:
    """SQLite snapshot defaults."""

    DB_FILENAME = "cachesync.db"
    TABLE_NAME = "cache_entries"
    SCHEMA_VERSION = 1
