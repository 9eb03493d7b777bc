"""
Synchronization Constants

Retry, rollback, offline queue and conflict-resolution defaults.
"""

from enum import Enum

from .cache import BASE_SECOND


class ConflictPolicy(str, Enum):
    """How a drained offline mutation resolves a server-side divergence."""

    CLIENT_WINS = "client_wins"
    SERVER_WINS = "server_wins"
    MERGE = "merge"


class OverflowPolicy(str, Enum):
    """What the offline queue does when it is full."""

    REJECT_NEW = "reject_new"
    DROP_OLDEST = "drop_oldest"


class RetryDefaults:
    """Retry policy defaults for fetchers and committers."""

    MAX_ATTEMPTS = 3
    BASE_DELAY = 0.1 * BASE_SECOND
    MULTIPLIER = 2.0
    MAX_DELAY = 5 * BASE_SECOND


class MutationDefaults:
    """Optimistic mutation defaults."""

    # None disables the rollback timer
    ROLLBACK_TIMEOUT: float | None = 10 * BASE_SECOND


class QueueDefaults:
    """Offline queue defaults."""

    MAX_LENGTH = 100
    OVERFLOW_POLICY = OverflowPolicy.REJECT_NEW
    CONFLICT_POLICY = ConflictPolicy.CLIENT_WINS
