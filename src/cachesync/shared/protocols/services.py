"""Service protocols for the engine's external boundaries.

This module defines the callable shapes and the persistence Protocol the
engine depends on, so the services layer never imports a concrete
transport or storage backend.
"""

from __future__ import annotations

from collections.abc import Awaitable, Iterable
from typing import TYPE_CHECKING, Any, Callable, Protocol, Union

if TYPE_CHECKING:
    from cachesync.core.models import CacheEntry

# Fetches the current server value. Sync or async; failures become FetchError.
Fetcher = Callable[[], Union[Any, Awaitable[Any]]]

# Commits a mutation and returns the server-confirmed value. Called with the
# value to commit when it accepts one positional argument, else with none.
Committer = Union[
    Callable[[], Union[Any, Awaitable[Any]]],
    Callable[[Any], Union[Any, Awaitable[Any]]],
]

# Resolves a drain-time divergence: (client_value, server_value) -> merged.
MergeResolver = Callable[[Any, Any], Union[Any, Awaitable[Any]]]


class PersistenceHook(Protocol):
    """Durable snapshot of the entry store, keyed by fingerprint.

    Example:
        >>> from cachesync.services.sqlite_persistence import SQLitePersistence
        >>> hook: PersistenceHook = SQLitePersistence("cache.db")
        >>> engine = SyncEngine(persistence=hook)
    """

    def persist(self, fingerprint: str, entry: CacheEntry | None) -> None:
        """Write through one entry. ``None`` means the entry was removed.

        Args:
            fingerprint: Cache key
            entry: Current entry, or None after a removal
        """

    def restore(self) -> Iterable[tuple[str, CacheEntry]]:
        """Return every persisted ``(fingerprint, entry)`` pair."""
