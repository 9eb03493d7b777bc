"""Entry store: the engine's single source of cached values.

A pure in-memory container keyed by fingerprint. The only side effects are
the optional write-through persistence hook and the observers registered
with ``add_observer`` (used for expiry scheduling). Reads never block and
return whatever is present, whatever its state.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from cachesync.core.models import CacheEntry, EntryState, expiry_for, utcnow
from cachesync.shared.errors import CacheSyncError, ErrorCode, ErrorContext, InfrastructureError
from cachesync.shared.logging import log_operation_error
from cachesync.shared.protocols import PersistenceHook

logger = logging.getLogger(__name__)

EntryObserver = Callable[[str, "CacheEntry | None"], None]


class EntryStore:
    """In-memory map of fingerprint to ``CacheEntry``.

    Versions are tracked separately from entries so that a key which is
    removed and written again keeps counting upwards.

    Args:
        persistence: Optional write-through hook
        clock: Source of the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        persistence: PersistenceHook | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._versions: dict[str, int] = {}
        self._tag_index: dict[str, set[str]] = defaultdict(set)
        self._observers: list[EntryObserver] = []
        self._persistence = persistence
        self.clock = clock

    def get(self, fingerprint: str) -> CacheEntry | None:
        return self._entries.get(fingerprint)

    def put(
        self,
        fingerprint: str,
        value: Any,
        tags: Iterable[str] | None = None,
        ttl: float | None = None,
        state: EntryState = EntryState.FRESH,
    ) -> CacheEntry:
        """Write a value, always incrementing the key's version.

        Args:
            fingerprint: Cache key
            value: Opaque payload
            tags: Tags for the entry; None keeps the existing entry's tags
            ttl: Seconds until the value expires; None for no expiration
            state: State of the written entry

        Returns:
            The stored entry
        """
        previous = self._entries.get(fingerprint)
        if tags is None:
            entry_tags = previous.tags if previous else frozenset()
        else:
            entry_tags = frozenset(tags)

        created_at = self.clock()
        entry = CacheEntry(
            fingerprint=fingerprint,
            value=value,
            tags=entry_tags,
            created_at=created_at,
            expires_at=expiry_for(created_at, ttl),
            state=state,
            version=self._versions.get(fingerprint, 0) + 1,
        )

        self._store(fingerprint, entry, previous)
        logger.debug(
            "Stored %s (version=%d, state=%s)",
            fingerprint,
            entry.version,
            entry.state.value,
        )
        return entry

    def mark_state(self, fingerprint: str, state: EntryState) -> CacheEntry | None:
        """Change an entry's state without touching its value or version.

        Returns:
            The updated entry, or None when no entry exists
        """
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if entry.state == state:
            return entry

        updated = replace(entry, state=state)
        self._entries[fingerprint] = updated
        self._emit(fingerprint, updated)
        return updated

    def remove(self, fingerprint: str) -> CacheEntry | None:
        entry = self._entries.pop(fingerprint, None)
        if entry is None:
            return None

        self._unindex(fingerprint, entry.tags)
        self._emit(fingerprint, None)
        return entry

    def version_of(self, fingerprint: str) -> int:
        """Latest version written for ``fingerprint`` (0 if never written)."""
        return self._versions.get(fingerprint, 0)

    def fingerprints_with_tag(self, tag: str) -> list[str]:
        return sorted(self._tag_index.get(tag, ()))

    def keys(self) -> list[str]:
        return list(self._entries)

    def entries(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def add_observer(self, observer: EntryObserver) -> Callable[[], None]:
        """Register ``observer(fingerprint, entry | None)`` for every write.

        Returns:
            A function that removes the observer
        """
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def attach_persistence(self, persistence: PersistenceHook | None) -> None:
        self._persistence = persistence

    def load(self, entries: Iterable[tuple[str, CacheEntry]]) -> int:
        """Load a persisted snapshot without writing it back.

        Observers are still notified so expiry timers get scheduled.

        Returns:
            Number of entries loaded
        """
        loaded = 0
        for fingerprint, entry in entries:
            previous = self._entries.get(fingerprint)
            if previous is not None:
                self._unindex(fingerprint, previous.tags)
            version = max(entry.version, self._versions.get(fingerprint, 0))
            entry = replace(entry, fingerprint=fingerprint, version=version)
            # An interrupted fetch cannot still be in flight after a restore
            if entry.state == EntryState.REVALIDATING:
                entry = replace(entry, state=EntryState.STALE)
            self._entries[fingerprint] = entry
            self._versions[fingerprint] = version
            self._index(fingerprint, entry.tags)
            for observer in list(self._observers):
                observer(fingerprint, entry)
            loaded += 1
        return loaded

    def clear(self) -> None:
        for fingerprint in list(self._entries):
            self.remove(fingerprint)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def _store(
        self,
        fingerprint: str,
        entry: CacheEntry,
        previous: CacheEntry | None,
    ) -> None:
        if previous is not None:
            self._unindex(fingerprint, previous.tags)
        self._entries[fingerprint] = entry
        self._versions[fingerprint] = entry.version
        self._index(fingerprint, entry.tags)
        self._emit(fingerprint, entry)

    def _index(self, fingerprint: str, tags: frozenset[str]) -> None:
        for tag in tags:
            self._tag_index[tag].add(fingerprint)

    def _unindex(self, fingerprint: str, tags: frozenset[str]) -> None:
        for tag in tags:
            members = self._tag_index.get(tag)
            if members is None:
                continue
            members.discard(fingerprint)
            if not members:
                del self._tag_index[tag]

    def _emit(self, fingerprint: str, entry: CacheEntry | None) -> None:
        if self._persistence is not None:
            self._write_through(fingerprint, entry)
        for observer in list(self._observers):
            observer(fingerprint, entry)

    def _write_through(self, fingerprint: str, entry: CacheEntry | None) -> None:
        # The in-memory store stays authoritative when the snapshot cannot be written
        try:
            self._persistence.persist(fingerprint, entry)  # type: ignore[union-attr]
        except CacheSyncError as e:
            log_operation_error(
                logger=logger,
                error=e,
                operation="persist_entry",
                additional_context={"fingerprint": fingerprint},
                level=logging.WARNING,
            )
        except Exception as e:  # noqa: BLE001
            error = InfrastructureError(
                code=ErrorCode.PERSISTENCE_WRITE_FAILED,
                message=f"Failed to persist entry: {e!s}",
                context=ErrorContext(fingerprint=fingerprint, operation="persist_entry"),
                original_error=e,
            )
            log_operation_error(
                logger=logger,
                error=error,
                operation="persist_entry",
                level=logging.WARNING,
            )
