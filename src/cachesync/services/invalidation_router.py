"""Invalidation router.

Turns key and tag invalidations into entry state transitions. Manual
``invalidate`` calls, pushed events and TTL expiry all go through the same
path: a FRESH entry becomes STALE, and if someone is watching it and the
fetcher that produced it is known, a background refetch starts right away
(eager). Everything else waits for the next ``read`` (lazy).

Invalidations never interrupt a commit. A key whose lock is held is
invalidated by a deferred task that queues on that lock, so it runs as soon
as the holder settles. While optimistic writes are pending on a key, the
committed value they would roll back to is invalidated instead of the
visible entry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from cachesync.core.key_locks import KeyLockArena
from cachesync.core.models import (
    CacheEntry,
    EntryState,
    KeySelector,
    NotifyReason,
    Selector,
    parse_selector,
)
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.entry_store import EntryStore
from cachesync.services.fetch_coordinator import FetchCoordinator
from cachesync.services.mutation_manager import MutationManager
from cachesync.services.subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)

# States an invalidation moves to STALE. STALE is already invalid and a
# REVALIDATING entry has its refetch running.
_INVALIDATABLE = frozenset({EntryState.FRESH, EntryState.ERROR})


class InvalidationRouter:
    """Resolves selectors to entries and applies the eager/lazy rule.

    Args:
        store: Shared entry store
        locks: Per-key lock arena shared with the other components
        registry: Subscription registry deciding eager vs lazy
        fetcher: Fetch coordinator used for eager refetches
        statistics: Optional statistics collector
        mutations: Mutation manager; keys with pending optimistic writes
            have their committed base invalidated instead of the store entry
    """

    def __init__(
        self,
        store: EntryStore,
        locks: KeyLockArena,
        registry: SubscriptionRegistry,
        fetcher: FetchCoordinator,
        statistics: StatisticsCollector | None = None,
        *,
        mutations: MutationManager | None = None,
    ) -> None:
        self.store = store
        self.locks = locks
        self.registry = registry
        self.fetcher = fetcher
        self.statistics = statistics or StatisticsCollector()
        self.mutations = mutations
        self._timers: dict[str, tuple[asyncio.TimerHandle, datetime]] = {}
        self._deferred: set[asyncio.Task[None]] = set()
        self._remove_observer = store.add_observer(self._on_entry_changed)

    def invalidate(self, selector: Selector | str) -> list[str]:
        """Invalidate the entries matched by ``selector``.

        Args:
            selector: ``KeySelector``/``TagSelector`` or ``"key:..."``/``"tag:..."``

        Returns:
            Fingerprints matched by the selector. Keys currently locked by a
            commit are included; their transition happens once it settles.
        """
        parsed = parse_selector(selector)
        if isinstance(parsed, KeySelector):
            targets = [parsed.fingerprint] if parsed.fingerprint in self.store else []
        else:
            targets = self.store.fingerprints_with_tag(parsed.tag)

        logger.debug("Invalidating %s (%d entries)", parsed, len(targets))
        for fingerprint in targets:
            self._dispatch(fingerprint)
        return targets

    def on_event(self, selector: Selector | str) -> list[str]:
        """Ingest a pushed invalidation event."""
        return self.invalidate(selector)

    def pending_count(self) -> int:
        """Number of invalidations waiting for a key lock."""
        return len(self._deferred)

    def scheduled_expiries(self) -> int:
        return len(self._timers)

    async def drain(self) -> None:
        """Wait until every deferred invalidation has been applied."""
        while self._deferred:
            await asyncio.gather(*list(self._deferred), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel expiry timers and deferred invalidations."""
        self._remove_observer()
        for handle, _ in self._timers.values():
            handle.cancel()
        self._timers.clear()

        for task in list(self._deferred):
            task.cancel()
        if self._deferred:
            await asyncio.gather(*self._deferred, return_exceptions=True)
        self._deferred.clear()

    def _dispatch(self, fingerprint: str) -> None:
        if not self.locks.is_locked(fingerprint):
            self._apply(fingerprint)
            return

        logger.debug("Key %s is locked, deferring invalidation", fingerprint)
        task = asyncio.create_task(
            self._apply_locked(fingerprint),
            name=f"cachesync-invalidate:{fingerprint}",
        )
        self._deferred.add(task)
        task.add_done_callback(self._deferred.discard)

    async def _apply_locked(self, fingerprint: str) -> None:
        async with self.locks.hold(fingerprint):
            self._apply(fingerprint)

    def _apply(self, fingerprint: str) -> bool:
        if self.mutations is not None and self.mutations.has_pending(fingerprint):
            return self._apply_behind_pending(fingerprint)

        entry = self.store.get(fingerprint)
        if entry is None or entry.state not in _INVALIDATABLE:
            return False

        updated = self.store.mark_state(fingerprint, EntryState.STALE)
        if updated is None:
            return False

        self.statistics.increment("invalidations")
        self.registry.notify(fingerprint, updated.tags, None, NotifyReason.INVALIDATED)

        if self.registry.has_active(fingerprint, updated.tags) and self.fetcher.has_fetcher(fingerprint):
            self.statistics.increment("eager_refetches")
            logger.debug("Eager refetch of %s", fingerprint)
            self.fetcher.refresh(fingerprint)
        return True

    def _apply_behind_pending(self, fingerprint: str) -> bool:
        # The optimistic value stays visible; only the base it rolls back to
        # goes STALE
        if not self.mutations.invalidate_base(fingerprint):  # type: ignore[union-attr]
            return False

        self.statistics.increment("invalidations")
        logger.debug("Optimistic write pending on %s, invalidated its committed base", fingerprint)

        entry = self.store.get(fingerprint)
        tags = entry.tags if entry is not None else frozenset()
        if self.registry.has_active(fingerprint, tags) and self.fetcher.has_fetcher(fingerprint):
            self.statistics.increment("eager_refetches")
            self.fetcher.refresh(fingerprint)
        return True

    def _on_entry_changed(self, fingerprint: str, entry: CacheEntry | None) -> None:
        scheduled = self._timers.pop(fingerprint, None)
        if scheduled is not None:
            scheduled[0].cancel()

        if entry is None or entry.expires_at is None or entry.state != EntryState.FRESH:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Without a loop expiry is still caught lazily by read()
            return

        delay = max(0.0, (entry.expires_at - self.store.clock()).total_seconds())
        handle = loop.call_later(delay, self._expire, fingerprint, entry.expires_at)
        self._timers[fingerprint] = (handle, entry.expires_at)

    def _expire(self, fingerprint: str, expires_at: datetime) -> None:
        scheduled = self._timers.get(fingerprint)
        if scheduled is not None and scheduled[1] == expires_at:
            del self._timers[fingerprint]

        entry = self.store.get(fingerprint)
        # The entry was rewritten after this timer was scheduled
        if entry is None or entry.expires_at != expires_at:
            return
        if entry.state != EntryState.FRESH:
            return

        self.statistics.increment("expirations")
        logger.debug("TTL elapsed for %s", fingerprint)
        self._dispatch(fingerprint)
