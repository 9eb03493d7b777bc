"""SyncEngine facade.

Wires the entry store, fetch coordinator, mutation manager, invalidation
router, offline queue and subscription registry around one per-key lock
arena. Each engine is independent; construct as many as needed and close
them with ``aclose()`` or ``async with``.

Example:
    >>> async with SyncEngine() as engine:
    ...     user = await engine.read("users:1", fetch_user, ttl=30, tags={"users"})
    ...     await engine.mutate("users:1", {**user, "name": "B"}, save_user)
    ...     engine.invalidate("tag:users")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable

from cachesync.config.models import CacheSyncSettings
from cachesync.core.key_locks import KeyLockArena
from cachesync.core.models import CacheEntry, NotifyCallback, Selector, utcnow
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.connectivity import ConnectivityMonitor
from cachesync.services.entry_store import EntryStore
from cachesync.services.fetch_coordinator import FetchCoordinator
from cachesync.services.invalidation_router import InvalidationRouter
from cachesync.services.mutation_manager import UNSET, MutationManager
from cachesync.services.offline_queue import OfflineQueue
from cachesync.services.retry_policy import RetryPolicy
from cachesync.services.sqlite_persistence import SQLitePersistence
from cachesync.services.subscriptions import SubscriptionRegistry
from cachesync.shared.errors import ApplicationError, ErrorCode, ErrorContext
from cachesync.shared.logging import log_operation_success
from cachesync.shared.protocols import Committer, Fetcher, MergeResolver, PersistenceHook

logger = logging.getLogger(__name__)


class SyncEngine:
    """Client-side cache-coherence engine.

    Args:
        settings: Engine settings (defaults from the environment)
        persistence: Optional write-through persistence hook
        retry_policy: Retry policy for fetchers and committers; built from
            ``settings.sync.retry`` when omitted
        merge_fn: ``(client_value, server_value) -> merged`` for the merge
            conflict policy
        clock: Source of the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        settings: CacheSyncSettings | None = None,
        *,
        persistence: PersistenceHook | None = None,
        retry_policy: RetryPolicy | None = None,
        merge_fn: MergeResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or CacheSyncSettings()
        sync = self.settings.sync

        self.statistics = StatisticsCollector()
        self.locks = KeyLockArena()
        self.store = EntryStore(persistence=persistence, clock=clock)
        self.subscriptions = SubscriptionRegistry()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(sync.retry)

        self.mutations = MutationManager(
            self.store,
            self.locks,
            self.subscriptions,
            self.retry_policy,
            self.statistics,
            rollback_timeout=sync.rollback_timeout,
        )
        self.fetcher = FetchCoordinator(
            self.store,
            self.locks,
            self.subscriptions,
            self.retry_policy,
            self.statistics,
            mutations=self.mutations,
        )
        self.invalidation = InvalidationRouter(
            self.store,
            self.locks,
            self.subscriptions,
            self.fetcher,
            self.statistics,
            mutations=self.mutations,
        )
        self.connectivity = ConnectivityMonitor(online=sync.start_online)
        self.offline_queue = OfflineQueue(
            self.mutations,
            self.connectivity,
            max_length=sync.queue.max_length,
            overflow_policy=sync.queue.overflow_policy,
            conflict_policy=sync.queue.conflict_policy,
            merge_fn=merge_fn,
            statistics=self.statistics,
        )

        self._persistence = persistence
        self._owned_persistence: SQLitePersistence | None = None
        self._drain_task: asyncio.Task[int] | None = None
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: CacheSyncSettings | None = None,
        *,
        merge_fn: MergeResolver | None = None,
    ) -> SyncEngine:
        """Build an engine, opening the SQLite snapshot when it is enabled.

        The snapshot connection is owned by the engine and closed by
        ``aclose()``.
        """
        settings = settings or CacheSyncSettings()
        persistence = None
        if settings.persistence.enabled:
            persistence = SQLitePersistence(settings.persistence.db_path)

        engine = cls(settings, persistence=persistence, merge_fn=merge_fn)
        engine._owned_persistence = persistence
        return engine

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    async def read(
        self,
        fingerprint: str,
        fetcher: Fetcher,
        *,
        ttl: float | None = UNSET,
        tags: Iterable[str] | None = None,
        stale_while_revalidate: bool | None = None,
        use_last_known_good: bool | None = None,
        timeout: float | None = UNSET,
    ) -> Any:
        """Return the value for ``fingerprint``, fetching it if needed.

        Unset options fall back to the ``cache`` settings section.

        Raises:
            FetchError: If the fetch fails after all retries
            ApplicationError: If the engine is closed
        """
        self._ensure_open("read")
        cache = self.settings.cache
        return await self.fetcher.read(
            fingerprint,
            fetcher,
            ttl=cache.default_ttl if ttl is UNSET else ttl,
            tags=tags,
            stale_while_revalidate=(
                cache.stale_while_revalidate if stale_while_revalidate is None else stale_while_revalidate
            ),
            use_last_known_good=(
                cache.use_last_known_good if use_last_known_good is None else use_last_known_good
            ),
            timeout=cache.fetch_timeout if timeout is UNSET else timeout,
        )

    async def mutate(
        self,
        fingerprint: str,
        optimistic_value: Any,
        commit_fn: Committer,
        *,
        rollback_timeout: float | None = UNSET,
        tags: Iterable[str] | None = None,
        ttl: float | None = UNSET,
        server_state: Fetcher | None = None,
    ) -> Any:
        """Write ``optimistic_value`` now and commit it.

        While offline (or while older offline mutations are still queued)
        the commit is queued and this call resolves when the queue drains.

        Args:
            fingerprint: Cache key
            optimistic_value: Value readers see until the commit settles
            commit_fn: Committer returning the server-confirmed value
            rollback_timeout: Seconds before the commit counts as failed
            tags: Tags for the written entry (None keeps existing tags)
            ttl: TTL of the confirmed value
            server_state: Reads the server value for drain-time conflict checks

        Returns:
            The server-confirmed value (or the server value under server_wins)

        Raises:
            CommitError: If the commit fails; the entry is rolled back
            CommitTimeoutError: If the commit exceeds the rollback timeout
            QueueCapacityError: If the offline queue rejects the mutation
        """
        self._ensure_open("mutate")
        tag_set = frozenset(tags) if tags is not None else None
        ttl = self.settings.cache.default_ttl if ttl is UNSET else ttl

        if self.connectivity.is_online and not len(self.offline_queue):
            return await self.mutations.mutate(
                fingerprint,
                optimistic_value,
                commit_fn,
                rollback_timeout=rollback_timeout,
                tags=tag_set,
                ttl=ttl,
            )

        item = self.offline_queue.enqueue(
            fingerprint,
            optimistic_value,
            commit_fn,
            server_state=server_state,
            rollback_timeout=rollback_timeout,
            tags=tag_set,
            ttl=ttl,
        )
        if self.connectivity.is_online:
            self._ensure_drain()
        return await item.future

    def invalidate(self, selector: Selector | str) -> list[str]:
        """Invalidate a key (``"key:<fp>"``) or every entry with a tag (``"tag:<t>"``).

        Returns:
            Fingerprints matched by the selector
        """
        self._ensure_open("invalidate")
        return self.invalidation.invalidate(selector)

    def on_invalidation_event(self, selector: Selector | str) -> list[str]:
        """Ingest one event from a real-time invalidation feed."""
        self._ensure_open("on_invalidation_event")
        return self.invalidation.on_event(selector)

    def on_connectivity_change(self, is_online: bool) -> asyncio.Task[int] | None:
        """Feed the connectivity signal.

        Returns:
            The drain task when this signal brought the engine back online
            with queued mutations, else None
        """
        self._ensure_open("on_connectivity_change")
        reconnected = self.connectivity.update(is_online)
        if reconnected and len(self.offline_queue):
            return self._ensure_drain()
        return None

    def subscribe(self, selector: Selector | str, callback: NotifyCallback) -> str:
        """Watch a key or tag; see ``SubscriptionRegistry.subscribe``."""
        self._ensure_open("subscribe")
        return self.subscriptions.subscribe(selector, callback)

    def unsubscribe(self, subscriber_id: str) -> bool:
        return self.subscriptions.unsubscribe(subscriber_id)

    def peek(self, fingerprint: str) -> CacheEntry | None:
        """Return the stored entry without fetching or counting a read."""
        return self.store.get(fingerprint)

    def stats(self) -> dict[str, Any]:
        """Counters plus the current size of every component."""
        summary = self.statistics.get_summary()
        summary.update(
            {
                "entries": len(self.store),
                "in_flight_fetches": self.fetcher.in_flight_count(),
                "pending_mutations": self.mutations.pending_count(),
                "deferred_invalidations": self.invalidation.pending_count(),
                "subscriptions": len(self.subscriptions),
                "connectivity": self.connectivity.state.value,
                "offline_queue": asdict(self.offline_queue.stats()),
            }
        )
        return summary

    async def restore(self) -> int:
        """Load the persistence snapshot into the entry store.

        Returns:
            Number of entries restored (0 without a persistence hook)
        """
        self._ensure_open("restore")
        if self._persistence is None:
            return 0

        loop = asyncio.get_running_loop()
        started = loop.time()
        restored = self.store.load(self._persistence.restore())
        log_operation_success(
            logger=logger,
            operation="restore",
            duration_ms=(loop.time() - started) * 1000,
            result_info={"entries": restored},
        )
        return restored

    async def aclose(self) -> None:
        """Stop background work and fail queued offline mutations.

        Idempotent.
        """
        if self._closed:
            return
        self._closed = True

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            await asyncio.gather(self._drain_task, return_exceptions=True)

        await self.invalidation.aclose()
        await self.fetcher.aclose()
        await self.mutations.aclose()
        self.offline_queue.clear(self._closed_error("aclose"))
        self.subscriptions.clear()

        if self._owned_persistence is not None:
            self._owned_persistence.close()
        logger.debug("Engine closed")

    async def __aenter__(self) -> SyncEngine:
        if self._persistence is not None and self.settings.persistence.restore_on_start:
            await self.restore()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _ensure_drain(self) -> asyncio.Task[int]:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(
                self.offline_queue.drain(), name="cachesync-offline-drain"
            )
        return self._drain_task

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise self._closed_error(operation)

    def _closed_error(self, operation: str) -> ApplicationError:
        return ApplicationError(
            code=ErrorCode.ENGINE_CLOSED,
            message="Engine is closed",
            context=ErrorContext(operation=operation),
        )
