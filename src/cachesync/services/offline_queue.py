"""Offline mutation queue.

While the engine is offline, mutations are applied optimistically and
queued instead of committed. On reconnect the queue drains strictly in
enqueue order through the mutation manager's commit/rollback path,
resolving server-side divergence with the configured conflict policy.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from cachesync.core.models import PendingMutation, QueueItemState
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.connectivity import ConnectivityMonitor
from cachesync.services.mutation_manager import UNSET, MutationManager
from cachesync.shared.callables import call_maybe_async
from cachesync.shared.constants import ConflictPolicy, OverflowPolicy, QueueDefaults
from cachesync.shared.errors import (
    ConflictError,
    DomainError,
    ErrorCode,
    ErrorContext,
    FetchError,
    QueueCapacityError,
    create_fetch_error,
    create_validation_error,
)
from cachesync.shared.logging import log_operation_error, log_operation_start
from cachesync.shared.protocols import Committer, Fetcher, MergeResolver

logger = logging.getLogger(__name__)


@dataclass
class OfflineQueueItem:
    """A queued mutation with everything needed to commit it later.

    Attributes:
        mutation: The optimistic mutation already applied to the store
        commit_fn: Committer invoked at drain time
        server_state: Reads the server's current value for conflict checks
        rollback_timeout: Commit timeout used at drain time
        future: Resolved with the committed value or the failure
        state: Queue lifecycle state
    """

    mutation: PendingMutation
    commit_fn: Committer
    server_state: Fetcher | None = None
    rollback_timeout: Any = UNSET
    future: asyncio.Future[Any] = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    state: QueueItemState = QueueItemState.QUEUED

    @property
    def fingerprint(self) -> str:
        return self.mutation.fingerprint

    @property
    def mutation_id(self) -> str:
        return self.mutation.mutation_id

    def resolve(self, value: Any) -> None:
        self.state = QueueItemState.COMMITTED
        if not self.future.done():
            self.future.set_result(value)

    def fail(self, error: BaseException) -> None:
        self.state = QueueItemState.FAILED
        if not self.future.done():
            self.future.set_exception(error)
            # Evicted items may never be awaited
            self.future.exception()


@dataclass
class QueueStats:
    """Statistics for offline queue operations."""

    size: int
    capacity: int
    total_added: int
    total_drained: int
    total_failed: int
    total_evicted: int
    max_size_reached: int
    draining: bool


class OfflineQueue:
    """Bounded FIFO of offline mutations.

    Args:
        mutations: Mutation manager used to apply, commit and roll back
        connectivity: Connectivity state; draining stops when it goes offline
        max_length: Maximum number of queued items
        overflow_policy: ``reject_new`` or ``drop_oldest``
        conflict_policy: ``client_wins``, ``server_wins`` or ``merge``
        merge_fn: ``(client_value, server_value) -> merged``, required for merge
        statistics: Optional statistics collector
    """

    def __init__(
        self,
        mutations: MutationManager,
        connectivity: ConnectivityMonitor,
        *,
        max_length: int = QueueDefaults.MAX_LENGTH,
        overflow_policy: OverflowPolicy | str = QueueDefaults.OVERFLOW_POLICY,
        conflict_policy: ConflictPolicy | str = QueueDefaults.CONFLICT_POLICY,
        merge_fn: MergeResolver | None = None,
        statistics: StatisticsCollector | None = None,
    ) -> None:
        if max_length <= 0:
            raise create_validation_error(
                f"max_length must be positive, got: {max_length}",
                field="max_length",
                operation="offline_queue_init",
            )
        conflict_policy = ConflictPolicy(conflict_policy)
        if conflict_policy == ConflictPolicy.MERGE and merge_fn is None:
            raise create_validation_error(
                "The merge conflict policy requires a merge function",
                field="merge_fn",
                operation="offline_queue_init",
            )

        self.mutations = mutations
        self.connectivity = connectivity
        self.max_length = max_length
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.conflict_policy = conflict_policy
        self.merge_fn = merge_fn
        self.statistics = statistics or StatisticsCollector()

        self._items: deque[OfflineQueueItem] = deque()
        self._drain_lock = asyncio.Lock()
        self._total_added = 0
        self._total_drained = 0
        self._total_failed = 0
        self._total_evicted = 0
        self._max_size_reached = 0

    def enqueue(
        self,
        fingerprint: str,
        optimistic_value: Any,
        commit_fn: Committer,
        *,
        server_state: Fetcher | None = None,
        rollback_timeout: float | None = UNSET,
        tags: Iterable[str] | None = None,
        ttl: float | None = None,
    ) -> OfflineQueueItem:
        """Apply a mutation optimistically and queue its commit.

        Args:
            fingerprint: Cache key
            optimistic_value: Value shown until the queued commit settles
            commit_fn: Committer invoked when the queue drains
            server_state: Reads the server's current value for conflict checks
            rollback_timeout: Commit timeout used at drain time
            tags: Tags for the written entry
            ttl: TTL of the confirmed value

        Returns:
            The queued item; await ``item.future`` for the outcome

        Raises:
            QueueCapacityError: If the queue is full under ``reject_new``.
                Nothing is written in that case.
        """
        if len(self._items) >= self.max_length:
            if self.overflow_policy == OverflowPolicy.REJECT_NEW:
                raise self._capacity_error(fingerprint, "Offline queue is full")
            self._evict_oldest()

        mutation = self.mutations.apply_optimistic(
            fingerprint,
            optimistic_value,
            tags=frozenset(tags) if tags is not None else None,
            ttl=ttl,
        )
        item = OfflineQueueItem(
            mutation=mutation,
            commit_fn=commit_fn,
            server_state=server_state,
            rollback_timeout=rollback_timeout,
        )
        self._items.append(item)
        self._total_added += 1
        self._max_size_reached = max(self._max_size_reached, len(self._items))
        self.statistics.increment("queued_mutations")
        logger.debug(
            "Queued offline mutation %s for %s (%d/%d)",
            mutation.mutation_id,
            fingerprint,
            len(self._items),
            self.max_length,
        )
        return item

    async def drain(self) -> int:
        """Commit queued items in enqueue order while online.

        Only one drain runs at a time; a second call waits for the first
        and then continues with whatever is left.

        Returns:
            Number of items processed (committed or failed)
        """
        processed = 0
        async with self._drain_lock:
            if self._items and self.connectivity.is_online:
                log_operation_start(
                    logger=logger,
                    operation="offline_drain",
                    context={"queued": len(self._items)},
                )
            while self._items and self.connectivity.is_online:
                item = self._items[0]
                item.state = QueueItemState.DRAINING
                try:
                    value = await self._drain_item(item)
                except asyncio.CancelledError:
                    item.state = QueueItemState.FAILED
                    item.future.cancel()
                    self._pop(item)
                    raise
                except Exception as e:
                    item.fail(e)
                    self._total_failed += 1
                else:
                    item.resolve(value)
                    self._total_drained += 1
                self._pop(item)
                self.statistics.increment("drained_mutations")
                processed += 1

        if self._items and not self.connectivity.is_online:
            logger.info("Went offline mid-drain, %d mutations still queued", len(self._items))
        return processed

    def items(self) -> list[OfflineQueueItem]:
        return list(self._items)

    def stats(self) -> QueueStats:
        return QueueStats(
            size=len(self._items),
            capacity=self.max_length,
            total_added=self._total_added,
            total_drained=self._total_drained,
            total_failed=self._total_failed,
            total_evicted=self._total_evicted,
            max_size_reached=self._max_size_reached,
            draining=self._drain_lock.locked(),
        )

    def is_full(self) -> bool:
        return len(self._items) >= self.max_length

    def clear(self, error: BaseException | None = None) -> int:
        """Roll back and fail every queued item that is not draining.

        Returns:
            Number of items removed
        """
        removed = 0
        for item in list(self._items):
            if item.state != QueueItemState.QUEUED:
                continue
            reason = error or DomainError(
                code=ErrorCode.QUEUE_OPERATION_ERROR,
                message="Offline queue was cleared",
                context=ErrorContext(fingerprint=item.fingerprint, operation="offline_queue_clear"),
            )
            self.mutations.abandon(item.mutation, reason)
            item.fail(reason)
            self._items.remove(item)
            removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._items)

    async def _drain_item(self, item: OfflineQueueItem) -> Any:
        mutation = item.mutation
        if item.server_state is None or self.conflict_policy == ConflictPolicy.CLIENT_WINS:
            return await self.mutations.settle(
                mutation, item.commit_fn, rollback_timeout=item.rollback_timeout
            )

        server_value = await self._read_server_state(item)

        if self.conflict_policy == ConflictPolicy.SERVER_WINS:
            self.statistics.increment("conflicts")
            logger.info(
                "Server wins for %s, discarding queued mutation %s",
                item.fingerprint,
                mutation.mutation_id,
            )
            return await self.mutations.resolve_with_server(mutation, server_value)

        try:
            merged = await call_maybe_async(self.merge_fn, mutation.optimistic_value, server_value)  # type: ignore[arg-type]
        except Exception as e:
            error = ConflictError(
                code=ErrorCode.CONFLICT_RESOLUTION_FAILED,
                message=f"Merge function failed: {e!s}",
                context=ErrorContext(
                    fingerprint=item.fingerprint,
                    operation="merge_conflict",
                    additional_data={"mutation_id": mutation.mutation_id},
                ),
                original_error=e,
            )
            self.mutations.abandon(mutation, error)
            log_operation_error(logger=logger, error=error, operation="merge_conflict")
            raise error from e

        self.statistics.increment("conflicts")
        await self.mutations.rebase(mutation, merged)
        return await self.mutations.settle(
            mutation, item.commit_fn, rollback_timeout=item.rollback_timeout, value=merged
        )

    async def _read_server_state(self, item: OfflineQueueItem) -> Any:
        try:
            return await call_maybe_async(item.server_state)  # type: ignore[arg-type]
        except FetchError as e:
            self.mutations.abandon(item.mutation, e)
            log_operation_error(logger=logger, error=e, operation="read_server_state")
            raise
        except Exception as e:
            error = create_fetch_error(item.fingerprint, f"Failed to read server state: {e!s}", e)
            self.mutations.abandon(item.mutation, error)
            log_operation_error(logger=logger, error=error, operation="read_server_state")
            raise error from e

    def _evict_oldest(self) -> None:
        victim = next((i for i in self._items if i.state == QueueItemState.QUEUED), None)
        if victim is None:
            raise self._capacity_error(
                self._items[0].fingerprint, "Offline queue is full and nothing can be evicted"
            )

        self._items.remove(victim)
        error = self._capacity_error(victim.fingerprint, "Evicted from full offline queue")
        self.mutations.abandon(victim.mutation, error)
        victim.fail(error)
        self._total_evicted += 1
        self.statistics.increment("evicted_mutations")
        logger.warning(
            "Offline queue full, dropped oldest mutation %s for %s",
            victim.mutation_id,
            victim.fingerprint,
        )

    def _pop(self, item: OfflineQueueItem) -> None:
        if self._items and self._items[0] is item:
            self._items.popleft()
        elif item in self._items:
            self._items.remove(item)

    def _capacity_error(self, fingerprint: str, message: str) -> QueueCapacityError:
        return QueueCapacityError(
            code=ErrorCode.QUEUE_CAPACITY_EXCEEDED,
            message=message,
            context=ErrorContext(
                fingerprint=fingerprint,
                operation="offline_enqueue",
                additional_data={
                    "max_length": self.max_length,
                    "overflow_policy": self.overflow_policy.value,
                },
            ),
        )
