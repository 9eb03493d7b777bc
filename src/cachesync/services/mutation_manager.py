"""Mutation manager.

Applies optimistic writes, commits them through the caller's committer and
either confirms the server result or rolls the entry back. For one key,
commits run strictly in the order ``mutate`` was called and never overlap.

Per key the manager keeps a chain: the last committed entry (the base) and
the pending mutations layered on top of it. The store always shows the
newest pending optimistic value; once the chain empties it shows the base.
A failed mutation therefore never leaves a dangling optimistic value.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cachesync.core.key_locks import KeyLockArena
from cachesync.core.models import (
    CacheEntry,
    EntryState,
    MutationStatus,
    NotifyReason,
    PendingMutation,
    expiry_for,
)
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.entry_store import EntryStore
from cachesync.services.retry_policy import RetryPolicy
from cachesync.services.subscriptions import SubscriptionRegistry
from cachesync.shared.callables import accepts_positional_arg, call_maybe_async
from cachesync.shared.constants import MutationDefaults
from cachesync.shared.errors import (
    CommitError,
    CommitTimeoutError,
    ErrorCode,
    ErrorContext,
    create_commit_error,
)
from cachesync.shared.logging import log_operation_error, log_operation_success
from cachesync.shared.protocols import Committer

logger = logging.getLogger(__name__)

# Sentinel for arguments left at their default
UNSET: Any = object()


@dataclass
class _KeyChain:
    base: CacheEntry | None
    pending: list[PendingMutation] = field(default_factory=list)
    # Bumped whenever a commit or server resolution replaces the base
    revision: int = 0


class MutationManager:
    """Optimistic write path with rollback.

    Args:
        store: Shared entry store
        locks: Per-key lock arena shared with the other components
        registry: Subscription registry for change notifications
        retry_policy: Retry policy applied to committers
        statistics: Optional statistics collector
        rollback_timeout: Default seconds a commit may take before it is
            treated as failed; None disables the timer
    """

    def __init__(
        self,
        store: EntryStore,
        locks: KeyLockArena,
        registry: SubscriptionRegistry,
        retry_policy: RetryPolicy | None = None,
        statistics: StatisticsCollector | None = None,
        rollback_timeout: float | None = MutationDefaults.ROLLBACK_TIMEOUT,
    ) -> None:
        self.store = store
        self.locks = locks
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.statistics = statistics or StatisticsCollector()
        self.rollback_timeout = rollback_timeout
        self._chains: dict[str, _KeyChain] = {}
        self._mutations: dict[str, PendingMutation] = {}
        self._late_commits: set[asyncio.Task[Any]] = set()

    async def mutate(
        self,
        fingerprint: str,
        optimistic_value: Any,
        commit_fn: Committer,
        *,
        rollback_timeout: float | None = UNSET,
        tags: frozenset[str] | set[str] | None = None,
        ttl: float | None = None,
    ) -> Any:
        """Apply ``optimistic_value`` now and commit it.

        Args:
            fingerprint: Cache key
            optimistic_value: Value shown to readers until the commit settles
            commit_fn: Committer returning the server-confirmed value
            rollback_timeout: Seconds before the commit counts as failed
            tags: Tags for the written entry (None keeps existing tags)
            ttl: TTL of the confirmed value

        Returns:
            The server-confirmed value

        Raises:
            CommitError: If the committer fails after all retries
            CommitTimeoutError: If the committer exceeds the timeout
        """
        mutation = self.apply_optimistic(fingerprint, optimistic_value, tags=tags, ttl=ttl)
        return await self.settle(mutation, commit_fn, rollback_timeout=rollback_timeout)

    def apply_optimistic(
        self,
        fingerprint: str,
        optimistic_value: Any,
        *,
        tags: frozenset[str] | set[str] | None = None,
        ttl: float | None = None,
    ) -> PendingMutation:
        """Write ``optimistic_value`` immediately and register the mutation.

        The rollback snapshot is the value visible right now, which is the
        previous mutation's optimistic value when one is still pending.
        """
        entry = self.store.get(fingerprint)
        chain = self._chains.get(fingerprint)
        if chain is None:
            chain = self._chains[fingerprint] = _KeyChain(base=entry)

        mutation = PendingMutation(
            mutation_id=uuid.uuid4().hex,
            fingerprint=fingerprint,
            optimistic_value=optimistic_value,
            rollback_snapshot=entry.value if entry is not None else None,
            snapshot_present=entry is not None,
            tags=frozenset(tags) if tags is not None else None,
            ttl=ttl,
        )
        chain.pending.append(mutation)
        self._mutations[mutation.mutation_id] = mutation

        written = self.store.put(fingerprint, optimistic_value, tags=mutation.tags)
        self.statistics.increment("mutations")
        self.registry.notify(fingerprint, written.tags, optimistic_value, NotifyReason.OPTIMISTIC)
        logger.debug("Applied optimistic write %s to %s", mutation.mutation_id, fingerprint)
        return mutation

    async def settle(
        self,
        mutation: PendingMutation,
        commit_fn: Committer,
        *,
        rollback_timeout: float | None = UNSET,
        value: Any = UNSET,
    ) -> Any:
        """Commit a pending mutation under its key lock.

        Args:
            mutation: Mutation returned by ``apply_optimistic``
            commit_fn: Committer returning the server-confirmed value
            rollback_timeout: Seconds before the commit counts as failed
            value: Value to commit instead of the optimistic value

        Returns:
            The server-confirmed value
        """
        timeout = self.rollback_timeout if rollback_timeout is UNSET else rollback_timeout
        commit_value = mutation.optimistic_value if value is UNSET else value
        fingerprint = mutation.fingerprint

        async with self.locks.hold(fingerprint):
            if mutation.status != MutationStatus.OPTIMISTIC:
                # Abandoned (evicted or discarded) while waiting for the lock
                if mutation.error is not None:
                    raise mutation.error
                return mutation.result

            mutation.status = MutationStatus.COMMITTING
            started = time.perf_counter()
            try:
                result = await self._commit(mutation, commit_fn, commit_value, timeout)
            except asyncio.CancelledError:
                self._rollback(
                    mutation,
                    CommitError(
                        code=ErrorCode.COMMIT_FAILED,
                        message="Commit was cancelled",
                        context=ErrorContext(fingerprint=fingerprint, operation="commit"),
                    ),
                )
                raise
            except CommitError as e:
                self._rollback(mutation, e)
                log_operation_error(logger=logger, error=e, operation="commit")
                raise

            self._confirm(mutation, result)
            log_operation_success(
                logger=logger,
                operation="commit",
                duration_ms=(time.perf_counter() - started) * 1000,
                result_info={"retries": mutation.retry_count},
                context={"fingerprint": fingerprint, "mutation_id": mutation.mutation_id},
            )
            return result

    async def rebase(self, mutation: PendingMutation, new_value: Any) -> None:
        """Replace a pending mutation's optimistic value (drain-time merge)."""
        async with self.locks.hold(mutation.fingerprint):
            mutation.optimistic_value = new_value
            chain = self._chains.get(mutation.fingerprint)
            if chain is not None and chain.pending and chain.pending[-1] is mutation:
                written = self.store.put(mutation.fingerprint, new_value, tags=mutation.tags)
                self.registry.notify(
                    mutation.fingerprint, written.tags, new_value, NotifyReason.OPTIMISTIC
                )

    async def resolve_with_server(self, mutation: PendingMutation, server_value: Any) -> Any:
        """Drop a pending mutation in favour of the server's current value.

        The server value becomes the committed base for the key. The
        mutation ends ``ROLLED_BACK`` with ``result`` set to the server value.
        """
        fingerprint = mutation.fingerprint
        async with self.locks.hold(fingerprint):
            chain = self._chains.get(fingerprint)
            if chain is not None:
                now = self.store.clock()
                base_tags = chain.base.tags if chain.base is not None else frozenset()
                chain.base = CacheEntry(
                    fingerprint=fingerprint,
                    value=server_value,
                    tags=mutation.tags if mutation.tags is not None else base_tags,
                    created_at=now,
                    expires_at=expiry_for(now, mutation.ttl),
                )
                chain.revision += 1
            mutation.result = server_value
            self._finish(mutation, MutationStatus.ROLLED_BACK, error=None)
            return server_value

    def abandon(self, mutation: PendingMutation, error: BaseException) -> None:
        """Roll back a mutation that will never be committed.

        Only valid for mutations that are not currently committing.
        """
        if mutation.status != MutationStatus.OPTIMISTIC:
            return
        self._rollback(mutation, error, status=MutationStatus.FAILED)

    def get(self, mutation_id: str) -> PendingMutation | None:
        return self._mutations.get(mutation_id)

    def pending(self, fingerprint: str) -> list[PendingMutation]:
        chain = self._chains.get(fingerprint)
        return list(chain.pending) if chain else []

    def has_pending(self, fingerprint: str) -> bool:
        return fingerprint in self._chains

    def base_revision(self, fingerprint: str) -> int | None:
        """Revision of the key's committed base, None without pending writes."""
        chain = self._chains.get(fingerprint)
        return chain.revision if chain is not None else None

    def invalidate_base(self, fingerprint: str) -> bool:
        """Mark the committed base STALE while optimistic writes are pending.

        The visible optimistic value is left alone; the base comes back
        STALE if the chain rolls back to it.

        Returns:
            True if a FRESH or ERROR base was marked STALE
        """
        chain = self._chains.get(fingerprint)
        if chain is None or chain.base is None:
            return False
        if chain.base.state not in (EntryState.FRESH, EntryState.ERROR):
            return False
        chain.base = chain.base.with_state(EntryState.STALE)
        return True

    def absorb_fetch(
        self,
        fingerprint: str,
        value: Any,
        *,
        revision: int | None,
        tags: frozenset[str] | None = None,
        ttl: float | None = None,
    ) -> bool:
        """Take a fetched server value for a key with pending writes.

        The value becomes the committed base when the base has not been
        replaced since the fetch started (``revision``). It is never
        written to the store over a pending optimistic value.

        Returns:
            True if the key has pending writes, in which case the caller
            must not write ``value`` to the store
        """
        chain = self._chains.get(fingerprint)
        if chain is None:
            return False
        if revision != chain.revision:
            logger.debug("Dropping fetched value for %s, its base changed", fingerprint)
            return True

        now = self.store.clock()
        base_tags = chain.base.tags if chain.base is not None else frozenset()
        chain.base = CacheEntry(
            fingerprint=fingerprint,
            value=value,
            tags=tags if tags is not None else base_tags,
            created_at=now,
            expires_at=expiry_for(now, ttl),
        )
        logger.debug("Fetched value for %s kept as base behind pending writes", fingerprint)
        return True

    def pending_count(self) -> int:
        return len(self._mutations)

    async def aclose(self) -> None:
        """Cancel commits that outlived their rollback timeout."""
        for task in list(self._late_commits):
            task.cancel()
        if self._late_commits:
            await asyncio.gather(*self._late_commits, return_exceptions=True)
        self._late_commits.clear()

    async def _commit(
        self,
        mutation: PendingMutation,
        commit_fn: Committer,
        commit_value: Any,
        timeout: float | None,
    ) -> Any:
        pass_value = accepts_positional_arg(commit_fn)
        attempts = 1
        loop = asyncio.get_running_loop()
        # One deadline for every attempt and backoff delay together
        deadline = loop.time() + timeout if timeout is not None else None

        def _on_retry(_attempt: int, _error: BaseException) -> None:
            nonlocal attempts
            attempts += 1
            mutation.retry_count += 1
            self.statistics.increment("retries")

        async def _attempt() -> Any:
            remaining = None
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise self._timeout_error(mutation, timeout)
            if pass_value:
                coro = call_maybe_async(commit_fn, commit_value)
            else:
                coro = call_maybe_async(commit_fn)
            return await self._run_attempt(mutation, coro, remaining, timeout)

        try:
            return await self.retry_policy.run(
                _attempt,
                name=f"commit {mutation.fingerprint}",
                on_retry=_on_retry,
                deadline=deadline,
            )
        except CommitTimeoutError:
            self.statistics.increment("commit_timeouts")
            raise
        except CommitError as e:
            raise CommitError(
                code=e.code,
                message=f"{e.message} (after {attempts} attempt{'s' if attempts != 1 else ''})",
                context=ErrorContext(
                    fingerprint=mutation.fingerprint,
                    operation="commit",
                    additional_data={
                        "mutation_id": mutation.mutation_id,
                        "attempts": attempts,
                    },
                ),
                original_error=e.original_error,
            ) from e

    async def _run_attempt(
        self,
        mutation: PendingMutation,
        coro: Any,
        remaining: float | None,
        timeout: float | None,
    ) -> Any:
        task = asyncio.ensure_future(coro)
        try:
            if remaining is None:
                return await asyncio.shield(task)

            done, _ = await asyncio.wait({task}, timeout=remaining)
            if task not in done:
                self._discard_late(mutation, task)
                raise self._timeout_error(mutation, timeout)
            return task.result()
        except asyncio.CancelledError:
            if not task.done():
                task.cancel()
            raise
        except CommitError:
            raise
        except Exception as e:
            raise create_commit_error(
                mutation.fingerprint,
                f"Committer failed: {e!s}",
                mutation_id=mutation.mutation_id,
                original_error=e,
            ) from e

    def _timeout_error(self, mutation: PendingMutation, timeout: float | None) -> CommitTimeoutError:
        return CommitTimeoutError(
            code=ErrorCode.COMMIT_TIMEOUT,
            message=f"Commit did not settle within {timeout}s",
            context=ErrorContext(
                fingerprint=mutation.fingerprint,
                operation="commit",
                additional_data={
                    "mutation_id": mutation.mutation_id,
                    "timeout": timeout,
                },
            ),
        )

    def _discard_late(self, mutation: PendingMutation, task: asyncio.Task[Any]) -> None:
        self._late_commits.add(task)

        def _on_late_done(done: asyncio.Task[Any]) -> None:
            self._late_commits.discard(done)
            if done.cancelled():
                return
            error = done.exception()
            logger.warning(
                "Discarding late commit %s for mutation %s on %s (rolled back after timeout)",
                "failure" if error is not None else "result",
                mutation.mutation_id,
                mutation.fingerprint,
            )

        task.add_done_callback(_on_late_done)

    def _confirm(self, mutation: PendingMutation, result: Any) -> None:
        fingerprint = mutation.fingerprint
        chain = self._chains[fingerprint]
        now = self.store.clock()
        base_tags = chain.base.tags if chain.base is not None else frozenset()
        chain.base = CacheEntry(
            fingerprint=fingerprint,
            value=result,
            tags=mutation.tags if mutation.tags is not None else base_tags,
            created_at=now,
            expires_at=expiry_for(now, mutation.ttl),
        )
        chain.revision += 1
        mutation.result = result
        self.statistics.increment("commits")
        self._finish(mutation, MutationStatus.COMMITTED, error=None)

    def _rollback(
        self,
        mutation: PendingMutation,
        error: BaseException,
        status: MutationStatus = MutationStatus.ROLLED_BACK,
    ) -> None:
        self.statistics.increment("rollbacks")
        self._finish(mutation, status, error=error)

    def _finish(
        self,
        mutation: PendingMutation,
        status: MutationStatus,
        error: BaseException | None,
    ) -> None:
        fingerprint = mutation.fingerprint
        mutation.status = status
        mutation.error = error
        self._mutations.pop(mutation.mutation_id, None)

        chain = self._chains.get(fingerprint)
        if chain is None:
            return
        was_visible = bool(chain.pending) and chain.pending[-1] is mutation
        if mutation in chain.pending:
            chain.pending.remove(mutation)
        reason = NotifyReason.COMMITTED if status == MutationStatus.COMMITTED else NotifyReason.ROLLED_BACK

        if chain.pending:
            if was_visible:
                top = chain.pending[-1]
                written = self.store.put(fingerprint, top.optimistic_value, tags=top.tags)
                self.registry.notify(fingerprint, written.tags, top.optimistic_value, reason)
            return

        del self._chains[fingerprint]
        restored = self._restore_base(fingerprint, chain.base)
        if restored is None:
            self.registry.notify(fingerprint, mutation.tags or frozenset(), None, reason)
        else:
            self.registry.notify(fingerprint, restored.tags, restored.value, reason)

    def _restore_base(self, fingerprint: str, base: CacheEntry | None) -> CacheEntry | None:
        if base is None:
            self.store.remove(fingerprint)
            return None

        now = self.store.clock()
        ttl = _remaining_ttl(base.expires_at, now)
        # A fetch that was running when the chain started will be discarded
        state = EntryState.STALE if base.state == EntryState.REVALIDATING else base.state
        return self.store.put(fingerprint, base.value, tags=base.tags, ttl=ttl, state=state)


def _remaining_ttl(expires_at: datetime | None, now: datetime) -> float | None:
    if expires_at is None:
        return None
    return max(0.0, (expires_at - now).total_seconds())
