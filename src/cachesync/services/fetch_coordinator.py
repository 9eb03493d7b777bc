"""Fetch coordinator.

Serves reads from the entry store and, when a value is missing, stale or
expired, runs the caller's fetcher. At most one fetch per fingerprint is in
flight at any time: concurrent readers join the running fetch instead of
issuing their own (request coalescing).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from cachesync.core.key_locks import KeyLockArena
from cachesync.core.models import EntryState, NotifyReason
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.entry_store import EntryStore
from cachesync.services.mutation_manager import MutationManager
from cachesync.services.retry_policy import RetryPolicy
from cachesync.services.subscriptions import SubscriptionRegistry
from cachesync.shared.callables import call_maybe_async
from cachesync.shared.errors import (
    ErrorCode,
    ErrorContext,
    FetchError,
    create_fetch_error,
)
from cachesync.shared.logging import log_operation_error, log_operation_success
from cachesync.shared.protocols import Fetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchSpec:
    """How to (re)fetch one fingerprint."""

    fetcher: Fetcher
    ttl: float | None = None
    tags: frozenset[str] | None = None
    timeout: float | None = None


@dataclass
class _InFlight:
    """A running fetch and the readers waiting on it.

    A background flight is owned by the engine itself (eager refetch or
    stale-while-revalidate) and is never cancelled when readers leave.
    """

    version_at_start: int
    previous_state: EntryState | None
    background: bool
    base_revision: int | None = None
    waiters: int = 0
    task: asyncio.Task[Any] = field(init=False)


class FetchCoordinator:
    """Deduplicating, TTL-aware read path.

    Args:
        store: Shared entry store
        locks: Per-key lock arena shared with the other components
        registry: Subscription registry used for refetch notifications
        retry_policy: Retry policy applied to fetchers
        statistics: Optional statistics collector
        mutations: Mutation manager; fetched values for keys with pending
            optimistic writes go to its committed base instead of the store
    """

    def __init__(
        self,
        store: EntryStore,
        locks: KeyLockArena,
        registry: SubscriptionRegistry,
        retry_policy: RetryPolicy | None = None,
        statistics: StatisticsCollector | None = None,
        *,
        mutations: MutationManager | None = None,
    ) -> None:
        self.store = store
        self.locks = locks
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.statistics = statistics or StatisticsCollector()
        self.mutations = mutations
        self._in_flight: dict[str, _InFlight] = {}
        self._specs: dict[str, FetchSpec] = {}

    async def read(
        self,
        fingerprint: str,
        fetcher: Fetcher,
        *,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
        stale_while_revalidate: bool = False,
        use_last_known_good: bool = True,
        timeout: float | None = None,
    ) -> Any:
        """Return the value for ``fingerprint``, fetching it if needed.

        Args:
            fingerprint: Cache key
            fetcher: Zero-argument function returning the server value
            ttl: Seconds the fetched value stays fresh (None: no expiry)
            tags: Tags stored with the fetched value
            stale_while_revalidate: Serve a stale or expired value immediately
                and refresh it in the background
            use_last_known_good: After a failed fetch, serve the previous
                value while retrying in the background; False blocks on a
                new fetch instead
            timeout: Optional per-attempt time limit for the fetcher

        Returns:
            The cached or fetched value

        Raises:
            FetchError: If the fetch fails after all retries
        """
        spec = FetchSpec(
            fetcher=fetcher,
            ttl=ttl,
            tags=frozenset(tags) if tags is not None else None,
            timeout=timeout,
        )
        self._specs[fingerprint] = spec

        entry = self.store.get(fingerprint)
        if entry is not None and entry.is_servable(self.store.clock()):
            self.statistics.record_read(hit=True)
            return entry.value

        self.statistics.record_read(hit=False)

        serve_cached = entry is not None and (
            (entry.state == EntryState.ERROR and use_last_known_good)
            or (entry.state != EntryState.ERROR and stale_while_revalidate)
        )

        flight = self._in_flight.get(fingerprint)
        if flight is not None:
            self.statistics.increment("coalesced_reads")
            if serve_cached:
                self.statistics.increment("stale_served")
                return entry.value  # type: ignore[union-attr]
            return await self._wait(fingerprint, flight)

        if serve_cached:
            self._start(fingerprint, spec, background=True)
            self.statistics.increment("stale_served")
            return entry.value  # type: ignore[union-attr]

        flight = self._start(fingerprint, spec, background=False)
        return await self._wait(fingerprint, flight)

    def refresh(self, fingerprint: str) -> asyncio.Task[Any] | None:
        """Refetch in the background with the fetcher last used for the key.

        Returns:
            The running fetch task, or None if no fetcher is known
        """
        flight = self._in_flight.get(fingerprint)
        if flight is not None:
            return flight.task

        spec = self._specs.get(fingerprint)
        if spec is None:
            return None
        return self._start(fingerprint, spec, background=True).task

    def has_fetcher(self, fingerprint: str) -> bool:
        return fingerprint in self._specs

    def in_flight(self, fingerprint: str) -> bool:
        return fingerprint in self._in_flight

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def aclose(self) -> None:
        """Cancel every running fetch and wait for them to unwind."""
        tasks = [flight.task for flight in self._in_flight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()

    def _start(self, fingerprint: str, spec: FetchSpec, *, background: bool) -> _InFlight:
        entry = self.store.get(fingerprint)
        previous_state = entry.state if entry is not None else None
        base_revision = self.mutations.base_revision(fingerprint) if self.mutations else None
        # A pending optimistic value stays visible as it is
        if entry is not None and base_revision is None:
            self.store.mark_state(fingerprint, EntryState.REVALIDATING)

        flight = _InFlight(
            version_at_start=self.store.version_of(fingerprint),
            previous_state=previous_state,
            background=background,
            base_revision=base_revision,
        )
        flight.task = asyncio.create_task(
            self._run_fetch(fingerprint, spec, flight),
            name=f"cachesync-fetch:{fingerprint}",
        )
        flight.task.add_done_callback(_consume_result)
        self._in_flight[fingerprint] = flight
        return flight

    async def _wait(self, fingerprint: str, flight: _InFlight) -> Any:
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if flight.task.cancelled() and (current is None or current.cancelling() == 0):
                raise FetchError(
                    code=ErrorCode.FETCH_CANCELLED,
                    message="Fetch was cancelled before it completed",
                    context=ErrorContext(fingerprint=fingerprint, operation="read"),
                ) from None
            raise
        finally:
            flight.waiters -= 1
            # The last reader leaving cancels a fetch nobody else owns
            if flight.waiters == 0 and not flight.background and not flight.task.done():
                logger.debug("Last reader left, cancelling fetch for %s", fingerprint)
                flight.task.cancel()

    async def _run_fetch(self, fingerprint: str, spec: FetchSpec, flight: _InFlight) -> Any:
        self.statistics.increment("fetches")
        started = time.perf_counter()
        attempts = 1

        def _on_retry(_attempt: int, _error: BaseException) -> None:
            nonlocal attempts
            attempts += 1
            self.statistics.increment("retries")

        try:
            try:
                value = await self.retry_policy.run(
                    lambda: self._invoke(fingerprint, spec),
                    name=f"fetch {fingerprint}",
                    on_retry=_on_retry,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self._complete_failure(fingerprint, e, attempts)

            result = await self._complete_success(fingerprint, spec, flight, value)
            log_operation_success(
                logger=logger,
                operation="fetch",
                duration_ms=(time.perf_counter() - started) * 1000,
                result_info={"attempts": attempts},
                context={"fingerprint": fingerprint},
            )
            return result
        except asyncio.CancelledError:
            entry = self.store.get(fingerprint)
            if entry is not None and entry.state == EntryState.REVALIDATING:
                self.store.mark_state(fingerprint, flight.previous_state or EntryState.STALE)
            raise
        finally:
            if self._in_flight.get(fingerprint) is flight:
                del self._in_flight[fingerprint]

    async def _invoke(self, fingerprint: str, spec: FetchSpec) -> Any:
        try:
            if spec.timeout is not None:
                return await asyncio.wait_for(call_maybe_async(spec.fetcher), spec.timeout)
            return await call_maybe_async(spec.fetcher)
        except FetchError:
            raise
        except TimeoutError as e:
            raise FetchError(
                code=ErrorCode.FETCH_TIMEOUT,
                message=f"Fetcher did not complete within {spec.timeout}s",
                context=ErrorContext(
                    fingerprint=fingerprint,
                    operation="fetch",
                    additional_data={"timeout": spec.timeout},
                ),
                original_error=e,
            ) from e
        except Exception as e:
            raise create_fetch_error(fingerprint, f"Fetcher failed: {e!s}", e) from e

    async def _complete_success(
        self,
        fingerprint: str,
        spec: FetchSpec,
        flight: _InFlight,
        value: Any,
    ) -> Any:
        async with self.locks.hold(fingerprint):
            current = self.store.get(fingerprint)
            if current is not None and self.store.version_of(fingerprint) != flight.version_at_start:
                # A local write landed while the fetch was running; it wins
                self.statistics.increment("discarded_fetches")
                logger.debug(
                    "Discarding fetch result for %s (version %d -> %d)",
                    fingerprint,
                    flight.version_at_start,
                    current.version,
                )
                return current.value

            if self.mutations is not None and self.mutations.absorb_fetch(
                fingerprint,
                value,
                revision=flight.base_revision,
                tags=spec.tags,
                ttl=spec.ttl,
            ):
                return current.value if current is not None else value

            entry = self.store.put(
                fingerprint,
                value,
                tags=spec.tags,
                ttl=spec.ttl,
                state=EntryState.FRESH,
            )
            self.registry.notify(fingerprint, entry.tags, value, NotifyReason.REFETCHED)
            return value

    async def _complete_failure(
        self,
        fingerprint: str,
        error: Exception,
        attempts: int,
    ) -> None:
        async with self.locks.hold(fingerprint):
            entry = self.store.get(fingerprint)
            if entry is not None and entry.state == EntryState.REVALIDATING:
                self.store.mark_state(fingerprint, EntryState.ERROR)

        self.statistics.increment("fetch_errors")
        original = error.original_error if isinstance(error, FetchError) else error
        final_error = FetchError(
            code=error.code if isinstance(error, FetchError) else ErrorCode.FETCH_FAILED,
            message=(
                f"{error.message if isinstance(error, FetchError) else error!s}"
                f" (after {attempts} attempt{'s' if attempts != 1 else ''})"
            ),
            context=ErrorContext(
                fingerprint=fingerprint,
                operation="fetch",
                additional_data={"attempts": attempts},
            ),
            original_error=original,
        )
        log_operation_error(logger=logger, error=final_error, operation="fetch")
        raise final_error from error


def _consume_result(task: asyncio.Task[Any]) -> None:
    # Background fetches may finish with nobody awaiting them
    if not task.cancelled():
        task.exception()
