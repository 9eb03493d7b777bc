"""Tests for the deduplicating read path."""

import asyncio

import pytest

from cachesync.core.models import EntryState, NotifyReason
from cachesync.services.fetch_coordinator import FetchCoordinator
from cachesync.shared.errors import CommitError, ErrorCode, FetchError


class _GatedFetcher:
    """Async fetcher that blocks until ``gate`` is set."""

    def __init__(self, value):
        self.value = value
        self.calls = 0
        self.cancelled = False
        self.gate = asyncio.Event()

    async def __call__(self):
        self.calls += 1
        try:
            await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.value


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestReadHitsAndMisses:
    """Fresh entries are served from the store."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, coordinator, statistics):
        calls = []

        def fetcher():
            calls.append(1)
            return {"id": 1}

        first = await coordinator.read("users:1", fetcher, ttl=30)
        second = await coordinator.read("users:1", fetcher, ttl=30)

        assert first == second == {"id": 1}
        assert len(calls) == 1
        assert statistics.metrics.cache_misses == 1
        assert statistics.metrics.cache_hits == 1

    @pytest.mark.asyncio
    async def test_fetched_value_is_stored_with_tags(self, coordinator, store):
        await coordinator.read("users:1", lambda: 1, tags={"users"})

        entry = store.get("users:1")
        assert entry.state == EntryState.FRESH
        assert entry.tags == frozenset({"users"})

    @pytest.mark.asyncio
    async def test_subscribers_are_told_about_refetches(self, coordinator, registry, recorder):
        registry.subscribe("key:users:1", recorder)

        await coordinator.read("users:1", lambda: 1)

        assert recorder.calls == [("users:1", 1, NotifyReason.REFETCHED)]


class TestRequestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_fetch(self, coordinator, statistics):
        # Given
        fetcher = _GatedFetcher({"id": 1})
        readers = [asyncio.create_task(coordinator.read("users:1", fetcher)) for _ in range(3)]
        await _settle()

        # When
        fetcher.gate.set()
        results = await asyncio.gather(*readers)

        # Then
        assert results == [{"id": 1}] * 3
        assert fetcher.calls == 1
        assert statistics.metrics.coalesced_reads == 2
        assert not coordinator.in_flight("users:1")


class TestFetchFailures:
    """Retries, error state and last-known-good."""

    @pytest.mark.asyncio
    async def test_failure_after_retries_stores_nothing(self, coordinator, store, statistics):
        calls = []

        def fetcher():
            calls.append(1)
            raise ConnectionError("server down")

        with pytest.raises(FetchError) as exc_info:
            await coordinator.read("users:1", fetcher)

        assert exc_info.value.code == ErrorCode.FETCH_FAILED
        assert "after 3 attempts" in exc_info.value.message
        assert isinstance(exc_info.value.original_error, ConnectionError)
        assert len(calls) == 3
        assert store.get("users:1") is None
        assert statistics.metrics.fetch_errors == 1
        assert statistics.metrics.retries == 2

    @pytest.mark.asyncio
    async def test_error_entry_serves_last_known_good(self, coordinator, store):
        # Given: a value that expires immediately, then a failing server
        await coordinator.read("users:1", lambda: "v1", ttl=0)

        def failing():
            raise ConnectionError("server down")

        with pytest.raises(FetchError):
            await coordinator.read("users:1", failing, ttl=0)
        assert store.get("users:1").state == EntryState.ERROR

        # When
        value = await coordinator.read("users:1", failing, ttl=0)

        # Then: the old value is served while a background retry runs
        assert value == "v1"
        task = coordinator.refresh("users:1")
        assert task is not None
        with pytest.raises(FetchError):
            await task
        assert store.get("users:1").value == "v1"

    @pytest.mark.asyncio
    async def test_opting_out_of_last_known_good_blocks(self, coordinator, store):
        await coordinator.read("users:1", lambda: "v1", ttl=0)

        def failing():
            raise ConnectionError("server down")

        with pytest.raises(FetchError):
            await coordinator.read("users:1", failing)

        with pytest.raises(FetchError):
            await coordinator.read("users:1", failing, use_last_known_good=False)

    @pytest.mark.asyncio
    async def test_timeout_raises_fetch_timeout(self, coordinator):
        async def slow():
            await asyncio.sleep(10)

        with pytest.raises(FetchError) as exc_info:
            await coordinator.read("users:1", slow, timeout=0.01)

        assert exc_info.value.code == ErrorCode.FETCH_TIMEOUT


class TestStaleWhileRevalidate:
    @pytest.mark.asyncio
    async def test_stale_value_served_and_refreshed(self, coordinator, store):
        # Given
        await coordinator.read("users:1", lambda: "v1", ttl=0)

        # When
        value = await coordinator.read(
            "users:1", lambda: "v2", ttl=30, stale_while_revalidate=True
        )

        # Then
        assert value == "v1"
        task = coordinator.refresh("users:1")
        assert await task == "v2"
        assert store.get("users:1").value == "v2"
        assert store.get("users:1").state == EntryState.FRESH

    def test_refresh_without_known_fetcher(self, coordinator):
        assert coordinator.refresh("users:1") is None


class TestCancellation:
    """Readers leaving a shared fetch."""

    @pytest.mark.asyncio
    async def test_one_of_two_readers_cancelled(self, coordinator):
        # Given
        fetcher = _GatedFetcher("v1")
        first = asyncio.create_task(coordinator.read("users:1", fetcher))
        second = asyncio.create_task(coordinator.read("users:1", fetcher))
        await _settle()

        # When
        first.cancel()
        await _settle()
        fetcher.gate.set()

        # Then
        with pytest.raises(asyncio.CancelledError):
            await first
        assert await second == "v1"
        assert not fetcher.cancelled

    @pytest.mark.asyncio
    async def test_last_reader_cancelled_stops_fetch(self, coordinator, store):
        # Given
        store.put("users:1", "old", ttl=0)
        fetcher = _GatedFetcher("new")
        reader = asyncio.create_task(coordinator.read("users:1", fetcher))
        await _settle()
        assert store.get("users:1").state == EntryState.REVALIDATING

        # When
        reader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await reader
        await _settle()

        # Then
        assert fetcher.cancelled
        assert not coordinator.in_flight("users:1")
        assert store.get("users:1").state == EntryState.FRESH
        assert store.get("users:1").value == "old"


class TestVersionGuard:
    @pytest.mark.asyncio
    async def test_local_write_during_fetch_wins(self, coordinator, store, statistics):
        # Given
        fetcher = _GatedFetcher("from-server")
        reader = asyncio.create_task(coordinator.read("users:1", fetcher))
        await _settle()

        # When
        store.put("users:1", "local")
        fetcher.gate.set()

        # Then
        assert await reader == "local"
        assert store.get("users:1").value == "local"
        assert statistics.metrics.discarded_fetches == 1


class TestPendingWrites:
    """Fetch results for keys with unsettled optimistic writes."""

    @pytest.fixture
    def guarded(self, store, locks, registry, fast_retry, statistics, manager):
        return FetchCoordinator(
            store, locks, registry, fast_retry, statistics, mutations=manager
        )

    @pytest.mark.asyncio
    async def test_refetch_never_overwrites_optimistic_value(self, guarded, manager, store):
        # Given
        values = iter(["A", "server"])
        await guarded.read("users:1", lambda: next(values))
        mutation = manager.apply_optimistic("users:1", "B")

        # When
        result = await guarded.refresh("users:1")

        # Then
        assert result == "B"
        entry = store.get("users:1")
        assert entry.value == "B"
        assert entry.state == EntryState.FRESH

        manager.abandon(mutation, CommitError(ErrorCode.COMMIT_FAILED, "gone"))
        assert store.get("users:1").value == "server"

    @pytest.mark.asyncio
    async def test_failed_refetch_leaves_optimistic_value_alone(self, guarded, manager, store):
        # Given
        calls = []

        def fetcher():
            calls.append(1)
            if len(calls) > 1:
                raise ConnectionError("down")
            return "A"

        await guarded.read("users:1", fetcher)
        manager.apply_optimistic("users:1", "B")

        # When
        with pytest.raises(FetchError):
            await guarded.refresh("users:1")

        # Then
        entry = store.get("users:1")
        assert entry.value == "B"
        assert entry.state == EntryState.FRESH
