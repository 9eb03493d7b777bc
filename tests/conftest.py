"""
Pytest configuration and shared fixtures for cachesync tests.

This module provides the engine components wired the same way
``SyncEngine`` wires them, with a retry policy that never sleeps.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any

import pytest

from cachesync.core.key_locks import KeyLockArena
from cachesync.core.models import NotifyReason
from cachesync.core.statistics import StatisticsCollector
from cachesync.services.entry_store import EntryStore
from cachesync.services.fetch_coordinator import FetchCoordinator
from cachesync.services.invalidation_router import InvalidationRouter
from cachesync.services.mutation_manager import MutationManager
from cachesync.services.retry_policy import RetryPolicy
from cachesync.services.subscriptions import SubscriptionRegistry


async def _no_sleep(_delay: float) -> None:
    return None


class NotificationRecorder:
    """Subscriber callback that records every notification."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any, NotifyReason]] = []

    def __call__(self, fingerprint: str, value: Any, reason: NotifyReason) -> None:
        self.calls.append((fingerprint, value, reason))

    @property
    def reasons(self) -> list[NotifyReason]:
        return [reason for _, _, reason in self.calls]


@pytest.fixture
def statistics() -> StatisticsCollector:
    return StatisticsCollector()


@pytest.fixture
def store() -> EntryStore:
    return EntryStore()


@pytest.fixture
def locks() -> KeyLockArena:
    return KeyLockArena()


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts without any backoff delay."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, sleep=_no_sleep)


@pytest.fixture
def coordinator(
    store: EntryStore,
    locks: KeyLockArena,
    registry: SubscriptionRegistry,
    fast_retry: RetryPolicy,
    statistics: StatisticsCollector,
) -> FetchCoordinator:
    return FetchCoordinator(store, locks, registry, fast_retry, statistics)


@pytest.fixture
def manager(
    store: EntryStore,
    locks: KeyLockArena,
    registry: SubscriptionRegistry,
    fast_retry: RetryPolicy,
    statistics: StatisticsCollector,
) -> MutationManager:
    return MutationManager(store, locks, registry, fast_retry, statistics, rollback_timeout=None)


@pytest.fixture
def router(
    store: EntryStore,
    locks: KeyLockArena,
    registry: SubscriptionRegistry,
    coordinator: FetchCoordinator,
    statistics: StatisticsCollector,
) -> InvalidationRouter:
    return InvalidationRouter(store, locks, registry, coordinator, statistics)


@pytest.fixture
def recorder() -> NotificationRecorder:
    return NotificationRecorder()


@pytest.fixture(autouse=True)
def _reset_cachesync_logger() -> Generator[None, None, None]:
    """Undo CLI logger setup so caplog sees cachesync records."""
    yield
    logger = logging.getLogger("cachesync")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
