"""cachesync services.

The components of the engine, leaves first: entry store, subscription
registry, fetch coordinator, mutation manager, invalidation router and
offline queue, plus the retry policy, connectivity state machine and the
SQLite persistence hook.
"""

from .connectivity import ConnectivityMonitor, ConnectivityState
from .entry_store import EntryStore
from .fetch_coordinator import FetchCoordinator
from .invalidation_router import InvalidationRouter
from .mutation_manager import MutationManager
from .offline_queue import OfflineQueue, OfflineQueueItem, QueueStats
from .retry_policy import RetryPolicy
from .sqlite_persistence import SQLitePersistence
from .subscriptions import SubscriptionRegistry

__all__ = [
    "ConnectivityMonitor",
    "ConnectivityState",
    "EntryStore",
    "FetchCoordinator",
    "InvalidationRouter",
    "MutationManager",
    "OfflineQueue",
    "OfflineQueueItem",
    "QueueStats",
    "RetryPolicy",
    "SQLitePersistence",
    "SubscriptionRegistry",
]
