"""cachesync core: domain models, per-key locks and statistics."""

from .key_locks import KeyLockArena
from .models import (
    CacheEntry,
    EntryState,
    KeySelector,
    MutationStatus,
    NotifyReason,
    PendingMutation,
    QueueItemState,
    Selector,
    Subscription,
    TagSelector,
    parse_selector,
)
from .statistics import StatisticsCollector, SyncMetrics

__all__ = [
    "CacheEntry",
    "EntryState",
    "KeyLockArena",
    "KeySelector",
    "MutationStatus",
    "NotifyReason",
    "PendingMutation",
    "QueueItemState",
    "Selector",
    "StatisticsCollector",
    "Subscription",
    "SyncMetrics",
    "TagSelector",
    "parse_selector",
]
