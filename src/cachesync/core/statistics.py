"""
Statistics Collection Module

Counters for the read, write, invalidation and offline paths of a single
engine instance.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class SyncMetrics:
    """Container for engine metrics."""

    # Read path
    cache_hits: int = 0
    cache_misses: int = 0
    coalesced_reads: int = 0
    stale_served: int = 0
    fetches: int = 0
    fetch_errors: int = 0
    discarded_fetches: int = 0

    # Write path
    mutations: int = 0
    commits: int = 0
    rollbacks: int = 0
    commit_timeouts: int = 0
    retries: int = 0

    # Invalidation
    invalidations: int = 0
    eager_refetches: int = 0
    expirations: int = 0

    # Offline queue
    queued_mutations: int = 0
    drained_mutations: int = 0
    evicted_mutations: int = 0
    conflicts: int = 0

    @property
    def cache_hit_ratio(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total > 0 else 0.0


class StatisticsCollector:
    """Central aggregator for engine counters."""

    def __init__(self) -> None:
        self.metrics = SyncMetrics()
        self.session_start = datetime.now(timezone.utc)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increment a named counter.

        Args:
            counter: Name of a ``SyncMetrics`` field
            amount: Increment size

        Raises:
            AttributeError: If ``counter`` is not a known metric
        """
        current = getattr(self.metrics, counter)
        setattr(self.metrics, counter, current + amount)

    def record_read(self, *, hit: bool) -> None:
        if hit:
            self.metrics.cache_hits += 1
        else:
            self.metrics.cache_misses += 1

    def reset(self) -> None:
        self.metrics = SyncMetrics()
        self.session_start = datetime.now(timezone.utc)
        logger.debug("Statistics reset")

    def get_summary(self) -> dict[str, Any]:
        """Return all counters plus derived values."""
        summary: dict[str, Any] = asdict(self.metrics)
        summary["cache_hit_ratio"] = self.metrics.cache_hit_ratio
        summary["session_start"] = self.session_start.isoformat()
        return summary
