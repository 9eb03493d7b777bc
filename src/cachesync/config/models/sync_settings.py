"""Synchronization configuration models.

Retry, rollback timeout, offline queue and conflict-resolution settings.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from cachesync.shared.constants import (
    ConflictPolicy,
    MutationDefaults,
    OverflowPolicy,
    QueueDefaults,
    RetryDefaults,
)


class RetrySettings(BaseModel):
    """Retry policy applied to fetchers and committers."""

    max_attempts: int = Field(
        default=RetryDefaults.MAX_ATTEMPTS,
        ge=1,
        description="Total attempts including the first one",
    )
    base_delay: float = Field(
        default=RetryDefaults.BASE_DELAY,
        ge=0,
        description="Delay before the first retry in seconds",
    )
    multiplier: float = Field(
        default=RetryDefaults.MULTIPLIER,
        ge=1,
        description="Backoff multiplier applied per retry",
    )
    max_delay: float = Field(
        default=RetryDefaults.MAX_DELAY,
        ge=0,
        description="Upper bound for a single retry delay in seconds",
    )

    @model_validator(mode="after")
    def validate_delays(self) -> RetrySettings:
        if self.max_delay < self.base_delay:
            msg = f"max_delay ({self.max_delay}) must not be smaller than base_delay ({self.base_delay})"
            raise ValueError(msg)
        return self


class QueueSettings(BaseModel):
    """Offline queue configuration."""

    max_length: int = Field(
        default=QueueDefaults.MAX_LENGTH,
        gt=0,
        description="Maximum number of queued offline mutations",
    )
    overflow_policy: OverflowPolicy = Field(
        default=QueueDefaults.OVERFLOW_POLICY,
        description="What to do when the queue is full (reject_new, drop_oldest)",
    )
    conflict_policy: ConflictPolicy = Field(
        default=QueueDefaults.CONFLICT_POLICY,
        description="Drain-time conflict resolution (client_wins, server_wins, merge)",
    )


class SyncSettings(BaseModel):
    """Mutation and offline synchronization configuration."""

    rollback_timeout: float | None = Field(
        default=MutationDefaults.ROLLBACK_TIMEOUT,
        gt=0,
        description="Seconds a commit may take before it is rolled back (None: no limit)",
    )
    start_online: bool = Field(default=True, description="Initial connectivity state")
    retry: RetrySettings = Field(default_factory=RetrySettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)


__all__ = [
    "QueueSettings",
    "RetrySettings",
    "SyncSettings",
]
