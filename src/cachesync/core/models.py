"""Core domain models for the cache-coherence engine.

Cache entries, pending mutations, offline queue items, subscriptions and
invalidation selectors. Payload values are opaque: nothing in this module
inspects them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Union

from cachesync.shared.errors import (
    ApplicationError,
    ErrorCode,
    ErrorContext,
    create_validation_error,
)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class EntryState(str, Enum):
    """Lifecycle state of a cache entry."""

    FRESH = "fresh"
    STALE = "stale"
    REVALIDATING = "revalidating"
    ERROR = "error"


class MutationStatus(str, Enum):
    """Lifecycle status of an optimistic mutation."""

    OPTIMISTIC = "optimistic"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_pending(self) -> bool:
        return self in (MutationStatus.OPTIMISTIC, MutationStatus.COMMITTING)


class QueueItemState(str, Enum):
    """State of an item in the offline queue."""

    QUEUED = "queued"
    DRAINING = "draining"
    COMMITTED = "committed"
    FAILED = "failed"


class NotifyReason(str, Enum):
    """Why a subscriber is being notified."""

    OPTIMISTIC = "optimistic"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    REFETCHED = "refetched"
    INVALIDATED = "invalidated"


@dataclass
class CacheEntry:
    """One cached resource.

    Attributes:
        fingerprint: Cache key of the resource
        value: Opaque payload
        tags: Labels used for tag-based invalidation
        created_at: When the current value was written
        expires_at: When the value becomes stale (None for no expiration)
        state: Lifecycle state
        version: Per-key write counter, only ever increases
    """

    fingerprint: str
    value: Any
    tags: frozenset[str] = field(default_factory=frozenset)
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None
    state: EntryState = EntryState.FRESH
    version: int = 1

    def __post_init__(self) -> None:
        if not self.fingerprint:
            msg = "fingerprint must be non-empty"
            raise ValueError(msg)
        if self.version < 0:
            msg = f"version must be non-negative, got {self.version}"
            raise ValueError(msg)
        if self.expires_at is not None and self.expires_at < self.created_at:
            msg = "expires_at must not be before created_at"
            raise ValueError(msg)
        self.tags = frozenset(self.tags)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def is_servable(self, now: datetime | None = None) -> bool:
        """True when the entry can be returned without any I/O."""
        return self.state == EntryState.FRESH and not self.is_expired(now)

    def with_state(self, state: EntryState) -> CacheEntry:
        return replace(self, state=state)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence. ``value`` must be JSON-serializable."""
        return {
            "fingerprint": self.fingerprint,
            "value": self.value,
            "tags": sorted(self.tags),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "state": self.state.value,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        expires_at = data.get("expires_at")
        return cls(
            fingerprint=data["fingerprint"],
            value=data.get("value"),
            tags=frozenset(data.get("tags") or ()),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            state=EntryState(data.get("state", EntryState.FRESH.value)),
            version=int(data.get("version", 1)),
        )


def expiry_for(created_at: datetime, ttl: float | None) -> datetime | None:
    """Return ``created_at + ttl`` or None when ttl is None."""
    if ttl is None:
        return None
    if ttl < 0:
        raise create_validation_error(
            f"TTL must be non-negative, got: {ttl}",
            field="ttl",
            operation="entry_put",
        )
    return created_at + timedelta(seconds=ttl)


@dataclass
class PendingMutation:
    """An optimistic write awaiting server confirmation.

    ``rollback_snapshot`` holds the value visible immediately before the
    optimistic write; ``snapshot_present`` records whether an entry existed
    at all, so rolling back a write to a new key removes the entry.
    """

    mutation_id: str
    fingerprint: str
    optimistic_value: Any
    rollback_snapshot: Any = None
    snapshot_present: bool = False
    status: MutationStatus = MutationStatus.OPTIMISTIC
    retry_count: int = 0
    enqueued_at: datetime = field(default_factory=utcnow)
    tags: frozenset[str] | None = None
    ttl: float | None = None
    result: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class KeySelector:
    """Selects the single entry stored under ``fingerprint``."""

    fingerprint: str

    def __str__(self) -> str:
        return f"key:{self.fingerprint}"


@dataclass(frozen=True)
class TagSelector:
    """Selects every entry carrying ``tag``."""

    tag: str

    def __str__(self) -> str:
        return f"tag:{self.tag}"


Selector = Union[KeySelector, TagSelector]


def parse_selector(raw: str | Selector) -> Selector:
    """Parse ``"key:<fingerprint>"`` or ``"tag:<name>"`` into a selector.

    Selector instances are returned unchanged so event feeds may push
    either form.

    Raises:
        ApplicationError: If the string has no recognised prefix.
    """
    if isinstance(raw, (KeySelector, TagSelector)):
        return raw

    kind, sep, target = raw.partition(":")
    if sep and target:
        if kind == "key":
            return KeySelector(target)
        if kind == "tag":
            return TagSelector(target)

    raise ApplicationError(
        ErrorCode.INVALID_SELECTOR,
        f"Invalid selector '{raw}', expected 'key:<fingerprint>' or 'tag:<name>'",
        ErrorContext(operation="parse_selector", additional_data={"selector": raw}),
    )


NotifyCallback = Callable[[str, Any, NotifyReason], Any]


@dataclass
class Subscription:
    """An observer's interest in a key or tag."""

    subscriber_id: str
    selector: Selector
    callback: NotifyCallback

    def matches(self, fingerprint: str, tags: frozenset[str]) -> bool:
        if isinstance(self.selector, KeySelector):
            return self.selector.fingerprint == fingerprint
        return self.selector.tag in tags
