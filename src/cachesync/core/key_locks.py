"""Per-key lock arena.

Every state transition on a fingerprint that must not interleave with
another (commit phases, invalidation handlers, fetch completions) runs
under that fingerprint's lock. Locks are created on first use and dropped
as soon as nobody holds or waits on them, so the arena only grows with the
number of keys under contention. Unrelated keys never block each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field


@dataclass
class _LockSlot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyLockArena:
    """Arena of FIFO ``asyncio.Lock`` objects keyed by fingerprint.

    ``asyncio.Lock`` wakes waiters in acquisition order, so holders of the
    same key run in the order they asked for the lock.
    """

    def __init__(self) -> None:
        self._slots: dict[str, _LockSlot] = {}

    @asynccontextmanager
    async def hold(self, fingerprint: str) -> AsyncIterator[None]:
        """Hold the lock for ``fingerprint`` for the duration of the block."""
        slot = self._slots.get(fingerprint)
        if slot is None:
            slot = self._slots[fingerprint] = _LockSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(fingerprint) is slot:
                del self._slots[fingerprint]

    def is_locked(self, fingerprint: str) -> bool:
        slot = self._slots.get(fingerprint)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)
