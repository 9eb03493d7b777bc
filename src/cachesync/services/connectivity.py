"""Connectivity state machine.

Tracks whether the engine may talk to the server. Mutations issued while
offline go to the offline queue; the transition back to online is what
triggers a drain.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[["ConnectivityState", "ConnectivityState"], None]


class ConnectivityState(Enum):
    """Connectivity states of the engine."""

    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityMonitor:
    """State machine fed by the caller's connectivity signal.

    Args:
        online: Initial state (default: online)
        history_size: Number of transitions kept for diagnostics
    """

    def __init__(self, online: bool = True, history_size: int = 50):
        self._state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        self._history: deque[tuple[ConnectivityState, float]] = deque(maxlen=history_size)
        self._listeners: list[ConnectivityListener] = []
        self._last_change = time.time()

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectivityState.ONLINE

    @property
    def last_change(self) -> float:
        """Timestamp of the last transition (or of construction)."""
        return self._last_change

    def update(self, is_online: bool) -> bool:
        """Apply a connectivity signal.

        Repeated signals for the current state are ignored.

        Args:
            is_online: Whether the server is reachable now

        Returns:
            True when this signal moved the engine from offline to online
        """
        new_state = ConnectivityState.ONLINE if is_online else ConnectivityState.OFFLINE
        if new_state == self._state:
            return False

        previous = self._state
        self._state = new_state
        self._last_change = time.time()
        self._history.append((new_state, self._last_change))
        logger.info("Connectivity changed: %s -> %s", previous.value, new_state.value)

        for listener in list(self._listeners):
            listener(previous, new_state)

        return previous == ConnectivityState.OFFLINE and new_state == ConnectivityState.ONLINE

    def add_listener(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def history(self) -> list[tuple[ConnectivityState, float]]:
        """Recent transitions as ``(state, timestamp)`` pairs, oldest first."""
        return list(self._history)

    def reset(self, online: bool = True) -> None:
        """Reset to the given state and clear the transition history."""
        self._state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        self._history.clear()
        self._last_change = time.time()
