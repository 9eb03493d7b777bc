"""Retry policy with exponential backoff.

Fetchers and committers are retried locally on failure. After the last
attempt the failure surfaces to the caller. Exceptions listed as terminal
(commit timeouts by default) are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from cachesync.shared.constants import RetryDefaults
from cachesync.shared.errors import CommitTimeoutError, create_validation_error

if TYPE_CHECKING:
    from cachesync.config.models import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException], None]


class RetryPolicy:
    """Exponential backoff retry policy.

    Args:
        max_attempts: Total attempts including the first one (default: 3)
        base_delay: Delay before the first retry in seconds (default: 0.1)
        multiplier: Backoff multiplier applied per retry (default: 2.0)
        max_delay: Upper bound for a single delay in seconds (default: 5.0)
        retry_on: Exception types that are retried
        terminal: Exception types that are never retried, even if they
            match ``retry_on``
        sleep: Awaitable sleep function (injectable for tests)
    """

    def __init__(
        self,
        max_attempts: int = RetryDefaults.MAX_ATTEMPTS,
        base_delay: float = RetryDefaults.BASE_DELAY,
        multiplier: float = RetryDefaults.MULTIPLIER,
        max_delay: float = RetryDefaults.MAX_DELAY,
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        terminal: tuple[type[BaseException], ...] = (CommitTimeoutError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise create_validation_error(
                f"max_attempts must be at least 1, got: {max_attempts}",
                field="max_attempts",
                operation="retry_policy_init",
            )
        if base_delay < 0 or max_delay < 0:
            raise create_validation_error(
                "Retry delays must be non-negative",
                field="base_delay",
                operation="retry_policy_init",
            )
        if multiplier < 1:
            raise create_validation_error(
                f"multiplier must be at least 1, got: {multiplier}",
                field="multiplier",
                operation="retry_policy_init",
            )

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.retry_on = retry_on
        self.terminal = terminal
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1, base_delay=0.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on) and not isinstance(error, self.terminal)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str = "operation",
        on_retry: RetryCallback | None = None,
        deadline: float | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Zero-argument coroutine function
            name: Operation name used in log messages
            on_retry: Called with ``(failed_attempt, error)`` before each retry
            deadline: Event loop time backoff delays never sleep past

        Returns:
            The operation's result

        Raises:
            The last exception raised by ``operation``
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise

                delay = self.delay_for(attempt)
                if deadline is not None:
                    delay = max(0.0, min(delay, deadline - asyncio.get_running_loop().time()))
                logger.debug(
                    "%s failed (attempt %d/%d), retrying in %.3fs: %s",
                    name,
                    attempt,
                    self.max_attempts,
                    delay,
                    e,
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                await self._sleep(delay)
                attempt += 1
