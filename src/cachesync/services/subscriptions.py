"""Subscription registry.

Bookkeeping of which observers watch which keys or tags. The invalidation
router asks it whether a key is actively watched (eager refetch) and every
component that changes a watched value fans out notifications through it.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from cachesync.core.models import (
    KeySelector,
    NotifyCallback,
    NotifyReason,
    Selector,
    Subscription,
    TagSelector,
    parse_selector,
)
from cachesync.shared.errors import DomainError, ErrorCode, ErrorContext
from cachesync.shared.logging import log_operation_error

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Tracks subscriptions and delivers change notifications."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def subscribe(self, selector: Selector | str, callback: NotifyCallback) -> str:
        """Register ``callback`` for a key or tag.

        Args:
            selector: ``KeySelector``/``TagSelector`` or ``"key:..."``/``"tag:..."``
            callback: Called as ``callback(fingerprint, new_value | None, reason)``

        Returns:
            The new subscriber ID
        """
        subscription = Subscription(
            subscriber_id=uuid.uuid4().hex,
            selector=parse_selector(selector),
            callback=callback,
        )
        self._subscriptions[subscription.subscriber_id] = subscription
        logger.debug("Subscribed %s", subscription.selector)
        return subscription.subscriber_id

    def unsubscribe(self, subscriber_id: str) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        return self._subscriptions.pop(subscriber_id, None) is not None

    def has_active(self, fingerprint: str, tags: Iterable[str] = ()) -> bool:
        """True when any subscription watches the key or one of its tags."""
        tag_set = frozenset(tags)
        return any(sub.matches(fingerprint, tag_set) for sub in self._subscriptions.values())

    def subscribers_for(self, fingerprint: str, tags: Iterable[str] = ()) -> list[Subscription]:
        tag_set = frozenset(tags)
        return [sub for sub in self._subscriptions.values() if sub.matches(fingerprint, tag_set)]

    def watched_keys(self) -> set[str]:
        return {
            sub.selector.fingerprint
            for sub in self._subscriptions.values()
            if isinstance(sub.selector, KeySelector)
        }

    def watched_tags(self) -> set[str]:
        return {
            sub.selector.tag
            for sub in self._subscriptions.values()
            if isinstance(sub.selector, TagSelector)
        }

    def notify(
        self,
        fingerprint: str,
        tags: Iterable[str],
        value: Any,
        reason: NotifyReason,
    ) -> int:
        """Deliver a change to every matching subscriber.

        A failing callback is logged and does not stop delivery to the
        remaining subscribers.

        Returns:
            Number of callbacks invoked
        """
        delivered = 0
        for subscription in self.subscribers_for(fingerprint, tags):
            try:
                subscription.callback(fingerprint, value, reason)
            except Exception as e:  # noqa: BLE001
                error = DomainError(
                    code=ErrorCode.SUBSCRIBER_CALLBACK_FAILED,
                    message=f"Subscriber callback failed: {e!s}",
                    context=ErrorContext(
                        fingerprint=fingerprint,
                        operation="notify_subscriber",
                        subscriber_id=subscription.subscriber_id,
                        additional_data={"reason": reason},
                    ),
                    original_error=e,
                )
                log_operation_error(logger=logger, error=error)
            delivered += 1
        return delivered

    def clear(self) -> None:
        self._subscriptions.clear()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, subscriber_id: object) -> bool:
        return subscriber_id in self._subscriptions
