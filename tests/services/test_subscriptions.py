"""Tests for the subscription registry."""

import logging

import pytest

from cachesync.core.models import KeySelector, NotifyReason
from cachesync.services.subscriptions import SubscriptionRegistry
from cachesync.shared.errors import ApplicationError


class TestSubscribe:
    def test_subscribe_returns_unique_ids(self, registry, recorder):
        first = registry.subscribe("key:users:1", recorder)
        second = registry.subscribe("key:users:1", recorder)

        assert first != second
        assert len(registry) == 2
        assert first in registry

    def test_unsubscribe(self, registry, recorder):
        subscriber_id = registry.subscribe("tag:users", recorder)

        assert registry.unsubscribe(subscriber_id)
        assert not registry.unsubscribe(subscriber_id)
        assert len(registry) == 0

    def test_invalid_selector(self, registry, recorder):
        with pytest.raises(ApplicationError):
            registry.subscribe("users", recorder)

    def test_watched_keys_and_tags(self, registry, recorder):
        registry.subscribe(KeySelector("users:1"), recorder)
        registry.subscribe("tag:posts", recorder)

        assert registry.watched_keys() == {"users:1"}
        assert registry.watched_tags() == {"posts"}


class TestActiveSubscriptions:
    def test_key_and_tag_matches(self, registry, recorder):
        registry.subscribe("tag:users", recorder)

        assert registry.has_active("users:1", {"users"})
        assert not registry.has_active("users:1")
        assert not registry.has_active("posts:1", {"posts"})


class TestNotify:
    """Fan-out to matching subscribers."""

    def test_notify_reaches_key_and_tag_subscribers(self, registry, recorder):
        # Given
        tag_calls = []
        registry.subscribe("key:users:1", recorder)
        registry.subscribe("tag:users", lambda fp, value, reason: tag_calls.append(fp))
        registry.subscribe("key:users:2", lambda *_: pytest.fail("wrong key notified"))

        # When
        delivered = registry.notify("users:1", {"users"}, "v", NotifyReason.COMMITTED)

        # Then
        assert delivered == 2
        assert recorder.calls == [("users:1", "v", NotifyReason.COMMITTED)]
        assert tag_calls == ["users:1"]

    def test_failing_callback_does_not_stop_delivery(self, recorder, caplog):
        # Given
        registry = SubscriptionRegistry()

        def broken(fp, value, reason):
            raise RuntimeError("subscriber bug")

        registry.subscribe("key:users:1", broken)
        registry.subscribe("key:users:1", recorder)

        # When
        with caplog.at_level(logging.ERROR, logger="cachesync"):
            delivered = registry.notify("users:1", (), 1, NotifyReason.REFETCHED)

        # Then
        assert delivered == 2
        assert len(recorder.calls) == 1
        assert "subscriber bug" in caplog.text

    def test_clear(self, registry, recorder):
        registry.subscribe("key:users:1", recorder)

        registry.clear()

        assert registry.notify("users:1", (), 1, NotifyReason.REFETCHED) == 0
