"""Tests for the core domain models."""

from datetime import timedelta

import pytest

from cachesync.core.models import (
    CacheEntry,
    EntryState,
    KeySelector,
    MutationStatus,
    Subscription,
    TagSelector,
    expiry_for,
    parse_selector,
    utcnow,
)
from cachesync.shared.errors import ApplicationError, ErrorCode


class TestCacheEntry:
    """CacheEntry validation and expiry."""

    def test_entry_without_expiry_never_expires(self):
        entry = CacheEntry(fingerprint="users:1", value={"id": 1})

        assert entry.expires_at is None
        assert not entry.is_expired(utcnow() + timedelta(days=365))
        assert entry.is_servable()

    def test_entry_expires_at_deadline(self):
        # Given
        created = utcnow()
        entry = CacheEntry(
            fingerprint="users:1",
            value=1,
            created_at=created,
            expires_at=created + timedelta(seconds=10),
        )

        # Then
        assert not entry.is_expired(created + timedelta(seconds=9))
        assert entry.is_expired(created + timedelta(seconds=10))

    def test_stale_entry_is_not_servable(self):
        entry = CacheEntry(fingerprint="users:1", value=1, state=EntryState.STALE)

        assert not entry.is_servable()

    def test_tags_are_frozen(self):
        entry = CacheEntry(fingerprint="users:1", value=1, tags={"users"})

        assert entry.tags == frozenset({"users"})
        assert isinstance(entry.tags, frozenset)

    def test_empty_fingerprint_rejected(self):
        with pytest.raises(ValueError, match="fingerprint"):
            CacheEntry(fingerprint="", value=1)

    def test_expiry_before_creation_rejected(self):
        created = utcnow()
        with pytest.raises(ValueError, match="expires_at"):
            CacheEntry(
                fingerprint="users:1",
                value=1,
                created_at=created,
                expires_at=created - timedelta(seconds=1),
            )

    def test_dict_round_trip_preserves_fields(self):
        # Given
        created = utcnow()
        entry = CacheEntry(
            fingerprint="users:1",
            value={"id": 1, "name": "A"},
            tags={"users", "admins"},
            created_at=created,
            expires_at=created + timedelta(seconds=30),
            state=EntryState.ERROR,
            version=7,
        )

        # When
        restored = CacheEntry.from_dict(entry.to_dict())

        # Then
        assert restored == entry
        assert entry.to_dict()["tags"] == ["admins", "users"]


class TestExpiryFor:
    def test_none_ttl_means_no_expiry(self):
        assert expiry_for(utcnow(), None) is None

    def test_negative_ttl_rejected(self):
        with pytest.raises(ApplicationError) as exc_info:
            expiry_for(utcnow(), -1)

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR


class TestSelectors:
    """Selector parsing used by event feeds and the CLI."""

    def test_parse_key_selector(self):
        assert parse_selector("key:users:1") == KeySelector("users:1")

    def test_parse_tag_selector(self):
        assert parse_selector("tag:users") == TagSelector("users")

    def test_selector_instances_pass_through(self):
        selector = TagSelector("users")

        assert parse_selector(selector) is selector

    def test_str_round_trips_through_parse(self):
        assert parse_selector(str(KeySelector("posts:9"))) == KeySelector("posts:9")

    @pytest.mark.parametrize("raw", ["users:1", "tag:", "key:", "", "label:users"])
    def test_invalid_selector_rejected(self, raw):
        with pytest.raises(ApplicationError) as exc_info:
            parse_selector(raw)

        assert exc_info.value.code == ErrorCode.INVALID_SELECTOR


class TestSubscriptionMatching:
    def test_key_subscription_matches_only_its_key(self):
        sub = Subscription("s1", KeySelector("users:1"), lambda *_: None)

        assert sub.matches("users:1", frozenset())
        assert not sub.matches("users:2", frozenset())

    def test_tag_subscription_matches_tagged_keys(self):
        sub = Subscription("s1", TagSelector("users"), lambda *_: None)

        assert sub.matches("users:2", frozenset({"users"}))
        assert not sub.matches("posts:1", frozenset({"posts"}))


class TestMutationStatus:
    def test_pending_statuses(self):
        assert MutationStatus.OPTIMISTIC.is_pending
        assert MutationStatus.COMMITTING.is_pending
        assert not MutationStatus.COMMITTED.is_pending
        assert not MutationStatus.ROLLED_BACK.is_pending
