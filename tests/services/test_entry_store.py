"""Tests for the in-memory entry store."""

import logging
from datetime import timedelta

import pytest

from cachesync.core.models import CacheEntry, EntryState, utcnow
from cachesync.services.entry_store import EntryStore
from cachesync.shared.errors import ErrorCode, InfrastructureError


class _RecordingHook:
    def __init__(self) -> None:
        self.writes: list[tuple[str, CacheEntry | None]] = []

    def persist(self, fingerprint, entry):
        self.writes.append((fingerprint, entry))

    def restore(self):
        return []


class _FailingHook:
    def persist(self, fingerprint, entry):
        raise InfrastructureError(ErrorCode.PERSISTENCE_WRITE_FAILED, "disk full")

    def restore(self):
        return []


class TestEntryStorePut:
    """Writes, versions and tags."""

    def test_put_then_get(self, store):
        entry = store.put("users:1", {"id": 1}, tags={"users"}, ttl=30)

        assert store.get("users:1") is entry
        assert entry.state == EntryState.FRESH
        assert entry.expires_at is not None
        assert "users:1" in store

    def test_every_put_increments_version(self, store):
        first = store.put("users:1", 1)
        second = store.put("users:1", 2)

        assert first.version == 1
        assert second.version == 2
        assert store.version_of("users:1") == 2

    def test_none_tags_keep_existing_tags(self, store):
        store.put("users:1", 1, tags={"users"})

        entry = store.put("users:1", 2)

        assert entry.tags == frozenset({"users"})
        assert store.fingerprints_with_tag("users") == ["users:1"]

    def test_new_tags_replace_index(self, store):
        store.put("users:1", 1, tags={"users"})

        store.put("users:1", 2, tags={"admins"})

        assert store.fingerprints_with_tag("users") == []
        assert store.fingerprints_with_tag("admins") == ["users:1"]

    def test_version_survives_remove(self, store):
        # Given
        store.put("users:1", 1)
        store.put("users:1", 2)

        # When
        store.remove("users:1")
        entry = store.put("users:1", 3)

        # Then
        assert entry.version == 3
        assert store.fingerprints_with_tag("users") == []

    def test_injected_clock_drives_expiry(self):
        now = utcnow()
        store = EntryStore(clock=lambda: now)

        entry = store.put("users:1", 1, ttl=10)

        assert entry.created_at == now
        assert entry.expires_at == now + timedelta(seconds=10)


class TestEntryStoreState:
    def test_mark_state_keeps_value_and_version(self, store):
        store.put("users:1", {"id": 1})

        updated = store.mark_state("users:1", EntryState.STALE)

        assert updated is not None
        assert updated.state == EntryState.STALE
        assert updated.value == {"id": 1}
        assert updated.version == 1

    def test_mark_state_on_missing_key(self, store):
        assert store.mark_state("missing", EntryState.STALE) is None

    def test_remove_missing_key(self, store):
        assert store.remove("missing") is None


class TestEntryStoreObservers:
    def test_observer_sees_writes_and_removals(self, store):
        # Given
        seen: list[tuple[str, int | None]] = []
        remove = store.add_observer(
            lambda fp, entry: seen.append((fp, entry.version if entry else None))
        )

        # When
        store.put("users:1", 1)
        store.mark_state("users:1", EntryState.STALE)
        store.remove("users:1")
        remove()
        store.put("users:1", 2)

        # Then
        assert seen == [("users:1", 1), ("users:1", 1), ("users:1", None)]


class TestEntryStorePersistence:
    """Write-through and snapshot loading."""

    def test_writes_go_through_to_hook(self, mocker):
        hook = mocker.Mock()
        store = EntryStore(persistence=hook)

        entry = store.put("users:1", 1)
        store.remove("users:1")

        assert hook.persist.call_args_list == [
            mocker.call("users:1", entry),
            mocker.call("users:1", None),
        ]

    def test_unexpected_hook_exception_is_wrapped(self, mocker, caplog):
        hook = mocker.Mock()
        hook.persist.side_effect = OSError("read-only filesystem")
        store = EntryStore(persistence=hook)

        with caplog.at_level(logging.WARNING, logger="cachesync"):
            store.put("users:1", 1)

        assert "read-only filesystem" in caplog.text

    def test_load_does_not_write_back(self):
        # Given
        hook = _RecordingHook()
        store = EntryStore(persistence=hook)
        snapshot = [
            ("users:1", CacheEntry("users:1", {"id": 1}, tags={"users"}, version=4)),
            ("users:2", CacheEntry("users:2", {"id": 2}, state=EntryState.REVALIDATING)),
        ]

        # When
        loaded = store.load(snapshot)

        # Then
        assert loaded == 2
        assert hook.writes == []
        assert store.version_of("users:1") == 4
        assert store.get("users:2").state == EntryState.STALE
        assert store.fingerprints_with_tag("users") == ["users:1"]

    def test_write_after_load_continues_version(self):
        store = EntryStore()
        store.load([("users:1", CacheEntry("users:1", 1, version=4))])

        assert store.put("users:1", 2).version == 5

    def test_persistence_failure_is_logged_not_raised(self, caplog):
        store = EntryStore(persistence=_FailingHook())

        with caplog.at_level(logging.WARNING, logger="cachesync"):
            entry = store.put("users:1", 1)

        assert store.get("users:1") is entry
        assert any(record.levelno == logging.WARNING for record in caplog.records)

    def test_clear_removes_everything(self, store):
        store.put("users:1", 1, tags={"users"})
        store.put("users:2", 2, tags={"users"})

        store.clear()

        assert len(store) == 0
        assert store.fingerprints_with_tag("users") == []


@pytest.mark.parametrize("state", list(EntryState))
def test_put_accepts_every_state(store, state):
    assert store.put("users:1", 1, state=state).state == state
