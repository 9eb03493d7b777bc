"""Tests for the SQLite snapshot hook."""

import logging
import os
import sys
from datetime import timedelta

import pytest

from cachesync.core.models import CacheEntry, EntryState, utcnow
from cachesync.services.entry_store import EntryStore
from cachesync.services.sqlite_persistence import SQLitePersistence
from cachesync.shared.errors import ErrorCode, InfrastructureError


@pytest.fixture
def db(tmp_path):
    persistence = SQLitePersistence(tmp_path / "snapshot.db")
    yield persistence
    persistence.close()


def _entry(fingerprint, value, *, tags=(), ttl=None, state=EntryState.FRESH, version=1):
    created = utcnow()
    return CacheEntry(
        fingerprint=fingerprint,
        value=value,
        tags=frozenset(tags),
        created_at=created,
        expires_at=created + timedelta(seconds=ttl) if ttl is not None else None,
        state=state,
        version=version,
    )


class TestPersistAndRestore:
    """Write-through round trips."""

    def test_restore_returns_persisted_entries(self, db):
        # Given
        db.persist("users:1", _entry("users:1", {"id": 1}, tags={"users"}, version=3))
        db.persist("users:2", _entry("users:2", [1, 2], state=EntryState.STALE))

        # When
        restored = dict(db.restore())

        # Then
        assert sorted(restored) == ["users:1", "users:2"]
        assert restored["users:1"].value == {"id": 1}
        assert restored["users:1"].tags == frozenset({"users"})
        assert restored["users:1"].version == 3
        assert restored["users:2"].state == EntryState.STALE

    def test_persist_none_deletes(self, db):
        db.persist("users:1", _entry("users:1", 1))

        db.persist("users:1", None)

        assert db.count() == 0

    def test_persist_replaces_existing_row(self, db):
        db.persist("users:1", _entry("users:1", 1))
        db.persist("users:1", _entry("users:1", 2, version=2))

        assert db.count() == 1
        assert db.list_entries()[0].value == 2

    def test_unserializable_value_raises(self, db):
        with pytest.raises(InfrastructureError) as exc_info:
            db.persist("users:1", _entry("users:1", object()))

        assert exc_info.value.code == ErrorCode.CACHE_SERIALIZATION_ERROR

    def test_store_round_trip_through_new_connection(self, tmp_path):
        # Given
        path = tmp_path / "snapshot.db"
        with SQLitePersistence(path) as first:
            store = EntryStore(persistence=first)
            store.put("users:1", {"id": 1}, tags={"users"})
            store.put("users:1", {"id": 1, "name": "B"})

        # When
        with SQLitePersistence(path) as second:
            restored = EntryStore()
            restored.load(second.restore())

        # Then
        assert restored.get("users:1").value == {"id": 1, "name": "B"}
        assert restored.version_of("users:1") == 2
        assert restored.fingerprints_with_tag("users") == ["users:1"]

    def test_corrupted_row_is_skipped(self, db, caplog):
        # Given
        db.persist("users:1", _entry("users:1", 1))
        db.conn.execute(
            "INSERT INTO cache_entries "
            "(key_hash, fingerprint, payload, tags, state, version, created_at, expires_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ("0" * 64, "users:2", b"{not json", b"[]", "fresh", 1, utcnow().isoformat(), None),
        )

        # When
        with caplog.at_level(logging.WARNING, logger="cachesync"):
            restored = db.restore()

        # Then
        assert [fp for fp, _ in restored] == ["users:1"]
        assert "undecodable" in caplog.text

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_new_database_is_owner_only(self, tmp_path):
        path = tmp_path / "secure.db"
        with SQLitePersistence(path):
            mode = os.stat(path).st_mode & 0o777

        assert mode == 0o600


class TestListAndPurge:
    """Offline maintenance used by the CLI."""

    @pytest.fixture
    def populated(self, db):
        db.persist("users:1", _entry("users:1", 1, tags={"users"}))
        db.persist("users:2", _entry("users:2", 2, tags={"users"}, ttl=0))
        db.persist("posts:1", _entry("posts:1", 3, tags={"posts"}, ttl=0))
        return db

    def test_list_by_tag(self, populated):
        assert [e.fingerprint for e in populated.list_entries("users")] == ["users:1", "users:2"]
        assert len(populated.list_entries()) == 3

    def test_purge_by_tag(self, populated):
        assert populated.purge("users") == 2
        assert [e.fingerprint for e in populated.list_entries()] == ["posts:1"]

    def test_purge_expired_only(self, populated):
        assert populated.purge(expired_only=True) == 2
        assert [e.fingerprint for e in populated.list_entries()] == ["users:1"]

    def test_purge_everything(self, populated):
        assert populated.purge() == 3
        assert populated.count() == 0

    def test_closed_database_raises(self, tmp_path):
        persistence = SQLitePersistence(tmp_path / "closed.db")
        persistence.close()

        with pytest.raises(InfrastructureError) as exc_info:
            persistence.count()

        assert exc_info.value.code == ErrorCode.PERSISTENCE_ERROR
