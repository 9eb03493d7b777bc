"""Tests for the cachesync CLI."""

from datetime import timedelta

import orjson
import pytest
from typer.testing import CliRunner

from cachesync.cli import app
from cachesync.config import CacheSyncSettings
from cachesync.core.models import CacheEntry, utcnow
from cachesync.services.sqlite_persistence import SQLitePersistence
from cachesync.shared.constants import CLIDefaults


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def snapshot(tmp_path):
    """A snapshot with two live entries and one expired entry."""
    path = tmp_path / "cachesync.db"
    created = utcnow()
    with SQLitePersistence(path) as persistence:
        persistence.persist("users:1", CacheEntry("users:1", {"id": 1}, tags={"users"}))
        persistence.persist("users:2", CacheEntry("users:2", {"id": 2}, tags={"users"}))
        persistence.persist(
            "posts:1",
            CacheEntry("posts:1", {"id": 3}, tags={"posts"}, created_at=created, expires_at=created),
        )
    return path


def _json(result):
    return orjson.loads(result.stdout)


class TestInspect:
    def test_inspect_json(self, runner, snapshot):
        result = runner.invoke(app, ["inspect", str(snapshot), "--json"])

        assert result.exit_code == 0
        payload = _json(result)
        assert payload["success"] is True
        assert payload["command"] == "inspect"
        assert payload["data"]["count"] == 3
        assert [e["fingerprint"] for e in payload["data"]["entries"]] == ["posts:1", "users:1", "users:2"]
        assert payload["data"]["entries"][0]["expired"] is True

    def test_inspect_by_tag(self, runner, snapshot):
        result = runner.invoke(app, ["--json", "inspect", str(snapshot), "--tag", "users"])

        assert result.exit_code == 0
        assert _json(result)["data"]["count"] == 2

    def test_inspect_table(self, runner, snapshot):
        result = runner.invoke(app, ["inspect", str(snapshot)])

        assert result.exit_code == 0
        assert "users:1" in result.stdout

    def test_missing_database_is_rejected(self, runner, tmp_path):
        result = runner.invoke(app, ["inspect", str(tmp_path / "missing.db")])

        assert result.exit_code != 0


class TestPurge:
    """Purging snapshot entries."""

    def test_purge_expired(self, runner, snapshot):
        result = runner.invoke(app, ["purge", str(snapshot), "--expired", "--json"])

        assert result.exit_code == 0
        assert _json(result)["data"]["purged"] == 1
        assert _json(result)["data"]["remaining"] == 2

    def test_purge_by_tag(self, runner, snapshot):
        result = runner.invoke(app, ["purge", str(snapshot), "--tag", "users", "--json"])

        assert _json(result)["data"] == {"db_path": str(snapshot), "purged": 2, "remaining": 1}

    def test_purge_everything(self, runner, snapshot):
        result = runner.invoke(app, ["purge", str(snapshot)])

        assert result.exit_code == 0
        with SQLitePersistence(snapshot) as persistence:
            assert persistence.count() == 0


class TestConfig:
    def test_config_json_from_file(self, runner, tmp_path):
        path = tmp_path / "custom.toml"
        CacheSyncSettings(sync={"queue": {"max_length": 5}}).to_toml_file(path)

        result = runner.invoke(app, ["config", "--file", str(path), "--json"])

        assert result.exit_code == 0
        assert _json(result)["data"]["sync"]["queue"]["max_length"] == 5

    def test_missing_config_file_exits_with_error(self, runner, tmp_path):
        result = runner.invoke(app, ["config", "--file", str(tmp_path / "nope.toml"), "--json"])

        assert result.exit_code == CLIDefaults.EXIT_ERROR
        assert '"success": false' in result.stdout
        assert "CONFIG_MISSING" in result.stdout


def test_version(runner):
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert CLIDefaults.VERSION in result.stdout
