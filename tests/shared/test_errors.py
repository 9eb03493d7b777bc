"""Tests for the error hierarchy and context handling."""

from pathlib import Path

import pytest

from cachesync.core.models import NotifyReason
from cachesync.shared.errors import (
    CacheSyncError,
    CliError,
    CommitError,
    CommitTimeoutError,
    DomainError,
    ErrorCode,
    ErrorContext,
    FetchError,
    create_cli_error,
    create_commit_error,
    create_fetch_error,
    create_persistence_error,
)


class TestErrorContext:
    """Primitive coercion and masking."""

    def test_additional_data_is_coerced(self):
        context = ErrorContext(
            additional_data={"path": Path("/tmp/x.db"), "reason": NotifyReason.COMMITTED, "skip": None}
        )

        assert context.additional_data == {"path": "/tmp/x.db", "reason": "committed"}

    def test_non_primitive_rejected(self):
        with pytest.raises(TypeError):
            ErrorContext(additional_data={"value": {"nested": 1}})

    def test_subscriber_id_is_masked(self):
        context = ErrorContext(fingerprint="users:1", subscriber_id="abc")

        assert context.safe_dict() == {"fingerprint": "users:1", "additional_data": {}}


class TestHierarchy:
    def test_commit_timeout_is_commit_error_and_timeout(self):
        error = CommitTimeoutError(ErrorCode.COMMIT_TIMEOUT, "too slow")

        assert isinstance(error, CommitError)
        assert isinstance(error, DomainError)
        assert isinstance(error, TimeoutError)

    def test_str_and_to_dict(self):
        original = ConnectionError("down")
        error = create_fetch_error("users:1", "Fetcher failed", original, attempts=3)

        assert isinstance(error, FetchError)
        assert str(error) == "FETCH_FAILED: Fetcher failed"
        assert error.to_dict() == {
            "code": "FETCH_FAILED",
            "message": "Fetcher failed",
            "context": {
                "fingerprint": "users:1",
                "operation": "fetch",
                "additional_data": {"attempts": 3},
            },
            "original_error": "down",
        }

    def test_factories_set_codes(self):
        assert create_commit_error("users:1", "x").code == ErrorCode.COMMIT_FAILED
        assert create_persistence_error("x", db_path=Path("a.db")).context.additional_data == {"db_path": "a.db"}

    def test_cli_error_carries_exit_code(self):
        error = create_cli_error("bad", command="inspect", exit_code=2)

        assert isinstance(error, CliError)
        assert isinstance(error, CacheSyncError)
        assert error.exit_code == 2
        assert error.command == "inspect"
