"""SQLite persistence hook.

Write-through snapshot of the entry store in a single SQLite table. Values
are serialized with orjson and keyed by the SHA-256 digest of the
fingerprint. The CLI reads and purges the same file offline.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import sys
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import orjson

from cachesync.core.models import CacheEntry, utcnow
from cachesync.shared.constants import PersistenceDefaults
from cachesync.shared.errors import (
    ErrorCode,
    ErrorContext,
    InfrastructureError,
    create_persistence_error,
)
from cachesync.shared.fingerprint import fingerprint_digest
from cachesync.shared.logging import log_operation_error, log_operation_success

logger = logging.getLogger(__name__)

_TABLE = PersistenceDefaults.TABLE_NAME

_SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    key_hash TEXT PRIMARY KEY,
    fingerprint TEXT NOT NULL UNIQUE,
    payload BLOB NOT NULL,
    tags BLOB NOT NULL,
    state TEXT NOT NULL,
    version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    expires_at TEXT,

    CHECK (length(fingerprint) > 0),
    CHECK (length(key_hash) = 64)
);

CREATE INDEX IF NOT EXISTS idx_{_TABLE}_expires_at ON {_TABLE}(expires_at);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL
);
"""


class SQLitePersistence:
    """SQLite-backed ``PersistenceHook``.

    Uses WAL mode so the CLI can read a snapshot while an engine writes it.

    Example:
        >>> hook = SQLitePersistence(Path("cachesync.db"))
        >>> engine = SyncEngine(persistence=hook)
        >>> await engine.restore()
        >>> hook.close()
    """

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the snapshot database.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            InfrastructureError: If the database cannot be opened
        """
        self.db_path = Path(db_path)
        self.conn: sqlite3.Connection | None = None
        self._initialize_db()

    def _initialize_db(self) -> None:
        started = time.perf_counter()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            db_is_new = not self.db_path.exists()

            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.executescript(_SCHEMA_SQL)
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (PersistenceDefaults.SCHEMA_VERSION,),
            )
            if db_is_new:
                _restrict_permissions(self.db_path)
        except (sqlite3.Error, OSError) as e:
            error = create_persistence_error(
                f"Failed to open snapshot database: {e!s}",
                db_path=self.db_path,
                operation="initialize_db",
                original_error=e,
            )
            log_operation_error(logger=logger, error=error, operation="initialize_db")
            raise error from e

        log_operation_success(
            logger=logger,
            operation="initialize_db",
            duration_ms=(time.perf_counter() - started) * 1000,
            context={"db_path": str(self.db_path)},
        )

    def persist(self, fingerprint: str, entry: CacheEntry | None) -> None:
        """Write through one entry; ``None`` deletes it.

        Raises:
            InfrastructureError: If serialization or the write fails
        """
        conn = self._connection("persist")
        key_hash = fingerprint_digest(fingerprint)

        if entry is None:
            self._execute(
                conn,
                f"DELETE FROM {_TABLE} WHERE key_hash = ?",  # noqa: S608
                (key_hash,),
                operation="persist",
            )
            return

        try:
            payload = orjson.dumps(entry.value)
            tags = orjson.dumps(sorted(entry.tags))
        except (orjson.JSONEncodeError, TypeError) as e:
            raise InfrastructureError(
                code=ErrorCode.CACHE_SERIALIZATION_ERROR,
                message=f"Value is not JSON-serializable: {e!s}",
                context=ErrorContext(fingerprint=fingerprint, operation="persist"),
                original_error=e,
            ) from e

        self._execute(
            conn,
            f"""
            INSERT OR REPLACE INTO {_TABLE} (
                key_hash, fingerprint, payload, tags, state, version, created_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,  # noqa: S608
            (
                key_hash,
                fingerprint,
                payload,
                tags,
                entry.state.value,
                entry.version,
                entry.created_at.isoformat(),
                entry.expires_at.isoformat() if entry.expires_at else None,
            ),
            operation="persist",
        )

    def restore(self) -> list[tuple[str, CacheEntry]]:
        """Return every decodable persisted entry.

        Rows that cannot be decoded are logged and skipped.
        """
        return [(entry.fingerprint, entry) for entry in self._iter_entries("restore")]

    def list_entries(self, tag: str | None = None) -> list[CacheEntry]:
        """Return persisted entries, optionally only those carrying ``tag``."""
        entries = self._iter_entries("list_entries")
        if tag is None:
            return list(entries)
        return [entry for entry in entries if tag in entry.tags]

    def purge(self, tag: str | None = None, *, expired_only: bool = False) -> int:
        """Delete persisted entries.

        Args:
            tag: Only delete entries carrying this tag
            expired_only: Only delete entries whose TTL has elapsed

        Returns:
            Number of deleted entries
        """
        conn = self._connection("purge")
        if tag is None and not expired_only:
            cursor = self._execute(conn, f"DELETE FROM {_TABLE}", (), operation="purge")  # noqa: S608
            return cursor.rowcount

        now = utcnow()
        victims = [
            entry.fingerprint
            for entry in self._iter_entries("purge")
            if (tag is None or tag in entry.tags) and (not expired_only or entry.is_expired(now))
        ]
        for fingerprint in victims:
            self._execute(
                conn,
                f"DELETE FROM {_TABLE} WHERE key_hash = ?",  # noqa: S608
                (fingerprint_digest(fingerprint),),
                operation="purge",
            )
        logger.info("Purged %d snapshot entries from %s", len(victims), self.db_path)
        return len(victims)

    def count(self) -> int:
        conn = self._connection("count")
        cursor = self._execute(conn, f"SELECT COUNT(*) FROM {_TABLE}", (), operation="count")  # noqa: S608
        return int(cursor.fetchone()[0])

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Closed snapshot database: %s", self.db_path)

    def __enter__(self) -> SQLitePersistence:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _iter_entries(self, operation: str) -> Iterator[CacheEntry]:
        conn = self._connection(operation)
        cursor = self._execute(
            conn,
            f"""
            SELECT fingerprint, payload, tags, state, version, created_at, expires_at
            FROM {_TABLE} ORDER BY fingerprint
            """,  # noqa: S608
            (),
            operation=operation,
        )
        for row in cursor.fetchall():
            entry = _decode_row(row)
            if entry is not None:
                yield entry

    def _connection(self, operation: str) -> sqlite3.Connection:
        if self.conn is None:
            raise create_persistence_error(
                "Database connection not initialized",
                db_path=self.db_path,
                operation=operation,
            )
        return self.conn

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: tuple[Any, ...],
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        try:
            return conn.execute(sql, params)
        except sqlite3.Error as e:
            code = ErrorCode.PERSISTENCE_READ_FAILED if sql.lstrip().startswith("SELECT") else ErrorCode.PERSISTENCE_WRITE_FAILED
            raise create_persistence_error(
                f"Snapshot database operation failed: {e!s}",
                db_path=self.db_path,
                operation=operation,
                code=code,
                original_error=e,
            ) from e


def _decode_row(row: tuple[Any, ...]) -> CacheEntry | None:
    fingerprint, payload, tags, state, version, created_at, expires_at = row
    try:
        return CacheEntry.from_dict(
            {
                "fingerprint": fingerprint,
                "value": orjson.loads(payload),
                "tags": orjson.loads(tags),
                "state": state,
                "version": version,
                "created_at": created_at,
                "expires_at": expires_at,
            }
        )
    except (orjson.JSONDecodeError, ValueError, KeyError) as e:
        error = InfrastructureError(
            code=ErrorCode.CACHE_CORRUPTED,
            message=f"Skipping undecodable snapshot row: {e!s}",
            context=ErrorContext(fingerprint=fingerprint, operation="decode_row"),
            original_error=e,
        )
        log_operation_error(logger=logger, error=error, level=logging.WARNING)
        return None


def _restrict_permissions(db_path: Path) -> None:
    # Owner read/write only; POSIX only
    if sys.platform == "win32":
        return
    try:
        os.chmod(db_path, 0o600)
    except OSError as e:
        logger.warning("Failed to set secure permissions for %s: %s", db_path, e)
