"""SQLite-backed store with forward-only migrations."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from devpulse.exceptions import StoreError
from devpulse.schema import MIGRATIONS, Migration

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATEMENT_CACHE_SIZE = 256
_BUSY_TIMEOUT_MS = 5000


class Store:
    """Single-file SQLite store in WAL mode.

    Writes go through :meth:`transaction`, which serializes writers within
    the process and commits or rolls back as a unit. Reads use the shared
    connection directly.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False,
                cached_statements=_STATEMENT_CACHE_SIZE,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to open store at {self.db_path}: {exc}") from exc
        self._migrate()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def _migrate(self) -> None:
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS schema_version (
                   version INTEGER PRIMARY KEY,
                   applied_at TEXT NOT NULL DEFAULT (datetime('now'))
               )"""
        )
        current = self.schema_version()
        for migration in MIGRATIONS:
            if migration.version > current:
                self._apply(migration)

    def _apply(self, migration: Migration) -> None:
        script = (
            "BEGIN IMMEDIATE;\n"
            f"{migration.sql}\n"
            f"INSERT INTO schema_version (version) VALUES ({int(migration.version)});\n"
            "COMMIT;"
        )
        with self._lock:
            try:
                self._conn.executescript(script)
            except sqlite3.Error as exc:
                self._rollback()
                raise StoreError(
                    f"Migration {migration.version} ({migration.name}) failed: {exc}"
                ) from exc
        logger.info("Applied migration %d (%s)", migration.version, migration.name)

    def schema_version(self) -> int:
        """Highest applied migration version (0 for an empty database)."""
        return int(self.scalar("SELECT COALESCE(MAX(version), 0) FROM schema_version"))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            try:
                self._conn.execute("ROLLBACK")
            except sqlite3.Error as exc:
                logger.error("Rollback failed: %s", exc)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block under a single write transaction.

        Any exception rolls the transaction back. SQLite errors are wrapped
        in :class:`StoreError`; other exceptions propagate unchanged.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to begin transaction: {exc}") from exc
            try:
                yield self._conn
            except sqlite3.Error as exc:
                self._rollback()
                raise StoreError(f"Transaction failed: {exc}") from exc
            except BaseException:
                self._rollback()
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._rollback()
                raise StoreError(f"Commit failed: {exc}") from exc

    def with_transaction(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        """Call *fn* with the connection inside :meth:`transaction`."""
        with self.transaction() as conn:
            return fn(conn)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    # Reads share the connection with writers, so they wait for any open
    # transaction on another thread to finish.

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as exc:
                raise StoreError(f"Query failed: {exc}") from exc

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.query_one(sql, params)
        return None if row is None else row[0]

    def close(self) -> None:
        """Checkpoint the WAL and close the database connection."""
        with self._lock:
            try:
                self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as exc:
                logger.warning("WAL checkpoint failed: %s", exc)
            self._conn.close()


def delete_database(db_path: Path | str) -> None:
    """Remove the database file and its WAL side files."""
    path = Path(db_path)
    for candidate in (path, path.with_name(path.name + "-wal"), path.with_name(path.name + "-shm")):
        candidate.unlink(missing_ok=True)
