"""Tests for the SQLite store and its migrations."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import pytest

from devpulse.exceptions import StoreError
from devpulse.schema import LATEST_VERSION, MIGRATIONS
from devpulse.store import Store, delete_database


def _columns(store: Store, table: str) -> set[str]:
    return {row["name"] for row in store.query(f"PRAGMA table_info({table})")}


class TestMigrations:
    def test_fresh_database_is_fully_migrated(self, store: Store) -> None:
        assert store.schema_version() == LATEST_VERSION
        tables = {
            row["name"]
            for row in store.query("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        expected = {"developer", "event", "state", "sub", "release", "release_asset", "repo_meta"}
        assert expected <= tables

    def test_reopen_applies_nothing(self, db_path: Path) -> None:
        with Store(db_path) as first:
            assert first.schema_version() == LATEST_VERSION
        with Store(db_path) as second:
            count = second.scalar("SELECT COUNT(*) FROM schema_version")
        assert count == len(MIGRATIONS)

    def test_upgrade_from_first_version_keeps_rows(self, db_path: Path) -> None:
        conn = sqlite3.connect(db_path)
        conn.executescript(
            "CREATE TABLE schema_version ("
            " version INTEGER PRIMARY KEY,"
            " applied_at TEXT NOT NULL DEFAULT (datetime('now')));"
            + MIGRATIONS[0].sql
            + "INSERT INTO schema_version (version) VALUES (1);"
            "INSERT INTO developer (username, entity) VALUES ('alice', 'ACME');"
        )
        conn.commit()
        conn.close()

        with Store(db_path) as store:
            assert store.schema_version() == LATEST_VERSION
            assert {"reputation", "reputation_updated_at", "reputation_deep"} <= _columns(
                store, "developer"
            )
            row = store.query_one("SELECT entity, reputation_deep FROM developer")
        assert row["entity"] == "ACME"
        assert row["reputation_deep"] == 0

    def test_wal_mode(self, store: Store) -> None:
        assert store.scalar("PRAGMA journal_mode") == "wal"


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    def test_commit(self, store: Store) -> None:
        with store.transaction() as conn:
            conn.execute("INSERT INTO sub (type, old, new) VALUES ('entity', 'a', 'b')")
        assert store.scalar("SELECT COUNT(*) FROM sub") == 1

    def test_rollback_on_exception(self, store: Store) -> None:
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                conn.execute("INSERT INTO sub (type, old, new) VALUES ('entity', 'a', 'b')")
                raise RuntimeError("boom")
        assert store.scalar("SELECT COUNT(*) FROM sub") == 0

    def test_sqlite_errors_are_wrapped(self, store: Store) -> None:
        with pytest.raises(StoreError):
            with store.transaction() as conn:
                conn.execute("INSERT INTO missing_table VALUES (1)")

    def test_event_type_is_constrained(self, store: Store) -> None:
        with pytest.raises(StoreError):
            with store.transaction() as conn:
                conn.execute(
                    "INSERT INTO event (id, org, repo, username, type, date)"
                    " VALUES (1, 'o', 'r', 'u', 'push', '2025-01-01')"
                )
        assert store.scalar("SELECT COUNT(*) FROM event") == 0

    def test_state_page_must_be_positive(self, store: Store) -> None:
        with pytest.raises(StoreError):
            with store.transaction() as conn:
                conn.execute(
                    "INSERT INTO state (query, org, repo, page, since)"
                    " VALUES ('issue', 'o', 'r', 0, '2025-01-01')"
                )

    def test_with_transaction_returns_value(self, store: Store) -> None:
        def insert(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "INSERT INTO sub (type, old, new) VALUES ('entity', 'x', 'y')"
            ).rowcount

        assert store.with_transaction(insert) == 1

    def test_query_error_is_wrapped(self, store: Store) -> None:
        with pytest.raises(StoreError):
            store.query("SELECT nope FROM developer")

    def test_read_from_another_thread_sees_only_committed_rows(self, store: Store) -> None:
        seen: list[int] = []
        reader = threading.Thread(
            target=lambda: seen.append(store.scalar("SELECT COUNT(*) FROM sub"))
        )
        with store.transaction() as conn:
            conn.execute("INSERT INTO sub (type, old, new) VALUES ('entity', 'a', 'b')")
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()
            assert seen == []
        reader.join(timeout=5)
        assert seen == [1]

    def test_read_inside_own_transaction(self, store: Store) -> None:
        with store.transaction() as conn:
            conn.execute("INSERT INTO sub (type, old, new) VALUES ('entity', 'a', 'b')")
            assert store.scalar("SELECT COUNT(*) FROM sub") == 1


class TestDeleteDatabase:
    def test_removes_files(self, db_path: Path) -> None:
        Store(db_path).close()
        assert db_path.exists()
        delete_database(db_path)
        assert not db_path.exists()
        assert not Path(f"{db_path}-wal").exists()

    def test_missing_file_is_ignored(self, tmp_path: Path) -> None:
        delete_database(tmp_path / "nothing.db")
