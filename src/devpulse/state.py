"""Resumable pagination cursors per (stream, org, repo)."""

from __future__ import annotations

import sqlite3

from devpulse.models import State
from devpulse.store import Store

_UPSERT_STATE_SQL = """
    INSERT INTO state (query, org, repo, page, since)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT(query, org, repo) DO UPDATE SET
        page = excluded.page,
        since = excluded.since
"""


def get_state(store: Store, stream: str, org: str, repo: str, default_since: str) -> State:
    """Return the stored cursor, or page 1 with *default_since* when unseen."""
    row = store.query_one(
        "SELECT page, since FROM state WHERE query = ? AND org = ? AND repo = ?",
        (stream, org, repo),
    )
    if row is None:
        return State(page=1, since=default_since)
    return State(page=row["page"], since=row["since"])


def save_state(conn: sqlite3.Connection, stream: str, org: str, repo: str, state: State) -> None:
    """Upsert a cursor. Called inside the transaction that writes its events."""
    conn.execute(_UPSERT_STATE_SQL, (stream, org, repo, state.page, state.since))


def clear_state(store: Store, org: str, repo: str) -> int:
    """Delete every cursor for a repository. Returns the number of rows removed."""
    with store.transaction() as conn:
        cursor = conn.execute("DELETE FROM state WHERE org = ? AND repo = ?", (org, repo))
        return cursor.rowcount
