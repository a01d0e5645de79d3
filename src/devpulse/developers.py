"""Developer persistence and look-ups."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable

from devpulse.models import Developer
from devpulse.store import Store

_DEVELOPER_COLUMNS = (
    "username, id, full_name, email, avatar, url, entity, location, updated, "
    "reputation, reputation_updated_at, reputation_deep"
)

# Empty incoming values never overwrite stored ones.
_UPSERT_DEVELOPER_SQL = """
    INSERT INTO developer (username, id, full_name, email, avatar, url, entity, location, updated)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(username) DO UPDATE SET
        id = CASE WHEN excluded.id > 0 THEN excluded.id ELSE developer.id END,
        full_name = COALESCE(NULLIF(excluded.full_name, ''), developer.full_name),
        email = COALESCE(NULLIF(excluded.email, ''), developer.email),
        avatar = COALESCE(NULLIF(excluded.avatar, ''), developer.avatar),
        url = COALESCE(NULLIF(excluded.url, ''), developer.url),
        entity = COALESCE(NULLIF(excluded.entity, ''), developer.entity),
        location = COALESCE(NULLIF(excluded.location, ''), developer.location),
        updated = COALESCE(NULLIF(excluded.updated, ''), developer.updated)
"""


def row_to_developer(row: sqlite3.Row) -> Developer:
    return Developer(
        username=row["username"],
        id=row["id"],
        full_name=row["full_name"],
        email=row["email"],
        avatar=row["avatar"],
        url=row["url"],
        entity=row["entity"],
        location=row["location"],
        updated=row["updated"],
        reputation=row["reputation"],
        reputation_updated_at=row["reputation_updated_at"],
        reputation_deep=bool(row["reputation_deep"]),
    )


def upsert_developers(conn: sqlite3.Connection, developers: Iterable[Developer]) -> int:
    """Insert or merge developers inside an open transaction."""
    count = 0
    for dev in developers:
        conn.execute(
            _UPSERT_DEVELOPER_SQL,
            (
                dev.username,
                dev.id,
                dev.full_name,
                dev.email,
                dev.avatar,
                dev.url,
                dev.entity,
                dev.location,
                dev.updated,
            ),
        )
        count += 1
    return count


def save_developer(store: Store, developer: Developer) -> None:
    with store.transaction() as conn:
        upsert_developers(conn, [developer])


def get_developer(store: Store, username: str) -> Developer | None:
    row = store.query_one(
        f"SELECT {_DEVELOPER_COLUMNS} FROM developer WHERE username = ?", (username,)
    )
    return None if row is None else row_to_developer(row)


def get_developer_usernames(store: Store) -> list[str]:
    rows = store.query("SELECT username FROM developer ORDER BY username")
    return [row["username"] for row in rows]


def search_developers(store: Store, like: str, limit: int = 100) -> list[Developer]:
    """Developers whose username, email or entity contains *like*."""
    pattern = f"%{like}%"
    rows = store.query(
        f"""SELECT {_DEVELOPER_COLUMNS} FROM developer
            WHERE username LIKE ? OR email LIKE ? OR entity LIKE ?
            ORDER BY username
            LIMIT ?""",
        (pattern, pattern, pattern, limit),
    )
    return [row_to_developer(row) for row in rows]


def get_entity_developers(store: Store, entity: str, limit: int = 500) -> list[Developer]:
    rows = store.query(
        f"""SELECT {_DEVELOPER_COLUMNS} FROM developer
            WHERE entity = ?
            ORDER BY username
            LIMIT ?""",
        (entity, limit),
    )
    return [row_to_developer(row) for row in rows]
