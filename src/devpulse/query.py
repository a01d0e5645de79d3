"""Read-side queries: event search, fuzzy look-ups and share breakdowns."""

from __future__ import annotations

import sqlite3

from devpulse.developers import get_entity_developers
from devpulse.exceptions import ConfigError
from devpulse.insights import EVENT_SCOPE, scope_params
from devpulse.models import (
    CountedItem,
    EntityDetails,
    Event,
    EventSearchCriteria,
    EventType,
    ListItem,
    PercentageSeries,
)
from devpulse.reputation import BOT_SUFFIX
from devpulse.store import Store

OTHERS_LABEL = "ALL OTHERS"
MAX_PAGE_SIZE = 500

_EVENT_COLUMNS = (
    "e.id, e.org, e.repo, e.username, e.type, e.date, e.state, e.number, "
    "e.created_at, e.closed_at, e.merged_at, e.url, e.mentions, e.labels, "
    "e.additions, e.deletions"
)


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        org=row["org"],
        repo=row["repo"],
        username=row["username"],
        type=EventType(row["type"]),
        date=row["date"],
        state=row["state"],
        number=row["number"],
        created_at=row["created_at"],
        closed_at=row["closed_at"],
        merged_at=row["merged_at"],
        url=row["url"],
        mentions=row["mentions"],
        labels=row["labels"],
        additions=row["additions"],
        deletions=row["deletions"],
    )


def search_events(
    store: Store, criteria: EventSearchCriteria, max_page_size: int = MAX_PAGE_SIZE
) -> list[Event]:
    """Events matching *criteria*, newest first.

    Entity, mention and label match as substrings; every other filter is
    an exact match. The page size is clamped to ``[1, max_page_size]``.
    """
    page_size = min(max(criteria.page_size, 1), max_page_size)
    page = max(criteria.page, 1)

    clauses: list[str] = []
    params: list[object] = []
    for column, value in (
        ("e.org", criteria.org),
        ("e.repo", criteria.repo),
        ("e.username", criteria.username),
        ("e.type", str(criteria.type) if criteria.type else None),
    ):
        if value:
            clauses.append(f"{column} = ?")
            params.append(value)
    for column, value in (
        ("d.entity", criteria.entity),
        ("e.mentions", criteria.mention),
        ("e.labels", criteria.label),
    ):
        if value:
            clauses.append(f"{column} LIKE ?")
            params.append(f"%{value}%")
    if criteria.from_date:
        clauses.append("e.date >= ?")
        params.append(criteria.from_date)
    if criteria.to_date:
        clauses.append("e.date <= ?")
        params.append(criteria.to_date)

    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = store.query(
        f"""SELECT {_EVENT_COLUMNS}
            FROM event e LEFT JOIN developer d ON e.username = d.username
            {where}
            ORDER BY e.date DESC, e.id DESC
            LIMIT ? OFFSET ?""",
        (*params, page_size, (page - 1) * page_size),
    )
    return [_row_to_event(row) for row in rows]


def get_min_event_date(store: Store, org: str | None = None, repo: str | None = None) -> str | None:
    return store.scalar(
        "SELECT MIN(date) FROM event WHERE org = COALESCE(?, org) AND repo = COALESCE(?, repo)",
        (org or None, repo or None),
    )


# ---------------------------------------------------------------------------
# Fuzzy look-ups
# ---------------------------------------------------------------------------


def get_org_like(store: Store, query: str, limit: int = 10) -> list[ListItem]:
    rows = store.query(
        """SELECT org, COUNT(DISTINCT repo) AS repos, COUNT(*) AS events
           FROM event WHERE org LIKE ?
           GROUP BY org ORDER BY org LIMIT ?""",
        (f"%{query}%", limit),
    )
    return [
        ListItem(
            value=row["org"],
            text=f"{row['org']} ({row['repos']} repos, {row['events']} events)",
        )
        for row in rows
    ]


def get_repo_like(store: Store, query: str, limit: int = 10) -> list[ListItem]:
    rows = store.query(
        """SELECT org, repo, COUNT(*) AS events
           FROM event WHERE org || '/' || repo LIKE ?
           GROUP BY org, repo ORDER BY org, repo LIMIT ?""",
        (f"%{query}%", limit),
    )
    return [
        ListItem(
            value=f"{row['org']}/{row['repo']}",
            text=f"{row['org']}/{row['repo']} ({row['events']} events)",
        )
        for row in rows
    ]


def get_entity_like(store: Store, query: str, limit: int = 10) -> list[ListItem]:
    rows = store.query(
        """SELECT d.entity AS entity, COUNT(*) AS events
           FROM event e JOIN developer d ON e.username = d.username
           WHERE d.entity != '' AND d.entity LIKE ?
           GROUP BY d.entity ORDER BY d.entity LIMIT ?""",
        (f"%{query}%", limit),
    )
    return [
        ListItem(value=row["entity"], text=f"{row['entity']} ({row['events']} events)")
        for row in rows
    ]


_LOOKUPS = {
    "org": get_org_like,
    "repo": get_repo_like,
    "entity": get_entity_like,
}


def lookup(store: Store, kind: str, query: str, limit: int = 10) -> list[ListItem]:
    """Dispatch a fuzzy look-up by kind (``org``, ``repo`` or ``entity``)."""
    handler = _LOOKUPS.get(kind)
    if handler is None:
        raise ConfigError(f"Invalid look-up kind {kind!r} (allowed: org, repo, entity)")
    return handler(store, query, limit)


# ---------------------------------------------------------------------------
# Shares
# ---------------------------------------------------------------------------


def _exclusion(column: str, exclude: list[str]) -> tuple[str, list[str]]:
    values = [value for value in exclude if value]
    if not values:
        return "", []
    placeholders = ", ".join("?" for _ in values)
    return f"AND {column} NOT IN ({placeholders})", values


def get_entity_percentages(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    exclude: list[str] | None = None,
    months: int = 6,
) -> list[CountedItem]:
    """Event counts per entity in scope, largest first."""
    excluded, excluded_params = _exclusion("d.entity", exclude or [])
    rows = store.query(
        f"""SELECT d.entity AS name, COUNT(*) AS cnt
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE} AND d.entity != '' {excluded}
            GROUP BY d.entity
            ORDER BY cnt DESC, d.entity""",
        (*scope_params(org, repo, entity, months), *excluded_params),
    )
    return [CountedItem(name=row["name"], count=row["cnt"]) for row in rows]


def get_developer_percentages(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    exclude: list[str] | None = None,
    months: int = 6,
) -> list[CountedItem]:
    """Event counts per developer in scope, bots excluded, largest first."""
    excluded, excluded_params = _exclusion("e.username", exclude or [])
    rows = store.query(
        f"""SELECT e.username AS name, COUNT(*) AS cnt
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE} AND e.username NOT LIKE ? {excluded}
            GROUP BY e.username
            ORDER BY cnt DESC, e.username""",
        (*scope_params(org, repo, entity, months), f"%{BOT_SUFFIX}", *excluded_params),
    )
    return [CountedItem(name=row["name"], count=row["cnt"]) for row in rows]


def to_percentage_series(items: list[CountedItem], top: int = 9) -> PercentageSeries:
    """Top *top* shares in percent, the remainder bucketed as ``ALL OTHERS``."""
    total = sum(item.count for item in items)
    series = PercentageSeries()
    if total == 0:
        return series
    for item in items[:top]:
        series.labels.append(item.name)
        series.data.append(round(item.count / total * 100, 2))
    if len(items) > top:
        series.labels.append(OTHERS_LABEL)
        series.data.append(round(100 - sum(series.data), 2))
    return series


# ---------------------------------------------------------------------------
# Entities and store state
# ---------------------------------------------------------------------------


def query_entities(store: Store, like: str = "", limit: int = 100) -> list[CountedItem]:
    """Entities with their developer counts."""
    rows = store.query(
        """SELECT entity, COUNT(*) AS developers FROM developer
           WHERE entity != '' AND entity LIKE ?
           GROUP BY entity
           ORDER BY developers DESC, entity
           LIMIT ?""",
        (f"%{like}%", limit),
    )
    return [CountedItem(name=row["entity"], count=row["developers"]) for row in rows]


def get_entity(store: Store, entity: str, limit: int = 500) -> EntityDetails | None:
    count = store.scalar("SELECT COUNT(*) FROM developer WHERE entity = ?", (entity,))
    if not count:
        return None
    return EntityDetails(
        entity=entity,
        developer_count=count,
        developers=get_entity_developers(store, entity, limit),
    )


def get_data_state(store: Store) -> dict[str, int]:
    """Row counts of the main tables."""
    return {
        "developer": store.scalar("SELECT COUNT(*) FROM developer"),
        "event": store.scalar("SELECT COUNT(*) FROM event"),
        "event_type": store.scalar("SELECT COUNT(DISTINCT type) FROM event"),
        "release": store.scalar("SELECT COUNT(*) FROM release"),
        "release_asset": store.scalar("SELECT COUNT(*) FROM release_asset"),
        "repo_meta": store.scalar("SELECT COUNT(*) FROM repo_meta"),
        "substitution": store.scalar("SELECT COUNT(*) FROM sub"),
    }
