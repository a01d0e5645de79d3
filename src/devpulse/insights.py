"""Read-only activity analytics over a (org, repo, entity, months) scope."""

from __future__ import annotations

from devpulse.dates import since_date
from devpulse.models import (
    DownloadPoint,
    DurationPoint,
    EventType,
    EventTypePoint,
    ForksActivityPoint,
    InsightsSummary,
    PRRatioPoint,
    ReleaseCadencePoint,
    RetentionPoint,
    TagDownloads,
)
from devpulse.store import Store

# Parameters: org, repo, entity, since.
EVENT_SCOPE = """
    e.org = COALESCE(?, e.org)
    AND e.repo = COALESCE(?, e.repo)
    AND IFNULL(d.entity, '') = COALESCE(?, IFNULL(d.entity, ''))
    AND e.date >= ?
"""

# Parameters: org, repo.
_RELEASE_SCOPE = "r.org = COALESCE(?, r.org) AND r.repo = COALESCE(?, r.repo)"

TREND_WINDOW = 3
RECENT_RELEASES = 9


def scope_params(
    org: str | None, repo: str | None, entity: str | None, months: int
) -> tuple[str | None, str | None, str | None, str]:
    """Bind values for :data:`EVENT_SCOPE`; empty strings mean no filter."""
    return (org or None, repo or None, entity or None, since_date(months))


def _factor(store: Store, group_by: str, extra: str, params: tuple[object, ...]) -> int:
    """Smallest number of groups whose cumulative event share reaches half."""
    row = store.query_one(
        f"""WITH counts AS (
                SELECT {group_by} AS name, COUNT(*) AS cnt
                FROM event e JOIN developer d ON e.username = d.username
                WHERE {EVENT_SCOPE} {extra}
                GROUP BY {group_by}
            ), ranked AS (
                SELECT cnt,
                       SUM(cnt) OVER (
                           ORDER BY cnt DESC, name ROWS UNBOUNDED PRECEDING
                       ) AS cumsum,
                       SUM(cnt) OVER () AS total
                FROM counts
            )
            SELECT COUNT(*) FROM ranked WHERE cumsum - cnt < total * 0.5""",
        params,
    )
    return int(row[0]) if row else 0


def get_insights_summary(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> InsightsSummary:
    """Bus factor, pony factor and scope totals."""
    params = scope_params(org, repo, entity, months)
    totals = store.query_one(
        f"""SELECT COUNT(*) AS events,
                   COUNT(DISTINCT e.username) AS developers,
                   COUNT(DISTINCT NULLIF(d.entity, '')) AS entities
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE}""",
        params,
    )
    return InsightsSummary(
        bus_factor=_factor(store, "e.username", "", params),
        pony_factor=_factor(store, "d.entity", "AND d.entity != ''", params),
        developers=totals["developers"] if totals else 0,
        entities=totals["entities"] if totals else 0,
        events=totals["events"] if totals else 0,
    )


def get_contributor_retention(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[RetentionPoint]:
    """New and returning contributors per month.

    A contributor is new in the month of their first event in the
    org/repo scope, and returning in later months they appear in.
    """
    org_p, repo_p, entity_p, since = scope_params(org, repo, entity, months)
    rows = store.query(
        f"""WITH first_seen AS (
                SELECT username, MIN(substr(date, 1, 7)) AS first_month
                FROM event
                WHERE org = COALESCE(?, org) AND repo = COALESCE(?, repo)
                GROUP BY username
            ), monthly AS (
                SELECT DISTINCT substr(e.date, 1, 7) AS month, e.username
                FROM event e JOIN developer d ON e.username = d.username
                WHERE {EVENT_SCOPE}
            )
            SELECT m.month,
                   SUM(CASE WHEN f.first_month = m.month THEN 1 ELSE 0 END) AS new,
                   SUM(CASE WHEN f.first_month < m.month THEN 1 ELSE 0 END) AS "returning"
            FROM monthly m JOIN first_seen f ON m.username = f.username
            GROUP BY m.month
            ORDER BY m.month""",
        (org_p, repo_p, org_p, repo_p, entity_p, since),
    )
    return [
        RetentionPoint(month=row["month"], new=row["new"], returning=row["returning"])
        for row in rows
    ]


def _durations(
    store: Store, condition: str, end_column: str, params: tuple[object, ...]
) -> list[DurationPoint]:
    rows = store.query(
        f"""SELECT substr(e.date, 1, 7) AS month,
                   COUNT(*) AS count,
                   AVG(julianday(e.{end_column}) - julianday(e.created_at)) AS avg_days
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE} AND {condition}
            GROUP BY month
            ORDER BY month""",
        params,
    )
    return [
        DurationPoint(
            month=row["month"],
            count=row["count"],
            avg_days=round(row["avg_days"] or 0.0, 2),
        )
        for row in rows
    ]


def get_time_to_merge(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[DurationPoint]:
    """Merged pull requests per month with mean days from creation to merge."""
    return _durations(
        store,
        "e.type = 'pull_request' AND e.merged_at != '' AND e.created_at != ''",
        "merged_at",
        scope_params(org, repo, entity, months),
    )


def get_time_to_close(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[DurationPoint]:
    """Closed issues per month with mean days from creation to close."""
    return _durations(
        store,
        "e.type = 'issue' AND e.state = 'closed' AND e.closed_at != '' AND e.created_at != ''",
        "closed_at",
        scope_params(org, repo, entity, months),
    )


def get_pr_review_ratio(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[PRRatioPoint]:
    rows = store.query(
        f"""SELECT substr(e.date, 1, 7) AS month,
                   SUM(CASE WHEN e.type = 'pull_request' THEN 1 ELSE 0 END) AS prs,
                   SUM(CASE WHEN e.type = 'pull_request_review' THEN 1 ELSE 0 END) AS reviews
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE}
              AND e.type IN ('pull_request', 'pull_request_review')
            GROUP BY month
            ORDER BY month""",
        scope_params(org, repo, entity, months),
    )
    return [
        PRRatioPoint(
            month=row["month"],
            prs=row["prs"],
            reviews=row["reviews"],
            ratio=round(row["reviews"] / row["prs"], 2) if row["prs"] else 0.0,
        )
        for row in rows
    ]


def get_forks_and_activity(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[ForksActivityPoint]:
    rows = store.query(
        f"""SELECT substr(e.date, 1, 7) AS month,
                   SUM(CASE WHEN e.type = 'fork' THEN 1 ELSE 0 END) AS forks,
                   COUNT(*) AS events
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE}
            GROUP BY month
            ORDER BY month""",
        scope_params(org, repo, entity, months),
    )
    return [
        ForksActivityPoint(month=row["month"], forks=row["forks"], events=row["events"])
        for row in rows
    ]


def get_event_type_series(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
) -> list[EventTypePoint]:
    """Per-month counts by event type with a trailing moving-average trend."""
    rows = store.query(
        f"""SELECT substr(e.date, 1, 7) AS month, e.type AS type, COUNT(*) AS cnt
            FROM event e JOIN developer d ON e.username = d.username
            WHERE {EVENT_SCOPE}
            GROUP BY month, e.type
            ORDER BY month""",
        scope_params(org, repo, entity, months),
    )
    points: dict[str, EventTypePoint] = {}
    for row in rows:
        point = points.setdefault(row["month"], EventTypePoint(month=row["month"]))
        if row["type"] in EventType.__members__.values():
            setattr(point, row["type"], row["cnt"])
        point.total += row["cnt"]

    series = list(points.values())
    for i, point in enumerate(series):
        window = series[max(0, i - TREND_WINDOW + 1) : i + 1]
        point.trend = round(sum(p.total for p in window) / len(window), 2)
    return series


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


def get_release_cadence(
    store: Store, org: str | None = None, repo: str | None = None, months: int = 6
) -> list[ReleaseCadencePoint]:
    rows = store.query(
        f"""SELECT substr(r.published_at, 1, 7) AS month,
                   COUNT(*) AS total,
                   SUM(CASE WHEN r.prerelease = 0 THEN 1 ELSE 0 END) AS stable
            FROM release r
            WHERE {_RELEASE_SCOPE} AND r.published_at >= ?
            GROUP BY month
            ORDER BY month""",
        (org or None, repo or None, since_date(months)),
    )
    return [
        ReleaseCadencePoint(month=row["month"], total=row["total"], stable=row["stable"])
        for row in rows
    ]


def get_release_downloads(
    store: Store, org: str | None = None, repo: str | None = None, months: int = 6
) -> list[DownloadPoint]:
    """Asset downloads summed by the month their release was published."""
    rows = store.query(
        f"""SELECT substr(r.published_at, 1, 7) AS month,
                   COALESCE(SUM(a.download_count), 0) AS downloads
            FROM release r
            LEFT JOIN release_asset a
                ON a.org = r.org AND a.repo = r.repo AND a.tag = r.tag
            WHERE {_RELEASE_SCOPE} AND r.published_at >= ?
            GROUP BY month
            ORDER BY month""",
        (org or None, repo or None, since_date(months)),
    )
    return [DownloadPoint(month=row["month"], downloads=row["downloads"]) for row in rows]


def get_release_downloads_by_tag(
    store: Store, org: str | None = None, repo: str | None = None
) -> list[TagDownloads]:
    """The most recent releases plus the all-time most downloaded one."""
    rows = store.query(
        f"""WITH totals AS (
                SELECT r.tag AS tag, r.published_at AS published_at,
                       COALESCE(SUM(a.download_count), 0) AS downloads
                FROM release r
                LEFT JOIN release_asset a
                    ON a.org = r.org AND a.repo = r.repo AND a.tag = r.tag
                WHERE {_RELEASE_SCOPE}
                GROUP BY r.org, r.repo, r.tag, r.published_at
            ), recent AS (
                SELECT tag, published_at, downloads FROM totals
                ORDER BY published_at DESC LIMIT {RECENT_RELEASES}
            ), top AS (
                SELECT tag, published_at, downloads FROM totals
                ORDER BY downloads DESC, published_at DESC LIMIT 1
            )
            SELECT tag, published_at, downloads FROM recent
            UNION
            SELECT tag, published_at, downloads FROM top
            ORDER BY published_at ASC""",
        (org or None, repo or None),
    )
    return [
        TagDownloads(tag=row["tag"], published_at=row["published_at"], downloads=row["downloads"])
        for row in rows
    ]
