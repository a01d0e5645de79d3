"""Shallow (batch) and deep (on-demand) reputation scoring with caching."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from devpulse.config import ReputationConfig
from devpulse.dates import format_timestamp, parse_stored_timestamp, since_date, utc_now
from devpulse.developers import upsert_developers
from devpulse.github_client import GitHubClient
from devpulse.models import Developer, GitHubUser, Reputation, ReputationImportResult, Signals
from devpulse.scorer import category_scores, compute
from devpulse.store import Store

logger = logging.getLogger(__name__)

BOT_SUFFIX = "[bot]"

_SAVE_REPUTATION_SQL = """
    UPDATE developer SET
        reputation = ?,
        reputation_updated_at = ?,
        reputation_deep = ?,
        reputation_signals = ?
    WHERE username = ?
"""


def _categories(signals: Signals) -> dict[str, float]:
    return {name: round(value, 4) for name, value in category_scores(signals).items()}


def window_totals(store: Store, since: str) -> tuple[int, int]:
    """Event and distinct contributor counts across all repositories since *since*."""
    row = store.query_one(
        """SELECT COUNT(*) AS total, COUNT(DISTINCT username) AS contributors
           FROM event WHERE date >= ?""",
        (since,),
    )
    if row is None:
        return 0, 0
    return row["total"], row["contributors"]


def local_signals(
    store: Store,
    username: str,
    window_months: int = 6,
    now: datetime | None = None,
    totals: tuple[int, int] | None = None,
) -> Signals:
    """Signals derivable from the local event table alone.

    *totals* is the :func:`window_totals` result for the same window. Batch
    callers pass it in so the repository-wide counts run once per batch.
    """
    now = now or utc_now()
    since = since_date(window_months, now)
    commits = store.scalar(
        "SELECT COUNT(*) FROM event WHERE username = ? AND date >= ?", (username, since)
    )
    total, contributors = totals if totals is not None else window_totals(store, since)
    last = store.scalar("SELECT MAX(date) FROM event WHERE username = ?", (username,))
    last_days = (now.date() - date.fromisoformat(last)).days if last else 0
    return Signals(
        commits=commits or 0,
        total_commits=total,
        total_contributors=contributors,
        last_commit_days=max(last_days, 0),
    )


def _save(
    store: Store,
    scores: Iterable[tuple[str, float, Signals]],
    deep: bool,
    now: datetime,
) -> None:
    updated_at = format_timestamp(now)
    with store.transaction() as conn:
        for username, score, signals in scores:
            conn.execute(
                _SAVE_REPUTATION_SQL,
                (score, updated_at, int(deep), signals.model_dump_json(), username),
            )


def import_reputation(
    store: Store, config: ReputationConfig | None = None, now: datetime | None = None
) -> ReputationImportResult:
    """Score every non-bot developer with events whose score is missing or stale."""
    config = config or ReputationConfig()
    now = now or utc_now()
    cutoff = format_timestamp(now - timedelta(hours=config.stale_hours))
    rows = store.query(
        """SELECT d.username FROM developer d
           WHERE d.username NOT LIKE ?
             AND (d.reputation_updated_at IS NULL OR d.reputation_updated_at < ?)
             AND EXISTS (SELECT 1 FROM event e WHERE e.username = d.username)
           ORDER BY d.username""",
        (f"%{BOT_SUFFIX}", cutoff),
    )
    totals = window_totals(store, since_date(config.window_months, now))
    scores: list[tuple[str, float, Signals]] = []
    for row in rows:
        signals = local_signals(store, row["username"], config.window_months, now, totals)
        scores.append((row["username"], compute(signals), signals))
    if scores:
        _save(store, scores, deep=False, now=now)
    logger.info("Computed shallow reputation for %d developers", len(scores))
    return ReputationImportResult(scored=len(scores))


def _known_orgs(store: Store) -> list[str]:
    return [row["org"] for row in store.query("SELECT DISTINCT org FROM event ORDER BY org")]


async def is_org_member(client: GitHubClient, profile: GitHubUser, orgs: list[str]) -> bool:
    """Company field match first, then membership checks until one succeeds."""
    company = profile.company.strip().lower().lstrip("@")
    if company and company in {org.lower() for org in orgs}:
        return True
    for org in orgs:
        if await client.is_org_member(org, profile.login):
            return True
    return False


async def compute_deep(
    store: Store,
    client: GitHubClient,
    username: str,
    config: ReputationConfig | None = None,
    now: datetime | None = None,
) -> Reputation:
    """Score *username* with GitHub profile signals and persist the result."""
    config = config or ReputationConfig()
    now = now or utc_now()
    profile = await client.get_user(username)
    member = await is_org_member(client, profile, _known_orgs(store))
    age_days = (now - profile.created_at).days if profile.created_at else 0
    signals = local_signals(store, username, config.window_months, now).model_copy(
        update={
            "age_days": max(age_days, 0),
            "followers": profile.followers,
            "following": profile.following,
            "public_repos": profile.public_repos,
            "private_repos": profile.owned_private_repos,
            "strong_auth": bool(profile.two_factor_authentication),
            "suspended": profile.suspended_at is not None,
            "org_member": member,
        }
    )
    score = compute(signals)

    with store.transaction() as conn:
        upsert_developers(
            conn,
            [
                Developer(
                    username=username,
                    id=profile.id,
                    full_name=profile.name,
                    avatar=profile.avatar_url,
                    url=profile.html_url,
                    location=profile.location,
                )
            ],
        )
    _save(store, [(username, score, signals)], deep=True, now=now)
    logger.debug("Deep reputation for %s: %.2f", username, score)
    return Reputation(
        username=username,
        reputation=score,
        deep=True,
        updated_at=format_timestamp(now),
        signals=signals,
        categories=_categories(signals),
    )


async def get_or_compute_deep(
    store: Store,
    client: GitHubClient,
    username: str,
    config: ReputationConfig | None = None,
    now: datetime | None = None,
) -> Reputation:
    """Cached deep score when fresh, otherwise a new deep computation."""
    config = config or ReputationConfig()
    now = now or utc_now()
    row = store.query_one(
        """SELECT reputation, reputation_updated_at, reputation_deep, reputation_signals
           FROM developer WHERE username = ?""",
        (username,),
    )
    if row is not None and row["reputation_deep"] and row["reputation"] is not None:
        updated_at = parse_stored_timestamp(row["reputation_updated_at"])
        if updated_at is not None and now - updated_at < timedelta(hours=config.stale_hours):
            signals = (
                Signals.model_validate(json.loads(row["reputation_signals"]))
                if row["reputation_signals"]
                else None
            )
            return Reputation(
                username=username,
                reputation=row["reputation"],
                deep=True,
                cached=True,
                updated_at=row["reputation_updated_at"],
                signals=signals,
                categories=_categories(signals) if signals else {},
            )
    return await compute_deep(store, client, username, config, now)


def get_reputation_distribution(
    store: Store,
    org: str | None = None,
    repo: str | None = None,
    entity: str | None = None,
    months: int = 6,
    limit: int = 20,
) -> list[Reputation]:
    """The lowest-scored non-bot developers active in scope."""
    rows = store.query(
        """SELECT d.username, d.reputation, d.reputation_deep, d.reputation_updated_at
           FROM developer d
           WHERE d.reputation IS NOT NULL
             AND d.username NOT LIKE ?
             AND IFNULL(d.entity, '') = COALESCE(?, IFNULL(d.entity, ''))
             AND EXISTS (
                 SELECT 1 FROM event e
                 WHERE e.username = d.username
                   AND e.org = COALESCE(?, e.org)
                   AND e.repo = COALESCE(?, e.repo)
                   AND e.date >= ?
             )
           ORDER BY d.reputation ASC, d.username
           LIMIT ?""",
        (f"%{BOT_SUFFIX}", entity or None, org or None, repo or None, since_date(months), limit),
    )
    return [
        Reputation(
            username=row["username"],
            reputation=row["reputation"],
            deep=bool(row["reputation_deep"]),
            updated_at=row["reputation_updated_at"],
        )
        for row in rows
    ]
