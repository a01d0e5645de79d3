"""Persistence for releases, release assets and repository metadata."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from typing import Any

from devpulse.models import Release, ReleaseAsset, RepoMeta
from devpulse.store import Store

_UPSERT_RELEASE_SQL = """
    INSERT INTO release (org, repo, tag, name, published_at, prerelease)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT(org, repo, tag) DO UPDATE SET
        name = excluded.name,
        published_at = excluded.published_at,
        prerelease = excluded.prerelease
"""

_UPSERT_ASSET_SQL = """
    INSERT INTO release_asset (org, repo, tag, name, content_type, size, download_count)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(org, repo, tag, name) DO UPDATE SET
        content_type = excluded.content_type,
        size = excluded.size,
        download_count = excluded.download_count
"""

_UPSERT_REPO_META_SQL = """
    INSERT INTO repo_meta (
        org, repo, stars, forks, open_issues, language, license, archived, updated_at
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(org, repo) DO UPDATE SET
        stars = excluded.stars,
        forks = excluded.forks,
        open_issues = excluded.open_issues,
        language = excluded.language,
        license = excluded.license,
        archived = excluded.archived,
        updated_at = excluded.updated_at
"""


def release_from_item(org: str, repo: str, item: dict[str, Any]) -> Release:
    return Release(
        org=org,
        repo=repo,
        tag=item.get("tag_name") or "",
        name=item.get("name") or "",
        published_at=item.get("published_at") or "",
        prerelease=bool(item.get("prerelease")),
        assets=[
            ReleaseAsset(
                name=asset.get("name") or "",
                content_type=asset.get("content_type") or "",
                size=asset.get("size") or 0,
                download_count=asset.get("download_count") or 0,
            )
            for asset in item.get("assets") or []
        ],
    )


def save_releases(conn: sqlite3.Connection, releases: Iterable[Release]) -> int:
    """Upsert releases and their assets inside an open transaction."""
    count = 0
    for release in releases:
        conn.execute(
            _UPSERT_RELEASE_SQL,
            (
                release.org,
                release.repo,
                release.tag,
                release.name,
                release.published_at,
                int(release.prerelease),
            ),
        )
        for asset in release.assets:
            conn.execute(
                _UPSERT_ASSET_SQL,
                (
                    release.org,
                    release.repo,
                    release.tag,
                    asset.name,
                    asset.content_type,
                    asset.size,
                    asset.download_count,
                ),
            )
        count += 1
    return count


def save_repo_meta(store: Store, meta: RepoMeta) -> None:
    with store.transaction() as conn:
        conn.execute(
            _UPSERT_REPO_META_SQL,
            (
                meta.org,
                meta.repo,
                meta.stars,
                meta.forks,
                meta.open_issues,
                meta.language,
                meta.license,
                int(meta.archived),
                meta.updated_at,
            ),
        )


def get_repo_metas(store: Store, org: str | None = None, repo: str | None = None) -> list[RepoMeta]:
    rows = store.query(
        """SELECT org, repo, stars, forks, open_issues, language, license, archived, updated_at
           FROM repo_meta
           WHERE org = COALESCE(?, org) AND repo = COALESCE(?, repo)
           ORDER BY org, repo""",
        (org, repo),
    )
    return [
        RepoMeta(
            org=row["org"],
            repo=row["repo"],
            stars=row["stars"],
            forks=row["forks"],
            open_issues=row["open_issues"],
            language=row["language"],
            license=row["license"],
            archived=bool(row["archived"]),
            updated_at=row["updated_at"],
        )
        for row in rows
    ]
