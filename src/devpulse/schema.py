"""Numbered, forward-only schema migrations for the devpulse store."""

from __future__ import annotations

from typing import NamedTuple


class Migration(NamedTuple):
    version: int
    name: str
    sql: str


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        1,
        "base",
        """
        CREATE TABLE IF NOT EXISTS developer (
            username TEXT PRIMARY KEY,
            id INTEGER NOT NULL DEFAULT 0,
            full_name TEXT NOT NULL DEFAULT '',
            email TEXT NOT NULL DEFAULT '',
            avatar TEXT NOT NULL DEFAULT '',
            url TEXT NOT NULL DEFAULT '',
            entity TEXT NOT NULL DEFAULT '',
            location TEXT NOT NULL DEFAULT '',
            updated TEXT NOT NULL DEFAULT ''
        );
        CREATE INDEX IF NOT EXISTS idx_developer_entity ON developer(entity);

        CREATE TABLE IF NOT EXISTS event (
            id INTEGER NOT NULL,
            org TEXT NOT NULL,
            repo TEXT NOT NULL,
            username TEXT NOT NULL,
            type TEXT NOT NULL CHECK (type IN (
                'pull_request', 'pull_request_review', 'issue',
                'issue_comment', 'fork'
            )),
            date TEXT NOT NULL,
            state TEXT NOT NULL DEFAULT '',
            number INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT '',
            closed_at TEXT NOT NULL DEFAULT '',
            merged_at TEXT NOT NULL DEFAULT '',
            url TEXT NOT NULL DEFAULT '',
            mentions TEXT NOT NULL DEFAULT '',
            labels TEXT NOT NULL DEFAULT '',
            additions INTEGER NOT NULL DEFAULT 0,
            deletions INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (id, org, repo, username, type, date)
        );
        CREATE INDEX IF NOT EXISTS idx_event_org_repo ON event(org, repo);
        CREATE INDEX IF NOT EXISTS idx_event_username ON event(username);
        CREATE INDEX IF NOT EXISTS idx_event_date ON event(date);
        CREATE INDEX IF NOT EXISTS idx_event_type ON event(type);

        CREATE TABLE IF NOT EXISTS state (
            query TEXT NOT NULL,
            org TEXT NOT NULL,
            repo TEXT NOT NULL,
            page INTEGER NOT NULL DEFAULT 1 CHECK (page >= 1),
            since TEXT NOT NULL,
            PRIMARY KEY (query, org, repo)
        );

        CREATE TABLE IF NOT EXISTS sub (
            type TEXT NOT NULL,
            old TEXT NOT NULL,
            new TEXT NOT NULL,
            PRIMARY KEY (type, old)
        );
        """,
    ),
    Migration(
        2,
        "developer_reputation",
        """
        ALTER TABLE developer ADD COLUMN reputation REAL;
        ALTER TABLE developer ADD COLUMN reputation_updated_at TEXT;
        ALTER TABLE developer ADD COLUMN reputation_deep INTEGER NOT NULL DEFAULT 0;
        ALTER TABLE developer ADD COLUMN reputation_signals TEXT;
        CREATE INDEX IF NOT EXISTS idx_developer_reputation
            ON developer(reputation_updated_at);
        """,
    ),
    Migration(
        3,
        "releases",
        """
        CREATE TABLE IF NOT EXISTS release (
            org TEXT NOT NULL,
            repo TEXT NOT NULL,
            tag TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            published_at TEXT NOT NULL DEFAULT '',
            prerelease INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (org, repo, tag)
        );
        CREATE INDEX IF NOT EXISTS idx_release_published ON release(published_at);

        CREATE TABLE IF NOT EXISTS release_asset (
            org TEXT NOT NULL,
            repo TEXT NOT NULL,
            tag TEXT NOT NULL,
            name TEXT NOT NULL,
            content_type TEXT NOT NULL DEFAULT '',
            size INTEGER NOT NULL DEFAULT 0,
            download_count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (org, repo, tag, name)
        );
        """,
    ),
    Migration(
        4,
        "repo_meta",
        """
        CREATE TABLE IF NOT EXISTS repo_meta (
            org TEXT NOT NULL,
            repo TEXT NOT NULL,
            stars INTEGER NOT NULL DEFAULT 0,
            forks INTEGER NOT NULL DEFAULT 0,
            open_issues INTEGER NOT NULL DEFAULT 0,
            language TEXT NOT NULL DEFAULT '',
            license TEXT NOT NULL DEFAULT '',
            archived INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL DEFAULT '',
            PRIMARY KEY (org, repo)
        );
        """,
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version
