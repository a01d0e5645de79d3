"""Shared test fixtures for devpulse tests."""

from __future__ import annotations

import itertools
from collections.abc import Iterator
from pathlib import Path

import pytest

from devpulse.developers import upsert_developers
from devpulse.models import Developer, EventType, Release, ReleaseAsset
from devpulse.ratelimit import RateLimiter
from devpulse.repository import save_releases
from devpulse.store import Store

ORG = "acme"
REPO = "widget"


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Seeder:
    """Writes developers, events and releases straight into a store."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self._ids = itertools.count(1)

    def developer(self, username: str, entity: str = "", **fields: object) -> None:
        with self.store.transaction() as conn:
            upsert_developers(conn, [Developer(username=username, entity=entity, **fields)])

    def event(
        self,
        username: str,
        date: str,
        type: EventType | str = EventType.PULL_REQUEST,
        org: str = ORG,
        repo: str = REPO,
        **fields: object,
    ) -> int:
        event_id = next(self._ids)
        columns = {
            "id": event_id,
            "org": org,
            "repo": repo,
            "username": username,
            "type": str(type),
            "date": date,
            **fields,
        }
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        with self.store.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO developer (username) VALUES (?)", (username,)
            )
            conn.execute(
                f"INSERT INTO event ({names}) VALUES ({placeholders})",
                tuple(columns.values()),
            )
        return event_id

    def events(self, username: str, date: str, count: int, **kwargs: object) -> None:
        for _ in range(count):
            self.event(username, date, **kwargs)

    def release(
        self,
        tag: str,
        published_at: str,
        downloads: int = 0,
        prerelease: bool = False,
        org: str = ORG,
        repo: str = REPO,
    ) -> None:
        release = Release(
            org=org,
            repo=repo,
            tag=tag,
            name=tag,
            published_at=published_at,
            prerelease=prerelease,
            assets=[ReleaseAsset(name=f"{tag}.tar.gz", download_count=downloads)],
        )
        with self.store.transaction() as conn:
            save_releases(conn, [release])


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "devpulse.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[Store]:
    s = Store(db_path)
    yield s
    s.close()


@pytest.fixture
def seed(store: Store) -> Seeder:
    return Seeder(store)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rate_limiter(recording_sleep: RecordingSleep) -> RateLimiter:
    return RateLimiter(sleep=recording_sleep, jitter=lambda: 0.0)
