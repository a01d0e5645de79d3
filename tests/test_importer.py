"""Tests for the concurrent event importer."""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

import pytest

from devpulse.config import DevpulseConfig, ImportConfig
from devpulse.exceptions import GitHubAPIError, GitHubAuthError, StoreError
from devpulse.importer import (
    STREAMS,
    EventImporter,
    clear_import_state,
    get_imported_repos,
    import_releases,
)
from devpulse.models import EventType, Page, ResponseMeta
from devpulse.state import get_state
from devpulse.store import Store

ORG = "acme"
REPO = "widget"
NOW = datetime(2025, 6, 30, tzinfo=UTC)


class ProcessKilled(Exception):
    """Stands in for the process dying mid-import."""


def _item(
    stream: EventType, item_id: int, login: str, created: str = "2025-03-01T00:00:00Z"
) -> dict[str, Any]:
    author = "owner" if stream is EventType.FORK else "user"
    item: dict[str, Any] = {
        "id": item_id,
        author: {"login": login, "id": item_id},
        "created_at": created,
        "updated_at": created,
        "number": item_id,
    }
    if stream is EventType.PULL_REQUEST_REVIEW:
        item["pull_request_url"] = f"https://api.github.com/repos/{ORG}/{REPO}/pulls/1"
    if stream is EventType.ISSUE_COMMENT:
        item["issue_url"] = f"https://api.github.com/repos/{ORG}/{REPO}/issues/1"
    return item


class FakeGitHubClient:
    """Serves canned pages per stream and records requested pages."""

    def __init__(
        self,
        pages: dict[EventType, list[list[dict[str, Any]]]] | None = None,
        failures: dict[tuple[EventType, int], Exception] | None = None,
        releases: list[dict[str, Any]] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.failures = failures or {}
        self.releases = releases or []
        self.requested: dict[EventType, list[int]] = defaultdict(list)

    async def _serve(self, stream: EventType, page: int) -> Page:
        self.requested[stream].append(page)
        failure = self.failures.get((stream, page))
        if failure is not None:
            raise failure
        pages = self.pages.get(stream, [])
        if page > len(pages):
            return Page()
        next_page = page + 1 if page < len(pages) else 0
        return Page(
            items=pages[page - 1],
            meta=ResponseMeta(next_page=next_page, last_page=len(pages)),
        )

    async def list_pull_requests(self, org: str, repo: str, page: int = 1, **_: Any) -> Page:
        return await self._serve(EventType.PULL_REQUEST, page)

    async def list_pull_request_reviews(
        self, org: str, repo: str, page: int = 1, **_: Any
    ) -> Page:
        return await self._serve(EventType.PULL_REQUEST_REVIEW, page)

    async def list_issues(self, org: str, repo: str, page: int = 1, **_: Any) -> Page:
        return await self._serve(EventType.ISSUE, page)

    async def list_issue_comments(self, org: str, repo: str, page: int = 1, **_: Any) -> Page:
        return await self._serve(EventType.ISSUE_COMMENT, page)

    async def list_forks(self, org: str, repo: str, page: int = 1, **_: Any) -> Page:
        return await self._serve(EventType.FORK, page)

    async def list_releases(self, org: str, repo: str, page: int = 1, **_: Any) -> Page:
        return Page(items=self.releases if page == 1 else [])


def _importer(store: Store, client: FakeGitHubClient, batch_size: int = 500) -> EventImporter:
    config = DevpulseConfig(import_=ImportConfig(batch_size=batch_size, page_size=2))
    return EventImporter(store, client, config, clock=lambda: NOW)  # type: ignore[arg-type]


def _pr_pages(count: int) -> list[list[dict[str, Any]]]:
    return [
        [
            _item(EventType.PULL_REQUEST, page * 10 + 1, "alice"),
            _item(EventType.PULL_REQUEST, page * 10 + 2, "bob"),
        ]
        for page in range(1, count + 1)
    ]


def _event_count(store: Store, stream: EventType | None = None) -> int:
    if stream is None:
        return store.scalar("SELECT COUNT(*) FROM event")
    return store.scalar("SELECT COUNT(*) FROM event WHERE type = ?", (str(stream),))


# ---------------------------------------------------------------------------
# import_repo
# ---------------------------------------------------------------------------


class TestImportRepo:
    async def test_imports_every_stream(self, store: Store) -> None:
        client = FakeGitHubClient(
            {stream: [[_item(stream, 100 + i, "alice")]] for i, stream in enumerate(STREAMS)}
        )
        counts = await _importer(store, client).import_repo(ORG, REPO)

        assert counts == {f"{ORG}/{REPO}/{stream}": 1 for stream in STREAMS}
        assert _event_count(store) == len(STREAMS)
        assert store.scalar("SELECT COUNT(*) FROM developer") == 1
        for stream in STREAMS:
            assert get_state(store, stream, ORG, REPO, "2000-01-01").page == 1

    async def test_every_event_has_a_developer(self, store: Store) -> None:
        client = FakeGitHubClient({EventType.PULL_REQUEST: _pr_pages(2)})
        await _importer(store, client).import_repo(ORG, REPO)
        orphans = store.scalar(
            "SELECT COUNT(*) FROM event e LEFT JOIN developer d ON e.username = d.username"
            " WHERE d.username IS NULL"
        )
        assert orphans == 0

    async def test_reimport_inserts_nothing_new(self, store: Store) -> None:
        pages = {EventType.PULL_REQUEST: _pr_pages(3)}
        await _importer(store, FakeGitHubClient(pages)).import_repo(ORG, REPO)
        clear_import_state(store, [(ORG, REPO)])

        counts = await _importer(store, FakeGitHubClient(pages)).import_repo(ORG, REPO)

        assert sum(counts.values()) == 0
        assert _event_count(store) == 6

    async def test_back_to_back_import_is_idempotent(self, store: Store) -> None:
        pages = {
            EventType.PULL_REQUEST: _pr_pages(3),
            EventType.FORK: [[_item(EventType.FORK, 900, "erin")]],
        }
        await _importer(store, FakeGitHubClient(pages)).import_repo(ORG, REPO)
        before = {s: get_state(store, s, ORG, REPO, "2000-01-01") for s in STREAMS}

        counts = await _importer(store, FakeGitHubClient(pages)).import_repo(ORG, REPO)

        assert sum(counts.values()) == 0
        assert _event_count(store) == 7
        after = {s: get_state(store, s, ORG, REPO, "2000-01-01") for s in STREAMS}
        assert after == before
        assert after[EventType.PULL_REQUEST].page == 3

    async def test_issue_stream_skips_pull_requests(self, store: Store) -> None:
        pr_like = _item(EventType.ISSUE, 2, "bob")
        pr_like["pull_request"] = {"url": "x"}
        client = FakeGitHubClient(
            {EventType.ISSUE: [[_item(EventType.ISSUE, 1, "alice"), pr_like]]}
        )
        await _importer(store, client).import_repo(ORG, REPO)
        assert _event_count(store, EventType.ISSUE) == 1

    async def test_items_without_author_are_skipped(self, store: Store) -> None:
        anonymous = _item(EventType.ISSUE_COMMENT, 2, "")
        client = FakeGitHubClient(
            {EventType.ISSUE_COMMENT: [[_item(EventType.ISSUE_COMMENT, 1, "alice"), anonymous]]}
        )
        await _importer(store, client).import_repo(ORG, REPO)
        assert _event_count(store, EventType.ISSUE_COMMENT) == 1

    async def test_pull_requests_stop_at_window(self, store: Store) -> None:
        old = "2020-01-01T00:00:00Z"
        pages = [
            [_item(EventType.PULL_REQUEST, 1, "alice")],
            [
                _item(EventType.PULL_REQUEST, 2, "bob", old),
                _item(EventType.PULL_REQUEST, 3, "bob", old),
            ],
            [_item(EventType.PULL_REQUEST, 4, "carol")],
        ]
        client = FakeGitHubClient({EventType.PULL_REQUEST: pages})
        await _importer(store, client).import_repo(ORG, REPO, months=6)

        assert client.requested[EventType.PULL_REQUEST] == [1, 2]
        assert _event_count(store, EventType.PULL_REQUEST) == 1

    async def test_flushes_at_batch_size(self, store: Store) -> None:
        client = FakeGitHubClient({EventType.PULL_REQUEST: _pr_pages(3)})
        importer = _importer(store, client, batch_size=2)
        await importer.import_repo(ORG, REPO)
        assert _event_count(store) == 6
        assert get_state(store, EventType.PULL_REQUEST, ORG, REPO, "2000-01-01").page == 3

    async def test_failed_flush_persists_nothing_from_its_batch(self, store: Store) -> None:
        with store.transaction() as conn:
            conn.execute(
                """CREATE TRIGGER reject_event BEFORE INSERT ON event
                   WHEN NEW.id = 22 BEGIN SELECT RAISE(ABORT, 'rejected'); END"""
            )
        pages = _pr_pages(1) + [
            [
                _item(EventType.PULL_REQUEST, 21, "carol"),
                _item(EventType.PULL_REQUEST, 22, "dave"),
            ]
        ]
        client = FakeGitHubClient({EventType.PULL_REQUEST: pages})

        with pytest.raises(StoreError):
            await _importer(store, client, batch_size=2).import_repo(ORG, REPO)

        assert store.scalar("SELECT id FROM event WHERE id = 21") is None
        assert _event_count(store) == 2
        usernames = store.query("SELECT username FROM developer ORDER BY username")
        assert [row["username"] for row in usernames] == ["alice", "bob"]
        state = get_state(store, EventType.PULL_REQUEST, ORG, REPO, "2000-01-01")
        assert state.page == 2

    async def test_stream_error_aborts_only_that_stream(self, store: Store) -> None:
        client = FakeGitHubClient(
            {
                EventType.PULL_REQUEST: _pr_pages(2),
                EventType.FORK: [[_item(EventType.FORK, 500, "erin")]],
            },
            failures={(EventType.ISSUE, 1): GitHubAPIError("boom", status_code=500)},
        )
        importer = _importer(store, client)
        counts = await importer.import_repo(ORG, REPO)

        assert counts[f"{ORG}/{REPO}/pull_request"] == 4
        assert counts[f"{ORG}/{REPO}/fork"] == 1
        assert len(importer.errors) == 1
        assert "issue" in importer.errors[0]

    async def test_auth_error_aborts_import(self, store: Store) -> None:
        client = FakeGitHubClient(
            {EventType.PULL_REQUEST: _pr_pages(2)},
            failures={(EventType.ISSUE_COMMENT, 1): GitHubAuthError(401, "Bad credentials")},
        )
        with pytest.raises(GitHubAuthError):
            await _importer(store, client).import_repo(ORG, REPO)


# ---------------------------------------------------------------------------
# Resumable pagination
# ---------------------------------------------------------------------------


class TestResume:
    async def test_resumes_after_last_flushed_page(self, store: Store) -> None:
        pages = {EventType.PULL_REQUEST: _pr_pages(5)}
        crashing = FakeGitHubClient(
            pages, failures={(EventType.PULL_REQUEST, 4): ProcessKilled()}
        )
        with pytest.raises(ProcessKilled):
            await _importer(store, crashing, batch_size=1).import_repo(ORG, REPO)

        assert _event_count(store) == 6
        state = get_state(store, EventType.PULL_REQUEST, ORG, REPO, "2000-01-01")
        assert state.page == 4

        resumed = FakeGitHubClient(pages)
        await _importer(store, resumed, batch_size=1).import_repo(ORG, REPO)

        assert resumed.requested[EventType.PULL_REQUEST][0] == 4
        assert _event_count(store) == 10
        duplicates = store.scalar(
            "SELECT COUNT(*) FROM (SELECT id FROM event GROUP BY id HAVING COUNT(*) > 1)"
        )
        assert duplicates == 0
        final = get_state(store, EventType.PULL_REQUEST, ORG, REPO, "2000-01-01")
        assert final.page == 5

    async def test_fresh_import_starts_at_first_page(self, store: Store) -> None:
        pages = {EventType.PULL_REQUEST: _pr_pages(2)}
        await _importer(store, FakeGitHubClient(pages)).import_repo(ORG, REPO)
        clear_import_state(store, [(ORG, REPO)])

        again = FakeGitHubClient(pages)
        await _importer(store, again).import_repo(ORG, REPO)
        assert again.requested[EventType.PULL_REQUEST][0] == 1


# ---------------------------------------------------------------------------
# Releases and helpers
# ---------------------------------------------------------------------------


class TestReleases:
    async def test_drafts_are_skipped(self, store: Store) -> None:
        client = FakeGitHubClient(
            releases=[
                {
                    "tag_name": "v1.0.0",
                    "published_at": "2025-01-01T00:00:00Z",
                    "assets": [{"name": "bin", "download_count": 7}],
                },
                {"tag_name": "v1.1.0-draft", "draft": True},
            ]
        )
        count = await import_releases(store, client, ORG, REPO)  # type: ignore[arg-type]
        assert count == 1
        assert store.scalar("SELECT SUM(download_count) FROM release_asset") == 7

    async def test_imported_repos(self, store: Store) -> None:
        client = FakeGitHubClient({EventType.FORK: [[_item(EventType.FORK, 1, "alice")]]})
        await _importer(store, client).import_repo(ORG, REPO)
        assert get_imported_repos(store) == [(ORG, REPO)]
