"""Concurrent, resumable import of repository activity."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from devpulse.config import DevpulseConfig, load_config
from devpulse.dates import months_ago, utc_now
from devpulse.developers import upsert_developers
from devpulse.exceptions import GitHubAPIError, GitHubAuthError
from devpulse.github_client import GitHubClient
from devpulse.models import Developer, Event, EventType, Page, RepoMeta, State
from devpulse.normalize import (
    developer_from_user,
    fork_event,
    issue_comment_event,
    issue_event,
    parse_timestamp,
    pull_request_event,
    review_event,
)
from devpulse.repository import release_from_item, save_releases, save_repo_meta
from devpulse.state import clear_state, get_state, save_state
from devpulse.store import Store

logger = logging.getLogger(__name__)

STREAMS: tuple[EventType, ...] = (
    EventType.PULL_REQUEST,
    EventType.PULL_REQUEST_REVIEW,
    EventType.ISSUE,
    EventType.ISSUE_COMMENT,
    EventType.FORK,
)

_INSERT_EVENT_SQL = """
    INSERT INTO event (
        id, org, repo, username, type, date, state, number, created_at,
        closed_at, merged_at, url, mentions, labels, additions, deletions
    )
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT DO NOTHING
"""

_NORMALIZERS: dict[EventType, Callable[[str, str, dict[str, Any]], Event]] = {
    EventType.PULL_REQUEST: pull_request_event,
    EventType.PULL_REQUEST_REVIEW: review_event,
    EventType.ISSUE: issue_event,
    EventType.ISSUE_COMMENT: issue_comment_event,
    EventType.FORK: fork_event,
}

_AUTHOR_FIELD: dict[EventType, str] = {
    EventType.FORK: "owner",
}


class EventImporter:
    """Imports the event streams of one repository at a time.

    One task runs per stream. All tasks append to a shared batch guarded by
    a single lock, and whichever task pushes the batch past the threshold
    flushes it. Events, developers and cursors are written in one
    transaction.
    """

    def __init__(
        self,
        store: Store,
        client: GitHubClient,
        config: DevpulseConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._client = client
        self._config = config if config is not None else load_config()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._events: list[Event] = []
        self._developers: dict[str, Developer] = {}
        self._states: dict[tuple[str, str, str], State] = {}
        self._counts: dict[str, int] = {}
        self._errors: list[str] = []

    @property
    def errors(self) -> list[str]:
        """Streams aborted by remote errors during the last run."""
        return list(self._errors)

    async def import_repo(self, org: str, repo: str, months: int | None = None) -> dict[str, int]:
        """Import every stream of ``org/repo``.

        Returns the number of newly inserted events keyed by
        ``org/repo/type``.

        Raises:
            GitHubAuthError: The token was rejected; other streams are cancelled.
            StoreError: A flush failed; the repository import is abandoned.
        """
        months = months if months is not None else self._config.import_.months
        min_event_time = months_ago(months, self._clock())
        self._events, self._developers, self._states = [], {}, {}
        self._counts = {f"{org}/{repo}/{stream}": 0 for stream in STREAMS}
        self._errors = []

        logger.info("Importing %s/%s since %s", org, repo, min_event_time.date())
        tasks = [
            asyncio.create_task(self._run_stream(stream, org, repo, min_event_time))
            for stream in STREAMS
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        async with self._lock:
            self._flush()
        return dict(self._counts)

    def _fetch(
        self, stream: EventType, org: str, repo: str, page: int, since: datetime
    ) -> Awaitable[Page]:
        per_page = self._config.import_.page_size
        if stream is EventType.PULL_REQUEST:
            return self._client.list_pull_requests(org, repo, page=page, per_page=per_page)
        if stream is EventType.PULL_REQUEST_REVIEW:
            return self._client.list_pull_request_reviews(
                org, repo, since=since, page=page, per_page=per_page
            )
        if stream is EventType.ISSUE:
            return self._client.list_issues(org, repo, since=since, page=page, per_page=per_page)
        if stream is EventType.ISSUE_COMMENT:
            return self._client.list_issue_comments(
                org, repo, since=since, page=page, per_page=per_page
            )
        return self._client.list_forks(org, repo, page=page, per_page=per_page)

    @staticmethod
    def _page_older_than(items: list[dict[str, Any]], min_event_time: datetime) -> bool:
        first = parse_timestamp(items[0].get("created_at"))
        last = parse_timestamp(items[-1].get("created_at"))
        if first is None or last is None:
            return False
        return first < min_event_time and last < min_event_time

    async def _run_stream(
        self, stream: EventType, org: str, repo: str, min_event_time: datetime
    ) -> None:
        state = get_state(self._store, stream, org, repo, min_event_time.date().isoformat())
        page = state.page
        normalize = _NORMALIZERS[stream]
        author_field = _AUTHOR_FIELD.get(stream, "user")

        while True:
            try:
                result = await self._fetch(stream, org, repo, page, min_event_time)
            except GitHubAuthError:
                raise
            except GitHubAPIError as exc:
                message = f"{org}/{repo} {stream} page {page}: {exc}"
                logger.error("Stream aborted: %s", message)
                self._errors.append(message)
                return

            items = result.items
            if stream is EventType.ISSUE:
                items = [item for item in items if "pull_request" not in item]
            if not result.items:
                logger.debug("%s/%s %s: page %d empty", org, repo, stream, page)
                break
            if stream is EventType.PULL_REQUEST and self._page_older_than(
                result.items, min_event_time
            ):
                logger.debug("%s/%s %s: page %d older than window", org, repo, stream, page)
                break

            events: list[Event] = []
            developers: list[Developer] = []
            for item in items:
                event = normalize(org, repo, item)
                if not event.username:
                    continue
                events.append(event)
                developer = developer_from_user(item.get(author_field))
                if developer is not None:
                    developers.append(developer)

            next_page = result.meta.next_page
            logger.debug(
                "%s/%s %s: page %d/%d, %d events, rate:%s/%s",
                org,
                repo,
                stream,
                page,
                result.meta.last_page,
                len(events),
                result.meta.rate_remaining,
                result.meta.rate_limit,
            )
            async with self._lock:
                self._events.extend(events)
                for developer in developers:
                    self._developers[developer.username] = developer
                self._states[(stream, org, repo)] = State(
                    page=next_page or page, since=state.since
                )
                if len(self._events) >= self._config.import_.batch_size:
                    self._flush()

            if next_page == 0:
                break
            page = next_page

    def _flush(self) -> None:
        """Write the shared batch. Caller holds the lock."""
        if not self._events and not self._developers and not self._states:
            return
        events, developers, states = self._events, self._developers, self._states
        self._events, self._developers, self._states = [], {}, {}

        started = time.monotonic()
        inserted: dict[str, int] = {}
        with self._store.transaction() as conn:
            upsert_developers(conn, developers.values())
            for event in events:
                cursor = conn.execute(
                    _INSERT_EVENT_SQL,
                    (
                        event.id,
                        event.org,
                        event.repo,
                        event.username,
                        str(event.type),
                        event.date,
                        event.state,
                        event.number,
                        event.created_at,
                        event.closed_at,
                        event.merged_at,
                        event.url,
                        event.mentions,
                        event.labels,
                        event.additions,
                        event.deletions,
                    ),
                )
                key = f"{event.org}/{event.repo}/{event.type}"
                inserted[key] = inserted.get(key, 0) + cursor.rowcount
            for (stream, org, repo), state in states.items():
                save_state(conn, stream, org, repo, state)

        for key, count in inserted.items():
            self._counts[key] = self._counts.get(key, 0) + count
        logger.debug(
            "Flushed %d events, %d developers, %d cursors in %.3fs",
            len(events),
            len(developers),
            len(states),
            time.monotonic() - started,
        )


async def import_releases(
    store: Store, client: GitHubClient, org: str, repo: str, per_page: int = 100
) -> int:
    """Import every release of ``org/repo``, one transaction per page."""
    page = 1
    count = 0
    while True:
        result = await client.list_releases(org, repo, page=page, per_page=per_page)
        if not result.items:
            break
        releases = [
            release_from_item(org, repo, item)
            for item in result.items
            if not item.get("draft") and item.get("tag_name")
        ]
        with store.transaction() as conn:
            count += save_releases(conn, releases)
        if result.meta.next_page == 0:
            break
        page = result.meta.next_page
    logger.info("Imported %d releases for %s/%s", count, org, repo)
    return count


async def import_repo_meta(store: Store, client: GitHubClient, org: str, repo: str) -> RepoMeta:
    meta = await client.get_repo_meta(org, repo)
    save_repo_meta(store, meta)
    return meta


def clear_import_state(store: Store, targets: list[tuple[str, str]]) -> None:
    """Drop cursors so the next import starts from page 1."""
    for org, repo in targets:
        removed = clear_state(store, org, repo)
        logger.info("Cleared %d cursors for %s/%s", removed, org, repo)


def get_imported_repos(store: Store) -> list[tuple[str, str]]:
    """Distinct (org, repo) pairs present in the event table."""
    rows = store.query("SELECT DISTINCT org, repo FROM event ORDER BY org, repo")
    return [(row["org"], row["repo"]) for row in rows]
