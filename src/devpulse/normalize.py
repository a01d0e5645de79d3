"""Normalization of GitHub listing items into store records."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, date, datetime
from typing import Any

from devpulse.models import Developer, Event, EventType

MENTION_RE = re.compile(r"@([A-Za-z0-9_]+)")
_NUMBER_SUFFIX_RE = re.compile(r"/(\d+)$")


def trim(value: str | None) -> str:
    """Strip whitespace and the leading ``@`` from a login."""
    if not value:
        return ""
    return value.strip().lstrip("@").strip()


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def activity_date(value: str | None, today: date | None = None) -> str:
    """UTC ``YYYY-MM-DD`` for a timestamp, never later than today."""
    today = today or datetime.now(UTC).date()
    parsed = parse_timestamp(value)
    if parsed is None:
        return today.isoformat()
    return min(parsed.date(), today).isoformat()


def join_unique(values: Iterable[str]) -> str:
    seen: dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return "|".join(seen)


def parse_mentions(body: str | None, extra: Iterable[str] = ()) -> str:
    """Pipe-joined unique logins mentioned in *body*, followed by *extra*."""
    found = [trim(m) for m in MENTION_RE.findall(body or "")]
    return join_unique([*found, *(trim(e) for e in extra)])


def parse_labels(labels: list[dict[str, Any]] | None) -> str:
    return join_unique(
        str(label.get("name", "")).strip().lower() for label in labels or []
    )


def _login(user: dict[str, Any] | None) -> str:
    return trim((user or {}).get("login"))


def _logins(users: list[dict[str, Any]] | None) -> list[str]:
    return [_login(user) for user in users or []]


def _number_from_url(url: str | None) -> int:
    match = _NUMBER_SUFFIX_RE.search(url or "")
    return int(match.group(1)) if match else 0


def developer_from_user(user: dict[str, Any] | None, today: date | None = None) -> Developer | None:
    """Developer stub from the ``user``/``owner`` object embedded in a listing item."""
    login = _login(user)
    if not login or user is None:
        return None
    return Developer(
        username=login,
        id=user.get("id") or 0,
        avatar=user.get("avatar_url") or "",
        url=user.get("html_url") or "",
        updated=(today or datetime.now(UTC).date()).isoformat(),
    )


def pull_request_event(org: str, repo: str, item: dict[str, Any]) -> Event:
    assignees = [_login(item.get("assignee")), *_logins(item.get("assignees"))]
    reviewers = _logins(item.get("requested_reviewers"))
    return Event(
        id=item["id"],
        org=org,
        repo=repo,
        username=_login(item.get("user")),
        type=EventType.PULL_REQUEST,
        date=activity_date(item.get("created_at")),
        state=item.get("state") or "",
        number=item.get("number") or 0,
        created_at=item.get("created_at") or "",
        closed_at=item.get("closed_at") or "",
        merged_at=item.get("merged_at") or "",
        url=item.get("html_url") or "",
        mentions=parse_mentions(item.get("body"), [*assignees, *reviewers]),
        labels=parse_labels(item.get("labels")),
        additions=item.get("additions") or 0,
        deletions=item.get("deletions") or 0,
    )


def review_event(org: str, repo: str, item: dict[str, Any]) -> Event:
    return Event(
        id=item["id"],
        org=org,
        repo=repo,
        username=_login(item.get("user")),
        type=EventType.PULL_REQUEST_REVIEW,
        date=activity_date(item.get("updated_at") or item.get("created_at")),
        number=_number_from_url(item.get("pull_request_url")),
        created_at=item.get("created_at") or "",
        url=item.get("html_url") or "",
        mentions=parse_mentions(item.get("body")),
    )


def issue_event(org: str, repo: str, item: dict[str, Any]) -> Event:
    assignees = [_login(item.get("assignee")), *_logins(item.get("assignees"))]
    return Event(
        id=item["id"],
        org=org,
        repo=repo,
        username=_login(item.get("user")),
        type=EventType.ISSUE,
        date=activity_date(item.get("created_at")),
        state=item.get("state") or "",
        number=item.get("number") or 0,
        created_at=item.get("created_at") or "",
        closed_at=item.get("closed_at") or "",
        url=item.get("html_url") or "",
        mentions=parse_mentions(item.get("body"), assignees),
        labels=parse_labels(item.get("labels")),
    )


def issue_comment_event(org: str, repo: str, item: dict[str, Any]) -> Event:
    return Event(
        id=item["id"],
        org=org,
        repo=repo,
        username=_login(item.get("user")),
        type=EventType.ISSUE_COMMENT,
        date=activity_date(item.get("updated_at") or item.get("created_at")),
        number=_number_from_url(item.get("issue_url")),
        created_at=item.get("created_at") or "",
        url=item.get("html_url") or "",
        mentions=parse_mentions(item.get("body")),
    )


def fork_event(org: str, repo: str, item: dict[str, Any]) -> Event:
    return Event(
        id=item["id"],
        org=org,
        repo=repo,
        username=_login(item.get("owner")),
        type=EventType.FORK,
        date=activity_date(item.get("created_at")),
        created_at=item.get("created_at") or "",
        url=item.get("html_url") or "",
    )
