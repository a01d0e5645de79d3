"""Tests for listing item normalization."""

from __future__ import annotations

from datetime import date

from devpulse.models import EventType
from devpulse.normalize import (
    activity_date,
    developer_from_user,
    fork_event,
    issue_comment_event,
    issue_event,
    parse_labels,
    parse_mentions,
    pull_request_event,
    review_event,
    trim,
)


class TestHelpers:
    def test_trim(self) -> None:
        assert trim("  @alice ") == "alice"
        assert trim(None) == ""

    def test_activity_date_is_utc(self) -> None:
        assert activity_date("2025-01-01T23:30:00-05:00") == "2025-01-02"

    def test_activity_date_never_in_future(self) -> None:
        assert activity_date("2031-01-01T00:00:00Z", today=date(2025, 6, 1)) == "2025-06-01"

    def test_mentions_are_unique_and_ordered(self) -> None:
        body = "cc @bob and @carol, thanks @bob"
        assert parse_mentions(body, ["dave", "carol"]) == "bob|carol|dave"

    def test_labels_lowercased(self) -> None:
        labels = [{"name": "Bug"}, {"name": "good first issue"}, {"name": "bug"}]
        assert parse_labels(labels) == "bug|good first issue"

    def test_developer_from_user(self) -> None:
        dev = developer_from_user(
            {"login": "alice", "id": 3, "avatar_url": "a.png", "html_url": "u"},
            today=date(2025, 2, 1),
        )
        assert dev is not None
        assert dev.username == "alice"
        assert dev.updated == "2025-02-01"
        assert developer_from_user(None) is None
        assert developer_from_user({"login": ""}) is None


class TestEvents:
    def test_pull_request(self) -> None:
        event = pull_request_event(
            "acme",
            "widget",
            {
                "id": 11,
                "number": 5,
                "user": {"login": "alice"},
                "state": "closed",
                "created_at": "2025-01-10T10:00:00Z",
                "merged_at": "2025-01-12T10:00:00Z",
                "body": "fixes it, @bob",
                "assignees": [{"login": "carol"}],
                "requested_reviewers": [{"login": "dave"}],
                "labels": [{"name": "Feature"}],
            },
        )
        assert event.type is EventType.PULL_REQUEST
        assert event.date == "2025-01-10"
        assert event.number == 5
        assert event.merged_at == "2025-01-12T10:00:00Z"
        assert event.mentions == "bob|carol|dave"
        assert event.labels == "feature"

    def test_review_uses_update_date_and_pull_number(self) -> None:
        event = review_event(
            "acme",
            "widget",
            {
                "id": 12,
                "user": {"login": "bob"},
                "created_at": "2025-01-10T10:00:00Z",
                "updated_at": "2025-01-11T10:00:00Z",
                "pull_request_url": "https://api.github.com/repos/acme/widget/pulls/5",
            },
        )
        assert event.date == "2025-01-11"
        assert event.number == 5

    def test_issue(self) -> None:
        event = issue_event(
            "acme",
            "widget",
            {
                "id": 13,
                "number": 9,
                "user": {"login": "carol"},
                "state": "open",
                "created_at": "2025-02-01T00:00:00Z",
                "assignee": {"login": "alice"},
            },
        )
        assert event.type is EventType.ISSUE
        assert event.mentions == "alice"

    def test_issue_comment_number_from_url(self) -> None:
        event = issue_comment_event(
            "acme",
            "widget",
            {
                "id": 14,
                "user": {"login": "dave"},
                "created_at": "2025-02-02T00:00:00Z",
                "issue_url": "https://api.github.com/repos/acme/widget/issues/9",
            },
        )
        assert event.number == 9

    def test_fork_author_is_owner(self) -> None:
        event = fork_event(
            "acme",
            "widget",
            {"id": 15, "owner": {"login": "erin"}, "created_at": "2025-02-03T00:00:00Z"},
        )
        assert event.username == "erin"
        assert event.type is EventType.FORK
