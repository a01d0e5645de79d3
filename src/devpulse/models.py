"""Data models for devpulse."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


class EventType(StrEnum):
    """Closed set of activity types that may enter the store."""
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_REVIEW = "pull_request_review"
    ISSUE = "issue"
    ISSUE_COMMENT = "issue_comment"
    FORK = "fork"


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------


class Developer(BaseModel):
    """A developer referenced by at least one event."""
    username: str
    id: int = 0
    full_name: str = ""
    email: str = ""
    avatar: str = ""
    url: str = ""
    entity: str = ""
    location: str = ""
    updated: str = ""
    reputation: float | None = None
    reputation_updated_at: str | None = None
    reputation_deep: bool = False


class Event(BaseModel):
    """A single unit of activity in a repository."""
    id: int
    org: str
    repo: str
    username: str
    type: EventType
    date: str = Field(pattern=DATE_PATTERN)
    state: str = ""
    number: int = 0
    created_at: str = ""
    closed_at: str = ""
    merged_at: str = ""
    url: str = ""
    mentions: str = ""
    labels: str = ""
    additions: int = 0
    deletions: int = 0


class ReleaseAsset(BaseModel):
    """A downloadable asset attached to a release."""
    name: str
    content_type: str = ""
    size: int = 0
    download_count: int = 0


class Release(BaseModel):
    """A published repository release."""
    org: str
    repo: str
    tag: str
    name: str = ""
    published_at: str = ""
    prerelease: bool = False
    assets: list[ReleaseAsset] = []


class RepoMeta(BaseModel):
    """Repository metadata snapshot."""
    org: str
    repo: str
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    language: str = ""
    license: str = ""
    archived: bool = False
    updated_at: str = ""


class State(BaseModel):
    """Resumable cursor for one (stream, org, repo)."""
    page: int = Field(default=1, ge=1)
    since: str = Field(pattern=DATE_PATTERN)


class Substitution(BaseModel):
    """A user-defined replacement for a developer property value."""
    type: str
    old: str
    new: str
    records: int = 0


# ---------------------------------------------------------------------------
# Remote payloads
# ---------------------------------------------------------------------------


class ResponseMeta(BaseModel):
    """Pagination and rate-limit information carried by every response."""
    status: int = 200
    rate_remaining: int | None = None
    rate_limit: int | None = None
    rate_reset_at: datetime | None = None
    next_page: int = 0
    last_page: int = 0


class Page(BaseModel):
    """One page of a paginated listing."""
    items: list[dict[str, Any]] = []
    meta: ResponseMeta = Field(default_factory=ResponseMeta)


class GitHubUser(BaseModel):
    """GitHub user profile fields used for enrichment and deep reputation."""
    login: str
    id: int = 0
    name: str = ""
    email: str = ""
    avatar_url: str = ""
    html_url: str = ""
    company: str = ""
    location: str = ""
    created_at: datetime | None = None
    followers: int = 0
    following: int = 0
    public_repos: int = 0
    owned_private_repos: int = 0
    two_factor_authentication: bool | None = None
    suspended_at: datetime | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ListItem(BaseModel):
    """Fuzzy look-up result."""
    value: str
    text: str


class CountedItem(BaseModel):
    name: str
    count: int


class ImportSummary(BaseModel):
    """Outcome of an import pipeline run."""
    repos: list[str] = []
    events: dict[str, int] = {}
    releases: int = 0
    affiliations: AffiliationImportResult | None = None
    substitutions: list[Substitution] = []
    reputation: ReputationImportResult | None = None
    errors: list[str] = []
    duration: str = ""


class AffiliationImportResult(BaseModel):
    """Outcome of the affiliation merge pass."""
    duration: str = ""
    roster_developers: int = 0
    matched: int = 0
    updated: int = 0
    errors: int = 0


class ReputationImportResult(BaseModel):
    """Outcome of a shallow reputation batch."""
    scored: int = 0


class InsightsSummary(BaseModel):
    bus_factor: int = 0
    pony_factor: int = 0
    developers: int = 0
    entities: int = 0
    events: int = 0


class RetentionPoint(BaseModel):
    month: str
    new: int = 0
    returning: int = 0


class DurationPoint(BaseModel):
    """Count and mean duration in days for one month."""
    month: str
    count: int = 0
    avg_days: float = 0.0


class PRRatioPoint(BaseModel):
    month: str
    prs: int = 0
    reviews: int = 0
    ratio: float = 0.0


class ReleaseCadencePoint(BaseModel):
    month: str
    total: int = 0
    stable: int = 0


class DownloadPoint(BaseModel):
    month: str
    downloads: int = 0


class TagDownloads(BaseModel):
    tag: str
    published_at: str
    downloads: int = 0


class ForksActivityPoint(BaseModel):
    month: str
    forks: int = 0
    events: int = 0


class EventTypePoint(BaseModel):
    """Per-month event counts by type plus a moving-average trend."""
    month: str
    pull_request: int = 0
    pull_request_review: int = 0
    issue: int = 0
    issue_comment: int = 0
    fork: int = 0
    total: int = 0
    trend: float = 0.0


class PercentageSeries(BaseModel):
    """Chart-ready share of events per label."""
    labels: list[str] = []
    data: list[float] = []


class EntityDetails(BaseModel):
    entity: str
    developer_count: int = 0
    developers: list[Developer] = []


class EventSearchCriteria(BaseModel):
    """Event search filters; substring match for entity, mention and label."""
    org: str | None = None
    repo: str | None = None
    username: str | None = None
    entity: str | None = None
    type: EventType | None = None
    from_date: str | None = Field(default=None, pattern=DATE_PATTERN)
    to_date: str | None = Field(default=None, pattern=DATE_PATTERN)
    mention: str | None = None
    label: str | None = None
    page: int = 1
    page_size: int = 100


class Signals(BaseModel):
    """Inputs to the reputation model.

    Shallow scoring fills only the local fields; deep scoring adds the
    remote profile fields.
    """
    commits: int = 0
    unverified_commits: int = 0
    total_commits: int = 0
    total_contributors: int = 0
    last_commit_days: int = 0
    age_days: int = 0
    followers: int = 0
    following: int = 0
    public_repos: int = 0
    private_repos: int = 0
    strong_auth: bool = False
    suspended: bool = False
    org_member: bool = False


class Reputation(BaseModel):
    """A computed reputation score with its per-category breakdown."""
    username: str
    reputation: float = 0.0
    deep: bool = False
    cached: bool = False
    updated_at: str | None = None
    signals: Signals | None = None
    categories: dict[str, float] = {}


ImportSummary.model_rebuild()
