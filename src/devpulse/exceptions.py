"""Custom exception hierarchy for devpulse."""

from __future__ import annotations

from datetime import datetime


class DevpulseError(Exception):
    """Base exception for devpulse."""


class GitHubAPIError(DevpulseError):
    """Error from the GitHub API or the transport underneath it."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        rate_limit_remaining: int | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.rate_limit_remaining = rate_limit_remaining


class RateLimitExhaustedError(GitHubAPIError):
    """GitHub API rate limit exhausted."""

    def __init__(self, reset_at: datetime, rate_limit_remaining: int = 0):
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exhausted. Resets at {reset_at.isoformat()}",
            status_code=403,
            rate_limit_remaining=rate_limit_remaining,
        )


class GitHubAuthError(GitHubAPIError):
    """GitHub rejected the credentials (401, or 403 outside of rate limiting)."""

    def __init__(self, status_code: int, detail: str = ""):
        message = f"GitHub authorization failed ({status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, status_code=status_code)


class NotFoundError(GitHubAPIError):
    """Requested GitHub resource does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status_code=404)


class UserNotFoundError(NotFoundError):
    """GitHub user not found."""

    def __init__(self, login: str):
        self.login = login
        super().__init__(f"User not found: {login}")


class RepoNotFoundError(NotFoundError):
    """GitHub repository not found."""

    def __init__(self, repo: str):
        self.repo = repo
        super().__init__(f"Repository not found: {repo}")


class StoreError(DevpulseError):
    """Error with the local store."""


class ConfigError(DevpulseError):
    """Error with configuration or user input."""


class InvariantError(DevpulseError):
    """Two data sources disagree about the identity of a record."""


class RosterError(DevpulseError):
    """Error downloading or parsing an affiliation roster."""
