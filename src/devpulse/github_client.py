"""Async GitHub REST client for paginated activity listings."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from devpulse.config import DevpulseConfig, load_config
from devpulse.exceptions import (
    GitHubAPIError,
    GitHubAuthError,
    NotFoundError,
    RateLimitExhaustedError,
    RepoNotFoundError,
    UserNotFoundError,
)
from devpulse.models import GitHubUser, Page, RepoMeta, ResponseMeta
from devpulse.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

_SINCE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _header_int(response: httpx.Response, name: str) -> int | None:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _link_page(response: httpx.Response, rel: str) -> int:
    link = response.links.get(rel)
    if not link or "url" not in link:
        return 0
    page = httpx.URL(link["url"]).params.get("page")
    try:
        return int(page) if page else 0
    except ValueError:
        return 0


def response_meta(response: httpx.Response) -> ResponseMeta:
    """Extract rate-limit and pagination details from a response."""
    reset = _header_int(response, "X-RateLimit-Reset")
    return ResponseMeta(
        status=response.status_code,
        rate_remaining=_header_int(response, "X-RateLimit-Remaining"),
        rate_limit=_header_int(response, "X-RateLimit-Limit"),
        rate_reset_at=datetime.fromtimestamp(reset, tz=UTC) if reset is not None else None,
        next_page=_link_page(response, "next"),
        last_page=_link_page(response, "last"),
    )


def _present(data: dict[str, Any]) -> dict[str, Any]:
    """Drop null fields so model defaults apply."""
    return {key: value for key, value in data.items() if value is not None}


class GitHubClient:
    """Async GitHub REST client.

    Every response is passed to the rate limiter before it is returned or
    turned into an error. Transport errors are not retried.
    """

    def __init__(
        self,
        token: str,
        config: DevpulseConfig | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._config = config if config is not None else load_config()
        self._rate_limiter = (
            rate_limiter if rate_limiter is not None else RateLimiter(self._config.rate_limit)
        )
        self._client = httpx.AsyncClient(
            base_url=self._config.http.base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github.v3+json",
            },
            timeout=self._config.http.timeout_seconds,
        )

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._client.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        allow: tuple[int, ...] = (),
    ) -> tuple[httpx.Response, ResponseMeta]:
        """Issue a GET and apply rate limiting and error mapping.

        Raises:
            GitHubAuthError: On 401, or 403 not caused by rate limiting.
            RateLimitExhaustedError: On 403/429 with an exhausted rate limit.
            NotFoundError: On 404 unless 404 is in *allow*.
            GitHubAPIError: For transport failures and any other non-2xx.
        """
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"GET {path} failed: {exc}") from exc

        meta = response_meta(response)
        logger.debug(
            "GET %s -> %d rate:%s/%s until:%s",
            path,
            response.status_code,
            meta.rate_remaining,
            meta.rate_limit,
            meta.rate_reset_at.strftime("%H:%M") if meta.rate_reset_at else "-",
        )
        await self._rate_limiter.wait(meta)

        if response.status_code in allow or response.is_success:
            return response, meta
        raise self._error_for(path, response, meta)

    @staticmethod
    def _error_for(
        path: str, response: httpx.Response, meta: ResponseMeta
    ) -> GitHubAPIError:
        logger.debug(
            "GitHub error response for %s: status=%d headers=%s body=%s",
            path,
            response.status_code,
            dict(response.headers),
            response.text,
        )
        status = response.status_code
        message = ""
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if isinstance(body, dict):
                message = str(body.get("message", ""))

        if status in (403, 429) and (
            status == 429 or meta.rate_remaining == 0 or "rate limit" in message.lower()
        ):
            reset_at = meta.rate_reset_at or datetime.now(UTC)
            return RateLimitExhaustedError(reset_at=reset_at)
        if status in (401, 403):
            return GitHubAuthError(status, message)
        if status == 404:
            return NotFoundError(f"Not found: {path}")
        return GitHubAPIError(
            message=f"GitHub API returned {status} for {path}",
            status_code=status,
            rate_limit_remaining=meta.rate_remaining,
        )

    async def _list(self, path: str, params: dict[str, Any], page: int, per_page: int) -> Page:
        response, meta = await self._get(path, {**params, "page": page, "per_page": per_page})
        items = response.json()
        if not isinstance(items, list):
            raise GitHubAPIError(f"Expected a list from {path}", status_code=response.status_code)
        return Page(items=items, meta=meta)

    @staticmethod
    def _since(since: datetime | None) -> dict[str, str]:
        if since is None:
            return {}
        return {"since": since.astimezone(UTC).strftime(_SINCE_FORMAT)}

    # ------------------------------------------------------------------
    # Repository activity listings
    # ------------------------------------------------------------------

    async def list_pull_requests(
        self,
        org: str,
        repo: str,
        page: int = 1,
        per_page: int = 100,
        state: str = "all",
        sort: str = "created",
        direction: str = "desc",
    ) -> Page:
        """``GET /repos/{org}/{repo}/pulls``; the listing has no ``since`` filter."""
        params = {"state": state, "sort": sort, "direction": direction}
        return await self._list(f"/repos/{org}/{repo}/pulls", params, page, per_page)

    async def list_pull_request_reviews(
        self,
        org: str,
        repo: str,
        since: datetime | None = None,
        page: int = 1,
        per_page: int = 100,
        sort: str = "created",
        direction: str = "desc",
    ) -> Page:
        """Repository-wide pull request review comments (``/pulls/comments``)."""
        params = {"sort": sort, "direction": direction, **self._since(since)}
        return await self._list(f"/repos/{org}/{repo}/pulls/comments", params, page, per_page)

    async def list_issues(
        self,
        org: str,
        repo: str,
        since: datetime | None = None,
        page: int = 1,
        per_page: int = 100,
        state: str = "all",
        sort: str = "created",
        direction: str = "desc",
    ) -> Page:
        params = {"state": state, "sort": sort, "direction": direction, **self._since(since)}
        return await self._list(f"/repos/{org}/{repo}/issues", params, page, per_page)

    async def list_issue_comments(
        self,
        org: str,
        repo: str,
        since: datetime | None = None,
        page: int = 1,
        per_page: int = 100,
        sort: str = "created",
        direction: str = "desc",
    ) -> Page:
        params = {"sort": sort, "direction": direction, **self._since(since)}
        return await self._list(f"/repos/{org}/{repo}/issues/comments", params, page, per_page)

    async def list_forks(
        self, org: str, repo: str, page: int = 1, per_page: int = 100
    ) -> Page:
        return await self._list(
            f"/repos/{org}/{repo}/forks", {"sort": "newest"}, page, per_page
        )

    async def list_releases(
        self, org: str, repo: str, page: int = 1, per_page: int = 100
    ) -> Page:
        """``GET /repos/{org}/{repo}/releases``; each item carries its assets."""
        return await self._list(f"/repos/{org}/{repo}/releases", {}, page, per_page)

    async def get_repo_meta(self, org: str, repo: str) -> RepoMeta:
        try:
            response, _ = await self._get(f"/repos/{org}/{repo}")
        except NotFoundError as exc:
            raise RepoNotFoundError(f"{org}/{repo}") from exc
        data = response.json()
        license_info = data.get("license") or {}
        return RepoMeta(
            org=org,
            repo=repo,
            stars=data.get("stargazers_count") or 0,
            forks=data.get("forks_count") or 0,
            open_issues=data.get("open_issues_count") or 0,
            language=data.get("language") or "",
            license=license_info.get("spdx_id") or "",
            archived=bool(data.get("archived")),
            updated_at=data.get("updated_at") or "",
        )

    async def list_org_repos(self, org: str) -> list[str]:
        """Names of every repository owned by *org* (user or organization)."""
        names: list[str] = []
        page = 1
        while True:
            result = await self._list(f"/users/{org}/repos", {"type": "owner"}, page, 100)
            names.extend(str(item["name"]) for item in result.items if item.get("name"))
            if not result.items or result.meta.next_page == 0:
                break
            page = result.meta.next_page
        return names

    # ------------------------------------------------------------------
    # Users and organizations
    # ------------------------------------------------------------------

    async def get_user(self, username: str) -> GitHubUser:
        try:
            response, _ = await self._get(f"/users/{username}")
        except NotFoundError as exc:
            raise UserNotFoundError(username) from exc
        return GitHubUser.model_validate(_present(response.json()))

    async def is_org_member(self, org: str, username: str) -> bool:
        """``GET /orgs/{org}/members/{username}``: 204 means public or visible member."""
        response, _ = await self._get(
            f"/orgs/{org}/members/{username}", allow=(204, 302, 404)
        )
        return response.status_code == 204
