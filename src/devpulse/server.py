"""Read-only JSON query surface."""

from __future__ import annotations

import logging
import webbrowser
from collections.abc import Callable
from typing import Annotated

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from devpulse import insights, query, reputation
from devpulse.config import DevpulseConfig, resolve_token
from devpulse.exceptions import (
    ConfigError,
    DevpulseError,
    GitHubAPIError,
    GitHubAuthError,
    NotFoundError,
    RateLimitExhaustedError,
    StoreError,
)
from devpulse.github_client import GitHubClient
from devpulse.models import (
    DownloadPoint,
    DurationPoint,
    EntityDetails,
    Event,
    EventSearchCriteria,
    EventTypePoint,
    ForksActivityPoint,
    InsightsSummary,
    ListItem,
    PercentageSeries,
    PRRatioPoint,
    ReleaseCadencePoint,
    RepoMeta,
    Reputation,
    RetentionPoint,
    TagDownloads,
)
from devpulse.repository import get_repo_metas
from devpulse.store import Store

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[type[DevpulseError], int] = {
    ConfigError: 400,
    NotFoundError: 404,
    GitHubAuthError: 401,
    RateLimitExhaustedError: 429,
    GitHubAPIError: 502,
    StoreError: 500,
}


async def _devpulse_error_handler(_request: Request, exc: DevpulseError) -> JSONResponse:
    status = 500
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            status = _STATUS_MAP[cls]
            break
    if status >= 500:
        logger.error("Request failed: %s", exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DevpulseError, _devpulse_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, _validation_error_handler  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class Scope:
    """Common ``o``, ``r``, ``e`` and ``m`` query parameters.

    ``r`` may carry the org as ``org/repo``.
    """

    def __init__(
        self,
        o: str | None = None,
        r: str | None = None,
        e: str | None = None,
        m: Annotated[int, Query(ge=1, le=120)] = 6,
    ) -> None:
        if r and "/" in r:
            o, r = r.split("/", 1)
        self.org = o or None
        self.repo = r or None
        self.entity = e or None
        self.months = m


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_config(request: Request) -> DevpulseConfig:
    return request.app.state.config


StoreDep = Annotated[Store, Depends(get_store)]
ScopeDep = Annotated[Scope, Depends()]


def _split(value: str | None) -> list[str]:
    return [part for part in (value or "").split("|") if part]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/data")


@router.get("/min-date")
def min_date(store: StoreDep, scope: ScopeDep) -> dict[str, str | None]:
    return {"min_date": query.get_min_event_date(store, scope.org, scope.repo)}


@router.get("/query")
def fuzzy_query(
    store: StoreDep,
    request: Request,
    v: str,
    q: str = "",
) -> list[ListItem]:
    limit = get_config(request).query.lookup_limit
    return query.lookup(store, v, q, limit)


@router.get("/type")
def event_types(store: StoreDep, scope: ScopeDep) -> list[EventTypePoint]:
    return insights.get_event_type_series(
        store, scope.org, scope.repo, scope.entity, scope.months
    )


@router.get("/entity")
def entity_percentages(
    store: StoreDep, scope: ScopeDep, request: Request, x: str | None = None
) -> PercentageSeries:
    items = query.get_entity_percentages(
        store, scope.org, scope.repo, scope.entity, _split(x), scope.months
    )
    return query.to_percentage_series(items, get_config(request).query.percentage_top)


@router.get("/developer")
def developer_percentages(
    store: StoreDep, scope: ScopeDep, request: Request, x: str | None = None
) -> PercentageSeries:
    items = query.get_developer_percentages(
        store, scope.org, scope.repo, scope.entity, _split(x), scope.months
    )
    return query.to_percentage_series(items, get_config(request).query.percentage_top)


@router.post("/search")
def search(store: StoreDep, request: Request, criteria: EventSearchCriteria) -> list[Event]:
    return query.search_events(store, criteria, get_config(request).query.max_page_size)


@router.get("/entity/developers")
def entity_developers(store: StoreDep, e: str) -> EntityDetails:
    details = query.get_entity(store, e)
    if details is None:
        raise NotFoundError(f"Entity not found: {e}")
    return details


@router.get("/insights/summary")
def insights_summary(store: StoreDep, scope: ScopeDep) -> InsightsSummary:
    return insights.get_insights_summary(store, scope.org, scope.repo, scope.entity, scope.months)


@router.get("/insights/retention")
def retention(store: StoreDep, scope: ScopeDep) -> list[RetentionPoint]:
    return insights.get_contributor_retention(
        store, scope.org, scope.repo, scope.entity, scope.months
    )


@router.get("/insights/pr-ratio")
def pr_ratio(store: StoreDep, scope: ScopeDep) -> list[PRRatioPoint]:
    return insights.get_pr_review_ratio(store, scope.org, scope.repo, scope.entity, scope.months)


@router.get("/insights/time-to-merge")
def time_to_merge(store: StoreDep, scope: ScopeDep) -> list[DurationPoint]:
    return insights.get_time_to_merge(store, scope.org, scope.repo, scope.entity, scope.months)


@router.get("/insights/time-to-close")
def time_to_close(store: StoreDep, scope: ScopeDep) -> list[DurationPoint]:
    return insights.get_time_to_close(store, scope.org, scope.repo, scope.entity, scope.months)


@router.get("/insights/forks-and-activity")
def forks_and_activity(store: StoreDep, scope: ScopeDep) -> list[ForksActivityPoint]:
    return insights.get_forks_and_activity(
        store, scope.org, scope.repo, scope.entity, scope.months
    )


@router.get("/insights/repo-meta")
def repo_meta(store: StoreDep, scope: ScopeDep) -> list[RepoMeta]:
    return get_repo_metas(store, scope.org, scope.repo)


@router.get("/insights/release-cadence")
def release_cadence(store: StoreDep, scope: ScopeDep) -> list[ReleaseCadencePoint]:
    return insights.get_release_cadence(store, scope.org, scope.repo, scope.months)


@router.get("/insights/release-downloads")
def release_downloads(store: StoreDep, scope: ScopeDep) -> list[DownloadPoint]:
    return insights.get_release_downloads(store, scope.org, scope.repo, scope.months)


@router.get("/insights/release-downloads-by-tag")
def release_downloads_by_tag(store: StoreDep, scope: ScopeDep) -> list[TagDownloads]:
    return insights.get_release_downloads_by_tag(store, scope.org, scope.repo)


@router.get("/insights/reputation")
def reputation_distribution(
    store: StoreDep, scope: ScopeDep, request: Request
) -> list[Reputation]:
    return reputation.get_reputation_distribution(
        store,
        scope.org,
        scope.repo,
        scope.entity,
        scope.months,
        get_config(request).reputation.distribution_limit,
    )


@router.get("/insights/reputation/user")
async def reputation_user(store: StoreDep, request: Request, u: str) -> Reputation:
    config = get_config(request)
    client = request.app.state.client_factory()
    async with client:
        return await reputation.get_or_compute_deep(store, client, u, config.reputation)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(
    store: Store,
    config: DevpulseConfig | None = None,
    client_factory: Callable[[], GitHubClient] | None = None,
) -> FastAPI:
    """Build the query application around an open store."""
    config = config if config is not None else DevpulseConfig()

    def default_client() -> GitHubClient:
        return GitHubClient(token=resolve_token(), config=config)

    app = FastAPI(title="devpulse")
    app.state.store = store
    app.state.config = config
    app.state.client_factory = client_factory or default_client
    register_error_handlers(app)
    app.include_router(router)
    return app


def serve(
    store: Store,
    config: DevpulseConfig,
    port: int | None = None,
    open_browser: bool = True,
) -> None:
    """Run the query server until interrupted."""
    port = port or config.server.port
    app = create_app(store, config)
    url = f"http://{config.server.host}:{port}/"
    logger.info("Serving on %s", url)
    if open_browser:
        webbrowser.open(url)
    uvicorn.run(
        app,
        host=config.server.host,
        port=port,
        timeout_keep_alive=config.server.timeout_seconds,
        log_level="warning",
    )
