"""The full import pipeline: events, metadata, releases, enrichment, scoring."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

from devpulse.affiliations import update_developers_with_affiliations
from devpulse.config import DevpulseConfig
from devpulse.exceptions import (
    ConfigError,
    GitHubAPIError,
    GitHubAuthError,
    RosterError,
    StoreError,
)
from devpulse.github_client import GitHubClient
from devpulse.importer import (
    EventImporter,
    clear_import_state,
    get_imported_repos,
    import_releases,
    import_repo_meta,
)
from devpulse.models import ImportSummary
from devpulse.reputation import import_reputation
from devpulse.roster import load_roster
from devpulse.store import Store
from devpulse.substitutions import apply_substitutions

logger = logging.getLogger(__name__)


async def resolve_targets(
    store: Store, client: GitHubClient, org: str | None, repos: Sequence[str]
) -> list[tuple[str, str]]:
    """Repositories to import.

    Without an org, every (org, repo) already in the store ("update all").
    With an org but no repos, every repository GitHub lists for the org.
    """
    if not org:
        return get_imported_repos(store)
    if repos:
        return [(org, repo) for repo in repos]
    return [(org, repo) for repo in await client.list_org_repos(org)]


async def run_import(
    store: Store,
    client: GitHubClient,
    config: DevpulseConfig,
    org: str | None = None,
    repos: Sequence[str] = (),
    months: int | None = None,
    fresh: bool = False,
    affiliations: bool = True,
) -> ImportSummary:
    """Import every target repository, then enrich and score developers.

    Failures of a single repository are logged and recorded in the summary.

    Raises:
        GitHubAuthError: The token was rejected; the whole import stops.
        ConfigError: There is nothing to import.
    """
    started = time.monotonic()
    targets = await resolve_targets(store, client, org, repos)
    if not targets:
        raise ConfigError("No repositories to import; specify --org")
    if fresh:
        clear_import_state(store, targets)

    summary = ImportSummary()
    importer = EventImporter(store, client, config)
    for target_org, target_repo in targets:
        name = f"{target_org}/{target_repo}"
        summary.repos.append(name)
        try:
            summary.events.update(await importer.import_repo(target_org, target_repo, months))
            summary.errors.extend(importer.errors)
        except GitHubAuthError:
            raise
        except (GitHubAPIError, StoreError) as exc:
            logger.error("Event import for %s failed: %s", name, exc)
            summary.errors.append(f"{name} events: {exc}")

        try:
            await import_repo_meta(store, client, target_org, target_repo)
            summary.releases += await import_releases(
                store, client, target_org, target_repo, config.import_.page_size
            )
        except GitHubAuthError:
            raise
        except (GitHubAPIError, StoreError) as exc:
            logger.error("Metadata import for %s failed: %s", name, exc)
            summary.errors.append(f"{name} metadata: {exc}")

    if affiliations:
        try:
            roster = await load_roster(
                config.affiliations.urls(), config.affiliations.noreply_domain
            )
            summary.affiliations = await update_developers_with_affiliations(
                store, client, roster
            )
        except RosterError as exc:
            logger.error("Affiliation update failed: %s", exc)
            summary.errors.append(f"affiliations: {exc}")

    summary.substitutions = apply_substitutions(store)
    summary.reputation = import_reputation(store, config.reputation)
    summary.duration = f"{time.monotonic() - started:.2f}s"
    logger.info(
        "Imported %d repositories (%d new events, %d errors) in %s",
        len(summary.repos),
        sum(summary.events.values()),
        len(summary.errors),
        summary.duration,
    )
    return summary
