"""Affiliation merge: roster and GitHub profile data into developer rows."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from datetime import UTC, datetime

from devpulse.developers import get_developer, get_developer_usernames, save_developer
from devpulse.entity import canonicalize, clean_entities, load_aliases
from devpulse.exceptions import GitHubAPIError, GitHubAuthError, InvariantError
from devpulse.github_client import GitHubClient
from devpulse.models import AffiliationImportResult, Developer, GitHubUser
from devpulse.roster import RosterDeveloper
from devpulse.store import Store

logger = logging.getLogger(__name__)


def merge_affiliation(
    existing: Developer,
    profile: GitHubUser,
    roster: RosterDeveloper,
    aliases: Mapping[str, str] | None = None,
) -> Developer:
    """Combine the stored developer with profile and roster data.

    Entity: latest roster affiliation, then profile company, then the
    stored value. Email: stored value, then profile email, then the first
    roster identity.

    Raises:
        InvariantError: The sources describe different usernames.
    """
    if profile.login.lower() != existing.username.lower():
        raise InvariantError(
            f"GitHub returned {profile.login!r} for developer {existing.username!r}"
        )
    if roster.username.lower() != existing.username.lower():
        raise InvariantError(
            f"Roster entry {roster.username!r} does not match {existing.username!r}"
        )

    entity = roster.latest_affiliation() or profile.company or existing.entity
    email = existing.email or profile.email or roster.best_identity()
    return existing.model_copy(
        update={
            "id": profile.id or existing.id,
            "full_name": profile.name or existing.full_name,
            "email": email,
            "avatar": profile.avatar_url or existing.avatar,
            "url": profile.html_url or existing.url,
            "location": profile.location or existing.location,
            "entity": canonicalize(entity, aliases),
            "updated": datetime.now(UTC).date().isoformat(),
        }
    )


async def update_developers_with_affiliations(
    store: Store,
    client: GitHubClient,
    roster: Mapping[str, RosterDeveloper],
) -> AffiliationImportResult:
    """Merge roster affiliations into every matching stored developer.

    A developer whose sources disagree, or whose profile cannot be fetched,
    is logged and skipped. An entity cleanup pass runs at the end.

    Raises:
        GitHubAuthError: The token was rejected.
    """
    started = time.monotonic()
    local = {username.lower(): username for username in get_developer_usernames(store)}
    aliases = load_aliases(store)
    result = AffiliationImportResult(roster_developers=len(roster))

    for roster_dev in roster.values():
        username = local.get(roster_dev.username.lower())
        if username is None:
            continue
        existing = get_developer(store, username)
        if existing is None:
            continue
        result.matched += 1
        try:
            profile = await client.get_user(username)
            merged = merge_affiliation(existing, profile, roster_dev, aliases)
        except GitHubAuthError:
            raise
        except (InvariantError, GitHubAPIError) as exc:
            logger.error("Skipping affiliation update for %s: %s", username, exc)
            result.errors += 1
            continue
        save_developer(store, merged)
        result.updated += 1

    clean_entities(store)
    result.duration = f"{time.monotonic() - started:.2f}s"
    logger.info(
        "Affiliations: %d roster developers, %d matched, %d updated, %d errors",
        result.roster_developers,
        result.matched,
        result.updated,
        result.errors,
    )
    return result
