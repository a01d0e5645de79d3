"""Click-based CLI for devpulse."""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import click

from devpulse.config import (
    DevpulseConfig,
    default_db_path,
    ensure_home,
    load_config,
    resolve_token,
)
from devpulse.developers import get_developer, search_developers
from devpulse.exceptions import ConfigError, DevpulseError
from devpulse.formatter import FORMATS, format_output
from devpulse.github_client import GitHubClient
from devpulse.models import EventSearchCriteria, EventType, ImportSummary
from devpulse.pipeline import run_import
from devpulse.query import get_data_state, get_entity, query_entities, search_events
from devpulse.server import serve
from devpulse.store import Store, delete_database
from devpulse.substitutions import UPDATABLE_PROPERTIES, save_and_apply_substitution

F = TypeVar("F", bound=Callable[..., Any])

QUERY_LIMIT_MAX = 500


@dataclass
class CliContext:
    config: DevpulseConfig
    db_path: Path
    fmt: str

    def open_store(self) -> Store:
        return Store(self.db_path)

    def client(self) -> GitHubClient:
        return GitHubClient(token=resolve_token(), config=self.config)

    def emit(self, data: Any) -> None:
        click.echo(format_output(data, self.fmt))


def handle_errors(func: F) -> F:
    """Report devpulse errors on stderr and exit with status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DevpulseError as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    return wrapper  # type: ignore[return-value]


def _limit(value: int) -> int:
    return min(max(value, 1), QUERY_LIMIT_MAX)


limit_option = click.option(
    "--limit",
    type=int,
    default=QUERY_LIMIT_MAX,
    show_default=True,
    help=f"Maximum number of results (at most {QUERY_LIMIT_MAX})",
)


@click.group()
@click.version_option(package_name="devpulse")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--db", "db_path", default=None, help="Database file path")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(FORMATS),
    default="json",
    show_default=True,
    help="Output format",
)
@click.option("--config", "config_path", default=None, help="Config file path")
@click.pass_context
def main(
    ctx: click.Context,
    debug: bool,
    db_path: str | None,
    fmt: str,
    config_path: str | None,
) -> None:
    """devpulse - GitHub activity ingest and insights."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(levelname)s: %(name)s: %(message)s",
    )
    try:
        config = load_config(config_path)
    except DevpulseError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    if db_path is None:
        ensure_home()
    ctx.obj = CliContext(
        config=config,
        db_path=Path(db_path) if db_path else default_db_path(),
        fmt=fmt,
    )


# ---------------------------------------------------------------------------
# import / substitute / reset
# ---------------------------------------------------------------------------


@main.command("import")
@click.option("--org", default=None, help="GitHub organization or user")
@click.option("--repo", "repos", multiple=True, help="Repository name (repeatable)")
@click.option("--months", type=click.IntRange(min=1), default=None, help="Months of history")
@click.option("--fresh", is_flag=True, help="Discard pagination state and re-import")
@click.option(
    "--skip-affiliations",
    is_flag=True,
    help="Do not download roster files for affiliation updates",
)
@click.pass_obj
@handle_errors
def import_cmd(
    obj: CliContext,
    org: str | None,
    repos: tuple[str, ...],
    months: int | None,
    fresh: bool,
    skip_affiliations: bool,
) -> None:
    """Import activity, then enrich and score developers.

    Without --org every previously imported repository is updated.
    """
    if repos and not org:
        raise ConfigError("--repo requires --org")

    async def _run(store: Store) -> ImportSummary:
        async with obj.client() as client:
            return await run_import(
                store,
                client,
                obj.config,
                org=org,
                repos=repos,
                months=months,
                fresh=fresh,
                affiliations=not skip_affiliations,
            )

    with obj.open_store() as store:
        summary = asyncio.run(_run(store))
    obj.emit(summary)


@main.command()
@click.option(
    "--type",
    "prop",
    required=True,
    type=click.Choice(sorted(UPDATABLE_PROPERTIES)),
    help="Developer property to substitute",
)
@click.option("--old", required=True, help="Value to replace")
@click.option("--new", required=True, help="Replacement value")
@click.pass_obj
@handle_errors
def substitute(obj: CliContext, prop: str, old: str, new: str) -> None:
    """Record a substitution and apply it to matching developers."""
    with obj.open_store() as store:
        result = save_and_apply_substitution(store, prop, old, new)
    obj.emit(result)


@main.command()
@click.confirmation_option(prompt="This deletes all imported data. Continue?")
@click.pass_obj
@handle_errors
def reset(obj: CliContext) -> None:
    """Delete the database and re-create an empty one."""
    delete_database(obj.db_path)
    with obj.open_store() as store:
        state = get_data_state(store)
    obj.emit({"db": str(obj.db_path), "state": state})


@main.command()
@click.option("--port", type=click.IntRange(1, 65535), default=None, help="Port to listen on")
@click.option("--no-browser", is_flag=True, help="Do not open a browser")
@click.pass_obj
@handle_errors
def server(obj: CliContext, port: int | None, no_browser: bool) -> None:
    """Start the read-only query server."""
    with obj.open_store() as store:
        serve(store, obj.config, port=port, open_browser=not no_browser)


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


@main.group()
def query() -> None:
    """Query imported data."""


@query.group()
def developers() -> None:
    """Developer queries."""


@developers.command("list")
@click.option("--like", required=True, help="Fuzzy match on username, email or entity")
@limit_option
@click.pass_obj
@handle_errors
def developers_list(obj: CliContext, like: str, limit: int) -> None:
    with obj.open_store() as store:
        obj.emit(search_developers(store, like, _limit(limit)))


@developers.command("details")
@click.argument("username")
@click.pass_obj
@handle_errors
def developers_details(obj: CliContext, username: str) -> None:
    with obj.open_store() as store:
        developer = get_developer(store, username)
    if developer is None:
        raise click.ClickException(f"Developer not found: {username}")
    obj.emit(developer)


@query.group()
def entities() -> None:
    """Entity queries."""


@entities.command("list")
@click.option("--like", default="", help="Fuzzy match on entity name")
@limit_option
@click.pass_obj
@handle_errors
def entities_list(obj: CliContext, like: str, limit: int) -> None:
    with obj.open_store() as store:
        obj.emit(query_entities(store, like, _limit(limit)))


@entities.command("details")
@click.argument("name")
@click.pass_obj
@handle_errors
def entities_details(obj: CliContext, name: str) -> None:
    with obj.open_store() as store:
        details = get_entity(store, name)
    if details is None:
        raise click.ClickException(f"Entity not found: {name}")
    obj.emit(details)


@query.group()
def org() -> None:
    """Organization queries."""


@org.command("repos")
@click.option("--org", "org_name", required=True, help="GitHub organization or user")
@click.pass_obj
@handle_errors
def org_repos(obj: CliContext, org_name: str) -> None:
    """List the repositories GitHub reports for an organization."""

    async def _run() -> list[str]:
        async with obj.client() as client:
            return await client.list_org_repos(org_name)

    obj.emit(asyncio.run(_run()))


@query.command()
@click.option("--org", required=True, help="GitHub organization")
@click.option("--repo", required=True, help="Repository name")
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Earliest event date (YYYY-MM-DD)",
)
@click.option("--author", default=None, help="GitHub username")
@click.option(
    "--type",
    "event_type",
    type=click.Choice([t.value for t in EventType]),
    default=None,
    help="Event type",
)
@limit_option
@click.pass_obj
@handle_errors
def events(
    obj: CliContext,
    org: str,
    repo: str,
    since: datetime | None,
    author: str | None,
    event_type: str | None,
    limit: int,
) -> None:
    """List imported events, newest first."""
    criteria = EventSearchCriteria(
        org=org,
        repo=repo,
        username=author,
        type=EventType(event_type) if event_type else None,
        from_date=since.strftime("%Y-%m-%d") if since else None,
        page_size=_limit(limit),
    )
    with obj.open_store() as store:
        obj.emit(search_events(store, criteria, QUERY_LIMIT_MAX))


if __name__ == "__main__":
    main()
