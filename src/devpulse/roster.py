"""Developer affiliation rosters (gitdm ``developers_affiliations*.txt`` format).

A roster is a sequence of blocks::

    username: email1, email2!example.com
    Entity Name from 2019-01-01 until 2021-06-30
    Other Entity from 2021-07-01

The parser is a three-state machine: between users, reading the identity
header, and reading affiliation lines.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from enum import Enum

import httpx
from pydantic import BaseModel

from devpulse.exceptions import RosterError

logger = logging.getLogger(__name__)

DEFAULT_NOREPLY_DOMAIN = "users.noreply.github.com"

_HEADER_RE = re.compile(r"^([^\s:#]+)\s*:\s*(.*)$")


class Affiliation(BaseModel):
    entity: str
    from_date: str = ""
    until: str = ""


class RosterDeveloper(BaseModel):
    username: str
    identities: list[str] = []
    affiliations: list[Affiliation] = []

    def latest_affiliation(self) -> str:
        """Entity with the highest ``from`` date; the first one wins ties."""
        latest: Affiliation | None = None
        for affiliation in self.affiliations:
            if latest is None or affiliation.from_date > latest.from_date:
                latest = affiliation
        return latest.entity if latest is not None else ""

    def best_identity(self) -> str:
        return self.identities[0] if self.identities else ""


class _ParserState(Enum):
    BETWEEN_USERS = "between_users"
    IN_IDENTITIES = "in_identities"
    IN_AFFILIATIONS = "in_affiliations"


def parse_identities(value: str, noreply_domain: str = DEFAULT_NOREPLY_DOMAIN) -> list[str]:
    identities: list[str] = []
    for raw in value.split(","):
        identity = raw.strip().replace("!", "@")
        if not identity or noreply_domain in identity or identity in identities:
            continue
        identities.append(identity)
    return identities


def parse_affiliation(line: str) -> Affiliation:
    entity: list[str] = []
    from_date = until = ""
    tokens = line.split()
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token in ("from", "until") and i + 1 < len(tokens):
            if token == "from":
                from_date = tokens[i + 1]
            else:
                until = tokens[i + 1]
            i += 2
            continue
        entity.append(token)
        i += 1
    return Affiliation(entity=" ".join(entity), from_date=from_date, until=until)


class RosterParser:
    """Incremental roster parser; feed lines, then read :attr:`developers`."""

    def __init__(self, noreply_domain: str = DEFAULT_NOREPLY_DOMAIN) -> None:
        self._noreply_domain = noreply_domain
        self._state = _ParserState.BETWEEN_USERS
        self._current: RosterDeveloper | None = None
        self.developers: dict[str, RosterDeveloper] = {}

    def feed(self, line: str) -> None:
        text = line.strip()
        if not text:
            self._state = _ParserState.BETWEEN_USERS
            self._current = None
            return
        if text.startswith("#"):
            return

        header = _HEADER_RE.match(line.rstrip()) if not line[:1].isspace() else None
        if header is not None:
            username = header.group(1)
            current = self.developers.setdefault(
                username, RosterDeveloper(username=username)
            )
            for identity in parse_identities(header.group(2), self._noreply_domain):
                if identity not in current.identities:
                    current.identities.append(identity)
            self._current = current
            self._state = _ParserState.IN_IDENTITIES
            return

        if self._state is _ParserState.BETWEEN_USERS or self._current is None:
            logger.warning("Skipping affiliation outside of a user block: %r", text)
            return
        affiliation = parse_affiliation(text)
        if affiliation.entity:
            self._current.affiliations.append(affiliation)
        self._state = _ParserState.IN_AFFILIATIONS

    def feed_text(self, text: str) -> None:
        for line in text.splitlines():
            self.feed(line)


def parse_roster(
    text: str, noreply_domain: str = DEFAULT_NOREPLY_DOMAIN
) -> dict[str, RosterDeveloper]:
    parser = RosterParser(noreply_domain)
    parser.feed_text(text)
    return parser.developers


def format_roster(developers: Iterable[RosterDeveloper]) -> str:
    """Serialize developers back into roster text."""
    blocks: list[str] = []
    for dev in developers:
        identities = ", ".join(identity.replace("@", "!") for identity in dev.identities)
        lines = [f"{dev.username}: {identities}".rstrip()]
        for affiliation in dev.affiliations:
            line = f"\t{affiliation.entity}"
            if affiliation.from_date:
                line += f" from {affiliation.from_date}"
            if affiliation.until:
                line += f" until {affiliation.until}"
            lines.append(line)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


async def download_rosters(
    urls: Iterable[str],
    client: httpx.AsyncClient | None = None,
    timeout: float = 60.0,
) -> list[str]:
    """Fetch roster files in order, stopping at the first 404."""
    owns_client = client is None
    http = client if client is not None else httpx.AsyncClient(timeout=timeout)
    texts: list[str] = []
    try:
        for url in urls:
            try:
                response = await http.get(url)
            except httpx.HTTPError as exc:
                raise RosterError(f"Failed to download {url}: {exc}") from exc
            if response.status_code == 404:
                break
            if not response.is_success:
                raise RosterError(f"Failed to download {url}: HTTP {response.status_code}")
            logger.debug("Downloaded roster %s (%d bytes)", url, len(response.content))
            texts.append(response.text)
    finally:
        if owns_client:
            await http.aclose()
    return texts


async def load_roster(
    urls: Iterable[str],
    noreply_domain: str = DEFAULT_NOREPLY_DOMAIN,
    client: httpx.AsyncClient | None = None,
) -> dict[str, RosterDeveloper]:
    """Download and parse every roster file into one username map."""
    parser = RosterParser(noreply_domain)
    for text in await download_rosters(urls, client=client):
        parser.feed_text(text)
        parser.feed("")
    logger.info("Loaded %d roster developers", len(parser.developers))
    return parser.developers
