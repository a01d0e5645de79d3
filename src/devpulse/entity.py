"""Entity (company affiliation) canonicalization."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from devpulse.store import Store

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9 ]+")

NOISE_WORDS: frozenset[str] = frozenset({
    "B.V.", "CDL", "CHTD.", "CO", "COMPANY", "CORP", "CORPORATION", "GMBH",
    "GROUP", "INC", "L.C.", "L.L.C.", "LC", "LLC", "LTD", "LTD.", "P.A.",
    "P.C.", "PC", "PVT", "S.A.", "S.C.", "S.C.A.", "S.C.O.", "S.C.P.",
    "S.C.S.", "S.C.V.", "SE",
})

ENTITY_ALIASES: dict[str, str] = {
    "CHAINGUARDDEV": "CHAINGUARD",
    "GCP": "GOOGLE",
    "GOOGLECLOUD": "GOOGLE",
    "GOOGLECLOUDPLATFORM": "GOOGLE",
    "HUAWEICLOUD": "HUAWEI",
    "IBM CODAITY": "IBM",
    "IBM RESEARCH": "IBM",
    "INTERNATIONAL BUSINESS MACHINES": "IBM",
    "INTERNATIONAL BUSINESS MACHINES CORPORATION": "IBM",
    "INTERNATIONAL INSTITUTE OF INFORMATION TECHNOLOGY BANGALORE": "IIIT BANGALORE",
    "LINE PLUS": "LINE",
    "MICROSOFT CHINA": "MICROSOFT",
    "REDHATOFFICIAL": "REDHAT",
    "S&P GLOBAL": "S&P",
    "S&P GLOBAL INC": "S&P",
    "VERVERICA ORIGINAL CREATORS OF APACHE FLINK": "VERVERICA",
}


def _strip(value: str) -> str:
    tokens = [
        token
        for token in _NON_ALNUM_RE.sub("", value).split(" ")
        if token and token not in NOISE_WORDS
    ]
    return " ".join(tokens)


def canonicalize(value: str | None, aliases: Mapping[str, str] | None = None) -> str:
    """Uppercase canonical entity name.

    Aliases are applied before and after noise-word removal. An alias
    target is itself stripped, so the result always consists of
    alphanumerics and single spaces and ``canonicalize`` is idempotent.
    """
    table = aliases if aliases is not None else _RESOLVED_ALIASES
    name = (value or "").upper().strip()
    if not name:
        return ""
    name = _strip(table.get(name, name).upper())
    replaced = table.get(name)
    if replaced is not None:
        name = _strip(replaced.upper())
    return name


def _follow(aliases: Mapping[str, str], value: str) -> str | None:
    found = aliases.get(value)
    if found is None:
        found = aliases.get(_strip(value))
    return found


def resolve_aliases(aliases: Mapping[str, str]) -> dict[str, str]:
    """Map every alias straight to the stripped end of its chain.

    A cycle resolves to its alphabetically smallest member, so every
    member of the cycle shares one canonical name.
    """
    resolved: dict[str, str] = {}
    for key, target in aliases.items():
        path = [_strip(key.upper())]
        current = target.upper()
        while True:
            node = _strip(current)
            if node in path:
                node = min(path[path.index(node) :])
                break
            path.append(node)
            following = _follow(aliases, current)
            if following is None:
                break
            current = following.upper()
        resolved[key] = node
    return resolved


_RESOLVED_ALIASES = resolve_aliases(ENTITY_ALIASES)


def load_aliases(store: Store) -> dict[str, str]:
    """Built-in aliases overlaid with the stored ``entity`` substitutions.

    Chained substitutions are resolved up front, so ``canonicalize`` stays
    idempotent with the returned table.
    """
    aliases = dict(ENTITY_ALIASES)
    rows = store.query("SELECT old, new FROM sub WHERE type = 'entity' ORDER BY rowid")
    for row in rows:
        old = str(row["old"]).upper().strip()
        if old:
            aliases[old] = str(row["new"]).upper().strip()
    return resolve_aliases(aliases)


def clean_entities(store: Store) -> int:
    """Canonicalize every stored developer entity. Returns rows changed."""
    aliases = load_aliases(store)
    rows = store.query("SELECT DISTINCT entity FROM developer WHERE entity != ''")
    changes = {
        row["entity"]: canonicalize(row["entity"], aliases)
        for row in rows
        if canonicalize(row["entity"], aliases) != row["entity"]
    }
    if not changes:
        return 0
    updated = 0
    with store.transaction() as conn:
        for old, new in changes.items():
            logger.debug("Cleaning entity %r -> %r", old, new)
            cursor = conn.execute(
                "UPDATE developer SET entity = ? WHERE entity = ?", (new, old)
            )
            updated += cursor.rowcount
    logger.info("Cleaned %d developer entities", updated)
    return updated
