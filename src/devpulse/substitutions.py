"""User-defined substitutions of developer property values."""

from __future__ import annotations

import logging

from devpulse.exceptions import ConfigError
from devpulse.models import Substitution
from devpulse.store import Store

logger = logging.getLogger(__name__)

# Maps substitution type to the developer column it rewrites.
UPDATABLE_PROPERTIES: dict[str, str] = {
    "entity": "entity",
}

_UPSERT_SUB_SQL = """
    INSERT INTO sub (type, old, new) VALUES (?, ?, ?)
    ON CONFLICT(type, old) DO UPDATE SET new = excluded.new
"""


def _column(prop: str) -> str:
    column = UPDATABLE_PROPERTIES.get(prop)
    if column is None:
        allowed = ", ".join(sorted(UPDATABLE_PROPERTIES))
        raise ConfigError(f"Invalid substitution type {prop!r} (allowed: {allowed})")
    return column


def save_and_apply_substitution(store: Store, prop: str, old: str, new: str) -> Substitution:
    """Record a substitution and apply it to matching developers at once."""
    column = _column(prop)
    if not old:
        raise ConfigError("Substitution requires a non-empty old value")
    with store.transaction() as conn:
        conn.execute(_UPSERT_SUB_SQL, (prop, old, new))
        cursor = conn.execute(
            f"UPDATE developer SET {column} = ? WHERE {column} = ? AND {column} <> ?",
            (new, old, new),
        )
        records = cursor.rowcount
    logger.info("Substituted %s %r -> %r on %d developers", prop, old, new, records)
    return Substitution(type=prop, old=old, new=new, records=records)


def list_substitutions(store: Store) -> list[Substitution]:
    rows = store.query("SELECT type, old, new FROM sub ORDER BY rowid")
    return [Substitution(type=row["type"], old=row["old"], new=row["new"]) for row in rows]


def apply_substitutions(store: Store) -> list[Substitution]:
    """Re-run every stored substitution in insertion order."""
    results: list[Substitution] = []
    with store.transaction() as conn:
        for sub in list_substitutions(store):
            column = UPDATABLE_PROPERTIES.get(sub.type)
            if column is None:
                logger.warning("Skipping substitution with unknown type %r", sub.type)
                continue
            cursor = conn.execute(
                f"UPDATE developer SET {column} = ? WHERE {column} = ? AND {column} <> ?",
                (sub.new, sub.old, sub.new),
            )
            results.append(sub.model_copy(update={"records": cursor.rowcount}))
    return results
