"""Versioned collection payloads and per-collection migration chains.

A collection's plaintext is stored as ``{"schemaVersion": n, "data": [...]}``.
Older containers hold a bare JSON array, which reads as schema version 1.
Migrations run on load, in ascending version order; the migrated list is
only persisted by the next mutation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Sequence, Tuple

from .exceptions import CorruptCollection, MigrationFailed

logger = logging.getLogger(__name__)

MigrationFn = Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]]


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    up: MigrationFn


def wrap_with_version(records: List[Dict[str, Any]], schema_version: int) -> Dict[str, Any]:
    return {"schemaVersion": schema_version, "data": records}


def unwrap_payload(payload: Any) -> Tuple[List[Dict[str, Any]], int]:
    """Return (records, stored_version) for either payload format."""
    if isinstance(payload, list):
        return payload, 1
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        try:
            return payload["data"], int(payload.get("schemaVersion", 1))
        except (TypeError, ValueError) as e:
            raise CorruptCollection(f"Bad schemaVersion: {e}") from e
    raise CorruptCollection("Collection payload is not a record list")


def migrate(
    name: str,
    records: List[Dict[str, Any]],
    from_version: int,
    target_version: int,
    migrations: Sequence[Migration],
) -> Tuple[List[Dict[str, Any]], int]:
    """Apply pending migrations. Returns (records, reached_version)."""
    pending = sorted(
        (m for m in migrations if from_version < m.version <= target_version),
        key=lambda m: m.version,
    )

    current = from_version
    for migration in pending:
        logger.info(
            "Running migration for %s: v%d -> v%d (%s)",
            name, current, migration.version, migration.description,
        )
        try:
            records = migration.up(records)
        except Exception as e:
            raise MigrationFailed(
                f"Migration failed for {name} v{migration.version}: {migration.description}"
            ) from e
        current = migration.version

    return records, max(current, from_version)
