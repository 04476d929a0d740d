"""Checksums for schema exports and snapshots.

``checksum()`` is the single "has the schema changed" primitive.
``snapshot_checksum()`` hashes a canonical serialization of the structured
snapshot instead of the rendered SQL, so whitespace or ordering changes in
the SQL text never register as drift.
"""

import hashlib
import json
from typing import Any

from schema_guard.schema.models import SchemaExport, SchemaSnapshot


def checksum(text: str) -> str:
    """Return the SHA-256 hex digest of ``text`` encoded as UTF-8.

    Examples:
        >>> checksum("")
        'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
        >>> checksum("a") == checksum("a")
        True
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize ``value`` deterministically (sorted keys, no whitespace).

    Examples:
        >>> canonical_json({"b": 1, "a": [1, 2]})
        '{"a":[1,2],"b":1}'
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def _entry_sort_key(entry: Any) -> str:
    return canonical_json(entry)


def snapshot_checksum(snapshot: SchemaSnapshot) -> str:
    """Checksum the structural content of ``snapshot``.

    Entries within each category are sorted by their canonical form, and
    ``exported_at`` is excluded, so two exports of an unchanged schema
    always hash identically.
    """
    categories = {
        name: sorted(entries, key=_entry_sort_key)
        for name, entries in snapshot.categories().items()
    }
    return checksum(canonical_json(categories))


def export_checksum(export: SchemaExport, source: str = "snapshot") -> str:
    """Checksum a fresh export.

    Args:
        export: Output of a ``SchemaExporter``.
        source: ``"snapshot"`` hashes the canonical structure, ``"sql"``
            hashes the rendered SQL text verbatim.
    """
    if source == "sql":
        return checksum(export.sql)
    return snapshot_checksum(export.snapshot())
