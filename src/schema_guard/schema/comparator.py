"""Snapshot comparison using keyed set operations.

Compares an expected snapshot (usually a stored schema version) against an
actual one (usually a fresh export). Pure logic -- no I/O, no database
connections.

Every category goes through the same ``_compare_category()`` routine, so
added / removed / modified semantics are identical across categories.

Usage:
    from schema_guard.schema.comparator import compare_snapshots, summarize

    differences = compare_snapshots(stored.schema_snapshot, export.snapshot())
    if not differences.is_empty:
        print(summarize(differences).severity)
"""

from typing import Any

from schema_guard.schema.checksum import canonical_json
from schema_guard.schema.models import (
    DIFF_CATEGORIES,
    CategoryDiff,
    CategorySummary,
    DiffSummary,
    Differences,
    EntityChange,
    SchemaSnapshot,
    Severity,
)


def entity_key(category: str, entry: Any) -> str:
    """Return the stable identity of a snapshot entry.

    Legacy snapshots store bare strings; those are their own key. Policies
    are keyed by ``<table>.<name>`` so same-named policies on different
    tables stay distinct.

    Examples:
        >>> entity_key("tables", "clientes")
        'clientes'
        >>> entity_key("tables", {"name": "produtos", "columns": []})
        'produtos'
        >>> entity_key("policies", {"tablename": "pedidos", "policyname": "read"})
        'pedidos.read'
    """
    if not isinstance(entry, dict):
        return str(entry)
    if category == "policies":
        table = entry.get("table") or entry.get("tablename")
        name = entry.get("name") or entry.get("policyname")
        return f"{table}.{name}"
    name = entry.get("name")
    if name:
        return str(name)
    return canonical_json(entry)


def _index(category: str, entries: list[Any]) -> dict[str, Any]:
    # Later duplicates win; exports never emit the same identity twice
    return {entity_key(category, entry): entry for entry in entries}


def _compare_category(
    category: str,
    expected: list[Any],
    actual: list[Any],
) -> CategoryDiff:
    expected_map = _index(category, expected)
    actual_map = _index(category, actual)

    diff = CategoryDiff()
    for key in sorted(actual_map.keys() - expected_map.keys()):
        diff.added.append(EntityChange(key=key, new=actual_map[key]))
    for key in sorted(expected_map.keys() - actual_map.keys()):
        diff.removed.append(EntityChange(key=key, old=expected_map[key]))
    for key in sorted(expected_map.keys() & actual_map.keys()):
        old, new = expected_map[key], actual_map[key]
        # Legacy string entries carry identity only
        if not isinstance(old, dict) or not isinstance(new, dict):
            continue
        if canonical_json(old) != canonical_json(new):
            diff.modified.append(EntityChange(key=key, old=old, new=new))
    return diff


def _column_entries(tables: list[Any]) -> dict[str, list[Any]]:
    """Map table name to its structured column list (tables without one are skipped)."""
    result: dict[str, list[Any]] = {}
    for table in tables:
        if not isinstance(table, dict):
            continue
        columns = table.get("columns")
        if isinstance(columns, list):
            result[entity_key("tables", table)] = columns
    return result


def _compare_columns(expected_tables: list[Any], actual_tables: list[Any]) -> CategoryDiff:
    expected_cols = _column_entries(expected_tables)
    actual_cols = _column_entries(actual_tables)

    diff = CategoryDiff()
    for table in sorted(expected_cols.keys() & actual_cols.keys()):
        table_diff = _compare_category(
            "columns", expected_cols[table], actual_cols[table]
        )
        for bucket in ("added", "removed", "modified"):
            for change in getattr(table_diff, bucket):
                getattr(diff, bucket).append(
                    change.model_copy(update={"key": f"{table}.{change.key}"})
                )
    return diff


def compare_snapshots(
    expected: SchemaSnapshot | dict[str, Any] | None,
    actual: SchemaSnapshot | dict[str, Any] | None,
) -> Differences:
    """Compute per-category differences between two snapshots.

    Args:
        expected: Baseline snapshot (stored version). ``None`` is treated as
            an empty snapshot.
        actual: Snapshot to compare against the baseline.

    Returns:
        ``Differences`` with ``added`` (only in actual), ``removed`` (only in
        expected) and ``modified`` (same key, different structured payload)
        for tables, columns, functions, policies, triggers, indexes,
        extensions and enums.

    Examples:
        >>> a = {"tables": [{"name": "clientes"}]}
        >>> b = {"tables": [{"name": "clientes"}, {"name": "pedidos"}]}
        >>> compare_snapshots(a, b).tables.keys()["added"]
        ['pedidos']
        >>> compare_snapshots(b, a).tables.keys()["removed"]
        ['pedidos']
        >>> compare_snapshots(a, a).is_empty
        True
    """
    expected_snap = _as_snapshot(expected)
    actual_snap = _as_snapshot(actual)

    differences = Differences()
    for category in DIFF_CATEGORIES:
        if category == "columns":
            diff = _compare_columns(expected_snap.tables, actual_snap.tables)
        else:
            diff = _compare_category(
                category,
                getattr(expected_snap, category),
                getattr(actual_snap, category),
            )
        setattr(differences, category, diff)
    return differences


def _as_snapshot(value: SchemaSnapshot | dict[str, Any] | None) -> SchemaSnapshot:
    if value is None:
        return SchemaSnapshot()
    if isinstance(value, SchemaSnapshot):
        return value
    return SchemaSnapshot.model_validate(value)


def classify_severity(differences: Differences) -> Severity:
    """Classify a ``Differences`` object.

    - any table removed: ``critical``
    - more than 2 functions or more than 5 policies removed: ``high``
    - any other removal: ``medium``
    - otherwise (additions / modifications only): ``low``

    Examples:
        >>> d = compare_snapshots({"tables": ["a"]}, {"tables": []})
        >>> classify_severity(d)
        'critical'
        >>> classify_severity(compare_snapshots({}, {"tables": ["a"]}))
        'low'
    """
    if differences.tables.removed:
        return "critical"
    if len(differences.functions.removed) > 2 or len(differences.policies.removed) > 5:
        return "high"
    if any(diff.removed for _, diff in differences.items()):
        return "medium"
    return "low"


def summarize(differences: Differences) -> DiffSummary:
    """Count changes per non-empty category and attach the severity."""
    by_category = {
        name: CategorySummary(
            added=len(diff.added),
            removed=len(diff.removed),
            modified=len(diff.modified),
            total=diff.count,
        )
        for name, diff in differences.items()
        if not diff.is_empty
    }
    return DiffSummary(
        total_changes=differences.total_changes,
        by_category=by_category,
        severity=classify_severity(differences),
    )
