"""Advisory migration SQL rendered from snapshot differences.

The output is review material, never an executable migration: additions
that cannot be reconstructed become TODO comments, and every removal is a
commented-out ``DROP``. The result is an ``AdvisorySQL`` string, which the
migration safety gate refuses to execute.
"""

from typing import Any

from schema_guard.schema.exporter import quote_literal
from schema_guard.schema.models import Differences, EntityChange


class AdvisorySQL(str):
    """SQL text generated for human review.

    Behaves like ``str`` but is tagged so ``MigrationGate.execute()`` can
    reject it. Copy the text into a reviewed migration to run it.
    """

    __slots__ = ()


def _payload(change: EntityChange) -> dict[str, Any]:
    value = change.new if change.new is not None else change.old
    return value if isinstance(value, dict) else {}


# (category, section title, statement template) for TODO-only additions
_TODO_ADDITIONS = (
    ("tables", "Add Tables", "-- TODO: Add CREATE TABLE statement for {key}"),
    ("functions", "Add Functions", "-- TODO: Add CREATE FUNCTION statement for {key}"),
    ("policies", "Add Policies", "-- TODO: Add CREATE POLICY statement for {key}"),
    ("triggers", "Add Triggers", "-- TODO: Add CREATE TRIGGER statement for {key}"),
    ("indexes", "Add Indexes", "-- TODO: Add CREATE INDEX statement for {key}"),
)


def _drop_statement(category: str, change: EntityChange) -> str:
    key = change.key
    if category == "tables":
        return f"-- DROP TABLE IF EXISTS {key} CASCADE;"
    if category == "columns":
        table, _, column = key.partition(".")
        return f"-- ALTER TABLE {table} DROP COLUMN IF EXISTS {column};"
    if category == "functions":
        return f"-- DROP FUNCTION IF EXISTS {key} CASCADE;"
    if category == "policies":
        payload = _payload(change)
        table = payload.get("table") or payload.get("tablename")
        name = payload.get("name") or payload.get("policyname")
        if not (table and name):
            table, _, name = key.partition(".")
        return f'-- DROP POLICY IF EXISTS "{name}" ON {table};'
    if category == "triggers":
        table = _payload(change).get("table")
        suffix = f" ON {table}" if table else ""
        return f"-- DROP TRIGGER IF EXISTS {key}{suffix};"
    if category == "indexes":
        return f"-- DROP INDEX IF EXISTS {key};"
    if category == "extensions":
        return f'-- DROP EXTENSION IF EXISTS "{key}";'
    return f"-- DROP TYPE IF EXISTS {key};"


def render_migration_sql(differences: Differences) -> AdvisorySQL:
    """Render ``differences`` as advisory SQL.

    Examples:
        >>> from schema_guard.schema.comparator import compare_snapshots
        >>> d = compare_snapshots({"tables": ["old"]}, {})
        >>> "-- DROP TABLE IF EXISTS old CASCADE;" in render_migration_sql(d)
        True
    """
    lines = [
        "-- Generated Migration SQL",
        "-- WARNING: Review carefully before executing",
        "",
    ]

    if differences.extensions.added:
        lines.append("-- Add Extensions")
        for change in differences.extensions.added:
            lines.append(f'CREATE EXTENSION IF NOT EXISTS "{change.key}";')
        lines.append("")

    if differences.enums.added:
        lines.append("-- Add Enums")
        for change in differences.enums.added:
            values = _payload(change).get("values")
            if values:
                rendered = ", ".join(quote_literal(v) for v in values)
                lines.append(f"CREATE TYPE {change.key} AS ENUM ({rendered});")
            else:
                lines.append(f"-- TODO: Add CREATE TYPE statement for {change.key}")
        lines.append("")

    for category, title, template in _TODO_ADDITIONS:
        added = getattr(differences, category).added
        if not added:
            continue
        lines.append(f"-- {title}")
        for change in added:
            lines.append(template.format(key=change.key))
            if category == "tables":
                lines.append("-- Review schema snapshot for table structure")
        lines.append("")

    if differences.columns.added:
        lines.append("-- Add Columns")
        for change in differences.columns.added:
            table, _, column = change.key.partition(".")
            col_type = _payload(change).get("udt_name") or _payload(change).get("type")
            if col_type:
                lines.append(f"-- TODO: ALTER TABLE {table} ADD COLUMN {column} {col_type};")
            else:
                lines.append(f"-- TODO: Add column {column} to {table}")
        lines.append("")

    modified = [
        (name, change)
        for name, diff in differences.items()
        for change in diff.modified
    ]
    if modified:
        lines.append("-- Modified (review manually)")
        for name, change in modified:
            lines.append(f"-- {name}: {change.key} differs from the baseline")
        lines.append("")

    for name, diff in differences.items():
        if not diff.removed:
            continue
        lines.append(f"-- Remove {name.capitalize()} (COMMENTED FOR SAFETY)")
        for change in diff.removed:
            lines.append(_drop_statement(name, change))
        lines.append("")

    return AdvisorySQL("\n".join(lines))
