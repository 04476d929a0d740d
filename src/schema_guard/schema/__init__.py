"""Schema export, checksumming, snapshot comparison, and advisory SQL.

Usage:
    from schema_guard.schema import compare_snapshots, classify_severity
    from schema_guard.schema import IntrospectingExporter, snapshot_checksum
    from schema_guard.schema import render_migration_sql, AdvisorySQL
"""

from schema_guard.schema.checksum import (
    canonical_json,
    checksum,
    export_checksum,
    snapshot_checksum,
)
from schema_guard.schema.comparator import (
    classify_severity,
    compare_snapshots,
    entity_key,
    summarize,
)
from schema_guard.schema.exporter import (
    IntrospectingExporter,
    SchemaExporter,
    render_schema_sql,
)
from schema_guard.schema.introspector import SchemaIntrospector
from schema_guard.schema.models import (
    CategoryDiff,
    DiffSummary,
    Differences,
    EntityChange,
    SchemaExport,
    SchemaSnapshot,
    Severity,
)
from schema_guard.schema.suggest import AdvisorySQL, render_migration_sql

__all__ = [
    "checksum",
    "canonical_json",
    "export_checksum",
    "snapshot_checksum",
    "compare_snapshots",
    "classify_severity",
    "entity_key",
    "summarize",
    "SchemaExporter",
    "IntrospectingExporter",
    "render_schema_sql",
    "SchemaIntrospector",
    "SchemaExport",
    "SchemaSnapshot",
    "Differences",
    "CategoryDiff",
    "EntityChange",
    "DiffSummary",
    "Severity",
    "AdvisorySQL",
    "render_migration_sql",
]
