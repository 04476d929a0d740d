"""Pydantic models for schema snapshots and snapshot differences.

This module contains schema-domain models:
- Introspection models: ColumnInfo, ForeignKeyInfo, TableInfo, PolicyInfo,
  FunctionInfo, TriggerInfo, IndexInfo, ExtensionInfo, EnumInfo, SequenceInfo
- Snapshot models: SchemaSnapshot, SchemaExport
- Comparison models: EntityChange, CategoryDiff, Differences, DiffSummary

Snapshot categories hold plain JSON values rather than the introspection
models: snapshots are persisted as JSONB and may come from older exports
that stored bare names instead of objects.
"""

from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field

from schema_guard.models import CamelModel

Severity = Literal["low", "medium", "high", "critical"]

# Categories carried by a snapshot, in export order
SNAPSHOT_CATEGORIES: tuple[str, ...] = (
    "tables",
    "functions",
    "policies",
    "triggers",
    "indexes",
    "extensions",
    "enums",
    "sequences",
)

# Categories reported by the comparator, in report order
DIFF_CATEGORIES: tuple[str, ...] = (
    "tables",
    "columns",
    "functions",
    "policies",
    "triggers",
    "indexes",
    "extensions",
    "enums",
)


# ============================================================================
# Schema Introspection Models
# ============================================================================


class ColumnInfo(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnInfo(name="id", type="uuid")
        >>> col.nullable
        True
    """

    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    udt_name: str = ""


class ForeignKeyInfo(BaseModel):
    """Foreign key from one column to another table."""

    column: str
    foreign_table: str
    foreign_column: str
    delete_rule: str = "NO ACTION"
    constraint_name: str | None = None


class TableInfo(BaseModel):
    """Schema for a database table."""

    name: str
    columns: list[ColumnInfo] = Field(default_factory=list)
    primary_keys: list[str] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = Field(default_factory=list)


class PolicyInfo(BaseModel):
    """Row-level security policy attached to a table."""

    table: str
    name: str
    permissive: str = "PERMISSIVE"
    roles: list[str] = Field(default_factory=list)
    command: str = "ALL"
    qual: str | None = None
    with_check: str | None = None


class FunctionInfo(BaseModel):
    """Schema for a database function."""

    name: str
    arguments: str = ""
    return_type: str = ""
    definition: str = ""


class TriggerInfo(BaseModel):
    """Schema for a database trigger."""

    name: str
    table: str
    timing: str  # BEFORE, AFTER, INSTEAD OF
    event: str  # INSERT, UPDATE, DELETE
    function_call: str = ""


class IndexInfo(BaseModel):
    """Schema for a database index (primary keys excluded)."""

    name: str
    table: str
    definition: str
    is_unique: bool = False


class ExtensionInfo(BaseModel):
    """Installed Postgres extension."""

    name: str
    version: str = ""


class EnumInfo(BaseModel):
    """User-defined enum type."""

    name: str
    values: list[str] = Field(default_factory=list)


class SequenceInfo(BaseModel):
    """Sequence definition."""

    name: str
    data_type: str = "bigint"
    start_value: str = "1"
    increment: str = "1"
    min_value: str = "1"
    max_value: str = ""


# ============================================================================
# Snapshot Models
# ============================================================================


class SchemaSnapshot(BaseModel):
    """Structured schema state stored on a schema version.

    Entries are JSON objects (or bare name strings in legacy snapshots).
    """

    tables: list[Any] = Field(default_factory=list)
    functions: list[Any] = Field(default_factory=list)
    policies: list[Any] = Field(default_factory=list)
    triggers: list[Any] = Field(default_factory=list)
    indexes: list[Any] = Field(default_factory=list)
    extensions: list[Any] = Field(default_factory=list)
    enums: list[Any] = Field(default_factory=list)
    sequences: list[Any] = Field(default_factory=list)
    exported_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("exported_at", "exportedAt"),
    )

    def categories(self) -> dict[str, list[Any]]:
        """Return the structural categories (everything but ``exported_at``)."""
        return {name: getattr(self, name) for name in SNAPSHOT_CATEGORIES}


class SchemaExport(BaseModel):
    """Output of a ``SchemaExporter``: structure, SQL rendering, optional data."""

    sql: str
    tables: list[dict[str, Any]] = Field(default_factory=list)
    functions: list[dict[str, Any]] = Field(default_factory=list)
    policies: list[dict[str, Any]] = Field(default_factory=list)
    triggers: list[dict[str, Any]] = Field(default_factory=list)
    indexes: list[dict[str, Any]] = Field(default_factory=list)
    extensions: list[dict[str, Any]] = Field(default_factory=list)
    enums: list[dict[str, Any]] = Field(default_factory=list)
    sequences: list[dict[str, Any]] = Field(default_factory=list)
    data: dict[str, list[dict[str, Any]]] | None = None
    exported_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def snapshot(self) -> SchemaSnapshot:
        """Wrap the structured fields into a ``SchemaSnapshot``."""
        return SchemaSnapshot(
            **{name: list(getattr(self, name)) for name in SNAPSHOT_CATEGORIES},
            exported_at=self.exported_at,
        )


# ============================================================================
# Comparison Models
# ============================================================================


class EntityChange(BaseModel):
    """One added, removed, or modified entity.

    ``old`` is the expected-side payload (removed / modified), ``new`` the
    actual-side payload (added / modified).
    """

    key: str
    old: Any = None
    new: Any = None


class CategoryDiff(BaseModel):
    """Differences for one category, identical in shape for every category."""

    added: list[EntityChange] = Field(default_factory=list)
    removed: list[EntityChange] = Field(default_factory=list)
    modified: list[EntityChange] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def keys(self) -> dict[str, list[str]]:
        """Names-only view: ``{"added": [...], "removed": [...], "modified": [...]}``."""
        return {
            "added": [c.key for c in self.added],
            "removed": [c.key for c in self.removed],
            "modified": [c.key for c in self.modified],
        }


class Differences(BaseModel):
    """Differences between two snapshots, one ``CategoryDiff`` per category.

    Example:
        >>> diff = Differences()
        >>> diff.total_changes
        0
    """

    tables: CategoryDiff = Field(default_factory=CategoryDiff)
    columns: CategoryDiff = Field(default_factory=CategoryDiff)
    functions: CategoryDiff = Field(default_factory=CategoryDiff)
    policies: CategoryDiff = Field(default_factory=CategoryDiff)
    triggers: CategoryDiff = Field(default_factory=CategoryDiff)
    indexes: CategoryDiff = Field(default_factory=CategoryDiff)
    extensions: CategoryDiff = Field(default_factory=CategoryDiff)
    enums: CategoryDiff = Field(default_factory=CategoryDiff)

    def items(self) -> Iterator[tuple[str, CategoryDiff]]:
        for name in DIFF_CATEGORIES:
            yield name, getattr(self, name)

    @property
    def total_changes(self) -> int:
        return sum(diff.count for _, diff in self.items())

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def compact(self) -> dict[str, dict[str, list[str]]]:
        """Names-only form used by drift logs and version comparisons."""
        return {name: diff.keys() for name, diff in self.items()}


class CategorySummary(BaseModel):
    """Change counts for one category."""

    added: int = 0
    removed: int = 0
    modified: int = 0
    total: int = 0


class DiffSummary(CamelModel):
    """Aggregate view of a ``Differences`` object (camelCase in responses)."""

    total_changes: int = 0
    by_category: dict[str, CategorySummary] = Field(default_factory=dict)
    severity: Severity = "low"
