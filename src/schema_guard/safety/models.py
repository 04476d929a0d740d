"""Pydantic models for SQL analysis, safety policy, and migration execution.

This module contains:
- Analysis models: SQLStatement, ParsedSQL, ClassifiedOperations, ValidationReport
- Rollback models: RollbackStep, RollbackPlan
- Policy model: MigrationSafetyConfig
- Execution models: MigrationRequest, MigrationHistory, DryRunResult,
  ExecutionResult, RollbackResult
"""

from typing import Any, Literal, get_args

from pydantic import Field, field_validator

from schema_guard.models import CamelModel

MIGRATION_HISTORY_TABLE = "migration_history"
SAFETY_CONFIG_TABLE = "migration_safety_config"
DRY_RUNS_TABLE = "migration_dry_runs"

StatementType = Literal[
    "CREATE_TABLE",
    "ALTER_TABLE",
    "DROP_TABLE",
    "CREATE_FUNCTION",
    "DROP_FUNCTION",
    "CREATE_TRIGGER",
    "DROP_TRIGGER",
    "CREATE_INDEX",
    "DROP_INDEX",
    "CREATE_POLICY",
    "DROP_POLICY",
    "INSERT",
    "UPDATE",
    "DELETE",
    "TRUNCATE",
    "UNKNOWN",
]
DangerLevel = Literal["safe", "warning", "critical"]
MigrationStatus = Literal["pending", "executing", "success", "failed", "rolled_back"]
MigrationMethod = Literal["option1", "option2", "option3"]


# ============================================================================
# SQL Analysis Models
# ============================================================================


class SQLStatement(CamelModel):
    """One statement of a migration script.

    Example:
        >>> stmt = SQLStatement(type="CREATE_TABLE", content="CREATE TABLE t (id int);")
        >>> stmt.danger_level
        'safe'
    """

    type: StatementType = "UNKNOWN"
    content: str
    table_name: str | None = None
    schema_name: str | None = None
    line_number: int = 0  # 1-based line where the statement starts
    danger_level: DangerLevel = "safe"

    # Client-side labels are advisory; statements are re-classified before use
    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type(cls, value: Any) -> Any:
        return value if value in get_args(StatementType) else "UNKNOWN"

    @field_validator("danger_level", mode="before")
    @classmethod
    def _unknown_danger_level(cls, value: Any) -> Any:
        return value if value in get_args(DangerLevel) else "safe"

    @property
    def is_destructive(self) -> bool:
        return self.danger_level != "safe"


class ParsedSQL(CamelModel):
    statements: list[SQLStatement] = Field(default_factory=list)
    total_lines: int = 0
    has_comments: bool = False


class ClassifiedOperations(CamelModel):
    """Statements grouped by danger level and by operation kind."""

    safe: list[SQLStatement] = Field(default_factory=list)
    warnings: list[SQLStatement] = Field(default_factory=list)
    critical: list[SQLStatement] = Field(default_factory=list)
    creates: list[SQLStatement] = Field(default_factory=list)
    alters: list[SQLStatement] = Field(default_factory=list)
    drops: list[SQLStatement] = Field(default_factory=list)
    functions: list[SQLStatement] = Field(default_factory=list)
    triggers: list[SQLStatement] = Field(default_factory=list)
    indexes: list[SQLStatement] = Field(default_factory=list)
    data_modifications: list[SQLStatement] = Field(default_factory=list)


class ValidationReport(CamelModel):
    """Result of ``validate_sql()``.

    ``errors`` are forbidden patterns (the script must not run at all);
    ``warnings`` are destructive but permitted patterns.
    """

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    operations: ClassifiedOperations = Field(default_factory=ClassifiedOperations)
    danger_level: Literal["safe", "medium", "high"] = "safe"
    total_operations: int = 0
    destructive_operations: int = 0
    affected_tables: list[str] = Field(default_factory=list)


# ============================================================================
# Rollback Models
# ============================================================================


class RollbackStep(CamelModel):
    statement: SQLStatement
    rollback_sql: str
    can_rollback: bool
    notes: str | None = None


class RollbackPlan(CamelModel):
    """Inverse DDL for a statement batch, in reverse execution order."""

    sql: str = ""
    can_rollback: bool = True
    steps: list[RollbackStep] = Field(default_factory=list)


# ============================================================================
# Safety Policy
# ============================================================================


class MigrationSafetyConfig(CamelModel):
    """Deployment-wide migration policy (singleton row)."""

    id: int | None = None
    require_backup: bool = True
    require_dry_run: bool = True
    allow_destructive_ops: bool = False
    require_double_confirmation: bool = True
    max_affected_rows: int = 10000
    backup_retention_days: int = 30
    auto_rollback_on_error: bool = True
    created_at: str | None = None
    updated_at: str | None = None


# ============================================================================
# Execution Models
# ============================================================================


class MigrationRequest(CamelModel):
    """A proposed migration submitted for execution.

    ``sql`` is authoritative: when present it is re-parsed server-side and
    the submitted ``statements`` are ignored. ``dry_run_passed`` is the
    caller's claim and is verified against recorded dry runs.
    """

    migration_name: str
    sql: str = ""
    file_name: str | None = None
    statements: list[SQLStatement] = Field(default_factory=list)
    backup_id: str | None = None
    dry_run_passed: bool = False
    confirm_migration_name: str | None = None


class MigrationHistory(CamelModel):
    """Audit record of one migration execution."""

    id: str | None = None
    migration_name: str
    file_name: str | None = None
    sql_content: str = ""
    executed_by: str | None = None
    status: MigrationStatus = "executing"
    method: MigrationMethod = "option2"
    operations_total: int = 0
    operations_successful: int = 0
    operations_failed: int = 0
    duration_ms: int | None = None
    error_message: str | None = None
    backup_id: str | None = None
    dry_run_passed: bool = False
    can_rollback: bool = False
    rollback_sql: str | None = None
    rollback_executed: bool = False
    rollback_at: str | None = None
    auto_rolled_back: bool = False
    checksum_before: str | None = None
    checksum_after: str | None = None
    schema_version_before: str | None = None
    schema_version_after: str | None = None
    executed_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class DryRunError(CamelModel):
    statement_number: int
    error: str
    statement: str


class DryRunResult(CamelModel):
    success: bool
    passed: bool
    statements_executed: int = 0
    statements_failed: int = 0
    errors: list[DryRunError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    duration: int = 0  # milliseconds
    test_schema: str | None = None
    fingerprint: str | None = None


class ExecutionResult(CamelModel):
    success: bool
    history_id: str | None
    operations_successful: int
    operations_failed: int
    total_operations: int
    duration: int  # milliseconds
    errors: list[str] | None = None
    rolled_back: bool = False


class RollbackResult(CamelModel):
    success: bool
    history_id: str
    status: MigrationStatus
    message: str
    rollback_sql_executed: bool = False
