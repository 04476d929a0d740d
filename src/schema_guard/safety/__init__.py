"""Migration safety: SQL analysis, rollback generation, policy, and the gate.

Usage:
    from schema_guard.safety import MigrationGate, parse_sql, validate_sql

    report = validate_sql(parse_sql(sql))
    if report.is_valid:
        await gate.dry_run(parse_sql(sql).statements, "add-pedidos")
"""

from schema_guard.safety.analyzer import (
    CRITICAL_PATTERNS,
    WARNING_PATTERNS,
    analyze_statement,
    classify_operations,
    parse_sql,
    split_statements,
    statement_fingerprint,
    validate_sql,
)
from schema_guard.safety.gate import MigrationGate
from schema_guard.safety.models import (
    DRY_RUNS_TABLE,
    MIGRATION_HISTORY_TABLE,
    SAFETY_CONFIG_TABLE,
    ClassifiedOperations,
    DryRunError,
    DryRunResult,
    ExecutionResult,
    MigrationHistory,
    MigrationRequest,
    MigrationSafetyConfig,
    ParsedSQL,
    RollbackPlan,
    RollbackResult,
    RollbackStep,
    SQLStatement,
    ValidationReport,
)
from schema_guard.safety.rollback import generate_rollback
from schema_guard.safety.settings import SafetySettingsStore

__all__ = [
    # Analysis
    "CRITICAL_PATTERNS",
    "WARNING_PATTERNS",
    "split_statements",
    "analyze_statement",
    "parse_sql",
    "classify_operations",
    "validate_sql",
    "statement_fingerprint",
    "generate_rollback",
    # Gate and policy
    "MigrationGate",
    "SafetySettingsStore",
    # Models
    "SQLStatement",
    "ParsedSQL",
    "ClassifiedOperations",
    "ValidationReport",
    "RollbackStep",
    "RollbackPlan",
    "MigrationSafetyConfig",
    "MigrationRequest",
    "MigrationHistory",
    "DryRunError",
    "DryRunResult",
    "ExecutionResult",
    "RollbackResult",
    "MIGRATION_HISTORY_TABLE",
    "SAFETY_CONFIG_TABLE",
    "DRY_RUNS_TABLE",
]
