"""schema-guard: schema version tracking, drift detection, and safe migrations.

Tracks named snapshots of a Postgres (Supabase) schema, detects drift from
the registered version, diffs snapshots, and runs migrations behind a safety
gate (backup, dry run, transactional execution, explicit rollback).

Usage:
    from schema_guard import build_services, parse_sql

    services = build_services("local")
    drift = await services.drift.detect_drift()
"""

__version__ = "0.1.0"

# Adapters
from schema_guard.adapters.base import DatabaseClient
from schema_guard.adapters.postgres import AsyncPostgresAdapter

# Config
from schema_guard.config.loader import load_db_config
from schema_guard.config.models import DatabaseConfig, DatabaseProfile

# Errors
from schema_guard.errors import (
    ExporterError,
    InvalidRequestError,
    PolicyViolationError,
    SchemaGuardError,
    VersionConflictError,
)

# Factory
from schema_guard.factory import (
    ProfileNotFoundError,
    Services,
    build_services,
    connect,
    resolve_url,
)

# Schema and safety
from schema_guard.safety.analyzer import parse_sql, validate_sql
from schema_guard.schema.comparator import compare_snapshots
from schema_guard.schema.suggest import render_migration_sql

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "SchemaGuardError",
    "InvalidRequestError",
    "PolicyViolationError",
    "VersionConflictError",
    "ExporterError",
    # Factory
    "build_services",
    "connect",
    "Services",
    "ProfileNotFoundError",
    "resolve_url",
    # Schema and safety
    "compare_snapshots",
    "render_migration_sql",
    "parse_sql",
    "validate_sql",
]

# Optional: AsyncSupabaseAdapter (only available with supabase extra)
try:
    from schema_guard.adapters.supabase import AsyncSupabaseAdapter

    __all__.append("AsyncSupabaseAdapter")
except ImportError:
    # supabase extra not installed -- AsyncSupabaseAdapter unavailable
    pass
