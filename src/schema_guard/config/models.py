"""Pydantic models for db.toml configuration."""

from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml.

    ``url`` is always a Postgres connection URL (used for introspection,
    dry runs, and migrations).  Profiles with ``provider = "supabase"``
    additionally carry the project URL and service key used for the
    tracking-table CRUD.
    """

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: Literal["postgres", "supabase"] = "postgres"
    supabase_url: str | None = None
    supabase_key: str | None = None


class SafetyDefaults(BaseModel):
    """Deployment defaults for the migration safety policy.

    Used whenever the ``migration_safety_config`` table holds no row.
    """

    require_backup: bool = True
    require_dry_run: bool = True
    allow_destructive_ops: bool = False
    require_double_confirmation: bool = True
    max_affected_rows: int = 10000
    backup_retention_days: int = 30
    auto_rollback_on_error: bool = True


class TrackingSettings(BaseModel):
    """Schema tracking settings."""

    checksum_source: Literal["snapshot", "sql"] = "snapshot"
    schema_name: str = "public"
    backup_dir: str = "backups"


class ServerSettings(BaseModel):
    """HTTP function server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    auth: Literal["static", "supabase"] = "static"
    privileged_roles: list[str] = Field(default_factory=lambda: ["admin"])
    tokens: dict[str, str] = Field(default_factory=dict)  # bearer token -> role


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    safety: SafetyDefaults = Field(default_factory=SafetyDefaults)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
