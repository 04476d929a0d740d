"""Profile resolution and service wiring.

A profile (a named entry in ``db.toml``) is selected by the
``{prefix}DB_PROFILE`` environment variable or, after a successful
``connect``, by the ``.db-profile`` lock file in the working directory.

Usage:
    from schema_guard.factory import build_services

    services = build_services()
    result = await services.drift.detect_drift()
    await services.close()
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel, Field

from schema_guard.adapters import AsyncPostgresAdapter, DatabaseClient
from schema_guard.backup.manager import BackupManager
from schema_guard.config import DatabaseConfig, DatabaseProfile, load_db_config
from schema_guard.safety.gate import MigrationGate
from schema_guard.safety.settings import SafetySettingsStore
from schema_guard.schema.exporter import IntrospectingExporter, SchemaExporter
from schema_guard.schema.introspector import SchemaIntrospector
from schema_guard.tracking.drift import DriftDetector
from schema_guard.tracking.models import DRIFT_LOGS_TABLE, SCHEMA_VERSIONS_TABLE
from schema_guard.tracking.versions import VersionManager

logger = logging.getLogger(__name__)

_PROFILE_LOCK_FILE = Path(".db-profile")

# Columns written as JSON documents
JSONB_COLUMNS = ["schema_snapshot", "differences"]

TRACKING_TABLES = [
    SCHEMA_VERSIONS_TABLE,
    DRIFT_LOGS_TABLE,
    "migration_backups",
    "migration_history",
    "migration_dry_runs",
    "migration_safety_config",
]


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


class ConnectionResult(BaseModel):
    """Outcome of ``connect()``."""

    success: bool
    profile_name: str | None = None
    table_count: int = 0
    missing_tracking_tables: list[str] = Field(default_factory=list)
    error: str | None = None


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def read_profile_lock() -> str | None:
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    _PROFILE_LOCK_FILE.write_text(profile_name)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var
    2. ``.db-profile`` file (written by a previous ``connect``)

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_prefix}DB_PROFILE=<name> schema-guard connect"
    )


def get_active_profile(
    env_prefix: str = "", config: DatabaseConfig | None = None
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or it is not in db.toml
    """
    profile_name = get_active_profile_name(env_prefix)
    config = config or load_db_config()

    if profile_name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Substitute ``db_password`` into the ``[YOUR-PASSWORD]`` placeholder."""
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Adapters and services
# ============================================================================


def get_adapter(profile: DatabaseProfile) -> DatabaseClient:
    """Return the tracking-table client for ``profile``.

    Supabase profiles use the Supabase REST client (requires the
    ``supabase`` extra); everything else uses asyncpg through SQLAlchemy.
    """
    if profile.provider == "supabase":
        if not profile.supabase_url or not profile.supabase_key:
            raise ProfileNotFoundError(
                "Supabase profiles need supabase_url and supabase_key"
            )
        from schema_guard.adapters.supabase import AsyncSupabaseAdapter

        return AsyncSupabaseAdapter(url=profile.supabase_url, key=profile.supabase_key)
    return AsyncPostgresAdapter(database_url=resolve_url(profile), jsonb_columns=JSONB_COLUMNS)


def get_exporter(profile: DatabaseProfile, config: DatabaseConfig) -> SchemaExporter:
    return IntrospectingExporter(resolve_url(profile), schema_name=config.tracking.schema_name)


@dataclass
class Services:
    """Every service bound to one profile."""

    profile_name: str
    config: DatabaseConfig
    client: DatabaseClient
    sql_client: DatabaseClient
    exporter: SchemaExporter
    versions: VersionManager
    drift: DriftDetector
    backups: BackupManager
    settings: SafetySettingsStore
    gate: MigrationGate

    async def close(self) -> None:
        await self.client.close()
        if self.sql_client is not self.client:
            await self.sql_client.close()


def build_services(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> Services:
    """Wire every service for a profile.

    Migrations and dry runs always go through a direct Postgres
    connection, even when tracking rows live behind the Supabase API.

    Raises:
        ProfileNotFoundError: If the profile cannot be resolved
        FileNotFoundError: If db.toml is missing
    """
    config = config or load_db_config()
    if profile_name is None:
        profile_name, profile = get_active_profile(env_prefix, config)
    elif profile_name in config.profiles:
        profile = config.profiles[profile_name]
    else:
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. "
            f"Available: {', '.join(config.profiles.keys())}"
        )

    client = get_adapter(profile)
    if profile.provider == "supabase":
        sql_client: DatabaseClient = AsyncPostgresAdapter(
            database_url=resolve_url(profile), jsonb_columns=JSONB_COLUMNS
        )
    else:
        sql_client = client

    tracking = config.tracking
    exporter = get_exporter(profile, config)
    versions = VersionManager(client, exporter, checksum_source=tracking.checksum_source)
    drift = DriftDetector(client, exporter, versions, checksum_source=tracking.checksum_source)
    backups = BackupManager(client, exporter, backup_dir=tracking.backup_dir)
    settings = SafetySettingsStore(client, config.safety)
    gate = MigrationGate(sql_client, settings, backups, versions=versions)

    logger.debug("Services built for profile %s (%s)", profile_name, profile.provider)
    return Services(
        profile_name=profile_name,
        config=config,
        client=client,
        sql_client=sql_client,
        exporter=exporter,
        versions=versions,
        drift=drift,
        backups=backups,
        settings=settings,
        gate=gate,
    )


async def connect(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> ConnectionResult:
    """Check that a profile's database is reachable, then lock it in.

    Reports tracking tables that are missing (run ``schema-guard init``)
    but does not fail on them.
    """
    try:
        config = config or load_db_config()
        if profile_name is None:
            profile_name = get_active_profile_name(env_prefix)
    except (FileNotFoundError, ProfileNotFoundError) as e:
        return ConnectionResult(success=False, error=str(e))

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )
    profile = config.profiles[profile_name]

    try:
        async with SchemaIntrospector(
            resolve_url(profile), schema_name=config.tracking.schema_name
        ) as introspector:
            tables = await introspector.get_table_names(include_tracking=True)
    except Exception as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )

    write_profile_lock(profile_name)
    return ConnectionResult(
        success=True,
        profile_name=profile_name,
        table_count=len(tables),
        missing_tracking_tables=[t for t in TRACKING_TABLES if t not in tables],
    )
