"""Pydantic models for pre-migration backups."""

from typing import Literal

from pydantic import Field

from schema_guard.models import CamelModel

MIGRATION_BACKUPS_TABLE = "migration_backups"

BackupType = Literal["pre_migration", "manual"]


class BackupMetadata(CamelModel):
    """Record of one backup file. Immutable once created."""

    id: str | None = None
    created_at: str | None = None
    created_by: str | None = None
    migration_id: str | None = None
    backup_location: str
    schema_checksum: str
    data_checksum: str
    size_bytes: int
    can_restore: bool = True
    backup_type: BackupType = "pre_migration"
    notes: str | None = None


class BackupResult(CamelModel):
    """Outcome of ``BackupManager.create_pre_migration_backup()``."""

    success: bool
    backup_id: str | None = None
    backup: BackupMetadata | None = None
    error: str | None = None


class BackupVerification(CamelModel):
    """Outcome of ``BackupManager.verify_backup()``."""

    backup_id: str
    valid: bool
    schema_checksum_ok: bool = False
    data_checksum_ok: bool = False
    errors: list[str] = Field(default_factory=list)


class RestoreResult(CamelModel):
    success: bool
    backup_id: str
    error: str | None = None
