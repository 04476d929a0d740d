"""Pre-migration backups.

Usage:
    from schema_guard.backup import BackupManager, BackupMetadata
"""

from schema_guard.backup.manager import RESTORE_NOT_IMPLEMENTED, BackupManager
from schema_guard.backup.models import (
    MIGRATION_BACKUPS_TABLE,
    BackupMetadata,
    BackupResult,
    BackupVerification,
    RestoreResult,
)

__all__ = [
    "BackupManager",
    "BackupMetadata",
    "BackupResult",
    "BackupVerification",
    "RestoreResult",
    "MIGRATION_BACKUPS_TABLE",
    "RESTORE_NOT_IMPLEMENTED",
]
