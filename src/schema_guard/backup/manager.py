"""Pre-migration backups.

A backup is a JSON file holding the rendered schema SQL, the structured
snapshot and every table's rows, plus a ``migration_backups`` row with
independent schema and data checksums. Restoration is not implemented:
``restore_backup()`` always reports failure after validating the record.

Usage:
    manager = BackupManager(adapter, exporter, backup_dir=Path("backups"))
    result = await manager.create_pre_migration_backup(notes="before 1.2.0")
    if result.success:
        print(result.backup_id)
"""

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from schema_guard.adapters.base import DatabaseClient
from schema_guard.backup.models import (
    MIGRATION_BACKUPS_TABLE,
    BackupMetadata,
    BackupResult,
    BackupVerification,
    RestoreResult,
)
from schema_guard.errors import RecordNotFoundError
from schema_guard.models import is_uuid
from schema_guard.schema.checksum import canonical_json, checksum
from schema_guard.schema.exporter import SchemaExporter

logger = logging.getLogger(__name__)

RESTORE_NOT_IMPLEMENTED = "Backup restore not yet implemented"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BackupManager:
    """Creates and inspects pre-migration backups.

    Args:
        client: Database client holding ``migration_backups``.
        exporter: Source of schema + data exports.
        backup_dir: Directory for backup files (created on demand).
    """

    def __init__(
        self,
        client: DatabaseClient,
        exporter: SchemaExporter,
        backup_dir: Path | str = "backups",
    ) -> None:
        self._client = client
        self._exporter = exporter
        self._backup_dir = Path(backup_dir)

    async def create_pre_migration_backup(
        self,
        migration_id: str | None = None,
        notes: str | None = None,
        created_by: str | None = None,
    ) -> BackupResult:
        """Export schema and data, write the backup file, record its metadata.

        Never raises: any failure is returned as ``BackupResult(success=False)``
        and leaves no metadata row behind.
        """
        path: Path | None = None
        try:
            export = await self._exporter.export(include_data=True)
            data = export.data or {}
            now = datetime.now(timezone.utc)

            schema_checksum = checksum(export.sql)
            data_checksum = checksum(canonical_json(data))
            payload = {
                "metadata": {
                    "created_at": now.isoformat(),
                    "created_by": created_by,
                    "migration_id": migration_id,
                    "backup_type": "pre_migration",
                    "schema_checksum": schema_checksum,
                    "data_checksum": data_checksum,
                },
                "schema": export.sql,
                "snapshot": export.snapshot().model_dump(),
                "data": data,
            }
            content = json.dumps(payload, indent=2, default=str)

            self._backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = int(now.timestamp() * 1000)
            path = self._backup_dir / f"backup_{stamp}_{secrets.token_hex(4)}.json"
            path.write_text(content, encoding="utf-8")

            row = await self._client.insert(
                MIGRATION_BACKUPS_TABLE,
                {
                    "created_at": now,
                    "created_by": created_by,
                    "migration_id": migration_id,
                    "backup_location": str(path),
                    "schema_checksum": schema_checksum,
                    "data_checksum": data_checksum,
                    "size_bytes": len(content.encode("utf-8")),
                    "can_restore": True,
                    "backup_type": "pre_migration",
                    "notes": notes,
                },
            )
        except Exception as e:
            logger.error("Backup failed: %s", e)
            if path is not None and path.exists():
                path.unlink()
            return BackupResult(success=False, error=str(e))

        backup = BackupMetadata.model_validate(row)
        logger.info(
            "Backup %s written to %s (%d bytes, %d tables)",
            backup.id, path, backup.size_bytes, len(data),
        )
        return BackupResult(success=True, backup_id=backup.id, backup=backup)

    async def get_backup(self, backup_id: str) -> BackupMetadata | None:
        if not is_uuid(backup_id):
            return None
        rows = await self._client.select(
            MIGRATION_BACKUPS_TABLE, "*", filters={"id": backup_id}, limit=1
        )
        return BackupMetadata.model_validate(rows[0]) if rows else None

    async def list_backups(self, limit: int = 20) -> list[BackupMetadata]:
        """Return backups, newest first."""
        rows = await self._client.select(
            MIGRATION_BACKUPS_TABLE, "*", order_by="created_at", desc=True, limit=limit
        )
        return [BackupMetadata.model_validate(r) for r in rows]

    async def get_recent_backup(self, max_age_hours: float = 24) -> BackupMetadata | None:
        """Return the newest backup if it is younger than ``max_age_hours``."""
        backups = await self.list_backups(limit=1)
        if not backups:
            return None
        created = _parse_timestamp(backups[0].created_at)
        if created is None:
            return None
        if datetime.now(timezone.utc) - created > timedelta(hours=max_age_hours):
            return None
        return backups[0]

    async def expired_backups(self, retention_days: int) -> list[BackupMetadata]:
        """List backups older than the retention window. Nothing is deleted."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        rows = await self._client.select(
            MIGRATION_BACKUPS_TABLE, "*", order_by="created_at"
        )
        expired = []
        for row in rows:
            backup = BackupMetadata.model_validate(row)
            created = _parse_timestamp(backup.created_at)
            if created is not None and created < cutoff:
                expired.append(backup)
        return expired

    async def verify_backup(self, backup_id: str) -> BackupVerification:
        """Re-read a backup file and compare its content with the stored checksums.

        Raises:
            RecordNotFoundError: If the backup row does not exist.
        """
        backup = await self.get_backup(backup_id)
        if backup is None:
            raise RecordNotFoundError(f"Backup not found: {backup_id}")

        result = BackupVerification(backup_id=backup_id, valid=False)
        path = Path(backup.backup_location)
        if not path.exists():
            result.errors.append(f"Backup file missing: {path}")
            return result

        try:
            payload: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            result.errors.append(f"Invalid JSON: {e}")
            return result

        result.schema_checksum_ok = checksum(payload.get("schema", "")) == backup.schema_checksum
        result.data_checksum_ok = (
            checksum(canonical_json(payload.get("data", {}))) == backup.data_checksum
        )
        if not result.schema_checksum_ok:
            result.errors.append("Schema checksum mismatch")
        if not result.data_checksum_ok:
            result.errors.append("Data checksum mismatch")
        result.valid = not result.errors
        return result

    async def restore_backup(self, backup_id: str) -> RestoreResult:
        """Validate the backup record, then report that restore is unavailable."""
        backup = await self.get_backup(backup_id)
        if backup is None:
            return RestoreResult(success=False, backup_id=backup_id, error="Backup not found")
        if not backup.can_restore:
            return RestoreResult(
                success=False, backup_id=backup_id, error="Backup cannot be restored"
            )
        logger.warning("Restore requested for backup %s; not implemented", backup_id)
        return RestoreResult(success=False, backup_id=backup_id, error=RESTORE_NOT_IMPLEMENTED)
