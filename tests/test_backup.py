"""Tests for BackupManager and SafetySettingsStore."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from schema_guard.backup.manager import RESTORE_NOT_IMPLEMENTED, BackupManager
from schema_guard.backup.models import MIGRATION_BACKUPS_TABLE
from schema_guard.config.models import SafetyDefaults
from schema_guard.errors import ExporterError, InvalidRequestError, RecordNotFoundError
from schema_guard.safety.models import SAFETY_CONFIG_TABLE
from schema_guard.safety.settings import SafetySettingsStore
from schema_guard.schema.checksum import canonical_json, checksum

from conftest import InMemoryClient, make_export, make_exporter


def _export_with_data():
    export = make_export(["clientes"], sql="CREATE TABLE clientes (id uuid);")
    export.data = {"clientes": [{"id": "7b1f", "nome": "Ana"}]}
    return export


def _seed(client: InMemoryClient, created_at: datetime, can_restore: bool = True) -> str:
    return client.seed(MIGRATION_BACKUPS_TABLE, {
        "created_at": created_at,
        "backup_location": "backups/x.json",
        "schema_checksum": "s",
        "data_checksum": "d",
        "size_bytes": 1,
        "can_restore": can_restore,
    })["id"]


# ============================================================================
# Creating backups
# ============================================================================


class TestCreateBackup:
    async def test_writes_file_and_metadata(self, client, tmp_path):
        """The file holds schema, snapshot and data; the row holds checksums."""
        export = _export_with_data()
        exporter = make_exporter(export)
        manager = BackupManager(client, exporter, backup_dir=tmp_path / "backups")

        result = await manager.create_pre_migration_backup(migration_id="m-1", notes="antes", created_by="ana")

        assert result.success is True
        exporter.export.assert_awaited_once_with(include_data=True)
        backup = result.backup
        assert result.backup_id == backup.id
        assert backup.schema_checksum == checksum(export.sql)
        assert backup.data_checksum == checksum(canonical_json(export.data))
        assert backup.backup_type == "pre_migration"
        assert backup.notes == "antes"

        path = tmp_path / "backups" / backup.backup_location.rsplit("/", 1)[-1]
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["schema"] == export.sql
        assert payload["data"] == export.data
        assert payload["metadata"]["migration_id"] == "m-1"
        assert payload["snapshot"]["tables"][0]["name"] == "clientes"
        assert backup.size_bytes == len(path.read_bytes())

    async def test_export_failure_leaves_nothing(self, client, tmp_path):
        exporter = AsyncMock()
        exporter.export.side_effect = ExporterError("timeout")
        manager = BackupManager(client, exporter, backup_dir=tmp_path)

        result = await manager.create_pre_migration_backup()

        assert result.success is False
        assert result.error == "timeout"
        assert client.rows(MIGRATION_BACKUPS_TABLE) == []
        assert list(tmp_path.iterdir()) == []

    async def test_metadata_failure_removes_file(self, tmp_path):
        class FailingInsert(InMemoryClient):
            async def insert(self, table, data):
                raise RuntimeError("permission denied for table migration_backups")

        manager = BackupManager(FailingInsert(), make_exporter(_export_with_data()), backup_dir=tmp_path)

        result = await manager.create_pre_migration_backup()

        assert result.success is False
        assert "permission denied" in result.error
        assert list(tmp_path.iterdir()) == []

    async def test_same_millisecond_backups_get_distinct_files(self, client, tmp_path):
        manager = BackupManager(client, make_exporter(_export_with_data()), backup_dir=tmp_path)
        frozen = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        with patch("schema_guard.backup.manager.datetime") as clock:
            clock.now.return_value = frozen
            first = await manager.create_pre_migration_backup()
            second = await manager.create_pre_migration_backup()

        assert first.backup.backup_location != second.backup.backup_location
        assert len(list(tmp_path.glob("backup_*.json"))) == 2
        for result in (first, second):
            assert (await manager.verify_backup(result.backup_id)).valid is True


# ============================================================================
# Inspecting backups
# ============================================================================


class TestVerifyBackup:
    async def test_valid_then_tampered(self, client, tmp_path):
        manager = BackupManager(client, make_exporter(_export_with_data()), backup_dir=tmp_path)
        created = await manager.create_pre_migration_backup()

        verification = await manager.verify_backup(created.backup_id)
        assert verification.valid is True
        assert verification.errors == []

        path = next(tmp_path.iterdir())
        payload = json.loads(path.read_text(encoding="utf-8"))
        payload["data"]["clientes"].append({"id": "x"})
        path.write_text(json.dumps(payload), encoding="utf-8")

        verification = await manager.verify_backup(created.backup_id)
        assert verification.valid is False
        assert verification.schema_checksum_ok is True
        assert verification.errors == ["Data checksum mismatch"]

    async def test_missing_file(self, client, tmp_path):
        manager = BackupManager(client, AsyncMock(), backup_dir=tmp_path)
        backup_id = _seed(client, datetime.now(timezone.utc))
        verification = await manager.verify_backup(backup_id)
        assert verification.valid is False
        assert verification.errors[0].startswith("Backup file missing")

    async def test_unknown_backup(self, client, tmp_path):
        manager = BackupManager(client, AsyncMock(), backup_dir=tmp_path)
        with pytest.raises(RecordNotFoundError):
            await manager.verify_backup("404")

    async def test_malformed_id_is_not_queried(self, tmp_path):
        client = AsyncMock()
        manager = BackupManager(client, AsyncMock(), backup_dir=tmp_path)

        assert await manager.get_backup("not-a-uuid") is None
        with pytest.raises(RecordNotFoundError, match="Backup not found: not-a-uuid"):
            await manager.verify_backup("not-a-uuid")
        client.select.assert_not_awaited()


class TestListBackups:
    async def test_recent_and_expired(self, client):
        now = datetime.now(timezone.utc)
        old = _seed(client, now - timedelta(days=45))
        recent = _seed(client, now - timedelta(hours=2))
        manager = BackupManager(client, AsyncMock())

        assert [b.id for b in await manager.list_backups()] == [recent, old]
        assert (await manager.get_recent_backup(max_age_hours=24)).id == recent
        assert await manager.get_recent_backup(max_age_hours=1) is None
        assert [b.id for b in await manager.expired_backups(retention_days=30)] == [old]
        # Listing expired backups deletes nothing
        assert len(client.rows(MIGRATION_BACKUPS_TABLE)) == 2

    async def test_no_backups(self, client):
        manager = BackupManager(client, AsyncMock())
        assert await manager.get_recent_backup() is None


class TestRestoreBackup:
    async def test_not_implemented(self, client):
        backup_id = _seed(client, datetime.now(timezone.utc))
        result = await BackupManager(client, AsyncMock()).restore_backup(backup_id)
        assert result.success is False
        assert result.error == RESTORE_NOT_IMPLEMENTED

    async def test_unknown(self, client):
        result = await BackupManager(client, AsyncMock()).restore_backup("404")
        assert result.error == "Backup not found"

    async def test_not_restorable(self, client):
        backup_id = _seed(client, datetime.now(timezone.utc), can_restore=False)
        result = await BackupManager(client, AsyncMock()).restore_backup(backup_id)
        assert result.error == "Backup cannot be restored"


# ============================================================================
# Safety settings
# ============================================================================


class TestSafetySettings:
    async def test_defaults_when_no_row(self, client):
        store = SafetySettingsStore(client, SafetyDefaults(max_affected_rows=500))
        config = await store.load()
        assert config.max_affected_rows == 500
        assert config.require_backup is True
        assert config.id is None

    async def test_update_creates_then_updates_singleton(self, client):
        store = SafetySettingsStore(client)

        first = await store.update(allowDestructiveOps=True)
        assert first.allow_destructive_ops is True
        assert first.id == 1

        second = await store.update(max_affected_rows=50)
        assert second.allow_destructive_ops is True
        assert second.max_affected_rows == 50
        assert len(client.rows(SAFETY_CONFIG_TABLE)) == 1
        assert (await store.load()).max_affected_rows == 50

    async def test_unknown_key(self, client):
        with pytest.raises(InvalidRequestError, match="Unknown safety settings: bogus"):
            await SafetySettingsStore(client).update(bogus=True)
        assert client.rows(SAFETY_CONFIG_TABLE) == []

    async def test_invalid_value(self, client):
        with pytest.raises(InvalidRequestError, match="Invalid safety settings"):
            await SafetySettingsStore(client).update(maxAffectedRows="lots")

    async def test_api_shape(self, client):
        body = (await SafetySettingsStore(client).load()).to_api()
        assert body["requireDryRun"] is True
        assert body["autoRollbackOnError"] is True
