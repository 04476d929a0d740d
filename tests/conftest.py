"""Shared test doubles.

``InMemoryClient`` implements the ``DatabaseClient`` protocol over plain
dicts. Transactions and savepoints snapshot the whole state and restore it
when the block raises, so rollback behaviour can be asserted directly.
Raw SQL is recorded in ``executed`` (committed) and ``attempted`` (every
call); a statement containing any ``fail_on`` substring raises.
"""

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from schema_guard.schema.models import SchemaExport


class UniqueViolation(Exception):
    """Mimics a PostgREST unique-constraint error."""

    code = "23505"


# table -> column that must be unique
_UNIQUE = {"schema_versions": "version"}


def _store_value(value: Any) -> Any:
    # Rows come back from the real adapters with ISO timestamps
    if isinstance(value, datetime):
        return value.isoformat()
    return copy.deepcopy(value)


class _State:
    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.executed: list[str] = []


class InMemoryClient:
    def __init__(
        self,
        fail_on: list[str] | None = None,
        rowcounts: dict[str, int] | None = None,
    ) -> None:
        self._state = _State()
        self.fail_on = list(fail_on or [])
        self.rowcounts = dict(rowcounts or {})
        self.attempted: list[str] = []
        self.transactions = 0
        self.closed = False

    # ------------------------------------------------------------------
    # Inspection helpers
    # ------------------------------------------------------------------

    @property
    def executed(self) -> list[str]:
        return self._state.executed

    def rows(self, table: str) -> list[dict]:
        return self._state.tables.setdefault(table, [])

    def seed(self, table: str, row: dict) -> dict:
        stored = {k: _store_value(v) for k, v in row.items()}
        stored.setdefault("id", str(uuid.uuid4()))
        self.rows(table).append(stored)
        return dict(stored)

    # ------------------------------------------------------------------
    # DatabaseClient
    # ------------------------------------------------------------------

    @staticmethod
    def _matches(row: dict, filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        desc: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        rows = [dict(r) for r in self.rows(table) if self._matches(r, filters)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, data: dict) -> dict:
        unique = _UNIQUE.get(table)
        if unique and any(r.get(unique) == data.get(unique) for r in self.rows(table)):
            raise UniqueViolation(f"duplicate key value violates unique constraint on {unique}")
        return self.seed(table, data)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> list[dict]:
        updated = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update({k: _store_value(v) for k, v in data.items()})
                updated.append(dict(row))
        return updated

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        self._state.tables[table] = [
            r for r in self.rows(table) if not self._matches(r, filters)
        ]

    async def execute(self, sql: str, params: dict | None = None) -> int:
        self.attempted.append(sql)
        for pattern in self.fail_on:
            if pattern in sql:
                raise RuntimeError(f'syntax error at or near "{pattern}"')
        self._state.executed.append(sql)
        for pattern, count in self.rowcounts.items():
            if pattern in sql:
                return count
        return 0

    @asynccontextmanager
    async def savepoint(self):
        saved = copy.deepcopy(self._state)
        try:
            yield
        except BaseException:
            self._state = saved
            raise

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        saved = copy.deepcopy(self._state)
        try:
            yield self
        except BaseException:
            self._state = saved
            raise

    async def close(self) -> None:
        self.closed = True


def make_export(
    tables: list[str] | None = None,
    sql: str = "-- schema",
    **categories: list[dict],
) -> SchemaExport:
    """Build an export whose tables have a single ``id`` column."""
    table_entries = [
        {
            "name": name,
            "columns": [{"name": "id", "type": "uuid", "nullable": False}],
            "primary_keys": ["id"],
            "foreign_keys": [],
        }
        for name in (tables or [])
    ]
    return SchemaExport(sql=sql, tables=table_entries, **categories)


def make_exporter(export: SchemaExport) -> AsyncMock:
    exporter = AsyncMock()
    exporter.export.return_value = export
    return exporter


@pytest.fixture
def client() -> InMemoryClient:
    return InMemoryClient()


@pytest.fixture
def baseline_export() -> SchemaExport:
    return make_export(["clientes", "produtos"])


def make_services(client: InMemoryClient, backup_dir, export: SchemaExport | None = None, **safety):
    """Wire real services over ``client`` the way ``build_services`` does."""
    from schema_guard.backup.manager import BackupManager
    from schema_guard.config.models import (
        DatabaseConfig,
        DatabaseProfile,
        SafetyDefaults,
        ServerSettings,
    )
    from schema_guard.factory import Services
    from schema_guard.safety.gate import MigrationGate
    from schema_guard.safety.settings import SafetySettingsStore
    from schema_guard.tracking.drift import DriftDetector
    from schema_guard.tracking.versions import VersionManager

    config = DatabaseConfig(
        profiles={"local": DatabaseProfile(url="postgresql://h/db")},
        safety=SafetyDefaults(**safety),
        server=ServerSettings(tokens={"admin-token": "admin", "viewer-token": "viewer"}),
    )
    exporter = make_exporter(export or make_export(["clientes", "produtos"]))
    versions = VersionManager(client, exporter)
    backups = BackupManager(client, exporter, backup_dir=backup_dir)
    settings = SafetySettingsStore(client, config.safety)
    return Services(
        profile_name="local",
        config=config,
        client=client,
        sql_client=client,
        exporter=exporter,
        versions=versions,
        drift=DriftDetector(client, exporter, versions),
        backups=backups,
        settings=settings,
        gate=MigrationGate(client, settings, backups, versions),
    )
