"""Tests for the schema-guard CLI (commands run against in-memory services)."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from schema_guard.cli import build_parser, main
from schema_guard.config import DatabaseConfig, DatabaseProfile

from conftest import InMemoryClient, make_export, make_services


@pytest.fixture
def memory() -> InMemoryClient:
    return InMemoryClient()


@pytest.fixture
def services(memory: InMemoryClient, tmp_path: Path):
    services = make_services(memory, tmp_path / "backups")
    with patch("schema_guard.cli.build_services", return_value=services):
        yield services


def _write(path: Path, content: str) -> str:
    path.write_text(content, encoding="utf-8")
    return str(path)


# ============================================================================
# Argument parsing
# ============================================================================


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_global_options(self):
        args = build_parser().parse_args(["--env-prefix", "APP_", "-p", "local", "drift"])
        assert args.env_prefix == "APP_"
        assert args.profile == "local"
        assert args.command == "drift"

    def test_migrate_requires_name(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["migrate", "002.sql"])

    def test_migrate_options(self):
        args = build_parser().parse_args([
            "migrate", "002.sql", "--name", "add-pedidos", "--backup", "--confirm-name", "add-pedidos",
        ])
        assert args.backup is True
        assert args.backup_id is None
        assert args.confirm_name == "add-pedidos"

    def test_versions_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["versions"])


# ============================================================================
# Commands that need no database
# ============================================================================


class TestAnalyze:
    def test_safe_script(self, tmp_path, capsys):
        path = _write(tmp_path / "002.sql", "CREATE TABLE pedidos (id uuid);\nCREATE INDEX idx ON pedidos (id);\n")
        assert main(["analyze", path]) == 0
        assert "2 operations" in capsys.readouterr().out

    def test_forbidden_script_fails(self, tmp_path):
        path = _write(tmp_path / "bad.sql", "DROP DATABASE postgres;\n")
        assert main(["analyze", path]) == 1

    def test_rollback_plan(self, tmp_path, capsys):
        path = _write(tmp_path / "002.sql", "CREATE TABLE pedidos (id uuid);\n")
        assert main(["analyze", path, "--rollback"]) == 0
        assert "DROP TABLE IF EXISTS pedidos" in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert main(["analyze", str(tmp_path / "nope.sql")]) == 1


class TestDiffFiles:
    def test_snapshot_files(self, tmp_path, capsys):
        one = _write(tmp_path / "a.json", json.dumps({"tables": ["clientes", "legado"]}))
        two = _write(tmp_path / "b.json", json.dumps({"tables": ["clientes"]}))
        assert main(["diff", "--snapshot1", one, "--snapshot2", two, "--sql"]) == 0
        out = capsys.readouterr().out
        assert "critical" in out
        assert "-- DROP TABLE IF EXISTS legado CASCADE;" in out

    def test_identical_snapshots(self, tmp_path, capsys):
        one = _write(tmp_path / "a.json", json.dumps({"tables": ["clientes"]}))
        assert main(["diff", "--snapshot1", one, "--snapshot2", one]) == 0
        assert "No differences" in capsys.readouterr().out

    def test_needs_two_sides(self, capsys):
        assert main(["diff", "1.0.0"]) == 1


class TestProfiles:
    def test_lists_profiles(self, capsys):
        config = DatabaseConfig(profiles={
            "local": DatabaseProfile(url="postgresql://h/db", description="Local dev"),
        })
        with patch("schema_guard.cli.load_db_config", return_value=config), \
             patch("schema_guard.cli.read_profile_lock", return_value="local"):
            assert main(["profiles"]) == 0
        assert "Local dev" in capsys.readouterr().out

    def test_missing_db_toml(self):
        with patch("schema_guard.cli.load_db_config", side_effect=FileNotFoundError("db.toml not found")):
            assert main(["profiles"]) == 1


# ============================================================================
# Commands backed by services
# ============================================================================


class TestServiceCommands:
    def test_unresolvable_profile(self):
        with patch("schema_guard.cli.build_services", side_effect=FileNotFoundError("db.toml not found")):
            assert main(["drift"]) == 1

    def test_init_runs_packaged_ddl(self, services, memory):
        assert main(["init"]) == 0
        assert any("CREATE TABLE IF NOT EXISTS public.schema_versions" in sql for sql in memory.executed)
        assert memory.closed is True

    def test_version_then_drift(self, services, memory):
        assert main(["drift"]) == 0  # no baseline yet
        assert main(["versions", "create", "1.0.0", "Baseline"]) == 0
        assert main(["versions", "check"]) == 0
        assert main(["drift"]) == 0

        services.exporter.export.return_value = make_export(["clientes", "produtos", "pedidos"])
        assert main(["versions", "check"]) == 2
        assert main(["drift"]) == 2
        assert len(memory.rows("schema_drift_logs")) == 1

    def test_duplicate_version_is_reported(self, services, capsys):
        assert main(["versions", "create", "1.0.0", "Baseline"]) == 0
        assert main(["versions", "create", "1.0.0", "Again"]) == 1
        assert "already exists" in capsys.readouterr().out

    def test_migrate_with_backup(self, services, memory, tmp_path):
        services.config.safety.require_dry_run = False
        path = _write(tmp_path / "002.sql", "CREATE TABLE pedidos (id uuid);\n")

        assert main(["migrate", path, "--name", "add-pedidos", "--backup"]) == 0

        history = memory.rows("migration_history")
        assert [h["status"] for h in history] == ["success"]
        assert history[0]["backup_id"] == memory.rows("migration_backups")[0]["id"]

    def test_migrate_refused_by_policy(self, services, memory, tmp_path):
        path = _write(tmp_path / "003.sql", "DROP TABLE legado;\n")
        assert main(["migrate", path, "--name", "drop-legado"]) == 1
        assert memory.rows("migration_history") == []

    def test_safety_set(self, services, memory):
        assert main(["safety", "set", "maxAffectedRows=500", "allowDestructiveOps=true"]) == 0
        assert memory.rows("migration_safety_config")[0]["max_affected_rows"] == 500
        assert memory.rows("migration_safety_config")[0]["allow_destructive_ops"] is True

    def test_safety_set_needs_assignment(self, services):
        assert main(["safety", "set", "maxAffectedRows"]) == 1
