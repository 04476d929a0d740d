"""Tests for checksums, snapshot comparison, severity, and summaries."""

import pytest

from schema_guard.schema.checksum import (
    canonical_json,
    checksum,
    export_checksum,
    snapshot_checksum,
)
from schema_guard.schema.comparator import (
    classify_severity,
    compare_snapshots,
    entity_key,
    summarize,
)
from schema_guard.schema.models import DIFF_CATEGORIES, SchemaExport, SchemaSnapshot

from conftest import make_export


def _snapshot(**categories) -> SchemaSnapshot:
    return SchemaSnapshot(**categories)


# ============================================================================
# Checksums
# ============================================================================


class TestChecksum:
    """checksum() and the snapshot-level wrappers."""

    def test_sha256_hex(self):
        assert checksum("") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert len(checksum("clientes")) == 64

    def test_deterministic(self):
        assert checksum("CREATE TABLE a (id int);") == checksum("CREATE TABLE a (id int);")

    def test_utf8(self):
        assert checksum("ação") != checksum("acao")

    def test_canonical_json_sorts_keys(self):
        assert canonical_json({"b": 1, "a": {"d": 2, "c": 3}}) == '{"a":{"c":3,"d":2},"b":1}'

    def test_snapshot_checksum_ignores_entry_order(self):
        a = _snapshot(tables=[{"name": "clientes"}, {"name": "produtos"}])
        b = _snapshot(tables=[{"name": "produtos"}, {"name": "clientes"}])
        assert snapshot_checksum(a) == snapshot_checksum(b)

    def test_snapshot_checksum_ignores_exported_at(self):
        a = _snapshot(tables=["clientes"], exported_at="2024-01-01T00:00:00+00:00")
        b = _snapshot(tables=["clientes"], exported_at="2025-06-01T12:00:00+00:00")
        assert snapshot_checksum(a) == snapshot_checksum(b)

    def test_snapshot_checksum_detects_structure_change(self):
        a = _snapshot(tables=["clientes"])
        b = _snapshot(tables=["clientes", "pedidos"])
        assert snapshot_checksum(a) != snapshot_checksum(b)

    def test_export_checksum_sources(self):
        a = make_export(["clientes"], sql="CREATE TABLE clientes();")
        b = make_export(["clientes"], sql="CREATE TABLE  clientes();")
        # Whitespace in the SQL text is drift only when hashing the SQL
        assert export_checksum(a) == export_checksum(b)
        assert export_checksum(a, "sql") != export_checksum(b, "sql")
        assert export_checksum(a, "sql") == checksum("CREATE TABLE clientes();")

    def test_export_and_stored_snapshot_agree(self):
        export = make_export(["clientes", "produtos"])
        stored = SchemaSnapshot.model_validate(export.snapshot().model_dump())
        assert snapshot_checksum(stored) == export_checksum(export)


# ============================================================================
# Comparison
# ============================================================================


class TestEntityKey:
    def test_string_entry(self):
        assert entity_key("tables", "clientes") == "clientes"

    def test_named_entry(self):
        assert entity_key("functions", {"name": "calc_total", "arguments": ""}) == "calc_total"

    def test_policy_key_includes_table(self):
        assert entity_key("policies", {"table": "pedidos", "name": "read"}) == "pedidos.read"
        assert entity_key("policies", {"tablename": "pedidos", "policyname": "read"}) == "pedidos.read"

    def test_unnamed_entry_uses_canonical_form(self):
        assert entity_key("extensions", {"b": 1, "a": 2}) == '{"a":2,"b":1}'


class TestCompareSnapshots:
    """Keyed set comparison, identical across categories."""

    def test_identical_snapshots_have_no_differences(self):
        snap = make_export(
            ["clientes", "produtos"],
            functions=[{"name": "calc_total", "definition": "x"}],
        ).snapshot()
        diff = compare_snapshots(snap, snap)
        assert diff.is_empty
        for name in DIFF_CATEGORIES:
            category = getattr(diff, name)
            assert category.added == category.removed == category.modified == []

    def test_addition_and_removal_mirror(self):
        a = _snapshot(tables=["clientes", "pedidos"])
        b = _snapshot(tables=["clientes"])
        assert compare_snapshots(b, a).tables.keys()["added"] == ["pedidos"]
        assert compare_snapshots(a, b).tables.keys()["removed"] == ["pedidos"]

    @pytest.mark.parametrize("category", ["functions", "triggers", "indexes", "extensions", "enums"])
    def test_same_semantics_for_every_category(self, category):
        expected = {category: [{"name": "kept"}, {"name": "gone"}]}
        actual = {category: [{"name": "kept"}, {"name": "new"}]}
        keys = getattr(compare_snapshots(expected, actual), category).keys()
        assert keys == {"added": ["new"], "removed": ["gone"], "modified": []}

    def test_modified_when_payload_differs(self):
        expected = {"functions": [{"name": "calc_total", "definition": "v1"}]}
        actual = {"functions": [{"name": "calc_total", "definition": "v2"}]}
        diff = compare_snapshots(expected, actual)
        assert diff.functions.keys()["modified"] == ["calc_total"]
        change = diff.functions.modified[0]
        assert change.old["definition"] == "v1"
        assert change.new["definition"] == "v2"

    def test_legacy_string_entries_never_modified(self):
        diff = compare_snapshots({"tables": ["clientes"]}, {"tables": [{"name": "clientes"}]})
        assert diff.is_empty

    def test_column_changes(self):
        expected = {"tables": [{"name": "clientes", "columns": [{"name": "id"}, {"name": "nome"}]}]}
        actual = {
            "tables": [
                {"name": "clientes", "columns": [{"name": "id"}, {"name": "email", "type": "text"}]}
            ]
        }
        diff = compare_snapshots(expected, actual)
        assert diff.columns.keys()["added"] == ["clientes.email"]
        assert diff.columns.keys()["removed"] == ["clientes.nome"]
        # The table entry itself changed too
        assert diff.tables.keys()["modified"] == ["clientes"]

    def test_none_is_empty_snapshot(self):
        diff = compare_snapshots(None, {"tables": ["clientes"]})
        assert diff.tables.keys()["added"] == ["clientes"]

    def test_accepts_camel_case_exported_at(self):
        diff = compare_snapshots(
            {"tables": ["a"], "exportedAt": "2024-01-01"},
            {"tables": ["a"], "exported_at": "2025-01-01"},
        )
        assert diff.is_empty

    def test_results_are_sorted(self):
        diff = compare_snapshots({}, {"tables": ["zeta", "alpha", "mid"]})
        assert diff.tables.keys()["added"] == ["alpha", "mid", "zeta"]


# ============================================================================
# Severity and summary
# ============================================================================


class TestSeverity:
    def test_table_removal_is_critical(self):
        diff = compare_snapshots(
            {"tables": ["clientes"], "functions": ["f1", "f2", "f3"]},
            {"tables": [], "functions": []},
        )
        assert classify_severity(diff) == "critical"

    def test_single_table_addition_is_low(self):
        assert classify_severity(compare_snapshots({}, {"tables": ["pedidos"]})) == "low"

    def test_many_function_removals_are_high(self):
        diff = compare_snapshots({"functions": ["a", "b", "c"]}, {})
        assert classify_severity(diff) == "high"

    def test_two_function_removals_are_medium(self):
        diff = compare_snapshots({"functions": ["a", "b"]}, {})
        assert classify_severity(diff) == "medium"

    def test_many_policy_removals_are_high(self):
        policies = [{"table": "t", "name": f"p{i}"} for i in range(6)]
        assert classify_severity(compare_snapshots({"policies": policies}, {})) == "high"

    def test_modification_only_is_low(self):
        diff = compare_snapshots(
            {"functions": [{"name": "f", "definition": "a"}]},
            {"functions": [{"name": "f", "definition": "b"}]},
        )
        assert classify_severity(diff) == "low"


class TestSummarize:
    def test_counts_non_empty_categories(self):
        diff = compare_snapshots(
            {"tables": ["clientes"], "indexes": ["idx_a"]},
            {"tables": ["clientes", "pedidos"], "extensions": ["pgcrypto"]},
        )
        summary = summarize(diff)
        assert summary.total_changes == 3
        assert set(summary.by_category) == {"tables", "indexes", "extensions"}
        assert summary.by_category["indexes"].removed == 1
        assert summary.severity == "medium"

    def test_camel_case_api_shape(self):
        summary = summarize(compare_snapshots({}, {"tables": ["pedidos"]}))
        body = summary.to_api()
        assert body["totalChanges"] == 1
        assert body["byCategory"]["tables"] == {"added": 1, "removed": 0, "modified": 0, "total": 1}
        assert body["severity"] == "low"


class TestExportSnapshot:
    def test_snapshot_excludes_sql_and_data(self):
        export = SchemaExport(sql="-- x", tables=[{"name": "a"}], data={"a": [{"id": 1}]})
        dumped = export.snapshot().model_dump()
        assert "sql" not in dumped
        assert "data" not in dumped
        assert dumped["tables"] == [{"name": "a"}]
