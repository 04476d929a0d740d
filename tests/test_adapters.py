"""Tests for the Postgres and Supabase adapters (no live database)."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import pytest

from schema_guard.adapters.postgres import (
    AsyncPostgresAdapter,
    _execute,
    _QueryBuilder,
    _serialize_row,
    _where,
    create_async_engine_pooled,
    normalize_async_url,
)


# ============================================================================
# URL handling and engine creation
# ============================================================================


class TestNormalizeAsyncUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("postgresql://u:p@h:5432/db", "postgresql+asyncpg://u:p@h:5432/db"),
            ("postgres://u:p@h:5432/db", "postgresql+asyncpg://u:p@h:5432/db"),
            ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ],
    )
    def test_schemes(self, url, expected):
        assert normalize_async_url(url) == expected


class TestEngineCreation:
    def test_adapter_uses_asyncpg_url(self):
        """The adapter hands the normalized URL to the pooled engine."""
        with patch("schema_guard.adapters.postgres.create_async_engine_pooled") as mock_create:
            AsyncPostgresAdapter("postgres://u:p@h/db", jsonb_columns=["schema_snapshot"])
        mock_create.assert_called_once_with("postgresql+asyncpg://u:p@h/db")

    def test_engine_kwargs_forwarded(self):
        with patch("schema_guard.adapters.postgres.create_async_engine_pooled") as mock_create:
            AsyncPostgresAdapter("postgresql://u:p@h/db", pool_size=2)
        assert mock_create.call_args.kwargs == {"pool_size": 2}

    def test_pool_defaults_overridable(self):
        with patch("schema_guard.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://h/db", pool_size=1)
        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_size"] == 1
        assert kwargs["max_overflow"] == 10
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["pool_recycle"] == 300


# ============================================================================
# Query building
# ============================================================================


class TestQueryBuilder:
    """Raw SQL with named parameters and JSONB casts."""

    @pytest.fixture
    def builder(self) -> _QueryBuilder:
        return _QueryBuilder(frozenset({"schema_snapshot", "differences"}))

    def test_where_with_null(self):
        clause, params = _where({"resolved": False, "resolved_by": None}, "p")
        assert clause == " WHERE resolved = :p_0 AND resolved_by IS NULL"
        assert params == {"p_0": False}

    def test_where_empty(self):
        assert _where(None, "p") == ("", {})

    def test_select(self, builder):
        query, params = builder.select(
            "schema_versions", "*", {"is_current": True}, "applied_at", True, 1
        )
        assert str(query) == (
            "SELECT * FROM schema_versions WHERE is_current = :p_0 "
            "ORDER BY applied_at DESC LIMIT :limit"
        )
        assert params == {"p_0": True, "limit": 1}

    def test_insert_casts_jsonb_and_drops_metadata(self, builder):
        query, params = builder.insert(
            "schema_versions",
            {"version": "1.0.0", "schema_snapshot": {"tables": []}, "_meta": "x"},
        )
        sql = str(query)
        assert "INSERT INTO schema_versions (version, schema_snapshot)" in sql
        assert "CAST(:schema_snapshot AS jsonb)" in sql
        assert "RETURNING *" in sql
        assert params == {"version": "1.0.0", "schema_snapshot": json.dumps({"tables": []})}

    def test_update(self, builder):
        query, params = builder.update(
            "schema_drift_logs", {"resolved": True, "differences": {"a": 1}}, {"id": "7"}
        )
        sql = str(query)
        assert "SET resolved = :set_0, differences = CAST(:set_1 AS jsonb) WHERE id = :where_0" in sql
        assert params == {"set_0": True, "set_1": '{"a": 1}', "where_0": "7"}

    def test_list_only_serialized_for_jsonb(self, builder):
        assert builder._param_value("differences", [1]) == "[1]"
        assert builder._param_value("tags", [1]) == [1]


class TestRowSerialization:
    def test_uuid_and_datetime(self):
        row = _serialize_row({
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "applied_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
            "version": "1.0.0",
        })
        assert row == {
            "id": "12345678-1234-5678-1234-567812345678",
            "applied_at": "2024-05-01T00:00:00+00:00",
            "version": "1.0.0",
        }


class TestExecute:
    async def test_unparameterized_sql_goes_to_driver(self):
        """Colons in migration SQL are never read as bind parameters."""
        conn = MagicMock()
        conn.exec_driver_sql = AsyncMock(return_value=MagicMock(rowcount=-1))
        conn.execute = AsyncMock()

        sql = "COMMENT ON TABLE pedidos IS 'status: novo';"
        assert await _execute(conn, sql, None) == -1

        conn.exec_driver_sql.assert_awaited_once_with(sql)
        conn.execute.assert_not_awaited()

    async def test_parameterized_sql_uses_text(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value=MagicMock(rowcount=3))
        assert await _execute(conn, "DELETE FROM t WHERE id = :id", {"id": 1}) == 3
        assert str(conn.execute.call_args.args[0]) == "DELETE FROM t WHERE id = :id"


# ============================================================================
# Supabase adapter
# ============================================================================


class TestSupabaseAdapter:
    @pytest.fixture(autouse=True)
    def _require_supabase(self):
        pytest.importorskip("supabase")

    def test_payload_serializes_datetimes(self):
        from schema_guard.adapters.supabase import AsyncSupabaseAdapter

        payload = AsyncSupabaseAdapter._payload({
            "detected_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
            "resolved": False,
            "_internal": 1,
        })
        assert payload == {"detected_at": "2024-05-01T00:00:00+00:00", "resolved": False}

    async def test_raw_sql_and_transactions_unsupported(self):
        from schema_guard.adapters.supabase import AsyncSupabaseAdapter

        adapter = AsyncSupabaseAdapter(url="https://x.supabase.co", key="k")
        with pytest.raises(NotImplementedError):
            await adapter.execute("SELECT 1")
        with pytest.raises(NotImplementedError):
            adapter.transaction()

    async def test_close_without_client(self):
        from schema_guard.adapters.supabase import AsyncSupabaseAdapter

        adapter = AsyncSupabaseAdapter(url="https://x.supabase.co", key="k")
        await adapter.close()
        assert adapter._client is None

    async def test_select_builds_query(self):
        from schema_guard.adapters.supabase import AsyncSupabaseAdapter

        adapter = AsyncSupabaseAdapter(url="https://x.supabase.co", key="k")
        query = MagicMock()
        query.eq.return_value = query
        query.order.return_value = query
        query.limit.return_value = query
        query.execute = AsyncMock(return_value=MagicMock(data=[{"version": "1.0.0"}]))
        client = MagicMock()
        client.table.return_value.select.return_value = query
        adapter._client = client

        rows = await adapter.select(
            "schema_versions", "*", filters={"is_current": True}, order_by="applied_at", desc=True, limit=1
        )

        assert rows == [{"version": "1.0.0"}]
        client.table.assert_called_once_with("schema_versions")
        query.eq.assert_called_once_with("is_current", True)
        query.order.assert_called_once_with("applied_at", desc=True)
        query.limit.assert_called_once_with(1)
