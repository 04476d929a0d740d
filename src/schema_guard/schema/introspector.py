"""PostgreSQL schema introspection via information_schema and pg_catalog.

This module queries the live database to extract every snapshot category:
- Tables with columns, primary keys and foreign keys
- Functions (name, arguments, return type, definition)
- Row-level security policies
- Triggers (name, table, timing, event, action)
- Indexes (primary keys excluded)
- Extensions, enum types and sequences
- Optionally, table rows (for pre-migration backups)

Uses psycopg (v3) ``AsyncConnection`` for PostgreSQL connections.
"""

import logging
from typing import Any

from psycopg import AsyncConnection, sql
from psycopg.rows import dict_row

from schema_guard.schema.models import (
    ColumnInfo,
    EnumInfo,
    ExtensionInfo,
    ForeignKeyInfo,
    FunctionInfo,
    IndexInfo,
    PolicyInfo,
    SequenceInfo,
    TableInfo,
    TriggerInfo,
)

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Introspects a PostgreSQL schema.

    Works with any PostgreSQL database (Supabase, RDS, local).

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            tables = await introspector.get_tables()
            rows = await introspector.get_table_data("clientes")
    """

    # Tables to exclude from introspection (tracking and system tables)
    EXCLUDED_TABLES = {
        "schema_versions",
        "schema_drift_logs",
        "migration_history",
        "migration_backups",
        "migration_safety_config",
        "migration_dry_runs",
        "schema_migrations",
        "spatial_ref_sys",
    }

    def __init__(self, database_url: str, schema_name: str = "public"):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL
            schema_name: Namespace to introspect (default: public)
        """
        self._database_url = database_url
        self._schema = schema_name
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens connection."""
        url = self._database_url
        if "connect_timeout" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}connect_timeout=10"

        self._conn = await AsyncConnection.connect(url, row_factory=dict_row)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _fetch(self, query: Any, params: tuple = ()) -> list[dict[str, Any]]:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        async with self._conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def get_table_names(self, include_tracking: bool = False) -> list[str]:
        """Get all base table names in the schema.

        Tracking and system tables are skipped unless ``include_tracking``.
        """
        rows = await self._fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (self._schema,),
        )
        names = [r["table_name"] for r in rows]
        if include_tracking:
            return names
        return [n for n in names if n not in self.EXCLUDED_TABLES]

    async def get_tables(self) -> list[TableInfo]:
        """Get tables with columns, primary keys and foreign keys."""
        tables = []
        for name in await self.get_table_names():
            tables.append(
                TableInfo(
                    name=name,
                    columns=await self._get_columns(name),
                    primary_keys=await self._get_primary_keys(name),
                    foreign_keys=await self._get_foreign_keys(name),
                )
            )
        return tables

    async def _get_columns(self, table_name: str) -> list[ColumnInfo]:
        rows = await self._fetch(
            """
            SELECT column_name, data_type, udt_name, is_nullable, column_default
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
            """,
            (self._schema, table_name),
        )
        return [
            ColumnInfo(
                name=r["column_name"],
                type=r["data_type"],
                udt_name=r["udt_name"] or "",
                nullable=(r["is_nullable"] == "YES"),
                default=r["column_default"],
            )
            for r in rows
        ]

    async def _get_primary_keys(self, table_name: str) -> list[str]:
        rows = await self._fetch(
            """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY kcu.ordinal_position
            """,
            (self._schema, table_name),
        )
        return [r["column_name"] for r in rows]

    async def _get_foreign_keys(self, table_name: str) -> list[ForeignKeyInfo]:
        rows = await self._fetch(
            """
            SELECT
                tc.constraint_name,
                kcu.column_name,
                ccu.table_name AS foreign_table,
                ccu.column_name AS foreign_column,
                rc.delete_rule
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
                ON tc.constraint_name = ccu.constraint_name
            LEFT JOIN information_schema.referential_constraints rc
                ON tc.constraint_name = rc.constraint_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type = 'FOREIGN KEY'
            ORDER BY tc.constraint_name, kcu.ordinal_position
            """,
            (self._schema, table_name),
        )
        return [
            ForeignKeyInfo(
                column=r["column_name"],
                foreign_table=r["foreign_table"],
                foreign_column=r["foreign_column"],
                delete_rule=r["delete_rule"] or "NO ACTION",
                constraint_name=r["constraint_name"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Other categories
    # ------------------------------------------------------------------

    async def get_functions(self) -> list[FunctionInfo]:
        """Get user-defined functions (extension-owned functions excluded).

        Note: Uses prokind = 'f' to filter for regular functions (PostgreSQL 11+).
        """
        rows = await self._fetch(
            """
            SELECT
                p.proname AS name,
                pg_get_function_identity_arguments(p.oid) AS arguments,
                pg_get_function_result(p.oid) AS return_type,
                pg_get_functiondef(p.oid) AS definition
            FROM pg_proc p
            JOIN pg_namespace n ON n.oid = p.pronamespace
            WHERE n.nspname = %s
              AND p.prokind = 'f'
              AND NOT EXISTS (
                  SELECT 1 FROM pg_depend d
                  WHERE d.objid = p.oid AND d.deptype = 'e'
              )
            ORDER BY p.proname
            """,
            (self._schema,),
        )
        return [FunctionInfo(**r) for r in rows]

    async def get_policies(self) -> list[PolicyInfo]:
        rows = await self._fetch(
            """
            SELECT tablename, policyname, permissive, roles, cmd, qual, with_check
            FROM pg_policies
            WHERE schemaname = %s
            ORDER BY tablename, policyname
            """,
            (self._schema,),
        )
        return [
            PolicyInfo(
                table=r["tablename"],
                name=r["policyname"],
                permissive=r["permissive"],
                roles=list(r["roles"] or []),
                command=r["cmd"],
                qual=r["qual"],
                with_check=r["with_check"],
            )
            for r in rows
        ]

    async def get_triggers(self) -> list[TriggerInfo]:
        rows = await self._fetch(
            """
            SELECT
                trigger_name,
                event_object_table,
                action_timing,
                string_agg(event_manipulation, ' OR ' ORDER BY event_manipulation) AS event,
                action_statement
            FROM information_schema.triggers
            WHERE trigger_schema = %s
            GROUP BY trigger_name, event_object_table, action_timing, action_statement
            ORDER BY event_object_table, trigger_name
            """,
            (self._schema,),
        )
        return [
            TriggerInfo(
                name=r["trigger_name"],
                table=r["event_object_table"],
                timing=r["action_timing"],
                event=r["event"],
                function_call=r["action_statement"] or "",
            )
            for r in rows
        ]

    async def get_indexes(self) -> list[IndexInfo]:
        """Get indexes (excluding primary key indexes)."""
        rows = await self._fetch(
            """
            SELECT
                i.relname AS name,
                t.relname AS table,
                pg_get_indexdef(ix.indexrelid) AS definition,
                ix.indisunique AS is_unique
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            WHERE n.nspname = %s
              AND NOT ix.indisprimary
            ORDER BY t.relname, i.relname
            """,
            (self._schema,),
        )
        return [IndexInfo(**r) for r in rows if r["table"] not in self.EXCLUDED_TABLES]

    async def get_extensions(self) -> list[ExtensionInfo]:
        rows = await self._fetch(
            "SELECT extname AS name, extversion AS version FROM pg_extension ORDER BY extname"
        )
        return [ExtensionInfo(**r) for r in rows]

    async def get_enums(self) -> list[EnumInfo]:
        rows = await self._fetch(
            """
            SELECT t.typname AS name,
                   array_agg(e.enumlabel ORDER BY e.enumsortorder) AS values
            FROM pg_type t
            JOIN pg_enum e ON e.enumtypid = t.oid
            JOIN pg_namespace n ON n.oid = t.typnamespace
            WHERE n.nspname = %s
            GROUP BY t.typname
            ORDER BY t.typname
            """,
            (self._schema,),
        )
        return [EnumInfo(name=r["name"], values=list(r["values"])) for r in rows]

    async def get_sequences(self) -> list[SequenceInfo]:
        rows = await self._fetch(
            """
            SELECT sequence_name, data_type, start_value, increment,
                   minimum_value, maximum_value
            FROM information_schema.sequences
            WHERE sequence_schema = %s
            ORDER BY sequence_name
            """,
            (self._schema,),
        )
        return [
            SequenceInfo(
                name=r["sequence_name"],
                data_type=r["data_type"],
                start_value=str(r["start_value"]),
                increment=str(r["increment"]),
                min_value=str(r["minimum_value"]),
                max_value=str(r["maximum_value"]),
            )
            for r in rows
        ]

    async def get_table_data(self, table_name: str) -> list[dict[str, Any]]:
        """Return every row of ``table_name`` as JSON-compatible dicts."""
        query = sql.SQL("SELECT * FROM {}.{}").format(
            sql.Identifier(self._schema), sql.Identifier(table_name)
        )
        rows = await self._fetch(query)
        return [
            {k: _jsonable(v) for k, v in row.items()}
            for row in rows
        ]


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
