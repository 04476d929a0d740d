"""Schema export: structured snapshot plus a deterministic SQL rendering.

``SchemaExporter`` is the seam every service depends on; tests substitute
an ``AsyncMock`` with an ``export`` coroutine. ``IntrospectingExporter`` is
the production implementation backed by ``SchemaIntrospector``.
"""

import logging
import re
from typing import Any, Protocol, runtime_checkable

from schema_guard.errors import ExporterError
from schema_guard.schema.introspector import SchemaIntrospector
from schema_guard.schema.models import SchemaExport

logger = logging.getLogger(__name__)


@runtime_checkable
class SchemaExporter(Protocol):
    """Produces a fresh export of the live schema."""

    async def export(self, include_data: bool = False) -> SchemaExport:
        """Return the current structure (and table rows when ``include_data``)."""
        ...


class IntrospectingExporter:
    """Exporter that introspects the live database with psycopg.

    Args:
        database_url: PostgreSQL connection URL (resolved, no placeholders)
        schema_name: Namespace to export (default: public)
    """

    def __init__(self, database_url: str, schema_name: str = "public"):
        self._database_url = database_url
        self._schema = schema_name

    async def export(self, include_data: bool = False) -> SchemaExport:
        try:
            async with SchemaIntrospector(self._database_url, self._schema) as introspector:
                tables = await introspector.get_tables()
                export = SchemaExport(
                    sql="",
                    tables=[t.model_dump() for t in tables],
                    functions=[f.model_dump() for f in await introspector.get_functions()],
                    policies=[p.model_dump() for p in await introspector.get_policies()],
                    triggers=[t.model_dump() for t in await introspector.get_triggers()],
                    indexes=[i.model_dump() for i in await introspector.get_indexes()],
                    extensions=[e.model_dump() for e in await introspector.get_extensions()],
                    enums=[e.model_dump() for e in await introspector.get_enums()],
                    sequences=[s.model_dump() for s in await introspector.get_sequences()],
                )
                if include_data:
                    export.data = {
                        t.name: await introspector.get_table_data(t.name) for t in tables
                    }
        except Exception as e:
            logger.error("Schema export failed: %s", e)
            raise ExporterError(f"Schema export failed: {e}") from e

        export.sql = render_schema_sql(export, self._schema)
        logger.debug(
            "Exported %d tables, %d functions, %d policies",
            len(export.tables), len(export.functions), len(export.policies),
        )
        return export


# ============================================================================
# SQL rendering
# ============================================================================


def quote_literal(value: Any) -> str:
    """Render ``value`` as a single-quoted SQL string literal.

    Examples:
        >>> quote_literal("o'brien")
        "'o''brien'"
    """
    return "'" + str(value).replace("'", "''") + "'"


def _section(title: str) -> str:
    bar = "-- " + "=" * 45
    return f"\n{bar}\n-- {title}\n{bar}\n\n"


def _column_def(col: dict[str, Any], enum_names: set[str], schema: str) -> str:
    type_name = col.get("udt_name") or col.get("type", "text")
    if type_name in enum_names:
        type_name = f"{schema}.{type_name}"
    line = f"  {col['name']} {type_name}"
    if not col.get("nullable", True):
        line += " NOT NULL"
    if col.get("default"):
        line += f" DEFAULT {col['default']}"
    return line


def render_schema_sql(export: SchemaExport, schema_name: str = "public") -> str:
    """Render the structured export as SQL text.

    Output depends only on the structured content (never on
    ``exported_at``), so unchanged schemas render identically.

    Examples:
        >>> e = SchemaExport(sql="", extensions=[{"name": "pgcrypto"}])
        >>> 'CREATE EXTENSION IF NOT EXISTS "pgcrypto";' in render_schema_sql(e)
        True
    """
    s = schema_name
    enum_names = {e["name"] for e in export.enums}
    out = "-- Schema export\n"

    if export.extensions:
        out += _section("EXTENSIONS")
        for ext in export.extensions:
            out += f'CREATE EXTENSION IF NOT EXISTS "{ext["name"]}";\n'

    if export.sequences:
        out += _section("SEQUENCES")
        for seq in export.sequences:
            out += (
                f"CREATE SEQUENCE IF NOT EXISTS {s}.{seq['name']}\n"
                f"  AS {seq.get('data_type', 'bigint')}\n"
                f"  START WITH {seq.get('start_value', '1')}\n"
                f"  INCREMENT BY {seq.get('increment', '1')};\n\n"
            )

    if export.enums:
        out += _section("ENUM TYPES")
        for enum in export.enums:
            values = ", ".join(quote_literal(v) for v in enum.get("values", []))
            out += f"CREATE TYPE {s}.{enum['name']} AS ENUM ({values});\n"

    if export.tables:
        out += _section("TABLES")
        for table in export.tables:
            defs = [_column_def(c, enum_names, s) for c in table.get("columns", [])]
            if table.get("primary_keys"):
                defs.append(f"  PRIMARY KEY ({', '.join(table['primary_keys'])})")
            out += f"CREATE TABLE IF NOT EXISTS {s}.{table['name']} (\n"
            out += ",\n".join(defs)
            out += "\n);\n\n"

        fk_lines = []
        for table in export.tables:
            for fk in table.get("foreign_keys", []):
                name = fk.get("constraint_name") or f"fk_{table['name']}_{fk['column']}"
                line = (
                    f"ALTER TABLE {s}.{table['name']} ADD CONSTRAINT {name}\n"
                    f"  FOREIGN KEY ({fk['column']}) "
                    f"REFERENCES {s}.{fk['foreign_table']}({fk['foreign_column']})"
                )
                if fk.get("delete_rule") and fk["delete_rule"] != "NO ACTION":
                    line += f" ON DELETE {fk['delete_rule']}"
                fk_lines.append(line + ";\n")
        if fk_lines:
            out += _section("FOREIGN KEYS")
            out += "\n".join(fk_lines)

    if export.functions:
        out += _section("FUNCTIONS")
        for func in export.functions:
            definition = re.sub(
                r"CREATE\s+FUNCTION\s+",
                "CREATE OR REPLACE FUNCTION ",
                func.get("definition", ""),
                flags=re.IGNORECASE,
            ).rstrip().rstrip(";")
            out += f"{definition};\n\n"

    if export.triggers:
        out += _section("TRIGGERS")
        for trig in export.triggers:
            out += (
                f"DROP TRIGGER IF EXISTS {trig['name']} ON {s}.{trig['table']};\n"
                f"CREATE TRIGGER {trig['name']}\n"
                f"{trig['timing']} {trig['event']} ON {s}.{trig['table']}\n"
                f"FOR EACH ROW\n"
                f"{trig.get('function_call', '')};\n\n"
            )

    if export.indexes:
        out += _section("INDEXES")
        for idx in export.indexes:
            definition = re.sub(
                r"CREATE\s+(UNIQUE\s+)?INDEX\s+",
                lambda m: m.group(0).strip() + " IF NOT EXISTS ",
                idx["definition"],
                count=1,
                flags=re.IGNORECASE,
            )
            out += f"{definition};\n"

    if export.policies:
        out += _section("ROW LEVEL SECURITY")
        for table in sorted({p["table"] for p in export.policies}):
            out += f"ALTER TABLE {s}.{table} ENABLE ROW LEVEL SECURITY;\n"
        out += "\n"
        for pol in export.policies:
            stmt = (
                f'CREATE POLICY "{pol["name"]}" ON {s}.{pol["table"]}\n'
                f"  AS {pol.get('permissive', 'PERMISSIVE')}\n"
                f"  FOR {pol.get('command', 'ALL')}\n"
                f"  TO {', '.join(pol.get('roles') or ['public'])}"
            )
            if pol.get("qual"):
                stmt += f"\n  USING ({pol['qual']})"
            if pol.get("with_check"):
                stmt += f"\n  WITH CHECK ({pol['with_check']})"
            out += stmt + ";\n\n"

    return out
