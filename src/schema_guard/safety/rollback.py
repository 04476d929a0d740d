"""Rollback SQL generation for migration batches.

Only additive DDL can be inverted without a backup: CREATE TABLE, ADD
COLUMN, CREATE INDEX, CREATE FUNCTION and CREATE POLICY. Everything else
yields a commented step and marks the plan as not fully rollback-able.
"""

import re

from schema_guard.safety.models import RollbackPlan, RollbackStep, SQLStatement

_IDENT = r"[A-Za-z_][A-Za-z0-9_.]*"

_TABLE_AFTER = {
    "CREATE_TABLE": re.compile(
        r"CREATE\s+(?:\w+\s+)*?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(" + _IDENT + ")", re.I
    ),
    "ALTER_TABLE": re.compile(
        r"ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?(" + _IDENT + ")", re.I
    ),
}
_ADD_COLUMN = re.compile(r"ADD\s+COLUMN\s+(?:IF\s+NOT\s+EXISTS\s+)?([A-Za-z_][A-Za-z0-9_]*)", re.I)
_INDEX_NAME = re.compile(
    r"CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
    r"(?!ON\b)([A-Za-z_][A-Za-z0-9_]*)",
    re.I,
)
_FUNCTION_SIGNATURE = re.compile(
    r"CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+(" + _IDENT + r")\s*\(([^)]*)\)", re.I
)
_POLICY = re.compile(
    r"CREATE\s+POLICY\s+(\"[^\"]+\"|[A-Za-z_][A-Za-z0-9_]*)\s+ON\s+(" + _IDENT + ")", re.I
)

# Fixed notes for statements that cannot be inverted
_NOT_INVERTIBLE = {
    "DROP_TABLE": "DROP TABLE cannot be rolled back without backup",
    "DROP_INDEX": "Index recreation requires original CREATE INDEX statement",
    "INSERT": "INSERT rollback requires ID tracking",
    "UPDATE": "UPDATE rollback requires capturing original values",
    "DELETE": "DELETE cannot be rolled back without backup",
    "TRUNCATE": "TRUNCATE cannot be rolled back without backup",
}


def _function_arg_types(args: str) -> str:
    """Reduce a parameter list to the types ``DROP FUNCTION`` needs.

    Examples:
        >>> _function_arg_types("p_id uuid, p_total numeric DEFAULT 0")
        'uuid, numeric'
        >>> _function_arg_types("")
        ''
    """
    types = []
    for arg in filter(None, (a.strip() for a in args.split(","))):
        arg = re.split(r"\s+(?:DEFAULT\b|=)", arg, maxsplit=1, flags=re.I)[0]
        parts = arg.split()
        if parts and parts[0].upper() in ("IN", "OUT", "INOUT", "VARIADIC"):
            parts = parts[1:]
        # "name type" -> type; a lone word is already a type
        types.append(" ".join(parts[1:]) if len(parts) > 1 else " ".join(parts))
    return ", ".join(types)


def _invert(stmt: SQLStatement) -> RollbackStep:
    content = stmt.content.strip()

    if stmt.type == "CREATE_TABLE":
        m = _TABLE_AFTER["CREATE_TABLE"].search(content)
        if m:
            return RollbackStep(
                statement=stmt,
                rollback_sql=f"DROP TABLE IF EXISTS {m.group(1)} CASCADE;",
                can_rollback=True,
            )

    if stmt.type == "ALTER_TABLE":
        table = _TABLE_AFTER["ALTER_TABLE"].search(content)
        column = _ADD_COLUMN.search(content)
        if table and column:
            return RollbackStep(
                statement=stmt,
                rollback_sql=(
                    f"ALTER TABLE {table.group(1)} DROP COLUMN IF EXISTS {column.group(1)};"
                ),
                can_rollback=True,
            )
        if re.search(r"DROP\s+COLUMN", content, re.I):
            return RollbackStep(
                statement=stmt,
                rollback_sql="-- Cannot rollback DROP COLUMN without backup",
                can_rollback=False,
                notes="DROP COLUMN cannot be rolled back without backup",
            )

    if stmt.type == "CREATE_INDEX":
        m = _INDEX_NAME.search(content)
        if m:
            return RollbackStep(
                statement=stmt,
                rollback_sql=f"DROP INDEX IF EXISTS {m.group(1)};",
                can_rollback=True,
            )

    if stmt.type == "CREATE_FUNCTION":
        m = _FUNCTION_SIGNATURE.search(content)
        if m:
            return RollbackStep(
                statement=stmt,
                rollback_sql=(
                    f"DROP FUNCTION IF EXISTS {m.group(1)}({_function_arg_types(m.group(2))}) CASCADE;"
                ),
                can_rollback=True,
            )

    if stmt.type == "CREATE_POLICY":
        m = _POLICY.search(content)
        if m:
            return RollbackStep(
                statement=stmt,
                rollback_sql=f"DROP POLICY IF EXISTS {m.group(1)} ON {m.group(2)};",
                can_rollback=True,
            )

    if stmt.type in _NOT_INVERTIBLE:
        note = _NOT_INVERTIBLE[stmt.type]
        label = stmt.type.replace("_", " ")
        return RollbackStep(
            statement=stmt,
            rollback_sql=f"-- Cannot rollback {label}: {stmt.table_name or 'unknown'}",
            can_rollback=False,
            notes=note,
        )

    return RollbackStep(
        statement=stmt,
        rollback_sql=f"-- Cannot generate automatic rollback for {stmt.type}",
        can_rollback=False,
        notes=f"Automatic rollback not supported for {stmt.type}",
    )


def generate_rollback(statements: list[SQLStatement]) -> RollbackPlan:
    """Build the inverse of ``statements``.

    The rollback SQL lists invertible steps in reverse execution order,
    separated by blank lines; ``steps`` keeps the original order for
    display.

    Examples:
        >>> from schema_guard.safety.analyzer import parse_sql
        >>> plan = generate_rollback(parse_sql(
        ...     "CREATE TABLE pedidos (id int);\\n"
        ...     "ALTER TABLE pedidos ADD COLUMN total numeric;"
        ... ).statements)
        >>> print(plan.sql)
        ALTER TABLE pedidos DROP COLUMN IF EXISTS total;
        <BLANKLINE>
        DROP TABLE IF EXISTS pedidos CASCADE;
        >>> plan.can_rollback
        True
    """
    steps = [_invert(stmt) for stmt in statements]
    sql = "\n\n".join(s.rollback_sql for s in reversed(steps) if s.can_rollback)
    return RollbackPlan(
        sql=sql,
        can_rollback=all(s.can_rollback for s in steps),
        steps=steps,
    )
