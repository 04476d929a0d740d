"""SQL migration analysis: statement splitting, classification, validation.

Pure logic -- no I/O. The splitter understands quoted strings, quoted
identifiers, dollar-quoted bodies and both comment styles, so semicolons
inside a function body or a string literal never end a statement.

Usage:
    parsed = parse_sql(open("migration.sql").read())
    report = validate_sql(parsed)
    if not report.is_valid:
        print("\\n".join(report.errors))
"""

import hashlib
import re

from schema_guard.safety.models import (
    ClassifiedOperations,
    DangerLevel,
    ParsedSQL,
    SQLStatement,
    StatementType,
    ValidationReport,
)

# Patterns that are never allowed to run
CRITICAL_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"DROP\s+DATABASE", re.I), "DROP DATABASE is not allowed"),
    (re.compile(r"(ALTER|CREATE)\s+DATABASE", re.I), "Database-level changes are not allowed"),
    (
        re.compile(r"DROP\s+SCHEMA\s+(IF\s+EXISTS\s+)?(auth|storage|realtime|supabase_functions|vault)\b", re.I),
        "Dropping Supabase system schemas is not allowed",
    ),
    (
        re.compile(r"ALTER\s+TABLE\s+(IF\s+EXISTS\s+)?(ONLY\s+)?(auth|storage|realtime)\.", re.I),
        "Altering tables in Supabase system schemas is not allowed",
    ),
    (
        re.compile(r"DROP\s+TABLE\s+(IF\s+EXISTS\s+)?(auth|storage|realtime)\.", re.I),
        "Dropping tables in Supabase system schemas is not allowed",
    ),
    (
        re.compile(
            r"DROP\s+ROLE\s+(IF\s+EXISTS\s+)?"
            r"(postgres|supabase_admin|authenticator|service_role|anon|authenticated)\b",
            re.I,
        ),
        "Dropping Supabase roles is not allowed",
    ),
]

# Destructive but permitted patterns
WARNING_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"DROP\s+TABLE", re.I), "DROP TABLE permanently removes the table"),
    (re.compile(r"TRUNCATE", re.I), "TRUNCATE removes every row"),
    (re.compile(r"DELETE\s+FROM(?![\s\S]*\bWHERE\b)", re.I), "DELETE without WHERE removes every row"),
    (re.compile(r"DROP\s+COLUMN", re.I), "DROP COLUMN loses the column's data"),
]

_NAME = r"(?:\"?(\w+)\"?\.)?\"?(\w+)\"?"

# Checked in order; first match wins
_STATEMENT_TYPES: list[tuple[StatementType, re.Pattern]] = [
    ("CREATE_TABLE", re.compile(
        r"^CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?TABLE\s+"
        r"(?:IF\s+NOT\s+EXISTS\s+)?" + _NAME, re.I)),
    ("ALTER_TABLE", re.compile(
        r"^ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?" + _NAME, re.I)),
    ("DROP_TABLE", re.compile(r"^DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?" + _NAME, re.I)),
    ("CREATE_FUNCTION", re.compile(
        r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\s+" + _NAME, re.I)),
    ("DROP_FUNCTION", re.compile(
        r"^DROP\s+(?:FUNCTION|PROCEDURE)\s+(?:IF\s+EXISTS\s+)?" + _NAME, re.I)),
    ("CREATE_TRIGGER", re.compile(
        r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:CONSTRAINT\s+)?TRIGGER\s+\w+[\s\S]*?\bON\s+" + _NAME, re.I)),
    ("DROP_TRIGGER", re.compile(
        r"^DROP\s+TRIGGER\s+(?:IF\s+EXISTS\s+)?\w+\s+ON\s+" + _NAME, re.I)),
    ("CREATE_INDEX", re.compile(
        r"^CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
        r"(?:\w+\s+)?ON\s+(?:ONLY\s+)?" + _NAME, re.I)),
    ("DROP_INDEX", re.compile(r"^DROP\s+INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+EXISTS\s+)?" + _NAME, re.I)),
    ("CREATE_POLICY", re.compile(r"^CREATE\s+POLICY\s+(?:\"[^\"]+\"|\w+)\s+ON\s+" + _NAME, re.I)),
    ("DROP_POLICY", re.compile(
        r"^DROP\s+POLICY\s+(?:IF\s+EXISTS\s+)?(?:\"[^\"]+\"|\w+)\s+ON\s+" + _NAME, re.I)),
    ("INSERT", re.compile(r"^INSERT\s+INTO\s+" + _NAME, re.I)),
    ("UPDATE", re.compile(r"^UPDATE\s+(?:ONLY\s+)?" + _NAME, re.I)),
    ("DELETE", re.compile(r"^DELETE\s+FROM\s+(?:ONLY\s+)?" + _NAME, re.I)),
    ("TRUNCATE", re.compile(r"^TRUNCATE\s+(?:TABLE\s+)?(?:ONLY\s+)?" + _NAME, re.I)),
]

# Functions and indexes are not table-scoped for reporting
_NAME_IS_TABLE = {
    "CREATE_TABLE", "ALTER_TABLE", "DROP_TABLE", "CREATE_TRIGGER", "DROP_TRIGGER",
    "CREATE_INDEX", "CREATE_POLICY", "DROP_POLICY", "INSERT", "UPDATE", "DELETE", "TRUNCATE",
}

_DOLLAR_TAG = re.compile(r"\$[A-Za-z_]\w*\$|\$\$")


def split_statements(sql: str) -> list[tuple[str, int]]:
    """Split a script into ``(statement, start_line)`` pairs.

    Comments are removed. ``start_line`` is 1-based. A trailing statement
    without a semicolon is kept.

    Examples:
        >>> split_statements("CREATE TABLE a (id int);\\n-- note\\nDROP TABLE b;")
        [('CREATE TABLE a (id int);', 1), ('DROP TABLE b;', 3)]
        >>> len(split_statements("CREATE FUNCTION f() RETURNS int AS $$ SELECT 1; $$ LANGUAGE sql;"))
        1
    """
    statements: list[tuple[str, int]] = []
    buf: list[str] = []
    line = 1
    start_line: int | None = None
    i = 0
    n = len(sql)

    def flush() -> None:
        nonlocal start_line
        text = "".join(buf).strip()
        if text and text != ";":
            statements.append((text, start_line or line))
        buf.clear()
        start_line = None

    while i < n:
        ch = sql[i]

        # Line comment
        if ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end
            continue

        # Block comment (nesting allowed, as in Postgres)
        if ch == "/" and sql.startswith("/*", i):
            depth = 0
            while i < n:
                if sql.startswith("/*", i):
                    depth += 1
                    i += 2
                elif sql.startswith("*/", i):
                    depth -= 1
                    i += 2
                    if depth == 0:
                        break
                else:
                    if sql[i] == "\n":
                        line += 1
                    i += 1
            buf.append(" ")
            continue

        if start_line is None and not ch.isspace():
            start_line = line

        # Quoted string or identifier
        if ch in ("'", '"'):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            chunk = sql[i:j + 1]
            buf.append(chunk)
            line += chunk.count("\n")
            i = j + 1
            continue

        # Dollar-quoted body
        if ch == "$":
            m = _DOLLAR_TAG.match(sql, i)
            if m:
                tag = m.group(0)
                end = sql.find(tag, m.end())
                end = n if end == -1 else end + len(tag)
                chunk = sql[i:end]
                buf.append(chunk)
                line += chunk.count("\n")
                i = end
                continue

        if ch == "\n":
            line += 1

        buf.append(ch)
        i += 1

        if ch == ";":
            flush()

    flush()
    return statements


def analyze_statement(content: str, line_number: int = 0) -> SQLStatement:
    """Classify one statement and assign its danger level.

    Examples:
        >>> analyze_statement("DROP TABLE IF EXISTS public.pedidos;").danger_level
        'warning'
        >>> analyze_statement("TRUNCATE pedidos;").danger_level
        'critical'
        >>> analyze_statement("CREATE TABLE public.x (id int);").schema_name
        'public'
    """
    body = content.strip()
    stmt_type: StatementType = "UNKNOWN"
    schema_name = table_name = None

    for candidate, pattern in _STATEMENT_TYPES:
        m = pattern.match(body)
        if m:
            stmt_type = candidate
            schema_name, name = m.group(1), m.group(2)
            if candidate in _NAME_IS_TABLE:
                table_name = name
            break

    danger: DangerLevel = "safe"
    if stmt_type.startswith("DROP_") or stmt_type in ("UPDATE", "DELETE"):
        danger = "warning"
    elif stmt_type == "ALTER_TABLE" and re.search(r"DROP\s+COLUMN", body, re.I):
        danger = "warning"
    elif stmt_type == "TRUNCATE":
        danger = "critical"

    if any(p.search(body) for p, _ in CRITICAL_PATTERNS):
        danger = "critical"

    return SQLStatement(
        type=stmt_type,
        content=body,
        table_name=table_name,
        schema_name=schema_name,
        line_number=line_number,
        danger_level=danger,
    )


def parse_sql(sql: str) -> ParsedSQL:
    """Split and classify a migration script."""
    return ParsedSQL(
        statements=[analyze_statement(text, ln) for text, ln in split_statements(sql)],
        total_lines=len(sql.split("\n")),
        has_comments="--" in sql or "/*" in sql,
    )


def classify_operations(statements: list[SQLStatement]) -> ClassifiedOperations:
    ops = ClassifiedOperations()
    for stmt in statements:
        {"safe": ops.safe, "warning": ops.warnings, "critical": ops.critical}[
            stmt.danger_level
        ].append(stmt)

        if "CREATE" in stmt.type:
            ops.creates.append(stmt)
        if "ALTER" in stmt.type:
            ops.alters.append(stmt)
        if "DROP" in stmt.type:
            ops.drops.append(stmt)
        if "FUNCTION" in stmt.type:
            ops.functions.append(stmt)
        if "TRIGGER" in stmt.type:
            ops.triggers.append(stmt)
        if "INDEX" in stmt.type:
            ops.indexes.append(stmt)
        if stmt.type in ("INSERT", "UPDATE", "DELETE", "TRUNCATE"):
            ops.data_modifications.append(stmt)
    return ops


def validate_sql(parsed: ParsedSQL | list[SQLStatement]) -> ValidationReport:
    """Check statements against the forbidden and destructive patterns.

    Examples:
        >>> validate_sql(parse_sql("DROP DATABASE postgres;")).is_valid
        False
        >>> report = validate_sql(parse_sql("DELETE FROM pedidos;"))
        >>> report.is_valid, report.danger_level
        (True, 'medium')
    """
    statements = parsed.statements if isinstance(parsed, ParsedSQL) else parsed
    errors: list[str] = []
    warnings: list[str] = []

    for stmt in statements:
        for pattern, message in CRITICAL_PATTERNS:
            if pattern.search(stmt.content):
                errors.append(f"{message} (line {stmt.line_number})")
        for pattern, message in WARNING_PATTERNS:
            if pattern.search(stmt.content):
                warnings.append(f"{message} (line {stmt.line_number})")

    ops = classify_operations(statements)
    affected: list[str] = []
    for stmt in statements:
        if stmt.table_name and stmt.table_name not in affected:
            affected.append(stmt.table_name)

    if ops.critical:
        danger = "high"
    elif ops.warnings:
        danger = "medium"
    else:
        danger = "safe"

    return ValidationReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        operations=ops,
        danger_level=danger,
        total_operations=len(statements),
        destructive_operations=len(ops.drops) + len(ops.data_modifications),
        affected_tables=affected,
    )


def statement_fingerprint(statements: list[SQLStatement]) -> str:
    """Identify a statement set independently of whitespace and line numbers.

    Dry runs record this value; execution requires a passed dry run with
    the same fingerprint.
    """
    normalized = "\n".join(
        " ".join(stmt.content.split()).rstrip(";").strip() for stmt in statements
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
