"""CLI for schema version tracking, drift detection, and guarded migrations.

Usage:
    DB_PROFILE=local schema-guard connect
    schema-guard init
    schema-guard versions create 1.0.0 "Initial baseline"
    schema-guard drift
    schema-guard analyze migrations/002_pedidos.sql
    schema-guard backup --notes "before pedidos"
    schema-guard dry-run migrations/002_pedidos.sql --name add-pedidos
    schema-guard migrate migrations/002_pedidos.sql --name add-pedidos --backup-id <id>
    schema-guard serve --port 8000

Commands:
    profiles       - List available profiles
    connect        - Check connectivity and lock the active profile
    status         - Show active profile and current schema version
    init           - Create the tracking tables
    versions       - list | current | create | compare | check
    drift          - Detect drift against the current version
    drift-logs     - List drift logs
    resolve-drift  - Mark a drift log resolved
    diff           - Diff two versions or two snapshot files
    analyze        - Classify a migration script (no database needed)
    dry-run        - Run a migration in a throwaway schema
    migrate        - Execute a migration behind the safety gate
    rollback       - Roll back a failed migration
    history        - Show migration history
    backup         - Create a pre-migration backup
    backups        - List, verify, or find expired backups
    safety         - show | set the migration safety policy
    serve          - Run the HTTP functions
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from importlib.resources import files
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from schema_guard.config.loader import load_db_config
from schema_guard.errors import SchemaGuardError
from schema_guard.factory import (
    ProfileNotFoundError,
    Services,
    build_services,
    connect,
    get_active_profile_name,
    read_profile_lock,
)
from schema_guard.safety.analyzer import parse_sql, split_statements, validate_sql
from schema_guard.safety.models import MigrationRequest
from schema_guard.safety.rollback import generate_rollback
from schema_guard.schema.comparator import compare_snapshots, summarize
from schema_guard.schema.suggest import render_migration_sql

console = Console()

_SEVERITY_STYLE = {"low": "green", "medium": "yellow", "high": "red", "critical": "bold red"}
_DANGER_STYLE = {"safe": "green", "warning": "yellow", "critical": "bold red"}


# ============================================================================
# Helpers
# ============================================================================


def _load_services(args: argparse.Namespace) -> Services | None:
    try:
        return build_services(profile_name=args.profile, env_prefix=args.env_prefix)
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _read_sql(path: str) -> str | None:
    sql_path = Path(path)
    if not sql_path.exists():
        console.print(f"[red]Error: SQL file not found: {sql_path}[/red]")
        return None
    return sql_path.read_text(encoding="utf-8")


def _operator() -> str:
    try:
        return getpass.getuser()
    except OSError:
        return "cli"


def _print_differences(differences) -> None:
    table = Table(title="Differences", show_header=True, header_style="bold")
    table.add_column("Category", style="dim")
    table.add_column("Added", style="green")
    table.add_column("Removed", style="red")
    table.add_column("Modified", style="yellow")
    for name, diff in differences.items():
        if diff.is_empty:
            continue
        keys = diff.keys()
        table.add_row(
            name,
            ", ".join(keys["added"]),
            ", ".join(keys["removed"]),
            ", ".join(keys["modified"]),
        )
    console.print(table)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    previous_profile = read_profile_lock()
    console.print("Connecting to database...", style="dim")

    result = await connect(profile_name=args.profile, env_prefix=args.env_prefix)
    if not result.success:
        console.print(f"\n[bold red]x[/bold red] {result.error}")
        return 1

    console.print(
        f"\n[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{result.profile_name}[/bold cyan] ({result.table_count} tables)"
    )
    if result.missing_tracking_tables:
        console.print(
            f"  Missing tracking tables: [yellow]"
            f"{', '.join(result.missing_tracking_tables)}[/yellow]"
        )
        console.print("  [dim]Run[/dim] [cyan]schema-guard init[/cyan]")
    if previous_profile and previous_profile != result.profile_name:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
        )
    return 0


async def _async_status(args: argparse.Namespace) -> int:
    try:
        profile = get_active_profile_name(args.env_prefix)
    except ProfileNotFoundError:
        console.print("[yellow]No validated profile.[/yellow]")
        console.print("[dim]Run[/dim] [cyan]schema-guard connect[/cyan] [dim]first.[/dim]")
        return 1

    console.print(f"Profile: [bold cyan]{profile}[/bold cyan]")
    services = _load_services(args)
    if services is None:
        return 1
    try:
        current = await services.versions.get_current()
    finally:
        await services.close()

    if current is None:
        console.print("Schema version: [yellow]none registered[/yellow]")
    else:
        console.print(
            f"Schema version: [bold]{current.version}[/bold] "
            f"[dim]({current.checksum[:12]}, applied {current.applied_at})[/dim]"
        )
    return 0


async def _async_init(args: argparse.Namespace) -> int:
    """Create the tracking tables from the packaged DDL."""
    services = _load_services(args)
    if services is None:
        return 1

    ddl = files("schema_guard.tracking").joinpath("tables.sql").read_text(encoding="utf-8")
    statements = split_statements(ddl)
    try:
        async with services.sql_client.transaction() as tx:
            for sql, _line in statements:
                await tx.execute(sql)
    finally:
        await services.close()

    console.print(
        f"[bold green]v[/bold green] Tracking tables ready "
        f"[dim]({len(statements)} statements)[/dim]"
    )
    return 0


async def _async_versions(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    versions = services.versions

    try:
        if args.versions_command == "list":
            rows = await versions.list_versions()
            table = Table(title="Schema Versions", show_header=True, header_style="bold")
            table.add_column("Version")
            table.add_column("Description")
            table.add_column("Checksum", style="dim")
            table.add_column("Applied")
            table.add_column("Current", justify="center")
            for v in rows:
                table.add_row(
                    v.version,
                    v.description,
                    v.checksum[:12],
                    v.applied_at or "",
                    "[green]*[/green]" if v.is_current else "",
                )
            console.print(table)

        elif args.versions_command == "current":
            current = await versions.get_current()
            if current is None:
                console.print("[yellow]No schema version registered.[/yellow]")
                return 1
            console.print_json(json.dumps(current.to_api(exclude={"schema_snapshot"})))

        elif args.versions_command == "create":
            created = await versions.create_version(
                args.version, args.description, applied_by=_operator()
            )
            console.print(
                f"[bold green]v[/bold green] Registered version "
                f"[bold]{created.version}[/bold] [dim]({created.checksum[:12]})[/dim]"
            )

        elif args.versions_command == "compare":
            comparison = await versions.compare_versions(args.version, args.target_version)
            console.print_json(json.dumps(comparison.differences))

        elif args.versions_command == "check":
            check = await versions.check_update()
            style = "yellow" if check.update_available else "green"
            console.print(f"[{style}]{check.message}[/{style}]")
            console.print(f"  Current: {check.current_version or '-'} {check.current_checksum or ''}")
            console.print(f"  Live:    {check.real_checksum}")
            return 2 if check.update_available else 0
    finally:
        await services.close()

    return 0


async def _async_drift(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        result = await services.drift.detect_drift()
    finally:
        await services.close()

    if result.warning:
        console.print(f"[yellow]{result.warning}[/yellow]")
        return 0
    if not result.has_drift:
        console.print(f"[bold green]v[/bold green] {result.message} [dim](version {result.version})[/dim]")
        return 0

    style = _SEVERITY_STYLE.get(result.severity or "low", "yellow")
    console.print(
        f"[bold red]x[/bold red] Drift detected against version "
        f"[bold]{result.expected_version}[/bold]: severity [{style}]{result.severity}[/{style}]"
    )
    console.print(f"  Drift log: {result.drift_log_id}")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Category", style="dim")
    table.add_column("Added", style="green")
    table.add_column("Removed", style="red")
    table.add_column("Modified", style="yellow")
    for category, keys in (result.differences or {}).items():
        if any(keys.values()):
            table.add_row(
                category,
                ", ".join(keys["added"]),
                ", ".join(keys["removed"]),
                ", ".join(keys["modified"]),
            )
    console.print(table)
    return 2


async def _async_drift_logs(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        logs = await services.drift.list_drift_logs(
            unresolved_only=args.unresolved, limit=args.limit
        )
    finally:
        await services.close()

    table = Table(title="Drift Logs", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Detected")
    table.add_column("Version")
    table.add_column("Severity")
    table.add_column("Resolved", justify="center")
    for log in logs:
        style = _SEVERITY_STYLE.get(log.severity, "")
        table.add_row(
            log.id or "",
            log.detected_at or "",
            log.expected_version,
            f"[{style}]{log.severity}[/{style}]",
            "v" if log.resolved else "",
        )
    console.print(table)
    return 0


async def _async_resolve_drift(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        log = await services.drift.resolve_drift(
            args.drift_log_id, resolved_by=_operator(), notes=args.notes
        )
    finally:
        await services.close()
    console.print(f"[bold green]v[/bold green] Drift log {log.id} resolved")
    return 0


async def _async_diff(args: argparse.Namespace) -> int:
    """Diff two versions (by name) or two snapshot JSON files."""
    if args.snapshot1 and args.snapshot2:
        snap1 = json.loads(Path(args.snapshot1).read_text(encoding="utf-8"))
        snap2 = json.loads(Path(args.snapshot2).read_text(encoding="utf-8"))
    elif args.version1 and args.version2:
        services = _load_services(args)
        if services is None:
            return 1
        try:
            v1 = await services.versions.get_version(args.version1)
            v2 = await services.versions.get_version(args.version2)
        finally:
            await services.close()
        if v1 is None or v2 is None:
            console.print("[red]Error: Schema snapshots not found[/red]")
            return 1
        snap1, snap2 = v1.schema_snapshot, v2.schema_snapshot
    else:
        console.print("[red]Error: give two versions or --snapshot1/--snapshot2[/red]")
        return 1

    differences = compare_snapshots(snap1, snap2)
    summary = summarize(differences)
    if differences.is_empty:
        console.print("[bold green]v[/bold green] No differences")
        return 0

    _print_differences(differences)
    style = _SEVERITY_STYLE.get(summary.severity, "")
    console.print(
        f"Total changes: [bold]{summary.total_changes}[/bold], "
        f"severity [{style}]{summary.severity}[/{style}]"
    )
    if args.sql:
        console.print()
        console.print(str(render_migration_sql(differences)), markup=False, highlight=False)
    return 0


async def _async_analyze(args: argparse.Namespace) -> int:
    sql = _read_sql(args.file)
    if sql is None:
        return 1

    parsed = parse_sql(sql)
    report = validate_sql(parsed)

    table = Table(title=Path(args.file).name, show_header=True, header_style="bold")
    table.add_column("Line", justify="right", style="dim")
    table.add_column("Type")
    table.add_column("Table")
    table.add_column("Danger")
    for stmt in parsed.statements:
        style = _DANGER_STYLE[stmt.danger_level]
        table.add_row(
            str(stmt.line_number),
            stmt.type,
            stmt.table_name or "",
            f"[{style}]{stmt.danger_level}[/{style}]",
        )
    console.print(table)

    console.print(
        f"{report.total_operations} operations, "
        f"{report.destructive_operations} destructive, "
        f"danger level [bold]{report.danger_level}[/bold]"
    )
    for warning in report.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    for error in report.errors:
        console.print(f"  [bold red]x {error}[/bold red]")

    if args.rollback:
        plan = generate_rollback(parsed.statements)
        console.print("\n[bold]Rollback plan:[/bold]")
        console.print(plan.sql or "-- (nothing to roll back)", markup=False, highlight=False)
        for step in plan.steps:
            if not step.can_rollback:
                console.print(f"  [yellow]! line {step.statement.line_number}: {step.notes}[/yellow]")

    return 0 if report.is_valid else 1


async def _async_dry_run(args: argparse.Namespace) -> int:
    sql = _read_sql(args.file)
    if sql is None:
        return 1
    services = _load_services(args)
    if services is None:
        return 1

    try:
        result = await services.gate.dry_run(
            parse_sql(sql).statements, args.name, executed_by=_operator()
        )
    finally:
        await services.close()

    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")
    for error in result.errors:
        console.print(f"[red]x #{error.statement_number}: {error.error}[/red]")
        console.print(f"  [dim]{error.statement}[/dim]", markup=False)

    if result.passed:
        console.print(
            f"[bold green]v[/bold green] Dry run passed: {result.statements_executed} "
            f"statements in {result.duration} ms"
        )
        return 0
    console.print(
        f"[bold red]x[/bold red] Dry run failed: {result.statements_failed} of "
        f"{result.statements_executed + result.statements_failed} statements"
    )
    return 1


async def _async_migrate(args: argparse.Namespace) -> int:
    sql = _read_sql(args.file)
    if sql is None:
        return 1
    services = _load_services(args)
    if services is None:
        return 1

    try:
        backup_id = args.backup_id
        if args.backup and not backup_id:
            console.print("Creating pre-migration backup...", style="dim")
            backup = await services.backups.create_pre_migration_backup(
                notes=f"Before {args.name}", created_by=_operator()
            )
            if not backup.success:
                console.print(f"[bold red]x[/bold red] Backup failed: {backup.error}")
                return 1
            backup_id = backup.backup_id
            console.print(f"  Backup: [cyan]{backup_id}[/cyan]")

        request = MigrationRequest(
            migration_name=args.name,
            sql=sql,
            file_name=Path(args.file).name,
            backup_id=backup_id,
            confirm_migration_name=args.confirm_name,
        )
        result = await services.gate.execute(request, executed_by=_operator())
    finally:
        await services.close()

    if result.success:
        console.print(
            f"[bold green]v[/bold green] Migration applied: "
            f"{result.operations_successful}/{result.total_operations} statements "
            f"in {result.duration} ms [dim](history {result.history_id})[/dim]"
        )
        return 0

    console.print(
        f"[bold red]x[/bold red] Migration failed: {result.operations_successful} succeeded, "
        f"{result.operations_failed} failed [dim](history {result.history_id})[/dim]"
    )
    for error in result.errors or []:
        console.print(f"  [red]{error}[/red]", markup=False)
    if result.rolled_back:
        console.print("  [yellow]Transaction rolled back; no changes were applied.[/yellow]")
    return 1


async def _async_rollback(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        result = await services.gate.rollback(args.history_id, executed_by=_operator())
    finally:
        await services.close()
    console.print(f"[bold green]v[/bold green] {result.message}")
    return 0


async def _async_history(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        rows = await services.gate.list_history(limit=args.limit)
    finally:
        await services.close()

    status_style = {"success": "green", "failed": "red", "rolled_back": "yellow", "executing": "cyan"}
    table = Table(title="Migration History", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Executed")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Ops", justify="right")
    table.add_column("By")
    for h in rows:
        style = status_style.get(h.status, "")
        table.add_row(
            h.id or "",
            h.executed_at or "",
            h.migration_name,
            f"[{style}]{h.status}[/{style}]",
            f"{h.operations_successful}/{h.operations_total}",
            h.executed_by or "",
        )
    console.print(table)
    return 0


async def _async_backup(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1
    try:
        result = await services.backups.create_pre_migration_backup(
            migration_id=args.migration_id, notes=args.notes, created_by=_operator()
        )
    finally:
        await services.close()

    if not result.success or result.backup is None:
        console.print(f"[bold red]x[/bold red] Backup failed: {result.error}")
        return 1
    console.print(
        f"[bold green]v[/bold green] Backup [cyan]{result.backup_id}[/cyan] written to "
        f"{result.backup.backup_location} ({result.backup.size_bytes} bytes)"
    )
    return 0


async def _async_backups(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1

    try:
        if args.verify:
            check = await services.backups.verify_backup(args.verify)
            if check.valid:
                console.print(f"[bold green]v[/bold green] Backup {args.verify} is intact")
                return 0
            for error in check.errors:
                console.print(f"[red]x {error}[/red]")
            return 1

        if args.expired:
            config = await services.settings.load()
            backups = await services.backups.expired_backups(config.backup_retention_days)
            title = f"Backups older than {config.backup_retention_days} days"
        else:
            backups = await services.backups.list_backups(limit=args.limit)
            title = "Backups"
    finally:
        await services.close()

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    table.add_column("Location")
    table.add_column("Notes")
    for b in backups:
        table.add_row(b.id or "", b.created_at or "", str(b.size_bytes), b.backup_location, b.notes or "")
    console.print(table)
    return 0


async def _async_safety(args: argparse.Namespace) -> int:
    services = _load_services(args)
    if services is None:
        return 1

    try:
        if args.safety_command == "set":
            changes = {}
            for assignment in args.assignments:
                key, sep, raw = assignment.partition("=")
                if not sep:
                    console.print(f"[red]Error: expected key=value, got {assignment!r}[/red]")
                    return 1
                try:
                    changes[key.strip()] = json.loads(raw)
                except json.JSONDecodeError:
                    changes[key.strip()] = raw
            config = await services.settings.update(**changes)
        else:
            config = await services.settings.load()
    finally:
        await services.close()

    table = Table(title="Migration Safety Policy", show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in config.to_api(exclude={"id", "created_at", "updated_at"}).items():
        table.add_row(key, str(value))
    console.print(table)
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from db.toml, marking the active one."""
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    active = read_profile_lock()
    table = Table(title="Profiles", show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Provider")
    table.add_column("Description")
    for name, profile in config.profiles.items():
        marker = " [green]*[/green]" if name == active else ""
        table.add_row(f"{name}{marker}", profile.provider, profile.description)
    console.print(table)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP functions with uvicorn."""
    import uvicorn

    from schema_guard.server.app import create_app

    services = _load_services(args)
    if services is None:
        return 1
    server = services.config.server
    uvicorn.run(
        create_app(services),
        host=args.host or server.host,
        port=args.port or server.port,
        log_config=None,
    )
    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    return asyncio.run(_async_status(args))


def cmd_init(args: argparse.Namespace) -> int:
    return asyncio.run(_async_init(args))


def cmd_versions(args: argparse.Namespace) -> int:
    return asyncio.run(_async_versions(args))


def cmd_drift(args: argparse.Namespace) -> int:
    return asyncio.run(_async_drift(args))


def cmd_drift_logs(args: argparse.Namespace) -> int:
    return asyncio.run(_async_drift_logs(args))


def cmd_resolve_drift(args: argparse.Namespace) -> int:
    return asyncio.run(_async_resolve_drift(args))


def cmd_diff(args: argparse.Namespace) -> int:
    return asyncio.run(_async_diff(args))


def cmd_analyze(args: argparse.Namespace) -> int:
    return asyncio.run(_async_analyze(args))


def cmd_dry_run(args: argparse.Namespace) -> int:
    return asyncio.run(_async_dry_run(args))


def cmd_migrate(args: argparse.Namespace) -> int:
    return asyncio.run(_async_migrate(args))


def cmd_rollback(args: argparse.Namespace) -> int:
    return asyncio.run(_async_rollback(args))


def cmd_history(args: argparse.Namespace) -> int:
    return asyncio.run(_async_history(args))


def cmd_backup(args: argparse.Namespace) -> int:
    return asyncio.run(_async_backup(args))


def cmd_backups(args: argparse.Namespace) -> int:
    return asyncio.run(_async_backups(args))


def cmd_safety(args: argparse.Namespace) -> int:
    return asyncio.run(_async_safety(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema-guard",
        description="Schema version tracking, drift detection, and guarded migrations",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help="Prefix for environment variable lookup (e.g., APP_ reads APP_DB_PROFILE)",
    )
    parser.add_argument("--profile", "-p", help="Profile name (overrides env var and lock file)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("profiles", help="List available profiles").set_defaults(func=cmd_profiles)
    subparsers.add_parser(
        "connect", help="Check connectivity and lock the active profile"
    ).set_defaults(func=cmd_connect)
    subparsers.add_parser(
        "status", help="Show active profile and current schema version"
    ).set_defaults(func=cmd_status)
    subparsers.add_parser("init", help="Create the tracking tables").set_defaults(func=cmd_init)

    # versions
    p_versions = subparsers.add_parser("versions", help="Manage schema versions")
    versions_sub = p_versions.add_subparsers(dest="versions_command", required=True)
    versions_sub.add_parser("list", help="List versions, newest first")
    versions_sub.add_parser("current", help="Show the current version")
    p_create = versions_sub.add_parser("create", help="Snapshot the live schema as a new version")
    p_create.add_argument("version")
    p_create.add_argument("description")
    p_compare = versions_sub.add_parser("compare", help="Diff two versions")
    p_compare.add_argument("version")
    p_compare.add_argument("target_version")
    versions_sub.add_parser("check", help="Compare the live schema with the current version")
    p_versions.set_defaults(func=cmd_versions)

    # drift
    subparsers.add_parser("drift", help="Detect drift").set_defaults(func=cmd_drift)
    p_logs = subparsers.add_parser("drift-logs", help="List drift logs")
    p_logs.add_argument("--unresolved", action="store_true", help="Only unresolved logs")
    p_logs.add_argument("--limit", type=int, default=50)
    p_logs.set_defaults(func=cmd_drift_logs)
    p_resolve = subparsers.add_parser("resolve-drift", help="Mark a drift log resolved")
    p_resolve.add_argument("drift_log_id")
    p_resolve.add_argument("--notes")
    p_resolve.set_defaults(func=cmd_resolve_drift)

    # diff
    p_diff = subparsers.add_parser("diff", help="Diff two versions or snapshot files")
    p_diff.add_argument("version1", nargs="?")
    p_diff.add_argument("version2", nargs="?")
    p_diff.add_argument("--snapshot1", help="Snapshot JSON file (expected side)")
    p_diff.add_argument("--snapshot2", help="Snapshot JSON file (actual side)")
    p_diff.add_argument("--sql", action="store_true", help="Print advisory migration SQL")
    p_diff.set_defaults(func=cmd_diff)

    # analyze
    p_analyze = subparsers.add_parser("analyze", help="Classify a migration script")
    p_analyze.add_argument("file")
    p_analyze.add_argument("--rollback", action="store_true", help="Show the rollback plan")
    p_analyze.set_defaults(func=cmd_analyze)

    # dry-run / migrate / rollback / history
    p_dry = subparsers.add_parser("dry-run", help="Run a migration in a throwaway schema")
    p_dry.add_argument("file")
    p_dry.add_argument("--name", required=True, help="Migration name")
    p_dry.set_defaults(func=cmd_dry_run)

    p_migrate = subparsers.add_parser("migrate", help="Execute a migration behind the safety gate")
    p_migrate.add_argument("file")
    p_migrate.add_argument("--name", required=True, help="Migration name")
    p_migrate.add_argument("--backup-id", help="Existing backup to attach")
    p_migrate.add_argument("--backup", action="store_true", help="Create a backup first")
    p_migrate.add_argument(
        "--confirm-name", help="Repeat the migration name to confirm destructive statements"
    )
    p_migrate.set_defaults(func=cmd_migrate)

    p_rollback = subparsers.add_parser("rollback", help="Roll back a failed migration")
    p_rollback.add_argument("history_id")
    p_rollback.set_defaults(func=cmd_rollback)

    p_history = subparsers.add_parser("history", help="Show migration history")
    p_history.add_argument("--limit", type=int, default=50)
    p_history.set_defaults(func=cmd_history)

    # backups
    p_backup = subparsers.add_parser("backup", help="Create a pre-migration backup")
    p_backup.add_argument("--notes")
    p_backup.add_argument("--migration-id")
    p_backup.set_defaults(func=cmd_backup)

    p_backups = subparsers.add_parser("backups", help="List backups")
    p_backups.add_argument("--limit", type=int, default=20)
    p_backups.add_argument("--verify", metavar="BACKUP_ID", help="Check a backup file's checksums")
    p_backups.add_argument(
        "--expired", action="store_true", help="List backups past the retention window"
    )
    p_backups.set_defaults(func=cmd_backups)

    # safety
    p_safety = subparsers.add_parser("safety", help="Show or change the safety policy")
    safety_sub = p_safety.add_subparsers(dest="safety_command", required=True)
    safety_sub.add_parser("show", help="Show the policy")
    p_set = safety_sub.add_parser("set", help="Change settings (key=value, JSON values)")
    p_set.add_argument("assignments", nargs="+", metavar="KEY=VALUE")
    p_safety.set_defaults(func=cmd_safety)

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the HTTP functions")
    p_serve.add_argument("--host")
    p_serve.add_argument("--port", type=int)
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 success, 1 error, 2 drift or pending schema update).
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )

    try:
        return args.func(args)
    except SchemaGuardError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
