"""Migration safety gate: dry runs, guarded execution, explicit rollback.

State machine for a migration history row::

    executing -> success
    executing -> failed -> rolled_back   (explicit rollback() only)

Every policy check happens before the history row exists; a violation
raises ``PolicyViolationError`` and leaves no trace.

Statement failures are not exceptions: they are counted, recorded on the
history row and returned in ``ExecutionResult``. With
``auto_rollback_on_error`` (the default) the first failure stops the batch
and rolls the whole transaction back; without it each statement runs in its
own savepoint, failures are collected, and successful statements commit.

Usage:
    gate = MigrationGate(adapter, settings, backups)
    dry = await gate.dry_run(parse_sql(sql).statements, "add-pedidos")
    if dry.passed:
        result = await gate.execute(
            MigrationRequest(migration_name="add-pedidos", sql=sql, backup_id=backup_id),
            executed_by="admin@example.com",
        )
"""

import logging
import re
import secrets
import time
from datetime import datetime, timezone

from schema_guard.adapters.base import DatabaseClient
from schema_guard.backup.manager import BackupManager
from schema_guard.errors import (
    InvalidRequestError,
    PolicyViolationError,
    RecordNotFoundError,
)
from schema_guard.models import is_uuid
from schema_guard.safety.analyzer import (
    analyze_statement,
    parse_sql,
    statement_fingerprint,
    validate_sql,
)
from schema_guard.safety.models import (
    DRY_RUNS_TABLE,
    MIGRATION_HISTORY_TABLE,
    DryRunError,
    DryRunResult,
    ExecutionResult,
    MigrationHistory,
    MigrationRequest,
    RollbackResult,
    SQLStatement,
)
from schema_guard.safety.rollback import generate_rollback
from schema_guard.safety.settings import SafetySettingsStore
from schema_guard.schema.suggest import AdvisorySQL
from schema_guard.tracking.versions import VersionManager

logger = logging.getLogger(__name__)

ADVISORY_HEADER = "-- Generated Migration SQL"
EXECUTION_METHOD = "option2"

# Objects a statement creates in public; the dry run builds them in the test
# schema instead, while references to existing public objects stay put
_CREATED_IN_PUBLIC = re.compile(
    r'\s*CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:UNLOGGED|TEMP|TEMPORARY)\s+)?'
    r'(?:TABLE|VIEW|MATERIALIZED\s+VIEW|SEQUENCE|TYPE|FUNCTION|PROCEDURE)\s+'
    r'(?:IF\s+NOT\s+EXISTS\s+)?(?:public|"public")\.("?)(\w+)\1',
    re.I,
)


def _redirect_created(sql: str, created: set[str], test_schema: str) -> str:
    """Requalify ``public.<name>`` as the test schema for names the dry run created.

    Examples:
        >>> _redirect_created('ALTER TABLE "public".pedidos ADD x int', {"pedidos"}, "t")
        'ALTER TABLE "t".pedidos ADD x int'
        >>> _redirect_created("SELECT * FROM public.pedidos_old", {"pedidos"}, "t")
        'SELECT * FROM public.pedidos_old'
    """
    if not created:
        return sql
    names = "|".join(re.escape(n) for n in sorted(created))
    pattern = re.compile(rf'(?<![\w"])(?:public|"public")\.("?)({names})\1(?![\w"])', re.I)
    return pattern.sub(lambda m: f'"{test_schema}".{m.group(1)}{m.group(2)}{m.group(1)}', sql)


class _DiscardTransaction(Exception):
    """Raised inside a transaction block to roll it back on purpose."""


class _RowLimitExceeded(Exception):
    pass


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _preview(content: str) -> str:
    return content[:100] + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MigrationGate:
    """Enforces the safety policy around migration execution.

    Args:
        client: Postgres-capable database client (``execute`` and
            ``transaction`` must be supported).
        settings: Source of the current ``MigrationSafetyConfig``.
        backups: Used to confirm the referenced backup exists.
        versions: Optional; records the current schema version on history rows.
    """

    def __init__(
        self,
        client: DatabaseClient,
        settings: SafetySettingsStore,
        backups: BackupManager,
        versions: VersionManager | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._backups = backups
        self._versions = versions

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    async def dry_run(
        self,
        statements: list[SQLStatement],
        migration_name: str,
        executed_by: str | None = None,
    ) -> DryRunResult:
        """Execute ``statements`` against a throwaway schema.

        Statements are re-classified server-side; ``critical`` ones are
        skipped with a warning. Objects the batch creates go to the throwaway
        schema, including ones qualified with ``public``; existing objects the
        batch references resolve through ``public`` and ``extensions``, so
        changes to them are only ever made inside the discarded transaction.
        Each statement runs in its own savepoint
        inside one transaction that is always rolled back, and the
        throwaway schema is dropped afterwards regardless of outcome.
        """
        checked = [analyze_statement(s.content, s.line_number) for s in statements]
        fingerprint = statement_fingerprint(checked)
        test_schema = f"test_migration_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
        start = time.monotonic()

        errors: list[DryRunError] = []
        warnings: list[str] = []
        executed = failed = 0

        logger.info("Dry run of %s in schema %s", migration_name, test_schema)
        try:
            async with self._client.transaction() as tx:
                await tx.execute(f'CREATE SCHEMA "{test_schema}"')
                # Unqualified creates land in the test schema; lookups fall through
                # to the objects and extensions the migration builds on
                await tx.execute(
                    f'SET LOCAL search_path TO "{test_schema}", public, extensions'
                )
                created: set[str] = set()

                for number, stmt in enumerate(checked, start=1):
                    if stmt.danger_level == "critical":
                        warnings.append(
                            f"Skipping critical operation: {stmt.type} (line {stmt.line_number})"
                        )
                        continue

                    target = _CREATED_IN_PUBLIC.match(stmt.content)
                    if target:
                        created.add(target.group(2))
                    sql = _redirect_created(stmt.content, created, test_schema)
                    try:
                        async with tx.savepoint():
                            await tx.execute(sql)
                        executed += 1
                    except Exception as e:
                        logger.debug("Dry-run statement %d failed: %s", number, e)
                        failed += 1
                        errors.append(
                            DryRunError(
                                statement_number=number,
                                error=str(e),
                                statement=_preview(stmt.content),
                            )
                        )

                raise _DiscardTransaction()
        except _DiscardTransaction:
            pass
        except Exception as e:
            logger.error("Dry run of %s could not run: %s", migration_name, e)
            return DryRunResult(
                success=False,
                passed=False,
                errors=[DryRunError(statement_number=0, error=str(e), statement="")],
                warnings=warnings,
                duration=_elapsed_ms(start),
                test_schema=test_schema,
            )
        finally:
            try:
                await self._client.execute(f'DROP SCHEMA IF EXISTS "{test_schema}" CASCADE')
            except Exception as e:
                logger.error("Failed to drop test schema %s: %s", test_schema, e)
                warnings.append(f"Failed to cleanup test schema: {test_schema}")

        passed = failed == 0
        duration = _elapsed_ms(start)
        if passed:
            await self._client.insert(
                DRY_RUNS_TABLE,
                {
                    "fingerprint": fingerprint,
                    "migration_name": migration_name,
                    "passed": True,
                    "statements_executed": executed,
                    "statements_failed": 0,
                    "duration_ms": duration,
                    "executed_by": executed_by,
                    "created_at": _utcnow(),
                },
            )

        logger.info(
            "Dry run of %s %s: %d executed, %d failed",
            migration_name, "passed" if passed else "failed", executed, failed,
        )
        return DryRunResult(
            success=True,
            passed=passed,
            statements_executed=executed,
            statements_failed=failed,
            errors=errors,
            warnings=warnings,
            duration=duration,
            test_schema=test_schema,
            fingerprint=fingerprint,
        )

    async def has_passed_dry_run(self, statements: list[SQLStatement]) -> bool:
        rows = await self._client.select(
            DRY_RUNS_TABLE,
            "id",
            filters={"fingerprint": statement_fingerprint(statements), "passed": True},
            limit=1,
        )
        return bool(rows)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _statements_for(request: MigrationRequest) -> list[SQLStatement]:
        if request.sql.strip():
            return parse_sql(request.sql).statements
        return [analyze_statement(s.content, s.line_number) for s in request.statements]

    async def _check_policy(
        self, request: MigrationRequest, statements: list[SQLStatement]
    ) -> tuple[bool, str | None]:
        """Run every precondition in order.

        Returns:
            ``(dry_run_passed, backup_id)`` for the history row.

        Raises:
            PolicyViolationError: On the first unmet precondition.
        """
        if isinstance(request.sql, AdvisorySQL) or request.sql.lstrip().startswith(ADVISORY_HEADER):
            raise PolicyViolationError(
                "Generated migration SQL is advisory and must be reviewed before execution"
            )

        report = validate_sql(statements)
        if not report.is_valid:
            raise PolicyViolationError(
                "Migration contains forbidden operations: " + "; ".join(report.errors)
            )

        config = await self._settings.load()

        destructive = [s for s in statements if s.is_destructive]
        if destructive and not config.allow_destructive_ops:
            lines = ", ".join(str(s.line_number) for s in destructive)
            raise PolicyViolationError(
                f"Destructive operations are disabled by the safety policy (lines {lines})"
            )
        if (
            destructive
            and config.require_double_confirmation
            and request.confirm_migration_name != request.migration_name
        ):
            raise PolicyViolationError(
                "Destructive migration requires double confirmation: "
                "repeat the migration name in confirmMigrationName"
            )

        if config.require_backup and not request.backup_id:
            raise PolicyViolationError("Backup is required before executing migration")
        if request.backup_id and await self._backups.get_backup(request.backup_id) is None:
            raise PolicyViolationError(f"Backup not found: {request.backup_id}")

        dry_run_passed = await self.has_passed_dry_run(statements)
        if config.require_dry_run and not dry_run_passed:
            raise PolicyViolationError("Dry-run must pass before executing migration")

        return dry_run_passed, request.backup_id

    async def execute(
        self, request: MigrationRequest, executed_by: str | None = None
    ) -> ExecutionResult:
        """Check policy, then run the migration in one transaction.

        Raises:
            InvalidRequestError: Missing name, no statements, or an adapter
                without transaction support.
            PolicyViolationError: Any unmet precondition (nothing is written).
        """
        if not request.migration_name:
            raise InvalidRequestError("migrationName is required")
        statements = self._statements_for(request)
        if not statements:
            raise InvalidRequestError("Migration contains no statements")

        dry_run_passed, backup_id = await self._check_policy(request, statements)
        config = await self._settings.load()

        try:
            transaction = self._client.transaction()
        except NotImplementedError as e:
            raise InvalidRequestError(
                "Migrations require a direct Postgres connection"
            ) from e

        plan = generate_rollback(statements)
        version_before = None
        if self._versions is not None:
            current = await self._versions.get_current()
            version_before = current.version if current else None

        history_row = await self._client.insert(
            MIGRATION_HISTORY_TABLE,
            {
                "migration_name": request.migration_name,
                "file_name": request.file_name,
                "sql_content": request.sql or "\n".join(s.content for s in statements),
                "executed_by": executed_by,
                "status": "executing",
                "method": EXECUTION_METHOD,
                "operations_total": len(statements),
                "backup_id": backup_id,
                "dry_run_passed": dry_run_passed,
                "can_rollback": plan.can_rollback,
                "rollback_sql": plan.sql or None,
                "schema_version_before": version_before,
                "executed_at": _utcnow(),
            },
        )
        history_id = str(history_row["id"])
        logger.info(
            "Executing migration %s (%d statements, history %s)",
            request.migration_name, len(statements), history_id,
        )

        start = time.monotonic()
        successful = failed = 0
        errors: list[str] = []
        rolled_back = False
        stop_on_error = config.auto_rollback_on_error
        max_rows = config.max_affected_rows

        async def run(tx, stmt: SQLStatement) -> None:
            affected = await tx.execute(stmt.content)
            if max_rows and affected is not None and affected > max_rows:
                raise _RowLimitExceeded(
                    f"{affected} rows affected exceeds maxAffectedRows ({max_rows})"
                )

        try:
            async with transaction as tx:
                for stmt in statements:
                    try:
                        if stop_on_error:
                            await run(tx, stmt)
                        else:
                            async with tx.savepoint():
                                await run(tx, stmt)
                        successful += 1
                    except Exception as e:
                        failed += 1
                        errors.append(f"Line {stmt.line_number}: {e}")
                        logger.warning("Migration statement failed at line %d: %s", stmt.line_number, e)
                        if stop_on_error:
                            break
                if stop_on_error and failed:
                    raise _DiscardTransaction()
        except _DiscardTransaction:
            rolled_back = True
        except Exception as e:
            # Commit failed or the connection dropped: nothing was applied
            rolled_back = True
            errors.append(f"Transaction failed: {e}")
            logger.error("Migration %s transaction failed: %s", request.migration_name, e)

        duration = _elapsed_ms(start)
        status = "failed" if failed or rolled_back else "success"

        await self._client.update(
            MIGRATION_HISTORY_TABLE,
            {
                "status": status,
                "operations_successful": successful,
                "operations_failed": failed,
                "duration_ms": duration,
                "error_message": "\n".join(errors) if errors else None,
                "auto_rolled_back": rolled_back,
                "updated_at": _utcnow(),
            },
            {"id": history_id},
        )
        logger.info(
            "Migration %s %s: %d succeeded, %d failed%s",
            request.migration_name, status, successful, failed,
            " (rolled back)" if rolled_back else "",
        )

        return ExecutionResult(
            success=status == "success",
            history_id=history_id,
            operations_successful=successful,
            operations_failed=failed,
            total_operations=len(statements),
            duration=duration,
            errors=errors or None,
            rolled_back=rolled_back,
        )

    # ------------------------------------------------------------------
    # Rollback and history
    # ------------------------------------------------------------------

    async def rollback(self, history_id: str, executed_by: str | None = None) -> RollbackResult:
        """Move a failed migration to ``rolled_back``.

        When the batch was already rolled back by the transaction, only the
        status changes. When statements committed (savepoint mode), the
        stored rollback SQL runs first, in one transaction.

        Raises:
            RecordNotFoundError: Unknown ``history_id``.
            PolicyViolationError: Status is not ``failed``, or committed
                changes cannot be inverted automatically.
        """
        history = await self.get_history(history_id)
        if history.status != "failed":
            raise PolicyViolationError(
                f"Only failed migrations can be rolled back (status is {history.status})"
            )

        needs_sql = not history.auto_rolled_back and history.operations_successful > 0
        if needs_sql:
            if not history.can_rollback or not history.rollback_sql:
                raise PolicyViolationError(
                    "Committed changes cannot be rolled back automatically; restore from backup"
                )
            async with self._client.transaction() as tx:
                for stmt in parse_sql(history.rollback_sql).statements:
                    await tx.execute(stmt.content)

        await self._client.update(
            MIGRATION_HISTORY_TABLE,
            {
                "status": "rolled_back",
                "rollback_executed": needs_sql,
                "rollback_at": _utcnow(),
                "updated_at": _utcnow(),
            },
            {"id": history_id},
        )
        logger.info(
            "Migration %s rolled back by %s%s",
            history_id, executed_by or "unknown", " (rollback SQL executed)" if needs_sql else "",
        )
        return RollbackResult(
            success=True,
            history_id=history_id,
            status="rolled_back",
            message=(
                "Rollback SQL executed"
                if needs_sql
                else "Changes were already rolled back by the transaction"
            ),
            rollback_sql_executed=needs_sql,
        )

    async def get_history(self, history_id: str) -> MigrationHistory:
        rows = []
        if is_uuid(history_id):
            rows = await self._client.select(
                MIGRATION_HISTORY_TABLE, "*", filters={"id": history_id}, limit=1
            )
        if not rows:
            raise RecordNotFoundError(f"Migration not found: {history_id}")
        return MigrationHistory.model_validate(rows[0])

    async def list_history(self, limit: int = 50) -> list[MigrationHistory]:
        """Return migration history, newest first."""
        rows = await self._client.select(
            MIGRATION_HISTORY_TABLE, "*", order_by="executed_at", desc=True, limit=limit
        )
        return [MigrationHistory.model_validate(r) for r in rows]
