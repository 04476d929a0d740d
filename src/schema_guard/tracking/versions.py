"""Schema version management.

A schema version is a named, checksummed snapshot of the live schema.
Exactly one version is marked current; creating a version demotes the
previous current one and inserts the new one inside a single database
transaction when the adapter supports transactions.

Usage:
    manager = VersionManager(adapter, exporter)
    created = await manager.create_version("1.1.0", "Add pedidos table")
    current = await manager.get_current()
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from schema_guard.adapters.base import DatabaseClient
from schema_guard.errors import (
    InvalidRequestError,
    VersionConflictError,
    VersionNotFoundError,
)
from schema_guard.schema.checksum import export_checksum
from schema_guard.schema.comparator import compare_snapshots
from schema_guard.schema.exporter import SchemaExporter
from schema_guard.tracking.models import (
    SCHEMA_VERSIONS_TABLE,
    SchemaVersion,
    UpdateCheck,
    VersionComparison,
)

logger = logging.getLogger(__name__)


UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: Exception) -> bool:
    """True only for SQLSTATE 23505, from either adapter.

    Other integrity errors, such as NOT NULL failures, propagate as is.
    """
    if isinstance(exc, IntegrityError):
        exc = exc.orig
    # SQLAlchemy's asyncpg adapter sets ``sqlstate``; PostgREST uses ``code``
    return any(
        getattr(exc, attr, None) == UNIQUE_VIOLATION
        for attr in ("sqlstate", "pgcode", "code")
    )


class VersionManager:
    """CRUD over schema versions.

    Args:
        client: Database client holding the ``schema_versions`` table.
        exporter: Source of fresh schema exports.
        checksum_source: ``"snapshot"`` (canonical structure) or ``"sql"``.
    """

    def __init__(
        self,
        client: DatabaseClient,
        exporter: SchemaExporter,
        checksum_source: str = "snapshot",
    ) -> None:
        self._client = client
        self._exporter = exporter
        self._checksum_source = checksum_source

    async def list_versions(self) -> list[SchemaVersion]:
        """Return every version, newest ``applied_at`` first."""
        rows = await self._client.select(
            SCHEMA_VERSIONS_TABLE, "*", order_by="applied_at", desc=True
        )
        return [SchemaVersion.model_validate(r) for r in rows]

    async def get_current(self) -> SchemaVersion | None:
        """Return the current version, or ``None`` if there is no baseline.

        Should more than one row ever be flagged current, the most recently
        applied one wins.
        """
        rows = await self._client.select(
            SCHEMA_VERSIONS_TABLE,
            "*",
            filters={"is_current": True},
            order_by="applied_at",
            desc=True,
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                "%d schema versions flagged current; using %s",
                len(rows), rows[0]["version"],
            )
        return SchemaVersion.model_validate(rows[0])

    async def get_version(self, version: str) -> SchemaVersion | None:
        rows = await self._client.select(
            SCHEMA_VERSIONS_TABLE, "*", filters={"version": version}, limit=1
        )
        return SchemaVersion.model_validate(rows[0]) if rows else None

    async def create_version(
        self,
        version: str,
        description: str,
        applied_by: str | None = None,
    ) -> SchemaVersion:
        """Snapshot the live schema and register it as the current version.

        Args:
            version: Unique version name (e.g. ``"1.1.0"``).
            description: Human description of the change.
            applied_by: Identity of the caller, if known.

        Returns:
            The inserted ``SchemaVersion``.

        Raises:
            InvalidRequestError: If ``version`` or ``description`` is empty.
            VersionConflictError: If ``version`` already exists. Nothing is
                written in that case.
            ExporterError: If the live schema cannot be exported.
        """
        if not version or not description:
            raise InvalidRequestError("Version and description are required")

        if await self.get_version(version) is not None:
            raise VersionConflictError(f"Schema version '{version}' already exists")

        export = await self._exporter.export()
        snapshot = export.snapshot()
        now = datetime.now(timezone.utc)
        record = {
            "version": version,
            "description": description,
            "checksum": export_checksum(export, self._checksum_source),
            "schema_snapshot": snapshot.model_dump(),
            "is_current": True,
            "applied_at": now,
            "applied_by": applied_by,
        }

        try:
            row = await self._demote_and_insert(record, now)
        except Exception as e:
            if _is_unique_violation(e):
                raise VersionConflictError(
                    f"Schema version '{version}' already exists"
                ) from e
            raise

        logger.info("Created schema version %s (checksum %s)", version, record["checksum"][:12])
        return SchemaVersion.model_validate(row)

    async def _demote_and_insert(self, record: dict, now: datetime) -> dict:
        demote = {"is_current": False, "updated_at": now}
        try:
            transaction = self._client.transaction()
        except NotImplementedError:
            transaction = None

        if transaction is not None:
            async with transaction as tx:
                await tx.update(SCHEMA_VERSIONS_TABLE, demote, {"is_current": True})
                return await tx.insert(SCHEMA_VERSIONS_TABLE, record)

        # Adapter cannot group writes: demote first, so a failure in between
        # leaves no current version (read as "no baseline"), never two
        logger.debug("Adapter has no transactions; demoting and inserting sequentially")
        await self._client.update(SCHEMA_VERSIONS_TABLE, demote, {"is_current": True})
        return await self._client.insert(SCHEMA_VERSIONS_TABLE, record)

    async def compare_versions(self, version: str, target_version: str) -> VersionComparison:
        """Diff the stored snapshots of two versions.

        Raises:
            InvalidRequestError: If either name is empty.
            VersionNotFoundError: If either version does not exist.
        """
        if not version or not target_version:
            raise InvalidRequestError("Both version and targetVersion are required")

        v1 = await self.get_version(version)
        v2 = await self.get_version(target_version)
        if v1 is None or v2 is None:
            raise VersionNotFoundError("One or both versions not found")

        differences = compare_snapshots(v1.schema_snapshot, v2.schema_snapshot)
        return VersionComparison(
            version1=v1, version2=v2, differences=differences.compact()
        )

    async def check_update(self) -> UpdateCheck:
        """Compare the current version's checksum with the live schema's."""
        current = await self.get_current()
        export = await self._exporter.export()
        real_checksum = export_checksum(export, self._checksum_source)

        update_available = current is not None and real_checksum != current.checksum
        return UpdateCheck(
            current_version=current.version if current else None,
            current_checksum=current.checksum if current else None,
            real_checksum=real_checksum,
            update_available=update_available,
            message=(
                "Live schema differs from the registered version"
                if update_available
                else "Schema is in sync"
            ),
        )
