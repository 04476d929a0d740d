"""Schema drift detection.

Drift is a checksum mismatch between the current schema version and a
fresh export of the live schema. Each detected drift is diffed, classified
and recorded in ``schema_drift_logs``; logs are never deleted, only
resolved.
"""

import logging
from datetime import datetime, timezone

from schema_guard.adapters.base import DatabaseClient
from schema_guard.errors import RecordNotFoundError
from schema_guard.models import is_uuid
from schema_guard.schema.checksum import export_checksum
from schema_guard.schema.comparator import classify_severity, compare_snapshots
from schema_guard.schema.exporter import SchemaExporter
from schema_guard.tracking.models import DRIFT_LOGS_TABLE, DriftLog, DriftResult
from schema_guard.tracking.versions import VersionManager

logger = logging.getLogger(__name__)

NO_BASELINE_WARNING = "No schema version registered. Please create a baseline version."


class DriftDetector:
    """Detects and records drift against the current schema version.

    Args:
        client: Database client holding the tracking tables.
        exporter: Source of fresh schema exports.
        versions: Version manager used to load the current baseline.
        checksum_source: Must match the source used when versions were created.
    """

    def __init__(
        self,
        client: DatabaseClient,
        exporter: SchemaExporter,
        versions: VersionManager,
        checksum_source: str = "snapshot",
    ) -> None:
        self._client = client
        self._exporter = exporter
        self._versions = versions
        self._checksum_source = checksum_source

    async def detect_drift(self) -> DriftResult:
        """Compare the live schema against the current version.

        Returns:
            ``DriftResult``. Without a baseline, ``has_drift`` is false and
            ``warning`` explains why.

        Raises:
            ExporterError: If the live schema cannot be exported. No drift
                log is written in that case.
        """
        current = await self._versions.get_current()
        if current is None:
            logger.info("No current schema version; skipping drift check")
            return DriftResult(
                has_drift=False,
                warning=NO_BASELINE_WARNING,
                message="No schema version registered",
            )

        export = await self._exporter.export()
        actual_checksum = export_checksum(export, self._checksum_source)
        logger.debug("Expected checksum %s, actual %s", current.checksum, actual_checksum)

        if actual_checksum == current.checksum:
            return DriftResult(
                has_drift=False,
                version=current.version,
                checksum=current.checksum,
                message="Schema is in sync",
            )

        differences = compare_snapshots(current.schema_snapshot, export.snapshot())
        severity = classify_severity(differences)
        compact = differences.compact()

        row = await self._client.insert(
            DRIFT_LOGS_TABLE,
            {
                "expected_version": current.version,
                "expected_checksum": current.checksum,
                "actual_checksum": actual_checksum,
                "differences": compact,
                "severity": severity,
                "resolved": False,
                "detected_at": datetime.now(timezone.utc),
            },
        )
        logger.warning(
            "Schema drift detected against %s (severity %s, %d changes)",
            current.version, severity, differences.total_changes,
        )

        return DriftResult(
            has_drift=True,
            expected_version=current.version,
            expected_checksum=current.checksum,
            actual_checksum=actual_checksum,
            differences=compact,
            severity=severity,
            drift_log_id=str(row["id"]) if row.get("id") is not None else None,
            message="Live schema differs from the registered version",
        )

    async def list_drift_logs(
        self, unresolved_only: bool = False, limit: int = 50
    ) -> list[DriftLog]:
        """Return drift logs, newest first."""
        filters = {"resolved": False} if unresolved_only else None
        rows = await self._client.select(
            DRIFT_LOGS_TABLE,
            "*",
            filters=filters,
            order_by="detected_at",
            desc=True,
            limit=limit,
        )
        return [DriftLog.model_validate(r) for r in rows]

    async def resolve_drift(
        self,
        log_id: str,
        resolved_by: str | None = None,
        notes: str | None = None,
    ) -> DriftLog:
        """Mark a drift log resolved.

        Raises:
            RecordNotFoundError: If no log has ``log_id``.
        """
        if not is_uuid(log_id):
            raise RecordNotFoundError(f"Drift log not found: {log_id}")
        rows = await self._client.update(
            DRIFT_LOGS_TABLE,
            {
                "resolved": True,
                "resolved_by": resolved_by,
                "resolved_at": datetime.now(timezone.utc),
                "notes": notes,
            },
            {"id": log_id},
        )
        if not rows:
            raise RecordNotFoundError(f"Drift log not found: {log_id}")
        logger.info("Drift log %s resolved by %s", log_id, resolved_by or "unknown")
        return DriftLog.model_validate(rows[0])
