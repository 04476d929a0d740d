"""Pydantic models for schema versions and drift logs."""

from typing import Any

from pydantic import Field, field_validator

from schema_guard.models import CamelModel, loads_json
from schema_guard.schema.models import SchemaSnapshot, Severity

SCHEMA_VERSIONS_TABLE = "schema_versions"
DRIFT_LOGS_TABLE = "schema_drift_logs"


# ============================================================================
# Persisted records
# ============================================================================


class SchemaVersion(CamelModel):
    """A named, checksummed schema snapshot.

    Immutable after creation except for ``is_current``.
    """

    id: str | None = None
    version: str
    description: str
    checksum: str
    schema_snapshot: SchemaSnapshot = Field(default_factory=SchemaSnapshot)
    is_current: bool = False
    applied_at: str | None = None
    applied_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("schema_snapshot", mode="before")
    @classmethod
    def _decode_snapshot(cls, v: Any) -> Any:
        return loads_json(v) if v is not None else {}


class DriftLog(CamelModel):
    """Record of a checksum mismatch between the current version and the live schema."""

    id: str | None = None
    expected_version: str
    expected_checksum: str
    actual_checksum: str
    differences: dict[str, Any] = Field(default_factory=dict)
    severity: Severity = "low"
    resolved: bool = False
    resolved_by: str | None = None
    resolved_at: str | None = None
    notes: str | None = None
    detected_at: str | None = None

    @field_validator("differences", mode="before")
    @classmethod
    def _decode_differences(cls, v: Any) -> Any:
        return loads_json(v) if v is not None else {}


# ============================================================================
# Service results
# ============================================================================


class DriftResult(CamelModel):
    """Outcome of ``DriftDetector.detect_drift()``.

    Drift fields are only populated when ``has_drift`` is true; ``warning``
    only when no baseline version exists.
    """

    has_drift: bool
    message: str
    warning: str | None = None
    version: str | None = None
    checksum: str | None = None
    expected_version: str | None = None
    expected_checksum: str | None = None
    actual_checksum: str | None = None
    differences: dict[str, dict[str, list[str]]] | None = None
    severity: Severity | None = None
    drift_log_id: str | None = None


class UpdateCheck(CamelModel):
    """Outcome of ``VersionManager.check_update()``."""

    current_version: str | None
    current_checksum: str | None
    real_checksum: str
    update_available: bool
    message: str


class VersionComparison(CamelModel):
    """Outcome of ``VersionManager.compare_versions()``."""

    version1: SchemaVersion
    version2: SchemaVersion
    differences: dict[str, dict[str, list[str]]]
