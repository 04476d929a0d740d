"""Schema version tracking and drift detection.

Usage:
    from schema_guard.tracking import VersionManager, DriftDetector
"""

from schema_guard.tracking.drift import NO_BASELINE_WARNING, DriftDetector
from schema_guard.tracking.models import (
    DRIFT_LOGS_TABLE,
    SCHEMA_VERSIONS_TABLE,
    DriftLog,
    DriftResult,
    SchemaVersion,
    UpdateCheck,
    VersionComparison,
)
from schema_guard.tracking.versions import VersionManager

__all__ = [
    "VersionManager",
    "DriftDetector",
    "NO_BASELINE_WARNING",
    "SchemaVersion",
    "DriftLog",
    "DriftResult",
    "UpdateCheck",
    "VersionComparison",
    "SCHEMA_VERSIONS_TABLE",
    "DRIFT_LOGS_TABLE",
]
