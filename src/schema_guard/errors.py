"""Exception hierarchy shared by every schema-guard service.

The HTTP layer maps each class to a status code; the CLI prints the message.
Statement failures during a migration are *not* exceptions -- they are
recorded on the ``MigrationHistory`` row and returned in the result.
"""


class SchemaGuardError(Exception):
    """Base class for all schema-guard errors."""

    pass


class InvalidRequestError(SchemaGuardError):
    """Raised when a request is missing required fields or is malformed."""

    pass


class PolicyViolationError(SchemaGuardError):
    """Raised when a migration does not satisfy the configured safety policy.

    No state is mutated when this is raised.
    """

    pass


class VersionConflictError(SchemaGuardError):
    """Raised when a schema version name is already taken."""

    pass


class VersionNotFoundError(SchemaGuardError):
    """Raised when a named schema version does not exist."""

    pass


class SnapshotNotFoundError(SchemaGuardError):
    """Raised when a diff cannot resolve one of its two snapshots."""

    pass


class RecordNotFoundError(SchemaGuardError):
    """Raised when a drift log, backup, or history row does not exist."""

    pass


class ExporterError(SchemaGuardError):
    """Raised when the schema exporter cannot produce a snapshot."""

    pass


class AuthorizationError(SchemaGuardError):
    """Raised when the caller's credential or role is insufficient."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code
