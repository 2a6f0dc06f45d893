"""Domain errors shared by status checks, operations and the task runner."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid task or host configuration detected before anything is persisted."""


class PreconditionError(RuntimeError):
    """Operation refused to start because the target is not in the expected state."""


class ServiceUnavailableError(RuntimeError):
    """Required hosting configuration is missing."""

    def __init__(self, message: str, *, config_path: str = "/api/server/config") -> None:
        super().__init__(message)
        self.config_path = config_path


class ManifestError(Exception):
    """Base class for recoverable manifest/lock inspection errors."""

    kind = "manifest"


class ManifestParseError(ManifestError):
    """Manifest is not syntactically valid JSON."""

    kind = "parse"


class SchemaValidationError(ManifestError):
    """Manifest does not conform to the package manager schema."""

    kind = "schema"


class LockError(ManifestError):
    """Lockfile could not be loaded by the lock subsystem."""

    kind = "lock"

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details

    def __str__(self) -> str:
        message = super().__str__()
        if self.details:
            return f"{message} {self.details}"
        return message


class OperationError(RuntimeError):
    """Operation failed; recorded on the operation and its task."""


class TaskNotFoundError(RuntimeError):
    """Referenced task does not exist."""


class TaskConflictError(RuntimeError):
    """Another task is already pending or active for the same project."""


class TaskStateError(RuntimeError):
    """Requested transition is not allowed from the task's current status."""
