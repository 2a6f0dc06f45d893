"""Task operations: inline (in-process) and process-backed variants."""

from contao_manager.operation.base import (
    AbstractInlineOperation,
    AbstractOperation,
    AbstractProcessOperation,
    Operation,
)
from contao_manager.operation.composer import ComposerInstallOperation, ComposerUpdateOperation
from contao_manager.operation.context import OperationContext
from contao_manager.operation.create_project import CreateProjectOperation

__all__ = [
    "AbstractInlineOperation",
    "AbstractOperation",
    "AbstractProcessOperation",
    "ComposerInstallOperation",
    "ComposerUpdateOperation",
    "CreateProjectOperation",
    "Operation",
    "OperationContext",
]
