"""Domain models for persisted tasks and their operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"
    FAILED = "failed"
    ABORTED = "aborted"


class OperationStatus(str, Enum):
    """Per-operation lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"


OPEN_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.ACTIVE})
TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.ABORTED})
TERMINAL_OPERATION_STATUSES = frozenset(
    {OperationStatus.COMPLETE, OperationStatus.ERROR, OperationStatus.SKIPPED},
)


@dataclass(slots=True, frozen=True)
class TaskConfig:
    """Immutable name and options of one requested task."""

    task_id: str
    name: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    def get_option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)


@dataclass(slots=True)
class TaskCreate:
    """Input payload for creating a task."""

    name: str
    project_dir: Path
    options: dict[str, Any] = field(default_factory=dict)
    task_id: str | None = None


@dataclass(slots=True)
class OperationPlan:
    """Operation descriptor persisted with a new task."""

    name: str
    summary: str


@dataclass(slots=True)
class OperationView:
    """Readable operation state."""

    position: int
    name: str
    summary: str
    status: OperationStatus
    error_summary: str | None
    started_at: datetime | None
    finished_at: datetime | None


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and runner logic."""

    task_id: str
    name: str
    project_dir: str
    options: dict[str, Any]
    status: TaskStatus
    abort_requested: bool
    error_summary: str | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    operations: list[OperationView] = field(default_factory=list)
    runner_id: str | None = None
    heartbeat_at: datetime | None = None

    @property
    def config(self) -> TaskConfig:
        return TaskConfig(task_id=self.task_id, name=self.name, options=self.options)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: str | None
    status_to: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ConsoleChunk:
    """One appended piece of console output."""

    seq: int
    text: str
    position: int | None = None


@dataclass(slots=True, frozen=True)
class ConsoleRead:
    """Chunks after the requested offset and the cursor to poll from next."""

    chunks: tuple[ConsoleChunk, ...]
    cursor: int

    @property
    def text(self) -> str:
        return "".join(chunk.text for chunk in self.chunks)
