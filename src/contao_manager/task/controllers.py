"""Controllers for task CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from contao_manager.config import Settings
from contao_manager.errors import TaskNotFoundError
from contao_manager.operation import OperationContext
from contao_manager.task.models import OperationStatus, TaskStatus, TaskView
from contao_manager.task.registry import (
    CREATE_PROJECT_TASK,
    INSTALL_TASK,
    UPDATE_TASK,
    TaskRegistry,
)
from contao_manager.task.repository import TaskRepository
from contao_manager.task.runner import TaskRunner
from contao_manager.task.services import TaskService


@dataclass(slots=True)
class TaskCreateCommand:
    """CLI input for creating a task."""

    db_path: Path | None
    project_dir: Path | None
    name: str
    options: dict[str, Any] = field(default_factory=dict)
    run: bool = True


@dataclass(slots=True)
class TaskRunCommand:
    """CLI input for running (or resuming) a task."""

    db_path: Path | None
    project_dir: Path | None
    task_id: str | None


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task status and mutations."""

    db_path: Path | None
    project_dir: Path | None
    task_id: str | None


@dataclass(slots=True)
class TaskConsoleCommand:
    """CLI input for reading the console feed."""

    db_path: Path | None
    project_dir: Path | None
    task_id: str | None
    offset: int
    position: int | None = None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    project_dir: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskPruneCommand:
    """CLI input for removing finished tasks."""

    db_path: Path | None
    project_dir: Path | None
    hours: int | None


@dataclass(slots=True)
class TaskRunResult:
    """Task report to render in CLI."""

    lines: list[str]
    success: bool = True


class TaskCliController:
    """Coordinates task creation, execution and inspection CLI operations."""

    def create_project(
        self,
        *,
        db_path: Path | None,
        project_dir: Path | None,
        version: str,
        core_only: bool,
        install: bool,
        run: bool,
    ) -> TaskRunResult:
        return self.create(
            TaskCreateCommand(
                db_path=db_path,
                project_dir=project_dir,
                name=CREATE_PROJECT_TASK,
                options={"version": version, "core-only": core_only, "install": install},
                run=run,
            ),
        )

    def install(
        self,
        *,
        db_path: Path | None,
        project_dir: Path | None,
        run: bool,
    ) -> TaskRunResult:
        return self.create(
            TaskCreateCommand(db_path=db_path, project_dir=project_dir, name=INSTALL_TASK, run=run),
        )

    def update(
        self,
        *,
        db_path: Path | None,
        project_dir: Path | None,
        packages: tuple[str, ...],
        run: bool,
    ) -> TaskRunResult:
        return self.create(
            TaskCreateCommand(
                db_path=db_path,
                project_dir=project_dir,
                name=UPDATE_TASK,
                options={"packages": list(packages)},
                run=run,
            ),
        )

    def create(self, command: TaskCreateCommand) -> TaskRunResult:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        registry = TaskRegistry(OperationContext.from_settings(settings))
        with _repository(settings) as repository:
            service = TaskService(repository=repository, registry=registry)
            task = service.create_task(command.name, command.options)
            lines = [
                f"Task created: task_id={task.task_id} name={task.name} "
                f"status={task.status.value}",
                *(
                    f"  [{operation.position}] {operation.name}: {operation.summary}"
                    for operation in task.operations
                ),
            ]
            if not command.run:
                return TaskRunResult(lines=lines)
            result = _run(repository, registry, settings, task.task_id)
        return TaskRunResult(lines=[*lines, *result.lines], success=result.success)

    def run(self, command: TaskRunCommand) -> TaskRunResult:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        registry = TaskRegistry(OperationContext.from_settings(settings))
        with _repository(settings) as repository:
            task = _resolve_task(repository, settings, command.task_id)
            return _run(repository, registry, settings, task.task_id)

    def status(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        with _repository(settings) as repository:
            task = _resolve_task(repository, settings, command.task_id)
            events = repository.list_events(task.task_id)
        lines = [
            f"Task: {task.task_id}",
            f"Name: {task.name}",
            f"Status: {task.status.value}",
            f"Abort requested: {'yes' if task.abort_requested else 'no'}",
            f"Runner: {task.runner_id or '-'} heartbeat_at="
            f"{task.heartbeat_at.isoformat() if task.heartbeat_at else '-'}",
            f"Error: {task.error_summary or '-'}",
            f"Operations: {len(task.operations)}",
        ]
        for operation in task.operations:
            lines.append(
                f"  [{operation.position}] {operation.name} status={operation.status.value} "
                f"summary={operation.summary!r} error={operation.error_summary or '-'}",
            )
        lines.append(f"Events: {len(events)}")
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from or '-'} -> {event.status_to or '-'}",
            )
        return lines

    def console(self, command: TaskConsoleCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        with _repository(settings) as repository:
            task = _resolve_task(repository, settings, command.task_id)
            feed = repository.read_console(
                task_id=task.task_id,
                offset=command.offset,
                position=command.position,
            )
        lines = feed.text.splitlines()
        lines.append(f"Cursor: {feed.cursor}")
        return lines

    def abort(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        with _repository(settings) as repository:
            task = _resolve_task(repository, settings, command.task_id)
            task = repository.request_abort(task.task_id)
        if task.status == TaskStatus.ABORTED:
            return [f"Task aborted: {task.task_id}"]
        return [f"Abort requested: {task.task_id} (stops before the next operation)"]

    def rerun(self, command: TaskRunCommand) -> TaskRunResult:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        registry = TaskRegistry(OperationContext.from_settings(settings))
        with _repository(settings) as repository:
            task = _resolve_task(repository, settings, command.task_id)
            task = repository.rerun_task(task.task_id)
            result = _run(repository, registry, settings, task.task_id)
        return TaskRunResult(
            lines=[f"Task reopened: {task.task_id}", *result.lines],
            success=result.success,
        )

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            done = sum(
                1 for operation in task.operations if operation.status == OperationStatus.COMPLETE
            )
            lines.append(
                f"  {task.task_id} name={task.name} status={task.status.value} "
                f"operations={done}/{len(task.operations)} "
                f"created_at={task.created_at.isoformat()}",
            )
        return lines

    def prune(self, command: TaskPruneCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path, project_dir=command.project_dir)
        hours = command.hours if command.hours is not None else settings.tasks.retention_hours
        with _repository(settings) as repository:
            removed = repository.prune_finished_tasks(older_than=timedelta(hours=hours))
        return [f"Pruned tasks: {removed} (finished more than {hours}h ago)"]


def _run(
    repository: TaskRepository,
    registry: TaskRegistry,
    settings: Settings,
    task_id: str,
) -> TaskRunResult:
    runner = TaskRunner(
        repository=repository,
        operation_factory=registry.build_operations,
        stale_after=timedelta(seconds=settings.tasks.stale_after_seconds),
    )
    summary = runner.run(task_id)
    lines = [
        "Run summary: "
        f"task_id={summary.task_id} status={summary.status.value} "
        f"executed={summary.executed} skipped={summary.skipped}",
    ]
    if summary.resumed_from is not None:
        lines.append(f"Resumed from operation {summary.resumed_from}")
    if summary.failed_operation is not None:
        task = repository.get_task(task_id)
        error = task.error_summary if task is not None else None
        lines.append(f"Failed operation: {summary.failed_operation} ({error or '-'})")
    return TaskRunResult(lines=lines, success=summary.status == TaskStatus.COMPLETE)


def _resolve_task(repository: TaskRepository, settings: Settings, task_id: str | None) -> TaskView:
    if task_id:
        task = repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task
    task = repository.get_open_task(settings.project.project_dir)
    if task is None:
        recent = repository.list_tasks(limit=1)
        if not recent:
            raise TaskNotFoundError("No task found for this project.")
        task = recent[0]
    return task


def _parse_status(raw: str | None) -> TaskStatus | None:
    if raw is None:
        return None
    try:
        return TaskStatus(raw)
    except ValueError as error:
        allowed = ", ".join(status.value for status in TaskStatus)
        raise ValueError(f"Unsupported status: {raw}. Allowed: {allowed}") from error


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
