"""Application service for creating tasks."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from contao_manager.task.models import OperationPlan, TaskConfig, TaskCreate, TaskView
from contao_manager.task.registry import TaskRegistry
from contao_manager.task.repository import TaskRepository


class TaskService:
    """Validate a task request by building its operations, then persist it."""

    def __init__(self, *, repository: TaskRepository, registry: TaskRegistry) -> None:
        self.repository = repository
        self.registry = registry

    def create_task(self, name: str, options: dict[str, Any] | None = None) -> TaskView:
        task_id = str(uuid4())
        config = TaskConfig(task_id=task_id, name=name, options=options or {})
        operations = self.registry.build_operations(config)
        return self.repository.create_task(
            TaskCreate(
                task_id=task_id,
                name=name,
                project_dir=self.registry.context.environment.project_dir,
                options=dict(config.options),
            ),
            [
                OperationPlan(name=operation.name, summary=operation.summary)
                for operation in operations
            ],
        )

    def current_task(self) -> TaskView | None:
        return self.repository.get_open_task(self.registry.context.environment.project_dir)
