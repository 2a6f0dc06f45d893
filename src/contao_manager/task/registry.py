"""Task definitions: task name to ordered operation factories."""

from __future__ import annotations

from collections.abc import Callable

from contao_manager.errors import ConfigurationError
from contao_manager.operation import (
    ComposerInstallOperation,
    ComposerUpdateOperation,
    CreateProjectOperation,
    Operation,
    OperationContext,
)
from contao_manager.task.models import TaskConfig

OperationFactory = Callable[[TaskConfig, OperationContext], Operation]

CREATE_PROJECT_TASK = "composer/create-project"
INSTALL_TASK = "composer/install"
UPDATE_TASK = "composer/update"

TASK_DEFINITIONS: dict[str, tuple[OperationFactory, ...]] = {
    CREATE_PROJECT_TASK: (
        CreateProjectOperation.from_context,
        ComposerInstallOperation.from_context,
    ),
    INSTALL_TASK: (ComposerInstallOperation.from_context,),
    UPDATE_TASK: (ComposerUpdateOperation.from_context,),
}


class TaskRegistry:
    """Materialize the operations of a task from its configuration."""

    def __init__(
        self,
        context: OperationContext,
        definitions: dict[str, tuple[OperationFactory, ...]] | None = None,
    ) -> None:
        self.context = context
        self.definitions = definitions if definitions is not None else TASK_DEFINITIONS

    def build_operations(self, config: TaskConfig) -> list[Operation]:
        """Construct operations; construction raises ConfigurationError for invalid options."""

        factories = self.definitions.get(config.name)
        if factories is None:
            known = ", ".join(sorted(self.definitions))
            raise ConfigurationError(f"Unknown task {config.name!r}. Known tasks: {known}")
        return [factory(config, self.context) for factory in factories]
