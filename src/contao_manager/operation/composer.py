"""Subprocess-backed package manager operations."""

from __future__ import annotations

from contao_manager.operation.base import AbstractProcessOperation
from contao_manager.operation.context import OperationContext
from contao_manager.task.models import TaskConfig

COMMON_FLAGS = (
    "--prefer-dist",
    "--no-dev",
    "--no-progress",
    "--no-ansi",
    "--no-interaction",
    "--optimize-autoloader",
)
COMPOSER_ENV = {"COMPOSER_NO_INTERACTION": "1"}


class _ComposerOperation(AbstractProcessOperation):
    def __init__(self, task_config: TaskConfig, *, context: OperationContext) -> None:
        super().__init__(
            task_config,
            cwd=context.environment.project_dir,
            timeout_seconds=context.settings.composer.process_timeout_seconds,
            env=COMPOSER_ENV,
        )
        self.composer_command = context.composer_command()

    @classmethod
    def from_context(
        cls,
        task_config: TaskConfig,
        context: OperationContext,
    ) -> _ComposerOperation:
        return cls(task_config, context=context)


class ComposerInstallOperation(_ComposerOperation):
    """``composer install`` from the lockfile (or the manifest when unlocked)."""

    name = "composer-install"

    @property
    def summary(self) -> str:
        return "composer install"

    def should_run(self) -> bool:
        return bool(self.task_config.get_option("install", True))

    def build_command(self) -> list[str]:
        return [*self.composer_command, "install", *COMMON_FLAGS]


class ComposerUpdateOperation(_ComposerOperation):
    """``composer update`` for all or the selected packages."""

    name = "composer-update"

    @property
    def packages(self) -> list[str]:
        raw = self.task_config.get_option("packages", [])
        return [str(package) for package in raw] if isinstance(raw, list | tuple) else []

    @property
    def summary(self) -> str:
        return " ".join(["composer update", *self.packages])

    def build_command(self) -> list[str]:
        return [
            *self.composer_command,
            "update",
            *self.packages,
            "--with-dependencies",
            *COMMON_FLAGS,
        ]
