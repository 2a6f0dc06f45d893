"""Collaborators injected into operations when a task is materialized."""

from __future__ import annotations

from dataclasses import dataclass

from contao_manager.composer.environment import Environment
from contao_manager.config import Settings
from contao_manager.server_info import ServerInfo


@dataclass(slots=True)
class OperationContext:
    environment: Environment
    settings: Settings
    server_info: ServerInfo

    @classmethod
    def from_settings(cls, settings: Settings) -> OperationContext:
        return cls(
            environment=Environment(
                project_dir=settings.project.project_dir,
                public_dir=settings.project.resolved_public_dir,
            ),
            settings=settings,
            server_info=ServerInfo(settings.composer.php_executable),
        )

    def composer_command(self) -> list[str]:
        """Package manager argv prefix; a ``.phar`` is launched through the runtime."""

        command = list(self.settings.composer.command)
        if command and command[0].endswith(".phar"):
            php = self.server_info.get_php_executable()
            if php:
                return [php, *command]
        return command
