"""Controllers for server-side composer CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from contao_manager.composer.environment import Environment
from contao_manager.composer.schema import ManifestSchema
from contao_manager.composer.status import ComposerStatusInspector
from contao_manager.config import Settings
from contao_manager.i18n import Translator
from contao_manager.server_info import ServerInfo


@dataclass(slots=True)
class ComposerStatusCommand:
    """CLI input for the composer status check."""

    project_dir: Path | None
    locale: str | None = None


class ComposerCliController:
    """Renders the composer state of the configured project."""

    def status(self, command: ComposerStatusCommand) -> list[str]:
        settings = Settings.from_env(project_dir=command.project_dir)
        inspector = ComposerStatusInspector(
            environment=Environment(
                project_dir=settings.project.project_dir,
                public_dir=settings.project.resolved_public_dir,
            ),
            server_info=ServerInfo(settings.composer.php_executable),
            translator=Translator(command.locale or settings.locale),
            schema=ManifestSchema(settings.composer.schema_path),
        )
        state = inspector.inspect()
        return [json.dumps(state.to_dict(), indent=2)]
