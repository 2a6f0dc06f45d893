"""Inline operation that scaffolds the manifest of a new managed-edition project."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from contao_manager.composer.environment import Environment
from contao_manager.errors import ConfigurationError, ManifestParseError, PreconditionError
from contao_manager.operation.base import AbstractInlineOperation
from contao_manager.operation.bootstrap import policy_for
from contao_manager.operation.context import OperationContext
from contao_manager.task.console import ConsoleOutput
from contao_manager.task.models import TaskConfig

logger = logging.getLogger(__name__)

EXTENSION_BUNDLES = (
    "contao/calendar-bundle",
    "contao/comments-bundle",
    "contao/faq-bundle",
    "contao/listing-bundle",
    "contao/news-bundle",
    "contao/newsletter-bundle",
)
COMPONENT_DIR = "assets"


class CreateProjectOperation(AbstractInlineOperation):
    """Write a fresh ``composer.json`` for the requested platform version.

    Exactly one file write and no subprocess: installing the packages is left to
    the operation that follows in the task.
    """

    name = "create-project"

    def __init__(
        self,
        task_config: TaskConfig,
        *,
        environment: Environment,
        supported_versions: Sequence[str],
    ) -> None:
        super().__init__(task_config)
        self.environment = environment
        self.version = str(task_config.get_option("version", ""))
        self.core_only = bool(task_config.get_option("core-only", False))

        if self.version not in supported_versions:
            raise ConfigurationError(f"Unsupported Contao version: {self.version or '-'}")

        if environment.project_dir.resolve() == environment.public_dir.resolve():
            raise ConfigurationError("Cannot install without a public directory.")

    @classmethod
    def from_context(
        cls,
        task_config: TaskConfig,
        context: OperationContext,
    ) -> CreateProjectOperation:
        return cls(
            task_config,
            environment=context.environment,
            supported_versions=context.settings.tasks.supported_versions,
        )

    @property
    def summary(self) -> str:
        return f"composer create-project contao/managed-edition:{self.version}"

    def do_run(self, console: ConsoleOutput) -> None:
        manifest = generate_manifest(
            version=self.version,
            core_only=self.core_only,
            public_dir=self.environment.public_dir,
        )
        content = json.dumps(manifest, indent=4) + "\n"
        if self._already_written(content):
            # Identical content means an interrupted run already wrote it.
            logger.info("Keeping %s written by an interrupted run", self.environment.json_file)
            console.writeln(f"{self.environment.json_file.name} was already written, keeping it")
            return

        protected = (
            self.environment.json_file,
            self.environment.lock_file,
            self.environment.vendor_dir,
        )
        if any(path.exists() for path in protected):
            raise PreconditionError("Cannot install into existing application")

        _dump_file(self.environment.json_file, content)
        logger.info("Wrote %s for version %s", self.environment.json_file, self.version)
        console.writeln(f"Created {self.environment.json_file.name} for Contao {self.version}")

    def _already_written(self, content: str) -> bool:
        if self.environment.lock_file.exists() or self.environment.vendor_dir.exists():
            return False
        if not self.environment.json_file.is_file():
            return False
        try:
            return self.environment.read_manifest_contents() == content
        except ManifestParseError:
            return False


def generate_manifest(*, version: str, core_only: bool, public_dir: Path) -> dict[str, Any]:
    """Build the managed-edition manifest pinned to ``<version>.*``."""

    require: dict[str, str] = {
        "contao/conflicts": "*@dev",
        "contao/manager-bundle": f"{version}.*",
    }
    if not core_only:
        require.update({package: f"{version}.*" for package in EXTENSION_BUNDLES})

    policy = policy_for(version)
    return {
        "type": "project",
        "require": require,
        "extra": {
            "public-dir": policy.resolve_public_dir(public_dir),
            "contao-component-dir": COMPONENT_DIR,
        },
        "scripts": {
            "post-install-cmd": [policy.script],
            "post-update-cmd": [policy.script],
        },
    }


def _dump_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        delete=False,
    ) as handle:
        handle.write(content)
        temp_path = Path(handle.name)
    try:
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise
