"""Read-only accessor for a project's manifest, lockfile and vendor directory."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from contao_manager.composer.locker import Locker
from contao_manager.errors import ManifestParseError

MANIFEST_FILE = "composer.json"
LOCK_FILE = "composer.lock"
VENDOR_DIR = "vendor"


class Environment:
    """Describes the package manager state of one project directory."""

    def __init__(self, project_dir: Path, public_dir: Path | None = None) -> None:
        self.project_dir = project_dir
        self.public_dir = public_dir if public_dir is not None else project_dir / "public"

    @property
    def json_file(self) -> Path:
        return self.project_dir / MANIFEST_FILE

    @property
    def lock_file(self) -> Path:
        return self.project_dir / LOCK_FILE

    @property
    def vendor_dir(self) -> Path:
        return self.project_dir / VENDOR_DIR

    def read_manifest_contents(self) -> str:
        """Return the raw manifest text, raising ManifestParseError when it is unreadable."""

        try:
            return self.json_file.read_text("utf-8")
        except UnicodeDecodeError as error:
            raise ManifestParseError(f'"{self.json_file}" is not UTF-8 encoded: {error}') from error
        except OSError as error:
            raise ManifestParseError(f'"{self.json_file}" could not be read: {error}') from error

    def read_manifest(self) -> dict[str, Any]:
        """Decode the manifest, raising ManifestParseError for broken documents."""

        try:
            payload = json.loads(self.read_manifest_contents())
        except json.JSONDecodeError as error:
            raise ManifestParseError(
                f'"{self.json_file}" does not contain valid JSON: {error}',
            ) from error
        if not isinstance(payload, dict):
            raise ManifestParseError(f'"{self.json_file}" must contain a JSON object')
        return payload

    def has_package(self, name: str) -> bool:
        """Return True when the manifest requires the given package."""

        require = self.read_manifest().get("require")
        return isinstance(require, dict) and name in require

    def get_locker(self) -> Locker:
        return Locker(self.lock_file, self.read_manifest_contents())
