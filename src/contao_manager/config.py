"""Runtime configuration for status checks and task orchestration."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from contao_manager.errors import ConfigurationError

DEFAULT_SUPPORTED_VERSIONS = ("4.4", "4.9", "4.13")
MANAGER_DIR_NAME = "contao-manager"


@dataclass(slots=True)
class ProjectSettings:
    """Target project layout."""

    project_dir: Path = field(default_factory=Path.cwd)
    public_dir: Path | None = None

    @property
    def resolved_public_dir(self) -> Path:
        return self.public_dir if self.public_dir is not None else self.project_dir / "public"


@dataclass(slots=True)
class ComposerSettings:
    """Package manager invocation and manifest validation settings."""

    php_executable: str | None = None
    command: tuple[str, ...] = ("composer",)
    schema_path: Path | None = None
    process_timeout_seconds: int = 3_600


@dataclass(slots=True)
class TaskSettings:
    """Task creation and retention policy."""

    supported_versions: tuple[str, ...] = DEFAULT_SUPPORTED_VERSIONS
    retention_hours: int = 168
    stale_after_seconds: int = 120


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(MANAGER_DIR_NAME) / "manager.db"
    locale: str = "en"
    sqlite_busy_timeout_ms: int = 5_000
    project: ProjectSettings = field(default_factory=ProjectSettings)
    composer: ComposerSettings = field(default_factory=ComposerSettings)
    tasks: TaskSettings = field(default_factory=TaskSettings)

    @classmethod
    def from_env(
        cls,
        db_path: Path | None = None,
        project_dir: Path | None = None,
    ) -> Settings:
        """Load settings from environment with defaults relative to the project directory."""

        resolved_project_dir = project_dir or Path(
            os.getenv("CONTAO_MANAGER_PROJECT_DIR", str(Path.cwd())),
        )
        public_dir_raw = os.getenv("CONTAO_MANAGER_PUBLIC_DIR", "").strip()
        db_path_raw = os.getenv("CONTAO_MANAGER_DB_PATH", "").strip()
        schema_path_raw = os.getenv("CONTAO_MANAGER_SCHEMA_PATH", "").strip()
        settings = cls(
            db_path=db_path
            or (
                Path(db_path_raw)
                if db_path_raw
                else resolved_project_dir / MANAGER_DIR_NAME / "manager.db"
            ),
            locale=os.getenv("CONTAO_MANAGER_LOCALE", "en").strip() or "en",
            sqlite_busy_timeout_ms=_env_int("CONTAO_MANAGER_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            project=ProjectSettings(
                project_dir=resolved_project_dir,
                public_dir=_resolve_public_dir(resolved_project_dir, public_dir_raw),
            ),
            composer=ComposerSettings(
                php_executable=os.getenv("CONTAO_MANAGER_PHP_EXECUTABLE", "").strip() or None,
                command=_parse_command(os.getenv("CONTAO_MANAGER_COMPOSER_COMMAND", "composer")),
                schema_path=Path(schema_path_raw) if schema_path_raw else None,
                process_timeout_seconds=_env_int(
                    "CONTAO_MANAGER_PROCESS_TIMEOUT_SECONDS",
                    3_600,
                ),
            ),
            tasks=TaskSettings(
                supported_versions=_parse_versions(
                    os.getenv("CONTAO_MANAGER_SUPPORTED_VERSIONS", ""),
                ),
                retention_hours=_env_int("CONTAO_MANAGER_TASK_RETENTION_HOURS", 168),
                stale_after_seconds=_env_int("CONTAO_MANAGER_TASK_STALE_AFTER_SECONDS", 120),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.composer.process_timeout_seconds <= 0:
            raise ConfigurationError("CONTAO_MANAGER_PROCESS_TIMEOUT_SECONDS must be > 0.")
        if self.tasks.retention_hours < 0:
            raise ConfigurationError("CONTAO_MANAGER_TASK_RETENTION_HOURS must be >= 0.")
        if self.tasks.stale_after_seconds <= 0:
            raise ConfigurationError("CONTAO_MANAGER_TASK_STALE_AFTER_SECONDS must be > 0.")
        if not self.tasks.supported_versions:
            raise ConfigurationError("At least one supported version is required.")
        if not self.composer.command:
            raise ConfigurationError("CONTAO_MANAGER_COMPOSER_COMMAND must not be empty.")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}.") from error


def _resolve_public_dir(project_dir: Path, raw: str) -> Path:
    if not raw:
        return project_dir / "public"
    candidate = Path(raw)
    if candidate.is_absolute():
        return candidate
    return project_dir / candidate


def _parse_command(raw: str) -> tuple[str, ...]:
    return tuple(shlex.split(raw.strip()))


def _parse_versions(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        version = part.strip()
        if not version or version in seen:
            continue
        parts = version.split(".")
        if not all(piece.isdigit() for piece in parts):
            raise ConfigurationError(
                f"Invalid CONTAO_MANAGER_SUPPORTED_VERSIONS entry: {version!r}",
            )
        seen.add(version)
        values.append(version)
    return tuple(values) or DEFAULT_SUPPORTED_VERSIONS
