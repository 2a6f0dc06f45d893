from __future__ import annotations

from pathlib import Path

import allure
import pytest

from contao_manager.config import (
    DEFAULT_SUPPORTED_VERSIONS,
    ComposerSettings,
    Settings,
    TaskSettings,
)
from contao_manager.errors import ConfigurationError

pytestmark = [
    allure.epic("Task Runtime"),
    allure.feature("Configuration"),
]


def test_from_env_defaults_are_relative_to_project_dir(tmp_path: Path) -> None:
    settings = Settings.from_env(project_dir=tmp_path)

    assert settings.db_path == tmp_path / "contao-manager" / "manager.db"
    assert settings.project.resolved_public_dir == tmp_path / "public"
    assert settings.composer.command == ("composer",)
    assert settings.tasks.supported_versions == DEFAULT_SUPPORTED_VERSIONS
    assert settings.locale == "en"


def test_from_env_reads_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CONTAO_MANAGER_PROJECT_DIR", str(tmp_path))
    monkeypatch.setenv("CONTAO_MANAGER_PUBLIC_DIR", "web")
    monkeypatch.setenv("CONTAO_MANAGER_COMPOSER_COMMAND", "php /opt/composer.phar")
    monkeypatch.setenv("CONTAO_MANAGER_SUPPORTED_VERSIONS", "4.13, 5.3,4.13")
    monkeypatch.setenv("CONTAO_MANAGER_LOCALE", "de")
    monkeypatch.setenv("CONTAO_MANAGER_PROCESS_TIMEOUT_SECONDS", "90")

    settings = Settings.from_env()

    assert settings.project.project_dir == tmp_path
    assert settings.project.resolved_public_dir == tmp_path / "web"
    assert settings.composer.command == ("php", "/opt/composer.phar")
    assert settings.tasks.supported_versions == ("4.13", "5.3")
    assert settings.locale == "de"
    assert settings.composer.process_timeout_seconds == 90


def test_from_env_rejects_malformed_version(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("CONTAO_MANAGER_SUPPORTED_VERSIONS", "4.13,latest")

    with pytest.raises(ConfigurationError, match="SUPPORTED_VERSIONS"):
        Settings.from_env(project_dir=tmp_path)


def test_validate_rejects_non_positive_timeout() -> None:
    settings = Settings(composer=ComposerSettings(process_timeout_seconds=0))

    with pytest.raises(ValueError, match="PROCESS_TIMEOUT_SECONDS"):
        settings.validate()


def test_validate_rejects_negative_retention() -> None:
    settings = Settings(tasks=TaskSettings(retention_hours=-1))

    with pytest.raises(ConfigurationError, match="RETENTION_HOURS"):
        settings.validate()


@pytest.mark.parametrize(
    "name",
    [
        "CONTAO_MANAGER_PROCESS_TIMEOUT_SECONDS",
        "CONTAO_MANAGER_TASK_RETENTION_HOURS",
        "CONTAO_MANAGER_TASK_STALE_AFTER_SECONDS",
        "CONTAO_MANAGER_SQLITE_BUSY_TIMEOUT_MS",
    ],
)
def test_from_env_rejects_non_integer_values(tmp_path: Path, monkeypatch, name: str) -> None:
    monkeypatch.setenv(name, "ten")

    with pytest.raises(ConfigurationError, match=f"{name} must be an integer, got 'ten'"):
        Settings.from_env(project_dir=tmp_path)


def test_validate_rejects_non_positive_stale_window() -> None:
    settings = Settings(tasks=TaskSettings(stale_after_seconds=0))

    with pytest.raises(ConfigurationError, match="STALE_AFTER_SECONDS"):
        settings.validate()
