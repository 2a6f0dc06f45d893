"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy import update
from sqlmodel import Session, col

from contao_manager.composer.environment import Environment
from contao_manager.task.models import TaskConfig
from contao_manager.task.repository import TaskRepository
from contao_manager.task.storage.common import to_db_datetime, utc_now
from contao_manager.task.storage.sqlmodel_models import Task


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Drop CONTAO_MANAGER_* variables leaking from the developer shell."""
    for name in list(os.environ):
        if name.startswith("CONTAO_MANAGER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def environment(project_dir: Path) -> Environment:
    return Environment(project_dir=project_dir, public_dir=project_dir / "public")


@pytest.fixture()
def php_executable(tmp_path: Path) -> Path:
    """A file standing in for the PHP binary; only its existence is checked."""
    path = tmp_path / "bin" / "php"
    path.parent.mkdir()
    path.write_text("#!/bin/sh\n", "utf-8")
    path.chmod(0o755)
    return path


def write_manifest(project_dir: Path, payload: dict | str) -> str:
    contents = payload if isinstance(payload, str) else json.dumps(payload, indent=4)
    (project_dir / "composer.json").write_text(contents, "utf-8")
    return contents


def make_config(name: str = "composer/create-project", **options) -> TaskConfig:
    return TaskConfig(task_id="task-1", name=name, options=options)


def expire_heartbeat(repository: TaskRepository, task_id: str) -> None:
    """Age the runner heartbeat past any stale window, as after a crashed runner."""
    with Session(repository.engine) as session:
        session.exec(
            update(Task)
            .where(col(Task.task_id) == task_id)
            .values(heartbeat_at=to_db_datetime(utc_now() - timedelta(days=1))),
        )
        session.commit()
