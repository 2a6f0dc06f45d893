"""Programmatic Alembic upgrades for the task database."""

from __future__ import annotations

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

# src/contao_manager/task/storage -> repository root holding alembic.ini and alembic/
REPOSITORY_ROOT = Path(__file__).resolve().parents[4]


def upgrade_head(db_path: Path, *, root_dir: Path = REPOSITORY_ROOT) -> None:
    """Bring the SQLite database at ``db_path`` to the latest task schema revision."""

    alembic_ini = root_dir / "alembic.ini"
    config = Config(str(alembic_ini)) if alembic_ini.exists() else Config()
    config.set_main_option("script_location", str(root_dir / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    # Leave logging configuration to the CLI entrypoint.
    config.attributes["configure_logger"] = False
    logger.debug("Upgrading task database %s to head", db_path)
    command.upgrade(config, "head")
