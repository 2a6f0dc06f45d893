"""Hosting capabilities required before touching the target project."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class ServerInfo:
    """Resolve the runtime executable used by the package manager."""

    def __init__(self, php_executable: str | None = None) -> None:
        self._configured = php_executable

    def get_php_executable(self) -> str | None:
        """Return the configured executable if usable, else the one found on PATH."""

        if self._configured:
            configured = Path(self._configured)
            if configured.is_file():
                return str(configured)
            resolved = shutil.which(self._configured)
            if resolved is not None:
                return resolved
            logger.warning("Configured PHP executable not found: %s", self._configured)
            return None
        return shutil.which("php")
