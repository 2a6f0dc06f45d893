"""Operation contract shared by in-process and subprocess-backed steps."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Protocol

from contao_manager.errors import OperationError
from contao_manager.task.console import ConsoleOutput
from contao_manager.task.models import TaskConfig

logger = logging.getLogger(__name__)


class Operation(Protocol):
    """What the task runner relies on; variant details stay behind this contract."""

    name: str

    @property
    def summary(self) -> str:
        """Human-readable equivalent command line."""

    def should_run(self) -> bool:
        """Return False to mark the operation skipped."""

    def run(self, console: ConsoleOutput) -> None:
        """Execute the operation, raising on failure."""


class AbstractOperation(ABC):
    name = "operation"

    def __init__(self, task_config: TaskConfig) -> None:
        self.task_config = task_config

    @property
    @abstractmethod
    def summary(self) -> str: ...

    def should_run(self) -> bool:
        return True

    @abstractmethod
    def run(self, console: ConsoleOutput) -> None: ...


class AbstractInlineOperation(AbstractOperation):
    """Operation executed synchronously inside the orchestrator process."""

    def run(self, console: ConsoleOutput) -> None:
        logger.info("Running inline operation %s for task %s", self.name, self.task_config.task_id)
        self.do_run(console)

    @abstractmethod
    def do_run(self, console: ConsoleOutput) -> None: ...


class AbstractProcessOperation(AbstractOperation):
    """Operation that runs an external command and streams its output to the console."""

    def __init__(
        self,
        task_config: TaskConfig,
        *,
        cwd: Path,
        timeout_seconds: int,
        env: dict[str, str] | None = None,
    ) -> None:
        super().__init__(task_config)
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.env = env or {}

    @abstractmethod
    def build_command(self) -> list[str]: ...

    def run(self, console: ConsoleOutput) -> None:
        argv = self.build_command()
        if not argv:
            raise OperationError(f"{self.name}: command is empty.")

        env = os.environ.copy()
        env.update(self.env)
        logger.info("Starting %s: %s", self.name, " ".join(argv))
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=self.cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as error:
            raise OperationError(f"Command not found: {argv[0]}") from error
        except OSError as error:
            raise OperationError(f"Failed to start {argv[0]}: {error}") from error

        reader = threading.Thread(
            target=_drain_output,
            args=(process.stdout, console),
            daemon=True,
            name=f"{self.name}-output",
        )
        reader.start()
        exit_code, timed_out = _wait_for_exit(process, timeout_seconds=self.timeout_seconds)
        reader.join(timeout=5)

        if timed_out:
            raise OperationError(
                f"{self.summary} timed out after {self.timeout_seconds} seconds.",
            )
        if exit_code != 0:
            raise OperationError(f"{self.summary} failed with exit code {exit_code}.")
        logger.info("%s finished successfully", self.name)


def _drain_output(stream: IO[str] | None, console: ConsoleOutput) -> None:
    if stream is None:
        return
    with stream:
        for line in stream:
            console.write(line)


def _wait_for_exit(
    process: subprocess.Popen[str],
    *,
    timeout_seconds: int,
) -> tuple[int, bool]:
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False
        if time.monotonic() - start_monotonic >= timeout_seconds:
            logger.warning("Process %s exceeded %ss, terminating", process.pid, timeout_seconds)
            _terminate_process(process)
            return 124, True
        time.sleep(0.1)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
