"""Sequential, resumable execution of one task's operations."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from contao_manager.errors import (
    ConfigurationError,
    OperationError,
    PreconditionError,
    TaskNotFoundError,
    TaskStateError,
)
from contao_manager.operation import Operation
from contao_manager.task.console import ConsoleOutput
from contao_manager.task.models import (
    OperationStatus,
    OperationView,
    TaskConfig,
    TaskStatus,
    TaskView,
)
from contao_manager.task.repository import DEFAULT_RUNNER_STALE_AFTER, TaskRepository

logger = logging.getLogger(__name__)

OPERATION_FAILURES = (OperationError, PreconditionError, ConfigurationError)


@dataclass(slots=True)
class TaskRunSummary:
    """Aggregate counters for CLI reporting."""

    task_id: str
    status: TaskStatus
    executed: int = 0
    skipped: int = 0
    resumed_from: int | None = None
    failed_operation: str | None = None


class TaskRunner:
    """Run operations strictly in order, flushing state after every transition.

    Completed and skipped operations are never executed again, so a restarted
    process picks up at the first non-terminal operation. Abort requests (stored
    on the task or raised by SIGINT/SIGTERM) are honoured between operations only.

    The runner holds a lease on the task for the whole run and refreshes its
    heartbeat from a background thread, so a second runner is refused while this
    one is alive.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        operation_factory: Callable[[TaskConfig], list[Operation]],
        stale_after: timedelta = DEFAULT_RUNNER_STALE_AFTER,
        heartbeat_interval_seconds: float | None = None,
    ) -> None:
        self.repository = repository
        self.operation_factory = operation_factory
        self.stale_after = stale_after
        self.heartbeat_interval_seconds = (
            heartbeat_interval_seconds
            if heartbeat_interval_seconds is not None
            else max(0.5, stale_after.total_seconds() / 4)
        )
        self.runner_id = str(uuid4())
        self._stop_requested = False
        self._last_error: str | None = None

    def run(self, task_id: str) -> TaskRunSummary:
        task = self.repository.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        if task.status == TaskStatus.COMPLETE:
            return TaskRunSummary(task_id=task_id, status=task.status)
        if task.status in {TaskStatus.FAILED, TaskStatus.ABORTED}:
            raise TaskStateError(
                f"Task {task_id} is {task.status.value}; re-run it explicitly to resume.",
            )

        operations = self.operation_factory(task.config)
        _ensure_matching_operations(task, operations)

        started = self.repository.start_task(
            task_id,
            runner_id=self.runner_id,
            stale_after=self.stale_after,
        )
        with self._heartbeat(task_id), self._signal_handlers():
            return self._run_operations(started, operations)

    def _run_operations(self, task: TaskView, operations: list[Operation]) -> TaskRunSummary:
        summary = TaskRunSummary(task_id=task.task_id, status=task.status)
        for view, operation in zip(task.operations, operations, strict=True):
            if view.status in {OperationStatus.COMPLETE, OperationStatus.SKIPPED}:
                continue
            if view.status == OperationStatus.ERROR:
                return self._fail(summary, view, view.error_summary or "Operation failed.")
            if summary.resumed_from is None and view.position > 0:
                summary.resumed_from = view.position

            if self._stop_requested or self.repository.is_abort_requested(task.task_id):
                logger.info("Task %s aborted before %s", task.task_id, view.name)
                self.repository.abort_task(task.task_id)
                summary.status = TaskStatus.ABORTED
                return summary

            if not operation.should_run():
                self.repository.set_operation_status(
                    task_id=task.task_id,
                    position=view.position,
                    status=OperationStatus.SKIPPED,
                )
                summary.skipped += 1
                continue

            if not self._execute(task.task_id, view, operation):
                summary.executed += 1
                return self._fail(summary, view, self._last_error or "Operation failed.")
            summary.executed += 1

        self.repository.complete_task(task.task_id)
        summary.status = TaskStatus.COMPLETE
        logger.info("Task %s complete", task.task_id)
        return summary

    def _execute(self, task_id: str, view: OperationView, operation: Operation) -> bool:
        self._last_error = None
        self.repository.set_operation_status(
            task_id=task_id,
            position=view.position,
            status=OperationStatus.RUNNING,
        )
        console = ConsoleOutput(
            sink=lambda text: self.repository.append_console(
                task_id=task_id,
                position=view.position,
                content=text,
            ),
        )
        console.writeln(f"$ {operation.summary}")
        try:
            operation.run(console)
        except OPERATION_FAILURES as error:
            self._record_error(task_id, view, console, str(error))
            return False
        except Exception as error:
            logger.exception("Operation %s of task %s crashed", view.name, task_id)
            self._record_error(task_id, view, console, f"Unexpected error: {error}")
            self.repository.fail_task(task_id, error_summary=f"{view.name}: {error}")
            raise

        self.repository.set_operation_status(
            task_id=task_id,
            position=view.position,
            status=OperationStatus.COMPLETE,
        )
        return True

    def _record_error(
        self,
        task_id: str,
        view: OperationView,
        console: ConsoleOutput,
        message: str,
    ) -> None:
        logger.warning("Operation %s of task %s failed: %s", view.name, task_id, message)
        console.writeln(message)
        self.repository.set_operation_status(
            task_id=task_id,
            position=view.position,
            status=OperationStatus.ERROR,
            error_summary=message,
        )
        self._last_error = message

    def _fail(self, summary: TaskRunSummary, view: OperationView, message: str) -> TaskRunSummary:
        self.repository.fail_task(summary.task_id, error_summary=f"{view.name}: {message}")
        summary.status = TaskStatus.FAILED
        summary.failed_operation = view.name
        return summary

    @contextmanager
    def _heartbeat(self, task_id: str) -> Iterator[None]:
        stop = threading.Event()

        def _beat() -> None:
            while not stop.wait(self.heartbeat_interval_seconds):
                try:
                    held = self.repository.touch_task(task_id, runner_id=self.runner_id)
                except SQLAlchemyError:
                    logger.warning("Heartbeat for task %s failed", task_id, exc_info=True)
                    continue
                if not held:
                    logger.debug("Runner %s no longer holds task %s", self.runner_id, task_id)
                    return

        thread = threading.Thread(target=_beat, daemon=True, name="task-heartbeat")
        thread.start()
        try:
            yield
        finally:
            stop.set()
            thread.join(timeout=max(5.0, self.heartbeat_interval_seconds))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.warning("%s received, aborting at the next operation boundary", name)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _ensure_matching_operations(task: TaskView, operations: list[Operation]) -> None:
    persisted = [view.name for view in task.operations]
    defined = [operation.name for operation in operations]
    if persisted != defined:
        raise TaskStateError(
            f"Task {task.task_id} operations {persisted} do not match definition {defined}.",
        )
