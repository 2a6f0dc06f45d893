from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import allure
import pytest
from conftest import expire_heartbeat

from contao_manager.errors import (
    OperationError,
    PreconditionError,
    TaskConflictError,
    TaskStateError,
)
from contao_manager.operation import AbstractInlineOperation, AbstractProcessOperation
from contao_manager.task.console import ConsoleOutput
from contao_manager.task.models import (
    OperationPlan,
    OperationStatus,
    TaskConfig,
    TaskCreate,
    TaskStatus,
)
from contao_manager.task.repository import TaskRepository
from contao_manager.task.runner import TaskRunner

pytestmark = [
    allure.epic("Task Runtime"),
    allure.feature("Task Runner"),
]


class RecordingOperation(AbstractInlineOperation):
    def __init__(
        self,
        task_config: TaskConfig,
        *,
        name: str,
        calls: list[str],
        error: Exception | None = None,
        enabled: bool = True,
        on_run=None,
    ) -> None:
        super().__init__(task_config)
        self.name = name
        self.calls = calls
        self.error = error
        self.enabled = enabled
        self.on_run = on_run

    @property
    def summary(self) -> str:
        return f"do {self.name}"

    def should_run(self) -> bool:
        return self.enabled

    def do_run(self, console: ConsoleOutput) -> None:
        self.calls.append(self.name)
        console.writeln(f"{self.name} output")
        if self.on_run is not None:
            self.on_run()
        if self.error is not None:
            raise self.error


class PythonProcessOperation(AbstractProcessOperation):
    name = "python"

    def __init__(self, task_config: TaskConfig, *, code: str, cwd: Path, timeout: int = 30):
        super().__init__(task_config, cwd=cwd, timeout_seconds=timeout)
        self.code = code

    @property
    def summary(self) -> str:
        return "python -c ..."

    def build_command(self) -> list[str]:
        return [sys.executable, "-c", self.code]


@pytest.fixture()
def repository(tmp_path: Path):
    repo = TaskRepository(tmp_path / "runner.db")
    repo.init_schema()
    yield repo
    repo.close()


def _create(repository: TaskRepository, tmp_path: Path, names: list[str]) -> str:
    task = repository.create_task(
        TaskCreate(name="test/task", project_dir=tmp_path),
        [OperationPlan(name=name, summary=f"do {name}") for name in names],
    )
    return task.task_id


def test_runs_operations_in_order_and_completes(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="first", calls=calls),
            RecordingOperation(config, name="second", calls=calls),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert summary.executed == 2
    assert calls == ["first", "second"]
    task = repository.get_task(task_id)
    assert task.status == TaskStatus.COMPLETE
    assert [op.status for op in task.operations] == [OperationStatus.COMPLETE] * 2
    console = repository.read_console(task_id=task_id)
    assert console.text == "$ do first\nfirst output\n$ do second\nsecond output\n"


def test_failure_halts_and_keeps_error_on_operation(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(
                config,
                name="first",
                calls=calls,
                error=PreconditionError("Cannot install into existing application"),
            ),
            RecordingOperation(config, name="second", calls=calls),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.FAILED
    assert summary.failed_operation == "first"
    assert calls == ["first"]
    task = repository.get_task(task_id)
    assert task.error_summary == "first: Cannot install into existing application"
    assert [op.status for op in task.operations] == [
        OperationStatus.ERROR,
        OperationStatus.PENDING,
    ]
    assert "Cannot install into existing application" in repository.read_console(
        task_id=task_id,
    ).text
    with pytest.raises(TaskStateError, match="re-run it explicitly"):
        runner.run(task_id)


def test_rerun_resumes_after_completed_operations(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    failures = [OperationError("exit 1")]

    def _factory(config: TaskConfig):
        return [
            RecordingOperation(config, name="first", calls=calls),
            RecordingOperation(
                config,
                name="second",
                calls=calls,
                error=failures.pop() if failures else None,
            ),
        ]

    runner = TaskRunner(repository=repository, operation_factory=_factory)
    assert runner.run(task_id).status == TaskStatus.FAILED

    repository.rerun_task(task_id)
    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert summary.resumed_from == 1
    assert calls == ["first", "second", "second"]


def test_crashed_running_operation_is_retried(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    repository.start_task(task_id)
    repository.set_operation_status(task_id=task_id, position=0, status=OperationStatus.COMPLETE)
    repository.set_operation_status(task_id=task_id, position=1, status=OperationStatus.RUNNING)
    expire_heartbeat(repository, task_id)
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="first", calls=calls),
            RecordingOperation(config, name="second", calls=calls),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert calls == ["second"]


def test_skipped_operation_is_not_run(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="first", calls=calls),
            RecordingOperation(config, name="second", calls=calls, enabled=False),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert summary.skipped == 1
    assert calls == ["first"]
    statuses = [op.status for op in repository.get_task(task_id).operations]
    assert statuses == [OperationStatus.COMPLETE, OperationStatus.SKIPPED]


def test_abort_is_honoured_at_next_operation_boundary(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first", "second"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(
                config,
                name="first",
                calls=calls,
                on_run=lambda: repository.request_abort(task_id),
            ),
            RecordingOperation(config, name="second", calls=calls),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.ABORTED
    assert calls == ["first"]
    task = repository.get_task(task_id)
    assert task.status == TaskStatus.ABORTED
    assert [op.status for op in task.operations] == [
        OperationStatus.COMPLETE,
        OperationStatus.PENDING,
    ]


def test_completed_task_is_not_run_again(repository, tmp_path: Path) -> None:
    calls: list[str] = []
    task_id = _create(repository, tmp_path, ["first"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [RecordingOperation(config, name="first", calls=calls)],
    )

    runner.run(task_id)
    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert summary.executed == 0
    assert calls == ["first"]


def test_mismatched_definition_is_rejected(repository, tmp_path: Path) -> None:
    task_id = _create(repository, tmp_path, ["first"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [RecordingOperation(config, name="other", calls=[])],
    )

    with pytest.raises(TaskStateError, match="do not match"):
        runner.run(task_id)
    assert repository.get_task(task_id).status == TaskStatus.PENDING


def test_unexpected_error_fails_task_and_propagates(repository, tmp_path: Path) -> None:
    task_id = _create(repository, tmp_path, ["first"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="first", calls=[], error=KeyError("boom")),
        ],
    )

    with pytest.raises(KeyError):
        runner.run(task_id)

    task = repository.get_task(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.operations[0].status == OperationStatus.ERROR


def test_process_operation_streams_output(repository, tmp_path: Path) -> None:
    task_id = _create(repository, tmp_path, ["python"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            PythonProcessOperation(
                config,
                code="print('resolving'); print('installed')",
                cwd=tmp_path,
            ),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.COMPLETE
    assert repository.read_console(task_id=task_id).text == (
        "$ python -c ...\nresolving\ninstalled\n"
    )


def test_process_operation_non_zero_exit_fails(repository, tmp_path: Path) -> None:
    task_id = _create(repository, tmp_path, ["python"])
    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            PythonProcessOperation(config, code="import sys; sys.exit(3)", cwd=tmp_path),
        ],
    )

    summary = runner.run(task_id)

    assert summary.status == TaskStatus.FAILED
    task = repository.get_task(task_id)
    assert task.operations[0].error_summary == "python -c ... failed with exit code 3."


def test_process_operation_timeout_terminates(tmp_path: Path) -> None:
    operation = PythonProcessOperation(
        TaskConfig(task_id="t", name="test/task"),
        code="import time; time.sleep(30)",
        cwd=tmp_path,
        timeout=1,
    )

    with pytest.raises(OperationError, match="timed out after 1 seconds"):
        operation.run(ConsoleOutput())


def test_process_operation_missing_binary(tmp_path: Path) -> None:
    class MissingBinary(PythonProcessOperation):
        def build_command(self) -> list[str]:
            return [str(tmp_path / "no-such-binary")]

    operation = MissingBinary(TaskConfig(task_id="t", name="test/task"), code="", cwd=tmp_path)

    with pytest.raises(OperationError, match="Command not found"):
        operation.run(ConsoleOutput())


def test_second_runner_is_refused_while_first_is_alive(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    first_repository = TaskRepository(db_path)
    first_repository.init_schema()
    second_repository = TaskRepository(db_path)
    calls: list[str] = []
    entered = threading.Event()
    release = threading.Event()
    results: dict[str, object] = {}
    task_id = _create(first_repository, tmp_path, ["install"])

    def _hold() -> None:
        entered.set()
        release.wait(10)

    first = TaskRunner(
        repository=first_repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="install", calls=calls, on_run=_hold),
        ],
    )
    second = TaskRunner(
        repository=second_repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="install", calls=calls),
        ],
    )
    thread = threading.Thread(target=lambda: results.update(summary=first.run(task_id)))
    thread.start()
    try:
        assert entered.wait(10)
        with pytest.raises(TaskConflictError, match="already being run"):
            second.run(task_id)
    finally:
        release.set()
        thread.join(10)

    try:
        assert calls == ["install"]
        assert results["summary"].status == TaskStatus.COMPLETE
        task = second_repository.get_task(task_id)
        assert task.runner_id == first.runner_id
        assert task.operations[0].status == OperationStatus.COMPLETE
    finally:
        first_repository.close()
        second_repository.close()


def test_heartbeat_is_refreshed_during_long_operation(repository, tmp_path: Path) -> None:
    task_id = _create(repository, tmp_path, ["slow"])
    seen = []

    def _observe() -> None:
        seen.append(repository.get_task(task_id).heartbeat_at)
        time.sleep(0.5)
        seen.append(repository.get_task(task_id).heartbeat_at)

    runner = TaskRunner(
        repository=repository,
        operation_factory=lambda config: [
            RecordingOperation(config, name="slow", calls=[], on_run=_observe),
        ],
        heartbeat_interval_seconds=0.05,
    )

    assert runner.run(task_id).status == TaskStatus.COMPLETE
    assert seen[0] is not None
    assert seen[1] > seen[0]
