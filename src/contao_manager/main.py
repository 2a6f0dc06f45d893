"""CLI entrypoint for contao-manager."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from contao_manager import __version__
from contao_manager.composer.controllers import ComposerCliController, ComposerStatusCommand
from contao_manager.errors import (
    ConfigurationError,
    OperationError,
    PreconditionError,
    ServiceUnavailableError,
    TaskConflictError,
    TaskNotFoundError,
    TaskStateError,
)
from contao_manager.task.controllers import (
    TaskCliController,
    TaskConsoleCommand,
    TaskInspectCommand,
    TaskListCommand,
    TaskPruneCommand,
    TaskRunCommand,
    TaskRunResult,
)
from contao_manager.task.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
COMPOSER_CONTROLLER = ComposerCliController()
TASK_CONTROLLER = TaskCliController()

EX_UNAVAILABLE = 69
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ServiceUnavailableException(click.ClickException):
    """Hosting configuration is incomplete; mirrors HTTP 503."""

    exit_code = EX_UNAVAILABLE

    def __init__(self, message: str, config_path: str) -> None:
        super().__init__(f"{message} Configure it at {config_path}.")


@click.group()
@click.version_option(version=__version__, prog_name="contao-manager")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for diagnostics written to stderr.",
)
def contao_manager(log_level: str) -> None:
    """Contao Manager CLI."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@contao_manager.group()
def server() -> None:
    """Server and project state commands."""


@server.command("composer")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory. Defaults to CONTAO_MANAGER_PROJECT_DIR or the cwd.",
)
@click.option("--locale", default=None, help="Locale for error messages, for example de.")
def server_composer(project_dir: Path | None, locale: str | None) -> None:
    """Print manifest, lockfile and vendor state as JSON.

    Do not run this while a task is modifying the project.
    """

    with _cli_errors():
        lines = COMPOSER_CONTROLLER.status(
            ComposerStatusCommand(project_dir=project_dir, locale=locale),
        )
    _emit_lines(lines)


@contao_manager.group()
def task() -> None:
    """Durable task commands."""


def _common_options(func):
    func = click.option(
        "--project-dir",
        type=click.Path(path_type=Path, file_okay=False),
        default=None,
        help="Project directory. Defaults to CONTAO_MANAGER_PROJECT_DIR or the cwd.",
    )(func)
    func = click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path.",
    )(func)
    return func


def _run_option(func):
    return click.option(
        "--run/--no-run",
        default=True,
        show_default=True,
        help="Execute the task right after creating it.",
    )(func)


@task.command("create-project")
@_common_options
@_run_option
@click.option("--version", "version", required=True, help="Contao version, for example 4.13.")
@click.option(
    "--core-only/--no-core-only",
    default=False,
    show_default=True,
    help="Require only the core bundle without the standard extension bundles.",
)
@click.option(
    "--install/--no-install",
    default=True,
    show_default=True,
    help="Run composer install after writing composer.json.",
)
def task_create_project(  # noqa: PLR0913
    db_path: Path | None,
    project_dir: Path | None,
    run: bool,
    version: str,
    core_only: bool,
    install: bool,
) -> None:
    """Create a new managed-edition project."""

    with _cli_errors():
        result = TASK_CONTROLLER.create_project(
            db_path=db_path,
            project_dir=project_dir,
            version=version,
            core_only=core_only,
            install=install,
            run=run,
        )
    _emit_result(result)


@task.command("install")
@_common_options
@_run_option
def task_install(db_path: Path | None, project_dir: Path | None, run: bool) -> None:
    """Run composer install for the project."""

    with _cli_errors():
        result = TASK_CONTROLLER.install(db_path=db_path, project_dir=project_dir, run=run)
    _emit_result(result)


@task.command("update")
@_common_options
@_run_option
@click.option(
    "--package",
    "packages",
    multiple=True,
    help="Package to update. Can be repeated; omit to update everything.",
)
def task_update(
    db_path: Path | None,
    project_dir: Path | None,
    run: bool,
    packages: tuple[str, ...],
) -> None:
    """Run composer update for the project."""

    with _cli_errors():
        result = TASK_CONTROLLER.update(
            db_path=db_path,
            project_dir=project_dir,
            packages=packages,
            run=run,
        )
    _emit_result(result)


@task.command("run")
@_common_options
@click.option("--task-id", default=None, help="Task id. Defaults to the open task.")
def task_run(db_path: Path | None, project_dir: Path | None, task_id: str | None) -> None:
    """Run or resume a task from its first unfinished operation."""

    with _cli_errors():
        result = TASK_CONTROLLER.run(
            TaskRunCommand(db_path=db_path, project_dir=project_dir, task_id=task_id),
        )
    _emit_result(result)


@task.command("status")
@_common_options
@click.option("--task-id", default=None, help="Task id. Defaults to the open or latest task.")
def task_status(db_path: Path | None, project_dir: Path | None, task_id: str | None) -> None:
    """Show task, operation and event state."""

    with _cli_errors():
        lines = TASK_CONTROLLER.status(
            TaskInspectCommand(db_path=db_path, project_dir=project_dir, task_id=task_id),
        )
    _emit_lines(lines)


@task.command("console")
@_common_options
@click.option("--task-id", default=None, help="Task id. Defaults to the open or latest task.")
@click.option(
    "--offset",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Print only output appended after this cursor.",
)
@click.option(
    "--operation",
    "position",
    type=click.IntRange(min=0),
    default=None,
    help="Restrict output to one operation position.",
)
def task_console(
    db_path: Path | None,
    project_dir: Path | None,
    task_id: str | None,
    offset: int,
    position: int | None,
) -> None:
    """Print console output and the cursor to poll from next."""

    with _cli_errors():
        lines = TASK_CONTROLLER.console(
            TaskConsoleCommand(
                db_path=db_path,
                project_dir=project_dir,
                task_id=task_id,
                offset=offset,
                position=position,
            ),
        )
    _emit_lines(lines)


@task.command("abort")
@_common_options
@click.option("--task-id", default=None, help="Task id. Defaults to the open task.")
def task_abort(db_path: Path | None, project_dir: Path | None, task_id: str | None) -> None:
    """Abort a pending task or stop an active one at the next operation boundary."""

    with _cli_errors():
        lines = TASK_CONTROLLER.abort(
            TaskInspectCommand(db_path=db_path, project_dir=project_dir, task_id=task_id),
        )
    _emit_lines(lines)


@task.command("rerun")
@_common_options
@click.option("--task-id", default=None, help="Task id. Defaults to the latest task.")
def task_rerun(db_path: Path | None, project_dir: Path | None, task_id: str | None) -> None:
    """Reopen a failed or aborted task and resume it."""

    with _cli_errors():
        result = TASK_CONTROLLER.rerun(
            TaskRunCommand(db_path=db_path, project_dir=project_dir, task_id=task_id),
        )
    _emit_result(result)


@task.command("list")
@_common_options
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Filter by task status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of tasks to print.",
)
def task_list(
    db_path: Path | None,
    project_dir: Path | None,
    status: str | None,
    limit: int,
) -> None:
    """List recent tasks."""

    with _cli_errors():
        lines = TASK_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                project_dir=project_dir,
                status=status,
                limit=limit,
            ),
        )
    _emit_lines(lines)


@task.command("prune")
@_common_options
@click.option(
    "--hours",
    type=click.IntRange(min=0),
    default=None,
    help=(
        "Delete tasks finished more than this many hours ago. "
        "Defaults to CONTAO_MANAGER_TASK_RETENTION_HOURS."
    ),
)
def task_prune(db_path: Path | None, project_dir: Path | None, hours: int | None) -> None:
    """Delete finished tasks according to retention policy."""

    with _cli_errors():
        lines = TASK_CONTROLLER.prune(
            TaskPruneCommand(db_path=db_path, project_dir=project_dir, hours=hours),
        )
    _emit_lines(lines)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except ServiceUnavailableError as error:
        raise ServiceUnavailableException(str(error), error.config_path) from error
    except (
        ConfigurationError,
        PreconditionError,
        OperationError,
        TaskConflictError,
        TaskNotFoundError,
        TaskStateError,
    ) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


def _emit_result(result: TaskRunResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Task did not complete.")


if __name__ == "__main__":  # pragma: no cover
    contao_manager()
