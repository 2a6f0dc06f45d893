"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from contao_manager.errors import TaskConflictError, TaskNotFoundError, TaskStateError
from contao_manager.task.models import (
    OPEN_TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    ConsoleChunk,
    ConsoleRead,
    OperationPlan,
    OperationStatus,
    OperationView,
    TaskCreate,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from contao_manager.task.storage.alembic_runner import upgrade_head
from contao_manager.task.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from contao_manager.task.storage.sqlmodel_models import (
    Task,
    TaskConsoleChunk,
    TaskEvent,
    TaskOperation,
)

logger = logging.getLogger(__name__)

DEFAULT_RUNNER_STALE_AFTER = timedelta(minutes=2)


class TaskRepository:
    """Task persistence facade; every state transition is committed immediately."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def create_task(self, payload: TaskCreate, operations: Sequence[OperationPlan]) -> TaskView:
        """Persist a pending task with its ordered operations.

        Raises TaskConflictError when the project already has an open task.
        """

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        project_dir = str(payload.project_dir)
        with Session(self.engine) as session:
            existing = self._open_task_row(session=session, project_dir=project_dir)
            if existing is not None:
                raise TaskConflictError(
                    f"Task {existing.task_id} ({existing.name}) is already {existing.status}.",
                )
            session.add(
                Task(
                    task_id=task_id,
                    name=payload.name,
                    project_dir=project_dir,
                    options_json=json.dumps(payload.options, ensure_ascii=False, sort_keys=True),
                    status=TaskStatus.PENDING.value,
                    abort_requested=False,
                    created_at=now,
                    updated_at=now,
                ),
            )
            for position, plan in enumerate(operations):
                session.add(
                    TaskOperation(
                        task_id=task_id,
                        position=position,
                        name=plan.name,
                        summary=plan.summary,
                        status=OperationStatus.PENDING.value,
                        updated_at=now,
                    ),
                )
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.PENDING.value,
                details={"name": payload.name, "operations": [plan.name for plan in operations]},
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise TaskConflictError(
                    f"Another task is already open for project {project_dir}.",
                ) from error
        logger.info("Created task %s (%s) for %s", task_id, payload.name, project_dir)
        return self._require_task(task_id)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                return None
            return _to_task_view(row, self._operation_rows(session=session, task_id=task_id))

    def get_open_task(self, project_dir: Path) -> TaskView | None:
        """Return the pending/active task of a project, if any."""

        with Session(self.engine) as session:
            row = self._open_task_row(session=session, project_dir=str(project_dir))
            if row is None:
                return None
            return _to_task_view(row, self._operation_rows(session=session, task_id=row.task_id))

    def list_tasks(self, *, status: TaskStatus | None = None, limit: int = 50) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(Task).order_by(col(Task.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Task.status == status.value)
            rows = session.exec(statement).all()
            return [
                _to_task_view(row, self._operation_rows(session=session, task_id=row.task_id))
                for row in rows
            ]

    def start_task(
        self,
        task_id: str,
        *,
        runner_id: str | None = None,
        stale_after: timedelta = DEFAULT_RUNNER_STALE_AFTER,
    ) -> TaskView:
        """Claim a pending/active task for one runner and recover interrupted operations.

        An active task whose heartbeat is younger than ``stale_after`` belongs to a live
        runner and is refused with TaskConflictError. Running operations are reset to
        pending only after the previous lease has gone stale.
        """

        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")

        claimant = runner_id or str(uuid4())
        now = utc_now()
        with Session(self.engine) as session:
            row = self._task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            if previous not in OPEN_TASK_STATUSES:
                raise TaskStateError(f"Task {task_id} cannot be started from status={row.status}")
            previous_runner = row.runner_id
            if previous == TaskStatus.ACTIVE and not _is_lease_stale(row, stale_after=stale_after):
                heartbeat_at = to_utc_aware_datetime(row.heartbeat_at or row.updated_at)
                raise TaskConflictError(
                    f"Task {task_id} is already being run "
                    f"(runner_id={previous_runner}, heartbeat_at={heartbeat_at.isoformat()}).",
                )

            claimed = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == previous.value,
                    col(Task.runner_id).is_(None)
                    if previous_runner is None
                    else col(Task.runner_id) == previous_runner,
                )
                .values(
                    status=TaskStatus.ACTIVE.value,
                    runner_id=claimant,
                    heartbeat_at=to_db_datetime(now),
                    started_at=to_db_datetime(row.started_at or now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if claimed.rowcount != 1:
                session.rollback()
                raise TaskConflictError(f"Task {task_id} was claimed by another runner.")

            interrupted = session.exec(
                select(TaskOperation).where(
                    TaskOperation.task_id == task_id,
                    TaskOperation.status == OperationStatus.RUNNING.value,
                ),
            ).all()
            for operation in interrupted:
                operation.status = OperationStatus.PENDING.value
                operation.started_at = None
                operation.updated_at = now
                session.add(operation)
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="operation_recovered",
                    status_from=OperationStatus.RUNNING.value,
                    status_to=OperationStatus.PENDING.value,
                    details={"position": operation.position, "operation": operation.name},
                )

            self._add_event(
                session=session,
                task_id=task_id,
                event_type="started" if previous == TaskStatus.PENDING else "resumed",
                status_from=previous.value,
                status_to=TaskStatus.ACTIVE.value,
                details={"recovered_operations": len(interrupted), "runner_id": claimant}
                | ({"stale_runner_id": previous_runner} if previous_runner else {}),
            )
            session.commit()
        if previous == TaskStatus.ACTIVE:
            logger.warning(
                "Took over stale task %s from runner %s (recovered %d operation(s))",
                task_id,
                previous_runner,
                len(interrupted),
            )
        return self._require_task(task_id)

    def touch_task(self, task_id: str, *, runner_id: str) -> bool:
        """Refresh the runner heartbeat; returns False once the lease is no longer held."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.ACTIVE.value,
                    col(Task.runner_id) == runner_id,
                )
                .values(heartbeat_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def set_operation_status(
        self,
        *,
        task_id: str,
        position: int,
        status: OperationStatus,
        error_summary: str | None = None,
    ) -> bool:
        """Record one operation transition; returns False when nothing changed."""

        now = utc_now()
        values: dict[str, object] = {
            "status": status.value,
            "error_summary": error_summary,
            "updated_at": to_db_datetime(now),
        }
        if status == OperationStatus.RUNNING:
            values["started_at"] = to_db_datetime(now)
            values["finished_at"] = None
        elif status == OperationStatus.PENDING:
            values["started_at"] = None
            values["finished_at"] = None
        else:
            values["finished_at"] = to_db_datetime(now)

        with Session(self.engine) as session:
            current = session.exec(
                select(TaskOperation).where(
                    TaskOperation.task_id == task_id,
                    TaskOperation.position == position,
                ),
            ).one_or_none()
            if current is None:
                raise TaskNotFoundError(f"Operation {position} not found for task {task_id}")
            previous = current.status
            result = session.exec(
                sa_update(TaskOperation)
                .where(
                    col(TaskOperation.task_id) == task_id,
                    col(TaskOperation.position) == position,
                    col(TaskOperation.status) == previous,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=f"operation_{status.value}",
                status_from=previous,
                status_to=status.value,
                details={"position": position, "operation": current.name}
                | ({"error_summary": error_summary} if error_summary else {}),
            )
            session.commit()
            return True

    def complete_task(self, task_id: str) -> bool:
        return self._finish_task(task_id=task_id, status=TaskStatus.COMPLETE, error_summary=None)

    def fail_task(self, task_id: str, *, error_summary: str) -> bool:
        return self._finish_task(
            task_id=task_id,
            status=TaskStatus.FAILED,
            error_summary=error_summary,
        )

    def abort_task(self, task_id: str) -> bool:
        return self._finish_task(task_id=task_id, status=TaskStatus.ABORTED, error_summary=None)

    def request_abort(self, task_id: str) -> TaskView:
        """Abort a pending task now, or flag an active one for the next operation boundary."""

        now = utc_now()
        with Session(self.engine) as session:
            row = self._task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            if previous in TERMINAL_TASK_STATUSES:
                raise TaskStateError(f"Task {task_id} cannot be aborted from status={row.status}")
            if previous == TaskStatus.PENDING:
                row.status = TaskStatus.ABORTED.value
                row.finished_at = now
            row.abort_requested = True
            row.updated_at = now
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="abort_requested",
                status_from=previous.value,
                status_to=row.status,
                details={},
            )
            session.commit()
        return self._require_task(task_id)

    def is_abort_requested(self, task_id: str) -> bool:
        with Session(self.engine) as session:
            return bool(self._task_row(session=session, task_id=task_id).abort_requested)

    def rerun_task(self, task_id: str) -> TaskView:
        """Explicit user retry: reopen a failed/aborted task from its first unfinished operation."""

        now = utc_now()
        with Session(self.engine) as session:
            row = self._task_row(session=session, task_id=task_id)
            previous = TaskStatus(row.status)
            if previous not in {TaskStatus.FAILED, TaskStatus.ABORTED}:
                raise TaskStateError(
                    f"Only failed/aborted tasks can be re-run, got status={row.status}",
                )
            existing = self._open_task_row(session=session, project_dir=row.project_dir)
            if existing is not None:
                raise TaskConflictError(
                    f"Task {existing.task_id} ({existing.name}) is already {existing.status}.",
                )

            reset = session.exec(
                sa_update(TaskOperation)
                .where(
                    col(TaskOperation.task_id) == task_id,
                    col(TaskOperation.status).in_(
                        [OperationStatus.ERROR.value, OperationStatus.RUNNING.value],
                    ),
                )
                .values(
                    status=OperationStatus.PENDING.value,
                    error_summary=None,
                    started_at=None,
                    finished_at=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            row.status = TaskStatus.PENDING.value
            row.abort_requested = False
            row.runner_id = None
            row.heartbeat_at = None
            row.error_summary = None
            row.finished_at = None
            row.updated_at = now
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="rerun",
                status_from=previous.value,
                status_to=TaskStatus.PENDING.value,
                details={"reset_operations": reset.rowcount},
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise TaskConflictError(
                    f"Another task is already open for project {row.project_dir}.",
                ) from error
        return self._require_task(task_id)

    def append_console(self, *, task_id: str, position: int | None, content: str) -> int:
        """Append one console chunk and return its sequence number."""

        with Session(self.engine) as session:
            last_seq = session.exec(
                select(func.max(TaskConsoleChunk.seq)).where(TaskConsoleChunk.task_id == task_id),
            ).one()
            seq = (last_seq or 0) + 1
            session.add(
                TaskConsoleChunk(
                    task_id=task_id,
                    seq=seq,
                    position=position,
                    content=content,
                    created_at=utc_now(),
                ),
            )
            session.commit()
            return seq

    def read_console(
        self,
        *,
        task_id: str,
        offset: int = 0,
        position: int | None = None,
    ) -> ConsoleRead:
        """Return chunks after ``offset``; the cursor only moves forward."""

        if offset < 0:
            raise ValueError("Console offset must be >= 0.")
        with Session(self.engine) as session:
            statement = (
                select(TaskConsoleChunk)
                .where(TaskConsoleChunk.task_id == task_id, TaskConsoleChunk.seq > offset)
                .order_by(col(TaskConsoleChunk.seq).asc())
            )
            if position is not None:
                statement = statement.where(TaskConsoleChunk.position == position)
            rows = session.exec(statement).all()
        chunks = tuple(
            ConsoleChunk(seq=row.seq, text=row.content, position=row.position) for row in rows
        )
        return ConsoleRead(chunks=chunks, cursor=chunks[-1].seq if chunks else offset)

    def list_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=row.status_from,
                    status_to=row.status_to,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    def prune_finished_tasks(self, *, older_than: timedelta) -> int:
        """Delete terminal tasks whose terminal status persisted past the retention window."""

        cutoff = to_db_datetime(utc_now() - older_than)
        with Session(self.engine) as session:
            task_ids = session.exec(
                select(Task.task_id).where(
                    col(Task.status).in_([status.value for status in TERMINAL_TASK_STATUSES]),
                    col(Task.finished_at).is_not(None),
                    col(Task.finished_at) <= cutoff,
                ),
            ).all()
            if not task_ids:
                return 0
            for model in (TaskConsoleChunk, TaskEvent, TaskOperation):
                session.exec(sa_delete(model).where(col(model.task_id).in_(task_ids)))
            session.exec(sa_delete(Task).where(col(Task.task_id).in_(task_ids)))
            session.commit()
        logger.info("Pruned %d finished task(s)", len(task_ids))
        return len(task_ids)

    def _finish_task(
        self,
        *,
        task_id: str,
        status: TaskStatus,
        error_summary: str | None,
    ) -> bool:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.ACTIVE.value,
                )
                .values(
                    status=status.value,
                    error_summary=error_summary,
                    finished_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=status.value,
                status_from=TaskStatus.ACTIVE.value,
                status_to=status.value,
                details={"error_summary": error_summary} if error_summary else {},
            )
            session.commit()
            return True

    def _require_task(self, task_id: str) -> TaskView:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return task

    def _task_row(self, *, session: Session, task_id: str) -> Task:
        row = session.get(Task, task_id)
        if row is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        return row

    def _open_task_row(self, *, session: Session, project_dir: str) -> Task | None:
        return session.exec(
            select(Task).where(
                Task.project_dir == project_dir,
                col(Task.status).in_([status.value for status in OPEN_TASK_STATUSES]),
            ),
        ).first()

    def _operation_rows(self, *, session: Session, task_id: str) -> list[TaskOperation]:
        return list(
            session.exec(
                select(TaskOperation)
                .where(TaskOperation.task_id == task_id)
                .order_by(col(TaskOperation.position).asc()),
            ).all(),
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: str | None,
        status_to: str | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _is_lease_stale(row: Task, *, stale_after: timedelta) -> bool:
    heartbeat_at = to_utc_aware_datetime(row.heartbeat_at or row.updated_at)
    return (utc_now() - heartbeat_at) > stale_after


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _to_task_view(row: Task, operations: list[TaskOperation]) -> TaskView:
    options = json.loads(row.options_json)
    return TaskView(
        task_id=row.task_id,
        name=row.name,
        project_dir=row.project_dir,
        options=options if isinstance(options, dict) else {},
        status=TaskStatus(row.status),
        abort_requested=bool(row.abort_requested),
        error_summary=row.error_summary,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=_optional_datetime(row.started_at),
        finished_at=_optional_datetime(row.finished_at),
        runner_id=row.runner_id,
        heartbeat_at=_optional_datetime(row.heartbeat_at),
        operations=[
            OperationView(
                position=operation.position,
                name=operation.name,
                summary=operation.summary,
                status=OperationStatus(operation.status),
                error_summary=operation.error_summary,
                started_at=_optional_datetime(operation.started_at),
                finished_at=_optional_datetime(operation.finished_at),
            )
            for operation in operations
        ],
    )
