"""Persistent store for workflows, tasks, results and task events."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from taskchain.engine.errors import InvalidTaskTransition, StoreError
from taskchain.engine.models import (
    ResultView,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
    WorkflowCreate,
    WorkflowSnapshot,
    WorkflowStatus,
    WorkflowView,
    can_transition,
)
from taskchain.storage.alembic_runner import upgrade_head
from taskchain.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from taskchain.storage.sqlmodel_models import TaskEventRow, TaskResultRow, TaskRow, WorkflowRow


class WorkflowRepository:
    """Workflow persistence facade backed by SQLModel + SQLite.

    Every method opens its own session and commits before returning, so a write is
    durable before any dependent read. Task status changes are conditional updates
    keyed on the expected current status; a lost race surfaces as
    `InvalidTaskTransition` instead of a silent overwrite.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        with _store_errors():
            upgrade_head(self.db_path)

    # ---------------- Workflows ----------------

    def create_workflow(self, payload: WorkflowCreate) -> WorkflowSnapshot:
        """Insert a workflow in `initial` status with all its tasks `queued`."""

        now = utc_now()
        workflow_id = payload.workflow_id or str(uuid4())
        with _store_errors(), Session(self.engine) as session:
            session.add(
                WorkflowRow(
                    workflow_id=workflow_id,
                    client_id=payload.client_id,
                    name=payload.name,
                    status=WorkflowStatus.INITIAL.value,
                    final_result=None,
                    created_at=now,
                    updated_at=now,
                ),
            )
            session.flush()
            for task in payload.tasks:
                task_id = str(uuid4())
                session.add(
                    TaskRow(
                        task_id=task_id,
                        workflow_id=workflow_id,
                        client_id=payload.client_id,
                        step_number=task.step_number,
                        task_type=task.task_type,
                        status=TaskStatus.QUEUED.value,
                        depends_on=task.depends_on,
                        payload=task.payload,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                session.flush()
                self._add_event(
                    session=session,
                    task_id=task_id,
                    event_type="created",
                    status_from=None,
                    status_to=TaskStatus.QUEUED,
                    details={
                        "step_number": task.step_number,
                        "task_type": task.task_type,
                        "depends_on": task.depends_on,
                    },
                )
            session.commit()

        snapshot = self.get_workflow_snapshot(workflow_id=workflow_id)
        if snapshot is None:  # pragma: no cover - just inserted
            raise StoreError(f"Workflow vanished after insert: {workflow_id}")
        return snapshot

    def get_workflow(self, *, workflow_id: str) -> WorkflowView | None:
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(WorkflowRow).where(WorkflowRow.workflow_id == workflow_id),
            ).one_or_none()
            return _to_workflow_view(row) if row is not None else None

    def get_workflow_snapshot(self, *, workflow_id: str) -> WorkflowSnapshot | None:
        """Load a workflow together with the current state of every task."""

        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(WorkflowRow).where(WorkflowRow.workflow_id == workflow_id),
            ).one_or_none()
            if row is None:
                return None
            task_rows = session.exec(
                select(TaskRow)
                .where(TaskRow.workflow_id == workflow_id)
                .order_by(col(TaskRow.step_number).asc()),
            ).all()
            return WorkflowSnapshot(
                workflow=_to_workflow_view(row),
                tasks=[_to_task_view(task_row) for task_row in task_rows],
            )

    def update_workflow(
        self,
        *,
        workflow_id: str,
        status: WorkflowStatus,
        final_result: str | None,
    ) -> WorkflowView:
        """Persist a recomputed workflow status and summary."""

        now = utc_now()
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(WorkflowRow).where(WorkflowRow.workflow_id == workflow_id),
            ).one_or_none()
            if row is None:
                raise StoreError(f"Workflow not found: {workflow_id}")
            row.status = status.value
            row.final_result = final_result
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_workflow_view(row)

    def list_open_workflows(self, *, limit: int = 100) -> list[WorkflowView]:
        """Oldest-first workflows that have not reached `completed` or `failed`."""

        open_statuses = [WorkflowStatus.INITIAL.value, WorkflowStatus.IN_PROGRESS.value]
        with _store_errors(), Session(self.engine) as session:
            rows = session.exec(
                select(WorkflowRow)
                .where(col(WorkflowRow.status).in_(open_statuses))
                .order_by(col(WorkflowRow.created_at).asc())
                .limit(limit),
            ).all()
        return [_to_workflow_view(row) for row in rows]

    # ---------------- Tasks ----------------

    def get_task(self, *, task_id: str) -> TaskView | None:
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def get_task_by_step(self, *, workflow_id: str, step_number: int) -> TaskView | None:
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(TaskRow).where(
                    TaskRow.workflow_id == workflow_id,
                    TaskRow.step_number == step_number,
                ),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_workflow_tasks(self, *, workflow_id: str) -> list[TaskView]:
        with _store_errors(), Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(TaskRow.workflow_id == workflow_id)
                .order_by(col(TaskRow.step_number).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_tasks(
        self,
        *,
        workflow_id: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by workflow and status."""

        with _store_errors(), Session(self.engine) as session:
            statement = select(TaskRow)
            if workflow_id is not None:
                statement = statement.where(TaskRow.workflow_id == workflow_id)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            statement = statement.order_by(
                col(TaskRow.created_at).desc(),
                col(TaskRow.step_number).asc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def claim_next_queued_task(self, *, worker_id: str) -> TaskView | None:
        """Atomically claim one queued, unclaimed task.

        The claim stamps `worker_id`/`claimed_at` without touching `status`; a
        concurrent claimant loses the conditional update and moves to the next row.
        """

        while True:
            now = utc_now()
            with _store_errors(), Session(self.engine) as session:
                candidate = session.exec(
                    select(TaskRow)
                    .where(
                        TaskRow.status == TaskStatus.QUEUED.value,
                        col(TaskRow.worker_id).is_(None),
                    )
                    .order_by(
                        col(TaskRow.created_at).asc(),
                        col(TaskRow.workflow_id).asc(),
                        col(TaskRow.step_number).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == candidate.task_id,
                        col(TaskRow.status) == TaskStatus.QUEUED.value,
                        col(TaskRow.worker_id).is_(None),
                    )
                    .values(
                        worker_id=worker_id,
                        claimed_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(TaskRow).where(TaskRow.task_id == candidate.task_id),
                ).one()
                self._add_event(
                    session=session,
                    task_id=claimed.task_id,
                    event_type="claimed",
                    status_from=TaskStatus.QUEUED,
                    status_to=TaskStatus.QUEUED,
                    details={"worker_id": worker_id},
                )
                session.commit()
                return _to_task_view(claimed)

    def release_stale_claims(self, *, stale_after: timedelta) -> int:
        """Drop claims on still-queued tasks left behind by a worker that died mid-step."""

        cutoff = to_db_datetime(utc_now() - stale_after)
        with _store_errors(), Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow).where(
                    TaskRow.status == TaskStatus.QUEUED.value,
                    col(TaskRow.worker_id).is_not(None),
                    col(TaskRow.claimed_at) <= cutoff,
                ),
            ).all()
            released = 0
            for row in rows:
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == row.task_id,
                        col(TaskRow.status) == TaskStatus.QUEUED.value,
                        col(TaskRow.worker_id) == row.worker_id,
                    )
                    .values(worker_id=None, claimed_at=None, updated_at=to_db_datetime(utc_now())),
                )
                if result.rowcount != 1:
                    continue
                released += 1
                self._add_event(
                    session=session,
                    task_id=row.task_id,
                    event_type="claim_released",
                    status_from=TaskStatus.QUEUED,
                    status_to=TaskStatus.QUEUED,
                    details={"worker_id": row.worker_id},
                )
            session.commit()
        return released

    def block_task(self, *, task_id: str, reason: str) -> TaskView:
        """Move a claimed queued task to `blocked` and release its claim."""

        return self._transition(
            task_id=task_id,
            status_from=TaskStatus.QUEUED,
            status_to=TaskStatus.BLOCKED,
            event_type="blocked",
            values={"worker_id": None, "claimed_at": None, "progress": None},
            details={"reason": reason},
        )

    def start_task(self, *, task_id: str, progress: str) -> TaskView:
        """Move a claimed queued task to `in_progress`."""

        return self._transition(
            task_id=task_id,
            status_from=TaskStatus.QUEUED,
            status_to=TaskStatus.IN_PROGRESS,
            event_type="started",
            values={"progress": progress},
            details={},
        )

    def complete_task(self, *, task_id: str, data: str) -> tuple[TaskView, ResultView]:
        """Store the job output and mark the running task `completed`."""

        return self._finish_with_result(
            task_id=task_id,
            status_from=TaskStatus.IN_PROGRESS,
            status_to=TaskStatus.COMPLETED,
            event_type="completed",
            data=data,
            details={},
        )

    def fail_task(
        self,
        *,
        task_id: str,
        status_from: TaskStatus,
        data: str,
        error_summary: str,
    ) -> tuple[TaskView, ResultView]:
        """Store an error payload and mark the task `failed`.

        Valid from `queued` (resolver auto-fail) and from `in_progress` (job failure).
        """

        return self._finish_with_result(
            task_id=task_id,
            status_from=status_from,
            status_to=TaskStatus.FAILED,
            event_type="failed",
            data=data,
            details={"error_summary": error_summary},
        )

    def requeue_blocked_tasks(self, *, workflow_id: str) -> list[str]:
        """Move every `blocked` task of a workflow back to `queued`."""

        now = utc_now()
        requeued: list[str] = []
        with _store_errors(), Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(
                    TaskRow.workflow_id == workflow_id,
                    TaskRow.status == TaskStatus.BLOCKED.value,
                )
                .order_by(col(TaskRow.step_number).asc()),
            ).all()
            for row in rows:
                result = session.exec(
                    sa_update(TaskRow)
                    .where(
                        col(TaskRow.task_id) == row.task_id,
                        col(TaskRow.status) == TaskStatus.BLOCKED.value,
                    )
                    .values(
                        status=TaskStatus.QUEUED.value,
                        worker_id=None,
                        claimed_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                requeued.append(row.task_id)
                self._add_event(
                    session=session,
                    task_id=row.task_id,
                    event_type="requeued",
                    status_from=TaskStatus.BLOCKED,
                    status_to=TaskStatus.QUEUED,
                    details={},
                )
            session.commit()
        return requeued

    # ---------------- Results & events ----------------

    def get_result(self, *, task_id: str) -> ResultView | None:
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(TaskResultRow).where(TaskResultRow.task_id == task_id),
            ).one_or_none()
            return _to_result_view(row) if row is not None else None

    def get_result_by_id(self, *, result_id: str) -> ResultView | None:
        with _store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(TaskResultRow).where(TaskResultRow.result_id == result_id),
            ).one_or_none()
            return _to_result_view(row) if row is not None else None

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with its result and event stream."""

        with _store_errors(), Session(self.engine) as session:
            task = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            if task is None:
                return None
            result = session.exec(
                select(TaskResultRow).where(TaskResultRow.task_id == task_id),
            ).one_or_none()
            event_rows = session.exec(
                select(TaskEventRow)
                .where(TaskEventRow.task_id == task_id)
                .order_by(col(TaskEventRow.created_at).asc(), col(TaskEventRow.id).asc()),
            ).all()

            events: list[TaskEventView] = []
            for row in event_rows:
                details: dict[str, Any] = {}
                if row.details_json:
                    parsed = json.loads(row.details_json)
                    if isinstance(parsed, dict):
                        details = parsed
                events.append(
                    TaskEventView(
                        event_id=row.id or 0,
                        task_id=row.task_id,
                        event_type=row.event_type,
                        status_from=(
                            TaskStatus(row.status_from) if row.status_from is not None else None
                        ),
                        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                        created_at=to_utc_aware_datetime(row.created_at),
                        details=details,
                    ),
                )

            return TaskDetails(
                task=_to_task_view(task),
                result=_to_result_view(result) if result is not None else None,
                events=events,
            )

    # ---------------- Internals ----------------

    def _transition(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status_from: TaskStatus,
        status_to: TaskStatus,
        event_type: str,
        values: dict[str, object],
        details: dict[str, object],
    ) -> TaskView:
        if not can_transition(status_from, status_to):
            raise InvalidTaskTransition(task_id, status_from.value, status_to.value)

        now = utc_now()
        with _store_errors(), Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == status_from.value,
                )
                .values(status=status_to.value, updated_at=to_db_datetime(now), **values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidTaskTransition(task_id, status_from.value, status_to.value)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details=details,
            )
            session.commit()
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one()
            return _to_task_view(row)

    def _finish_with_result(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status_from: TaskStatus,
        status_to: TaskStatus,
        event_type: str,
        data: str,
        details: dict[str, object],
    ) -> tuple[TaskView, ResultView]:
        if not can_transition(status_from, status_to):
            raise InvalidTaskTransition(task_id, status_from.value, status_to.value)

        now = utc_now()
        result_id = str(uuid4())
        with _store_errors(), Session(self.engine) as session:
            update = session.exec(
                sa_update(TaskRow)
                .where(
                    col(TaskRow.task_id) == task_id,
                    col(TaskRow.status) == status_from.value,
                )
                .values(
                    status=status_to.value,
                    progress=None,
                    result_id=result_id,
                    updated_at=to_db_datetime(now),
                ),
            )
            if update.rowcount != 1:
                session.rollback()
                raise InvalidTaskTransition(task_id, status_from.value, status_to.value)
            result_row = TaskResultRow(
                result_id=result_id,
                task_id=task_id,
                data=data,
                created_at=now,
            )
            session.add(result_row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details={"result_id": result_id, **details},
            )
            session.commit()
            session.refresh(result_row)
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one()
            return _to_task_view(row), _to_result_view(result_row)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEventRow(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


@contextmanager
def _store_errors() -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as error:
        raise StoreError(str(error)) from error


def _to_workflow_view(row: WorkflowRow) -> WorkflowView:
    return WorkflowView(
        workflow_id=row.workflow_id,
        client_id=row.client_id,
        name=row.name,
        status=WorkflowStatus(row.status),
        final_result=row.final_result,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: TaskRow) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        workflow_id=row.workflow_id,
        client_id=row.client_id,
        step_number=row.step_number,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        depends_on=row.depends_on,
        progress=row.progress,
        result_id=row.result_id,
        payload=row.payload,
        worker_id=row.worker_id,
        claimed_at=to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_result_view(row: TaskResultRow) -> ResultView:
    return ResultView(
        result_id=row.result_id,
        task_id=row.task_id,
        data=row.data,
        created_at=to_utc_aware_datetime(row.created_at),
    )
