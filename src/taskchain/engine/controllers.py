"""Controllers for taskchain CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from taskchain.config import Settings
from taskchain.engine.definitions import load_definition
from taskchain.engine.errors import WorkflowNotCompletedError, WorkflowNotFoundError
from taskchain.engine.executor import TaskExecutor
from taskchain.engine.models import TaskStatus
from taskchain.engine.repository import WorkflowRepository
from taskchain.engine.scheduler import SchedulerWorker
from taskchain.engine.services import CreateWorkflow, WorkflowService
from taskchain.jobs import default_registry


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus the process exit status."""

    lines: list[str]
    success: bool = True


@dataclass(slots=True)
class WorkflowCreateCommand:
    """CLI input for workflow creation."""

    db_path: Path | None
    definition_path: Path
    client_id: str | None
    payload: str


@dataclass(slots=True)
class WorkflowQueryCommand:
    """CLI input for workflow status/results."""

    db_path: Path | None
    workflow_id: str


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_tasks: int | None
    max_idle_polls: int | None = 1


@dataclass(slots=True)
class ListTasksCommand:
    db_path: Path | None
    workflow_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    db_path: Path | None
    task_id: str


class TaskchainCliController:
    """Coordinates workflow, worker, and inspection CLI operations."""

    def create_workflow(self, command: WorkflowCreateCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        definition = load_definition(command.definition_path)
        with _repository(settings) as repository:
            snapshot = WorkflowService(repository=repository).create_workflow(
                CreateWorkflow(
                    definition=definition,
                    client_id=command.client_id or settings.client_id,
                    payload=command.payload,
                ),
            )

        workflow = snapshot.workflow
        lines = [
            "Workflow created: "
            f"workflow_id={workflow.workflow_id} name={workflow.name} "
            f"status={workflow.status.value} tasks={len(snapshot.tasks)}",
        ]
        for task in snapshot.tasks:
            lines.append(
                f"  step={task.step_number} task_id={task.task_id} type={task.task_type} "
                f"depends_on={task.depends_on if task.depends_on is not None else '-'}",
            )
        return CommandResult(lines=lines)

    def workflow_status(self, command: WorkflowQueryCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            try:
                view = WorkflowService(repository=repository).get_workflow_status(
                    command.workflow_id,
                )
            except WorkflowNotFoundError as error:
                return CommandResult(lines=[str(error)], success=False)

        return CommandResult(
            lines=[
                f"Workflow: {view.workflow_id}",
                f"Status: {view.status.value}",
                f"Completed tasks: {view.completed_tasks}",
                f"Failed tasks: {view.failed_tasks}",
                f"Total tasks: {view.total_tasks}",
            ],
        )

    def workflow_results(self, command: WorkflowQueryCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            try:
                view = WorkflowService(repository=repository).get_workflow_result(
                    command.workflow_id,
                )
            except (WorkflowNotFoundError, WorkflowNotCompletedError) as error:
                return CommandResult(lines=[str(error)], success=False)

        return CommandResult(
            lines=[
                f"Workflow: {view.workflow_id}",
                f"Status: {view.status.value}",
                f"Final result: {view.final_result or '-'}",
            ],
        )

    def run_worker(self, command: WorkerCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            worker = SchedulerWorker(
                repository=repository,
                executor=TaskExecutor(
                    repository=repository,
                    registry=default_registry(repository),
                ),
                worker_id=settings.worker.worker_id,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
                stale_claim_seconds=settings.worker.stale_claim_seconds,
            )
            summary = (
                worker.run_once()
                if command.once
                else worker.run_loop(
                    max_tasks=command.max_tasks,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return CommandResult(
            lines=[
                "Worker summary: "
                f"processed={summary.processed} completed={summary.completed} "
                f"failed={summary.failed} blocked={summary.blocked} "
                f"errors={summary.errors} idle_polls={summary.idle_polls}",
            ],
            success=summary.errors == 0,
        )

    def list_tasks(self, command: ListTasksCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                workflow_id=command.workflow_id,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} workflow={task.workflow_id} step={task.step_number} "
                f"type={task.task_type} status={task.status.value} "
                f"depends_on={task.depends_on if task.depends_on is not None else '-'}",
            )
        return CommandResult(lines=lines)

    def inspect_task(self, command: InspectTaskCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return CommandResult(lines=[f"Task not found: {command.task_id}"], success=False)

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Workflow: {task.workflow_id}",
            f"Step: {task.step_number}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Depends on: {task.depends_on if task.depends_on is not None else '-'}",
            f"Progress: {task.progress or '-'}",
            f"Result: {details.result.data if details.result is not None else '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return CommandResult(lines=lines)


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    try:
        return TaskStatus(normalized)
    except ValueError as error:
        allowed = ", ".join(status.value for status in TaskStatus)
        raise ValueError(f"Invalid status {value!r}. Allowed: {allowed}") from error


@contextmanager
def _repository(settings: Settings) -> Iterator[WorkflowRepository]:
    repository = WorkflowRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
