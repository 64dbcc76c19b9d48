"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from taskchain.engine.executor import TaskExecutor
from taskchain.engine.models import TaskCreate, TaskView, WorkflowCreate, WorkflowSnapshot
from taskchain.engine.repository import WorkflowRepository
from taskchain.jobs.base import JobRegistry

Step = tuple[int, str, int | None]


class RecordingJob:
    """Returns a fixed output and remembers which tasks it ran for."""

    def __init__(self, output: Any = "ok") -> None:
        self.output = output
        self.calls: list[str] = []

    def run(self, task: TaskView) -> Any:
        self.calls.append(task.task_id)
        return self.output


class FailingJob:
    def __init__(self, message: str = "boom") -> None:
        self.message = message
        self.calls: list[str] = []

    def run(self, task: TaskView) -> Any:
        self.calls.append(task.task_id)
        raise RuntimeError(self.message)


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[WorkflowRepository]:
    repo = WorkflowRepository(tmp_path / "taskchain.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def make_workflow(
    repository: WorkflowRepository,
) -> Callable[..., WorkflowSnapshot]:
    """Create a workflow from `(step_number, task_type, depends_on)` tuples."""

    def _make(
        steps: list[Step],
        *,
        name: str = "test-workflow",
        payload: str = "",
    ) -> WorkflowSnapshot:
        return repository.create_workflow(
            WorkflowCreate(
                name=name,
                client_id="client-1",
                tasks=[
                    TaskCreate(
                        step_number=step_number,
                        task_type=task_type,
                        depends_on=depends_on,
                        payload=payload,
                    )
                    for step_number, task_type, depends_on in steps
                ],
            ),
        )

    return _make


@pytest.fixture()
def ok_job() -> RecordingJob:
    return RecordingJob(output="ok")


@pytest.fixture()
def failing_job() -> FailingJob:
    return FailingJob()


@pytest.fixture()
def executor(
    repository: WorkflowRepository,
    ok_job: RecordingJob,
    failing_job: FailingJob,
) -> TaskExecutor:
    registry = JobRegistry({"ok": ok_job, "fail": failing_job})
    return TaskExecutor(repository=repository, registry=registry)


@pytest.fixture()
def step_status(repository: WorkflowRepository) -> Callable[[str, int], str]:
    def _status(workflow_id: str, step_number: int) -> str:
        task = repository.get_task_by_step(workflow_id=workflow_id, step_number=step_number)
        assert task is not None
        return task.status.value

    return _status


@pytest.fixture()
def drain(
    repository: WorkflowRepository,
    executor: TaskExecutor,
) -> Callable[[], list[TaskView]]:
    """Claim and execute queued tasks in claim order until the queue is empty."""

    def _drain(max_tasks: int = 100) -> list[TaskView]:
        executed: list[TaskView] = []
        for _ in range(max_tasks):
            task = repository.claim_next_queued_task(worker_id="test-worker")
            if task is None:
                break
            executed.append(executor.execute(task).task)
        return executed

    return _drain


@pytest.fixture()
def recording_job() -> Callable[..., RecordingJob]:
    return RecordingJob
