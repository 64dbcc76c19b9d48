from __future__ import annotations

import json
import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from sqlalchemy.exc import OperationalError

from taskchain.engine.errors import InvalidTaskTransition, StoreError
from taskchain.engine.models import TaskCreate, TaskStatus, WorkflowCreate, WorkflowStatus
from taskchain.engine.repository import WorkflowRepository

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Workflow Store"),
]


def test_create_workflow_starts_initial_with_queued_tasks(make_workflow) -> None:
    snapshot = make_workflow([(1, "ok", None), (2, "ok", 1)], payload='{"x": 1}')

    assert snapshot.workflow.status is WorkflowStatus.INITIAL
    assert snapshot.workflow.final_result is None
    assert [task.step_number for task in snapshot.tasks] == [1, 2]
    assert all(task.status is TaskStatus.QUEUED for task in snapshot.tasks)
    assert snapshot.tasks[1].depends_on == 1
    assert snapshot.tasks[0].payload == '{"x": 1}'
    assert snapshot.tasks[0].client_id == "client-1"


def test_lookup_by_step_is_scoped_to_workflow(repository, make_workflow) -> None:
    first = make_workflow([(1, "ok", None)])
    second = make_workflow([(1, "ok", None)])

    found = repository.get_task_by_step(workflow_id=second.workflow.workflow_id, step_number=1)
    assert found is not None
    assert found.task_id == second.tasks[0].task_id
    assert found.task_id != first.tasks[0].task_id
    assert (
        repository.get_task_by_step(workflow_id=first.workflow.workflow_id, step_number=2) is None
    )


def test_duplicate_step_numbers_are_rejected_by_store(make_workflow) -> None:
    with pytest.raises(StoreError):
        make_workflow([(1, "ok", None), (1, "ok", None)])


def test_claim_is_ordered_and_does_not_change_status(repository, make_workflow) -> None:
    snapshot = make_workflow([(2, "ok", 1), (1, "ok", None)])

    first = repository.claim_next_queued_task(worker_id="worker-a")
    second = repository.claim_next_queued_task(worker_id="worker-b")
    third = repository.claim_next_queued_task(worker_id="worker-c")

    assert first is not None
    assert second is not None
    assert third is None
    assert first.step_number == 1
    assert second.step_number == 2
    assert first.status is TaskStatus.QUEUED
    assert first.worker_id == "worker-a"
    assert first.claimed_at is not None
    assert {first.workflow_id, second.workflow_id} == {snapshot.workflow.workflow_id}


def test_concurrent_claims_never_share_a_task(tmp_path: Path) -> None:
    db_path = tmp_path / "claims.db"
    setup = WorkflowRepository(db_path)
    setup.init_schema()

    setup.create_workflow(
        WorkflowCreate(
            name="claims",
            client_id="client-1",
            tasks=[TaskCreate(step_number=step, task_type="ok") for step in range(1, 9)],
        ),
    )
    setup.close()

    claimed: list[str] = []
    lock = threading.Lock()
    start = threading.Event()

    def _claim_all(worker_id: str) -> None:
        repository = WorkflowRepository(db_path)
        try:
            start.wait(timeout=5)
            while True:
                task = repository.claim_next_queued_task(worker_id=worker_id)
                if task is None:
                    return
                with lock:
                    claimed.append(task.task_id)
        finally:
            repository.close()

    threads = [threading.Thread(target=_claim_all, args=(f"worker-{index}",)) for index in range(3)]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    assert len(claimed) == 8
    assert len(set(claimed)) == 8


def test_release_stale_claims_makes_task_claimable_again(repository, make_workflow) -> None:
    make_workflow([(1, "ok", None)])
    claimed = repository.claim_next_queued_task(worker_id="crashed-worker")
    assert claimed is not None
    assert repository.claim_next_queued_task(worker_id="worker-b") is None

    assert repository.release_stale_claims(stale_after=timedelta(hours=1)) == 0
    assert repository.release_stale_claims(stale_after=timedelta(seconds=0)) == 1

    reclaimed = repository.claim_next_queued_task(worker_id="worker-b")
    assert reclaimed is not None
    assert reclaimed.task_id == claimed.task_id
    assert reclaimed.worker_id == "worker-b"


def test_transitions_record_result_and_events(repository, make_workflow) -> None:
    snapshot = make_workflow([(1, "ok", None)])
    task_id = snapshot.tasks[0].task_id
    repository.claim_next_queued_task(worker_id="worker-a")

    started = repository.start_task(task_id=task_id, progress="starting job...")
    assert started.status is TaskStatus.IN_PROGRESS
    assert started.progress == "starting job..."

    completed, result = repository.complete_task(task_id=task_id, data=json.dumps("42"))
    assert completed.status is TaskStatus.COMPLETED
    assert completed.progress is None
    assert completed.result_id == result.result_id
    assert result.decoded() == "42"
    assert result.is_error is False

    stored = repository.get_result(task_id=task_id)
    assert stored is not None
    assert stored.result_id == result.result_id
    assert repository.get_result_by_id(result_id=result.result_id) == stored

    details = repository.get_task_details(task_id=task_id)
    assert details is not None
    assert [event.event_type for event in details.events] == [
        "created",
        "claimed",
        "started",
        "completed",
    ]
    assert details.events[-1].status_from is TaskStatus.IN_PROGRESS
    assert details.events[-1].status_to is TaskStatus.COMPLETED
    assert details.events[-1].details["result_id"] == result.result_id


def test_terminal_task_rejects_further_transitions(repository, make_workflow) -> None:
    snapshot = make_workflow([(1, "ok", None)])
    task_id = snapshot.tasks[0].task_id
    repository.fail_task(
        task_id=task_id,
        status_from=TaskStatus.QUEUED,
        data=json.dumps({"output": "nope", "error": True}),
        error_summary="nope",
    )

    with pytest.raises(InvalidTaskTransition):
        repository.start_task(task_id=task_id, progress="starting job...")
    with pytest.raises(InvalidTaskTransition):
        repository.complete_task(task_id=task_id, data="{}")
    assert repository.get_task(task_id=task_id).status is TaskStatus.FAILED


def test_transition_outside_state_machine_is_rejected_before_write(
    repository,
    make_workflow,
) -> None:
    snapshot = make_workflow([(1, "ok", None)])
    task_id = snapshot.tasks[0].task_id

    with pytest.raises(InvalidTaskTransition):
        repository.fail_task(
            task_id=task_id,
            status_from=TaskStatus.COMPLETED,
            data="{}",
            error_summary="x",
        )
    assert repository.get_task(task_id=task_id).status is TaskStatus.QUEUED


def test_requeue_blocked_tasks_clears_claims(repository, make_workflow) -> None:
    snapshot = make_workflow([(1, "ok", None), (2, "ok", 1)])
    workflow_id = snapshot.workflow.workflow_id
    blocked_id = snapshot.tasks[1].task_id
    repository.block_task(task_id=blocked_id, reason="waiting")

    assert repository.requeue_blocked_tasks(workflow_id=workflow_id) == [blocked_id]
    requeued = repository.get_task(task_id=blocked_id)
    assert requeued.status is TaskStatus.QUEUED
    assert requeued.worker_id is None
    assert repository.requeue_blocked_tasks(workflow_id=workflow_id) == []


def test_sqlalchemy_errors_surface_as_store_error(repository, make_workflow, monkeypatch) -> None:
    make_workflow([(1, "ok", None)])

    def _broken_exec(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    monkeypatch.setattr("sqlmodel.Session.exec", _broken_exec)
    with pytest.raises(StoreError, match="disk I/O error"):
        repository.claim_next_queued_task(worker_id="worker-a")


def test_update_workflow_persists_status(repository, make_workflow) -> None:
    snapshot = make_workflow([(1, "ok", None)])
    workflow_id = snapshot.workflow.workflow_id

    updated = repository.update_workflow(
        workflow_id=workflow_id,
        status=WorkflowStatus.IN_PROGRESS,
        final_result=None,
    )
    assert updated.status is WorkflowStatus.IN_PROGRESS
    assert repository.get_workflow(workflow_id=workflow_id).status is WorkflowStatus.IN_PROGRESS
    assert [view.workflow_id for view in repository.list_open_workflows()] == [workflow_id]


def test_list_open_workflows_skips_terminal_ones(repository, make_workflow) -> None:
    finished = make_workflow([(1, "ok", None)])
    running = make_workflow([(1, "ok", None)])
    repository.update_workflow(
        workflow_id=finished.workflow.workflow_id,
        status=WorkflowStatus.COMPLETED,
        final_result="done",
    )

    open_ids = [view.workflow_id for view in repository.list_open_workflows()]

    assert open_ids == [running.workflow.workflow_id]
