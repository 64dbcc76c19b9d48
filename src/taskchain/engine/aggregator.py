"""Workflow status and final-result aggregation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from taskchain.engine.models import (
    TERMINAL_WORKFLOW_STATUSES,
    TaskStatus,
    TaskView,
    WorkflowStatus,
    WorkflowView,
)
from taskchain.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskCounts:
    total: int
    completed: int
    failed: int
    blocked: int

    @property
    def settled(self) -> bool:
        """Every task reached a terminal status."""

        return self.completed + self.failed == self.total

    @property
    def only_blocked_pending(self) -> bool:
        """Nothing is queued or running, and at least one task waits on a dependency."""

        return self.blocked > 0 and self.blocked + self.completed + self.failed == self.total


@dataclass(slots=True)
class AggregationOutcome:
    workflow: WorkflowView
    counts: TaskCounts
    requeued_task_ids: list[str]


def count_tasks(tasks: list[TaskView]) -> TaskCounts:
    return TaskCounts(
        total=len(tasks),
        completed=sum(1 for task in tasks if task.status is TaskStatus.COMPLETED),
        failed=sum(1 for task in tasks if task.status is TaskStatus.FAILED),
        blocked=sum(1 for task in tasks if task.status is TaskStatus.BLOCKED),
    )


class WorkflowAggregator:
    """Recomputes workflow status from the current snapshot of its tasks."""

    def __init__(self, *, repository: WorkflowRepository) -> None:
        self.repository = repository

    def recompute(self, workflow_id: str) -> AggregationOutcome | None:
        """Refresh status and final result; requeue blocked tasks at a stable point.

        Terminal workflows are returned unchanged. Returns None for an unknown id.
        """

        snapshot = self.repository.get_workflow_snapshot(workflow_id=workflow_id)
        if snapshot is None:
            logger.warning("Workflow %s not found during aggregation", workflow_id)
            return None

        counts = count_tasks(snapshot.tasks)
        workflow = snapshot.workflow
        if workflow.status in TERMINAL_WORKFLOW_STATUSES:
            return AggregationOutcome(workflow=workflow, counts=counts, requeued_task_ids=[])

        if counts.settled:
            if counts.failed == 0:
                status = WorkflowStatus.COMPLETED
                final_result = f"Workflow finished with {counts.completed} task(s) completed."
            else:
                status = WorkflowStatus.FAILED
                final_result = self._failure_summary(snapshot.tasks, counts)
            workflow = self.repository.update_workflow(
                workflow_id=workflow_id,
                status=status,
                final_result=final_result,
            )
            logger.info(
                "Workflow %s finished with status %s: %s",
                workflow_id,
                status.value,
                final_result,
            )
            return AggregationOutcome(workflow=workflow, counts=counts, requeued_task_ids=[])

        if workflow.status is not WorkflowStatus.IN_PROGRESS:
            workflow = self.repository.update_workflow(
                workflow_id=workflow_id,
                status=WorkflowStatus.IN_PROGRESS,
                final_result=None,
            )

        requeued: list[str] = []
        if counts.only_blocked_pending:
            requeued = self.repository.requeue_blocked_tasks(workflow_id=workflow_id)
            logger.info(
                "Workflow %s: requeued %d blocked task(s) for re-evaluation",
                workflow_id,
                len(requeued),
            )
        return AggregationOutcome(workflow=workflow, counts=counts, requeued_task_ids=requeued)

    def _failure_summary(self, tasks: list[TaskView], counts: TaskCounts) -> str:
        clauses = [
            f"Workflow finished with {counts.completed} task(s) completed "
            f"and {counts.failed} task(s) failed. Errors:",
        ]
        for task in tasks:
            if task.status is not TaskStatus.FAILED:
                continue
            result = self.repository.get_result(task_id=task.task_id)
            output = result.output if result is not None else "no result recorded"
            clauses.append(f"Task {task.task_id} failed with {str(output).rstrip('.')}.")
        return " ".join(clauses)
