"""Drives one claimed task through resolution, job execution and aggregation."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from taskchain.engine.aggregator import AggregationOutcome, WorkflowAggregator
from taskchain.engine.errors import StoreError
from taskchain.engine.models import ResolutionKind, TaskStatus, TaskView
from taskchain.engine.repository import WorkflowRepository
from taskchain.engine.resolver import DependencyResolver, index_by_step
from taskchain.jobs.base import JobRegistry

logger = logging.getLogger(__name__)

STARTING_PROGRESS = "starting job..."


@dataclass(slots=True)
class ExecutionOutcome:
    """Where a task ended up after one `execute` call."""

    task: TaskView
    status: TaskStatus
    job_invoked: bool
    error_summary: str | None
    aggregation: AggregationOutcome | None


class TaskExecutor:
    """Task state machine: queued -> blocked | failed | in_progress -> completed | failed.

    Job and resolver failures are recorded as data (status + result). Two errors
    escape: `StoreError`, since a persistence fault leaves nothing to record into,
    and `InvalidTaskTransition`, when `task` is stale and the stored row has already
    left `queued`; in that case the job is not invoked.
    """

    def __init__(
        self,
        *,
        repository: WorkflowRepository,
        registry: JobRegistry,
        resolver: DependencyResolver | None = None,
        aggregator: WorkflowAggregator | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.resolver = resolver or DependencyResolver()
        self.aggregator = aggregator or WorkflowAggregator(repository=repository)

    def execute(self, task: TaskView) -> ExecutionOutcome:
        siblings = self.repository.list_workflow_tasks(workflow_id=task.workflow_id)
        resolution = self.resolver.resolve(task, index_by_step(siblings))

        job_invoked = False
        error_summary: str | None = None
        if resolution.kind is ResolutionKind.AUTO_FAILED:
            error_summary = resolution.message or "dependency check failed"
            logger.info(
                "Task %s [%s] auto-failed (%s): %s",
                task.task_id,
                task.step_number,
                resolution.reason.value if resolution.reason else "-",
                error_summary,
            )
            task, _ = self.repository.fail_task(
                task_id=task.task_id,
                status_from=TaskStatus.QUEUED,
                data=_error_payload(error_summary),
                error_summary=error_summary,
            )
        elif resolution.kind is ResolutionKind.BLOCKED:
            logger.info(
                "Task %s [%s] is blocked: %s",
                task.task_id,
                task.step_number,
                resolution.message,
            )
            task = self.repository.block_task(
                task_id=task.task_id,
                reason=resolution.message or "dependency not finished",
            )
        elif resolution.kind is ResolutionKind.RUNNABLE:
            job_invoked = True
            task, error_summary = self._run_job(task)
        else:  # pragma: no cover - closed enum
            raise ValueError(f"Unhandled resolution: {resolution.kind}")

        aggregation = self.aggregator.recompute(task.workflow_id)
        return ExecutionOutcome(
            task=task,
            status=task.status,
            job_invoked=job_invoked,
            error_summary=error_summary,
            aggregation=aggregation,
        )

    def _run_job(self, task: TaskView) -> tuple[TaskView, str | None]:
        task = self.repository.start_task(task_id=task.task_id, progress=STARTING_PROGRESS)
        logger.info("Starting job %s for task %s", task.task_type, task.task_id)
        try:
            job = self.registry.lookup(task.task_type)
            output = job.run(task)
            data = _encode_output(output)
        except StoreError:
            raise
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Job %s for task %s failed: %s",
                task.task_type,
                task.task_id,
                error,
                exc_info=True,
            )
            summary = str(error) or type(error).__name__
            task, _ = self.repository.fail_task(
                task_id=task.task_id,
                status_from=TaskStatus.IN_PROGRESS,
                data=_error_payload(summary),
                error_summary=summary,
            )
            return task, summary

        if _is_error_payload(output):
            summary = str(output.get("output", "job reported an error"))
            logger.warning(
                "Job %s for task %s returned an error payload: %s",
                task.task_type,
                task.task_id,
                summary,
            )
            task, _ = self.repository.fail_task(
                task_id=task.task_id,
                status_from=TaskStatus.IN_PROGRESS,
                data=data,
                error_summary=summary,
            )
            return task, summary

        task, _ = self.repository.complete_task(task_id=task.task_id, data=data)
        logger.info("Job %s for task %s completed successfully", task.task_type, task.task_id)
        return task, None


def _is_error_payload(output: Any) -> bool:
    return isinstance(output, Mapping) and bool(output.get("error"))


def _encode_output(output: Any) -> str:
    return json.dumps({} if output is None else output, ensure_ascii=False, default=str)


def _error_payload(reason: str) -> str:
    return json.dumps({"output": reason, "error": True}, ensure_ascii=False)
