"""Report summarizing the outputs of earlier workflow steps."""

from __future__ import annotations

import json
import logging
from typing import Any

from taskchain.engine.models import TaskStatus, TaskView
from taskchain.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class ReportGenerationJob:
    """Collects every preceding step's result into one JSON report.

    Returns an error payload, rather than raising, when a preceding step has not
    completed; the executor records that as a failed task.
    """

    def __init__(self, *, repository: WorkflowRepository) -> None:
        self.repository = repository

    def run(self, task: TaskView) -> dict[str, Any]:
        logger.info("Running report generation for task %s", task.task_id)
        preceding = [
            sibling
            for sibling in self.repository.list_workflow_tasks(workflow_id=task.workflow_id)
            if sibling.step_number < task.step_number
        ]

        incomplete = [
            sibling for sibling in preceding if sibling.status is not TaskStatus.COMPLETED
        ]
        if incomplete:
            listed = ", ".join(
                f"{sibling.task_id} (step {sibling.step_number}, status: {sibling.status.value})"
                for sibling in incomplete
            )
            return {
                "output": (
                    f"Cannot generate report: {len(incomplete)} preceding task(s) are not "
                    f"completed. Incomplete tasks: {listed}. "
                    "Report generation requires all preceding tasks to be completed."
                ),
                "error": True,
            }

        entries = []
        for sibling in preceding:
            result = self.repository.get_result(task_id=sibling.task_id)
            entries.append(
                {
                    "taskId": sibling.task_id,
                    "stepNumber": sibling.step_number,
                    "type": sibling.task_type,
                    "output": result.decoded() if result is not None else None,
                },
            )

        report = {
            "workflowId": task.workflow_id,
            "tasks": entries,
            "finalReport": f"Tasks completed: {len(entries)}. Total tasks: {len(entries)}.",
        }
        logger.info("Report generated successfully for workflow %s", task.workflow_id)
        return {"output": json.dumps(report, ensure_ascii=False), "error": False}
