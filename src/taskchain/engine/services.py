"""Use-case services for creating and querying workflows."""

from __future__ import annotations

from dataclasses import dataclass

from taskchain.engine.aggregator import count_tasks
from taskchain.engine.definitions import WorkflowDefinition
from taskchain.engine.errors import WorkflowNotCompletedError, WorkflowNotFoundError
from taskchain.engine.models import (
    TERMINAL_WORKFLOW_STATUSES,
    WorkflowCreate,
    WorkflowResultView,
    WorkflowSnapshot,
    WorkflowStatusView,
)
from taskchain.engine.repository import WorkflowRepository


@dataclass(slots=True)
class CreateWorkflow:
    """High-level command to create a workflow from a parsed definition."""

    definition: WorkflowDefinition
    client_id: str
    payload: str = ""


class WorkflowService:
    def __init__(self, *, repository: WorkflowRepository) -> None:
        self.repository = repository

    def create_workflow(self, command: CreateWorkflow) -> WorkflowSnapshot:
        return self.repository.create_workflow(
            WorkflowCreate(
                name=command.definition.name,
                client_id=command.client_id,
                tasks=command.definition.to_task_creates(payload=command.payload),
            ),
        )

    def get_workflow_status(self, workflow_id: str) -> WorkflowStatusView:
        snapshot = self.repository.get_workflow_snapshot(workflow_id=workflow_id)
        if snapshot is None:
            raise WorkflowNotFoundError(workflow_id)
        counts = count_tasks(snapshot.tasks)
        return WorkflowStatusView(
            workflow_id=workflow_id,
            status=snapshot.workflow.status,
            completed_tasks=counts.completed,
            failed_tasks=counts.failed,
            total_tasks=counts.total,
        )

    def get_workflow_result(self, workflow_id: str) -> WorkflowResultView:
        """Final result of a terminal workflow; raises while it is still running."""

        workflow = self.repository.get_workflow(workflow_id=workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        if workflow.status not in TERMINAL_WORKFLOW_STATUSES:
            raise WorkflowNotCompletedError(workflow_id, workflow.status.value)
        return WorkflowResultView(
            workflow_id=workflow_id,
            status=workflow.status,
            final_result=workflow.final_result,
        )
