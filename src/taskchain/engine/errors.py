"""Exceptions raised by the workflow engine and its collaborators."""

from __future__ import annotations


class TaskchainError(Exception):
    """Base class for engine errors."""


class StoreError(TaskchainError):
    """Persistence failure; never handled inside the executor."""


class InvalidTaskTransition(TaskchainError):
    """A task status write did not match the state machine or the stored status."""

    def __init__(self, task_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Task {task_id} cannot move from {status_from} to {status_to}.",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class UnknownJobType(TaskchainError):
    """No job is registered for a task type."""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"No job registered for task type {task_type!r}.")
        self.task_type = task_type


class JobExecutionError(TaskchainError):
    """A job could not produce its output."""


class WorkflowNotFoundError(TaskchainError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class WorkflowNotCompletedError(TaskchainError):
    def __init__(self, workflow_id: str, status: str) -> None:
        super().__init__(f"Workflow is not completed yet: {workflow_id} (status={status})")
        self.workflow_id = workflow_id
        self.status = status


class WorkflowDefinitionError(ValueError):
    """Workflow definition document is structurally invalid."""
