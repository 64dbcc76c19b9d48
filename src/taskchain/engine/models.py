"""Domain models for workflow tasks, results and dependency resolution."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class WorkflowStatus(str, Enum):
    """Aggregate workflow lifecycle states."""

    INITIAL = "initial"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class AutoFailReason(str, Enum):
    """Why the resolver refused to run a task before invoking its job."""

    DEPENDENCY_NOT_FOUND = "dependency_not_found"
    CYCLE_DETECTED = "cycle_detected"
    DEPENDENCY_FAILED = "dependency_failed"


class ResolutionKind(str, Enum):
    RUNNABLE = "runnable"
    BLOCKED = "blocked"
    AUTO_FAILED = "auto_failed"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
TERMINAL_WORKFLOW_STATUSES = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.FAILED})

# Every legal task transition. Terminal states have no outgoing edges.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset(
        {TaskStatus.BLOCKED, TaskStatus.FAILED, TaskStatus.IN_PROGRESS},
    ),
    TaskStatus.BLOCKED: frozenset({TaskStatus.QUEUED}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition(status_from: TaskStatus, status_to: TaskStatus) -> bool:
    """Return True when the task state machine allows the given edge."""

    return status_to in TASK_TRANSITIONS[status_from]


@dataclass(slots=True, frozen=True)
class Resolution:
    """Classification of one task produced by the dependency resolver."""

    kind: ResolutionKind
    reason: AutoFailReason | None = None
    message: str | None = None

    @classmethod
    def runnable(cls) -> Resolution:
        return cls(kind=ResolutionKind.RUNNABLE)

    @classmethod
    def blocked(cls, message: str) -> Resolution:
        return cls(kind=ResolutionKind.BLOCKED, message=message)

    @classmethod
    def auto_failed(cls, reason: AutoFailReason, message: str) -> Resolution:
        return cls(kind=ResolutionKind.AUTO_FAILED, reason=reason, message=message)


@dataclass(slots=True)
class TaskCreate:
    """Input payload for one task created together with its workflow."""

    step_number: int
    task_type: str
    depends_on: int | None = None
    payload: str = ""


@dataclass(slots=True)
class WorkflowCreate:
    """Input payload for creating a workflow with its tasks."""

    name: str
    client_id: str
    tasks: list[TaskCreate]
    workflow_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view handed to jobs, the resolver and the CLI."""

    task_id: str
    workflow_id: str
    client_id: str
    step_number: int
    task_type: str
    status: TaskStatus
    depends_on: int | None
    progress: str | None
    result_id: str | None
    payload: str
    worker_id: str | None
    claimed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class WorkflowView:
    """Workflow row without its tasks."""

    workflow_id: str
    client_id: str
    name: str
    status: WorkflowStatus
    final_result: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class WorkflowSnapshot:
    """Workflow with the current state of all its tasks, ordered by step number."""

    workflow: WorkflowView
    tasks: list[TaskView]


@dataclass(slots=True)
class ResultView:
    """Persisted outcome of one task execution attempt."""

    result_id: str
    task_id: str
    data: str
    created_at: datetime

    def decoded(self) -> Any:
        """Return the JSON-decoded payload, or the raw text when it is not JSON."""

        try:
            return json.loads(self.data)
        except ValueError:
            return self.data

    @property
    def is_error(self) -> bool:
        decoded = self.decoded()
        return isinstance(decoded, dict) and bool(decoded.get("error"))

    @property
    def output(self) -> Any:
        """Return the `output` field for error-shaped payloads, the whole payload otherwise."""

        decoded = self.decoded()
        if isinstance(decoded, dict) and "output" in decoded:
            return decoded["output"]
        return decoded


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for the audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with result and event stream."""

    task: TaskView
    result: ResultView | None
    events: list[TaskEventView]


@dataclass(slots=True)
class WorkflowStatusView:
    """Progress counters exposed to the presentation layer."""

    workflow_id: str
    status: WorkflowStatus
    completed_tasks: int
    failed_tasks: int
    total_tasks: int


@dataclass(slots=True)
class WorkflowResultView:
    """Final outcome exposed once a workflow is terminal."""

    workflow_id: str
    status: WorkflowStatus
    final_result: str | None
