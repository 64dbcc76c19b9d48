"""Dependency classification and cycle detection for workflow tasks.

Tasks reference their predecessor by step number only. Every hop goes through a
lookup over the workflow's task collection, so a dependency loop stays a plain
data condition that the walk below can see and report.
"""

from __future__ import annotations

from collections.abc import Callable

from taskchain.engine.models import AutoFailReason, Resolution, TaskStatus, TaskView

StepLookup = Callable[[int], TaskView | None]

_WAITING_STATUSES = frozenset({TaskStatus.QUEUED, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED})


def index_by_step(tasks: list[TaskView]) -> StepLookup:
    """Build a step-number lookup over one workflow's task snapshot."""

    by_step = {task.step_number: task for task in tasks}
    return by_step.get


def has_dependency_cycle(task: TaskView, lookup_by_step: StepLookup) -> bool:
    """Follow `depends_on` from `task`; True when a step number comes up twice.

    Each hop adds a distinct step number to `visited`, so the walk ends after at
    most as many hops as the workflow has tasks. A dangling reference ends the
    walk without a cycle.
    """

    visited: set[int] = set()
    current: TaskView | None = task
    while current is not None:
        if current.step_number in visited:
            return True
        visited.add(current.step_number)
        if current.depends_on is None:
            return False
        current = lookup_by_step(current.depends_on)
    return False


class DependencyResolver:
    """Decides whether a task may run now. Never mutates state."""

    def resolve(self, task: TaskView, lookup_by_step: StepLookup) -> Resolution:
        if task.depends_on is None:
            return Resolution.runnable()

        dependency = lookup_by_step(task.depends_on)
        if dependency is None:
            return Resolution.auto_failed(
                AutoFailReason.DEPENDENCY_NOT_FOUND,
                f"Dependency task not found: step {task.depends_on} does not exist "
                f"in workflow {task.workflow_id}.",
            )

        # Must run before the status check: members of a loop would otherwise
        # keep blocking each other forever.
        if has_dependency_cycle(task, lookup_by_step):
            return Resolution.auto_failed(
                AutoFailReason.CYCLE_DETECTED,
                f"Cycle detected in dependency chain of task {task.task_id} "
                f"(step {task.step_number}).",
            )

        if dependency.status in _WAITING_STATUSES:
            return Resolution.blocked(
                f'Dependency "{dependency.step_number}" is {dependency.status.value}.',
            )
        if dependency.status is TaskStatus.FAILED:
            return Resolution.auto_failed(
                AutoFailReason.DEPENDENCY_FAILED,
                f'This task can not be executed because its dependency "{dependency.step_number}" '
                "task failed.",
            )
        return Resolution.runnable()
