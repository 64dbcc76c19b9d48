"""Job contract and task-type registry."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Protocol

from taskchain.engine.errors import UnknownJobType
from taskchain.engine.models import TaskView


class Job(Protocol):
    """Pluggable unit of business logic invoked for one task.

    `run` returns any JSON-serializable value. Raising, or returning a mapping
    with a truthy `error` key, marks the task failed.
    """

    def run(self, task: TaskView) -> Any: ...


class JobRegistry:
    """Maps task-type identifiers to job instances."""

    def __init__(self, jobs: Mapping[str, Job] | None = None) -> None:
        self._jobs: dict[str, Job] = dict(jobs or {})

    def register(self, task_type: str, job: Job) -> None:
        if not task_type.strip():
            raise ValueError("Task type must be a non-empty string.")
        self._jobs[task_type] = job

    def lookup(self, task_type: str) -> Job:
        try:
            return self._jobs[task_type]
        except KeyError:
            raise UnknownJobType(task_type) from None

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._jobs

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._jobs))
