"""Job that returns its payload; used for smoke runs."""

from __future__ import annotations

from taskchain.engine.models import TaskView


class EchoJob:
    def run(self, task: TaskView) -> str:
        return task.payload
