"""Polling worker that claims queued tasks and hands them to the executor."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from taskchain.engine.errors import InvalidTaskTransition, StoreError
from taskchain.engine.executor import TaskExecutor
from taskchain.engine.models import TaskStatus, TaskView
from taskchain.engine.repository import WorkflowRepository

logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(slots=True)
class WorkerRunSummary:
    """Per-outcome counters; `run_loop` sums one of these per claim attempt."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    blocked: int = 0
    errors: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.blocked += other.blocked
        self.errors += other.errors
        self.idle_polls += other.idle_polls


class SchedulerWorker:
    """Consumes queued tasks one at a time.

    `stop_event` is the cancellation token: setting it (directly, or through
    SIGINT/SIGTERM while `run_loop` is active) ends the loop after the task in
    hand finishes.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: WorkflowRepository,
        executor: TaskExecutor,
        worker_id: str,
        poll_interval_seconds: float = 1.0,
        stale_claim_seconds: int = 600,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_claim_seconds = stale_claim_seconds
        self.stop_event = stop_event or threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        self.stop_event.set()

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue.

        A `StoreError` (or a lost status race) is logged and counted; the loop goes
        on with the next task instead of crashing.
        """

        summary = WorkerRunSummary()
        if self.stop_requested:
            summary.idle_polls = 1
            return summary

        task = self._claim_task()
        if task is None:
            summary.idle_polls = 1
            summary.errors = self._recompute_open_workflows()
            return summary

        summary.processed = 1
        try:
            outcome = self.executor.execute(task)
        except (StoreError, InvalidTaskTransition):
            logger.exception(
                "Worker %s aborted task %s [%s]",
                self.worker_id,
                task.task_id,
                task.step_number,
            )
            summary.errors = 1
            return summary

        if outcome.status is TaskStatus.COMPLETED:
            summary.completed = 1
        elif outcome.status is TaskStatus.FAILED:
            summary.failed = 1
        elif outcome.status is TaskStatus.BLOCKED:
            summary.blocked = 1
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> WorkerRunSummary:
        """Run until the queue stays idle, `max_tasks` is reached, or stop is requested.

        Args:
            max_tasks: Stop after processing this many tasks (None = unlimited).
            max_idle_polls: How many consecutive empty polls before exiting
                (None = keep polling until stopped).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self.stop_requested:
                    return aggregate
                if max_tasks is not None and aggregate.processed >= max_tasks:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def _claim_task(self) -> TaskView | None:
        if self.stale_claim_seconds > 0:
            released = self.repository.release_stale_claims(
                stale_after=timedelta(seconds=self.stale_claim_seconds),
            )
            if released:
                logger.warning("Released %d stale task claim(s)", released)
        if self.stop_requested:
            return None
        return self.repository.claim_next_queued_task(worker_id=self.worker_id)

    def _recompute_open_workflows(self) -> int:
        """Re-aggregate non-terminal workflows; returns how many recomputes failed.

        Catches workflows whose last recompute was lost to a store error, and blocked
        tasks whose requeue never happened.
        """

        try:
            workflows = self.repository.list_open_workflows()
        except StoreError:
            logger.exception("Worker %s could not list open workflows", self.worker_id)
            return 1

        errors = 0
        for workflow in workflows:
            try:
                self.executor.aggregator.recompute(workflow.workflow_id)
            except StoreError:
                logger.exception(
                    "Worker %s could not recompute workflow %s",
                    self.worker_id,
                    workflow.workflow_id,
                )
                errors += 1
        return errors

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self.stop_event.wait(seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        """Route SIGINT/SIGTERM to `request_stop` while the loop runs."""

        def _handler(signum: int, _frame: object | None) -> None:
            logger.info(
                "Worker %s received %s, stopping after current task",
                self.worker_id,
                signal.Signals(signum).name,
            )
            self.request_stop()

        previous: dict[signal.Signals, Any] = {}
        try:
            for signum in _STOP_SIGNALS:
                previous[signum] = signal.signal(signum, _handler)
        except ValueError:
            # not the main thread: leave handlers alone, the stop event still works
            for signum, handler in previous.items():
                signal.signal(signum, handler)
            previous.clear()
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
