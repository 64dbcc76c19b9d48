"""CLI entrypoint for taskchain."""

import logging
from pathlib import Path

import rich_click as click

from taskchain import __version__
from taskchain.engine.controllers import (
    CommandResult,
    InspectTaskCommand,
    ListTasksCommand,
    TaskchainCliController,
    WorkerCommand,
    WorkflowCreateCommand,
    WorkflowQueryCommand,
)
from taskchain.engine.errors import WorkflowDefinitionError
from taskchain.engine.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskchainCliController()


@click.group()
@click.version_option(version=__version__, prog_name="taskchain")
def taskchain() -> None:
    """Dependency-aware workflow task runner."""


@taskchain.group()
def workflow() -> None:
    """Workflow commands."""


@workflow.command("create")
@click.argument("definition", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--client-id", default=None, help="Client id stamped on the workflow.")
@click.option("--payload", default=None, help="Job input attached to every task.")
@click.option(
    "--payload-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read job input from a file, for example a GeoJSON polygon.",
)
def workflow_create(
    definition: Path,
    db_path: Path | None,
    client_id: str | None,
    payload: str | None,
    payload_file: Path | None,
) -> None:
    """Create a workflow from a YAML definition; all its tasks start queued."""

    if payload is not None and payload_file is not None:
        raise click.UsageError("Use either --payload or --payload-file, not both.")
    if payload_file is not None:
        payload = payload_file.read_text("utf-8")

    try:
        result = CONTROLLER.create_workflow(
            WorkflowCreateCommand(
                db_path=db_path,
                definition_path=definition,
                client_id=client_id,
                payload=payload or "",
            ),
        )
    except WorkflowDefinitionError as error:
        raise click.ClickException(str(error)) from error
    _emit(result)


@workflow.command("status")
@click.argument("workflow_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def workflow_status(workflow_id: str, db_path: Path | None) -> None:
    """Show workflow status with completed/failed/total task counts."""

    _emit(
        CONTROLLER.workflow_status(WorkflowQueryCommand(db_path=db_path, workflow_id=workflow_id)),
    )


@workflow.command("results")
@click.argument("workflow_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def workflow_results(workflow_id: str, db_path: Path | None) -> None:
    """Show the final result of a finished workflow."""

    _emit(
        CONTROLLER.workflow_results(WorkflowQueryCommand(db_path=db_path, workflow_id=workflow_id)),
    )


@taskchain.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one claim-execute cycle or loop until idle.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed tasks in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Consecutive empty polls before exiting; 0 keeps polling until interrupted.",
)
@click.option("--verbose", is_flag=True, default=False, help="Log each task transition.")
def worker_run(
    db_path: Path | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int,
    verbose: bool,
) -> None:
    """Run the scheduler loop against the task queue."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    _emit(
        CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_tasks=max_tasks,
                max_idle_polls=max_idle_polls or None,
            ),
        ),
    )


@taskchain.group()
def task() -> None:
    """Task inspection commands."""


@task.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--workflow-id", default=None, help="Only tasks of this workflow.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to list.",
)
def task_list(
    db_path: Path | None,
    workflow_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List recent tasks."""

    _emit(
        CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, workflow_id=workflow_id, status=status, limit=limit),
        ),
    )


@task.command("inspect")
@click.argument("task_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def task_inspect(task_id: str, db_path: Path | None) -> None:
    """Show task details, result and event history."""

    _emit(CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


def _emit(result: CommandResult) -> None:
    for line in result.lines:
        click.echo(line)
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":  # pragma: no cover
    taskchain()
