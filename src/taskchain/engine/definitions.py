"""YAML workflow definitions.

A definition names a workflow and lists its steps:

    name: example_workflow
    steps:
      - taskType: polygonArea
        stepNumber: 1
      - taskType: reportGeneration
        stepNumber: 2
        dependsOn: 1

Only the document structure is checked here. A `dependsOn` that points to a
missing step, to the step itself, or into a loop is accepted; the dependency
resolver fails those tasks at run time.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from taskchain.engine.errors import WorkflowDefinitionError
from taskchain.engine.models import TaskCreate


@dataclass(slots=True, frozen=True)
class WorkflowStep:
    task_type: str
    step_number: int
    depends_on: int | None = None


@dataclass(slots=True, frozen=True)
class WorkflowDefinition:
    name: str
    steps: tuple[WorkflowStep, ...]

    def to_task_creates(self, *, payload: str = "") -> list[TaskCreate]:
        return [
            TaskCreate(
                step_number=step.step_number,
                task_type=step.task_type,
                depends_on=step.depends_on,
                payload=payload,
            )
            for step in self.steps
        ]


def load_definition(path: Path) -> WorkflowDefinition:
    """Read and validate a workflow definition file."""

    try:
        text = path.read_text("utf-8")
    except OSError as error:
        raise WorkflowDefinitionError(f"Cannot read workflow definition {path}: {error}") from error
    return parse_definition(text, source=str(path))


def parse_definition(text: str, *, source: str = "<string>") -> WorkflowDefinition:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as error:
        raise WorkflowDefinitionError(f"Invalid YAML in {source}: {error}") from error
    if not isinstance(document, dict):
        raise WorkflowDefinitionError(f"Workflow definition root must be a mapping: {source}")

    name = document.get("name")
    if not isinstance(name, str) or not name.strip():
        raise WorkflowDefinitionError(f"Workflow definition needs a non-empty 'name': {source}")

    raw_steps = document.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise WorkflowDefinitionError(
            f"Workflow definition needs a non-empty 'steps' list: {source}",
        )

    steps = tuple(
        _parse_step(raw, index=index, source=source) for index, raw in enumerate(raw_steps)
    )
    seen: set[int] = set()
    for step in steps:
        if step.step_number in seen:
            raise WorkflowDefinitionError(
                f"Duplicate stepNumber {step.step_number} in {source}",
            )
        seen.add(step.step_number)
    return WorkflowDefinition(name=name.strip(), steps=steps)


def _parse_step(raw: Any, *, index: int, source: str) -> WorkflowStep:
    if not isinstance(raw, dict):
        raise WorkflowDefinitionError(f"Step #{index + 1} must be a mapping: {source}")

    task_type = raw.get("taskType")
    if not isinstance(task_type, str) or not task_type.strip():
        raise WorkflowDefinitionError(f"Step #{index + 1} needs a string 'taskType': {source}")

    step_number = raw.get("stepNumber")
    if not _is_int(step_number):
        raise WorkflowDefinitionError(f"Step #{index + 1} needs an integer 'stepNumber': {source}")

    depends_on = raw.get("dependsOn")
    if depends_on is not None and not _is_int(depends_on):
        raise WorkflowDefinitionError(
            f"Step #{index + 1} 'dependsOn' must be an integer step number: {source}",
        )
    return WorkflowStep(task_type=task_type.strip(), step_number=step_number, depends_on=depends_on)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
