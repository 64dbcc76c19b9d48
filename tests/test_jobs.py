from __future__ import annotations

import json
import math

import allure
import pytest

from taskchain.engine.errors import JobExecutionError, UnknownJobType
from taskchain.engine.executor import TaskExecutor
from taskchain.engine.models import TaskStatus
from taskchain.jobs import EchoJob, PolygonAreaJob, ReportGenerationJob, default_registry
from taskchain.jobs.base import JobRegistry
from taskchain.jobs.polygon_area import geometry_area

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Built-in Jobs"),
]

WGS84_RADIUS_METERS = 6_378_137.0
UNIT_SQUARE = [[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [0.0, 0.0]]


def _unit_square_area() -> float:
    return WGS84_RADIUS_METERS**2 * math.radians(1.0) * math.sin(math.radians(1.0))


def test_polygon_area_of_equatorial_square(make_workflow) -> None:
    payload = json.dumps({"type": "Polygon", "coordinates": [UNIT_SQUARE]})
    snapshot = make_workflow([(1, "polygonArea", None)], payload=payload)

    output = PolygonAreaJob().run(snapshot.tasks[0])

    assert float(output) == pytest.approx(_unit_square_area(), rel=1e-9)


def test_polygon_area_accepts_feature_and_orientation(make_workflow) -> None:
    clockwise = list(reversed(UNIT_SQUARE))
    feature = {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "Polygon", "coordinates": [clockwise]},
    }
    snapshot = make_workflow([(1, "polygonArea", None)], payload=json.dumps(feature))

    output = PolygonAreaJob().run(snapshot.tasks[0])

    assert float(output) == pytest.approx(_unit_square_area(), rel=1e-9)


def test_polygon_holes_are_subtracted_and_multipolygons_summed() -> None:
    hole = [[0.25, 0.25], [0.75, 0.25], [0.75, 0.75], [0.25, 0.75], [0.25, 0.25]]
    shifted = [[lon + 10.0, lat] for lon, lat in UNIT_SQUARE]

    with_hole = geometry_area({"type": "Polygon", "coordinates": [UNIT_SQUARE, hole]})
    multi = geometry_area({"type": "MultiPolygon", "coordinates": [[UNIT_SQUARE], [shifted]]})

    assert 0 < with_hole < _unit_square_area()
    assert multi == pytest.approx(2 * _unit_square_area(), rel=1e-9)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ('{"type": "Point", "coordinates": [0, 0]}', "Invalid geometry type: Point"),
        ('{"type": "Polygon"}', "coordinates must be a list"),
        ("not json", "payload is not valid JSON"),
        ("[1, 2, 3]", "must be a GeoJSON object"),
        ('{"type": "Polygon", "coordinates": [[[0, 0], [1], [1, 1]]]}', "malformed coordinates"),
    ],
)
def test_polygon_area_rejects_bad_payloads(make_workflow, payload: str, message: str) -> None:
    snapshot = make_workflow([(1, "polygonArea", None)], payload=payload)

    with pytest.raises(JobExecutionError, match=message):
        PolygonAreaJob().run(snapshot.tasks[0])


def test_echo_job_returns_payload(make_workflow) -> None:
    snapshot = make_workflow([(1, "echo", None)], payload="hello")
    assert EchoJob().run(snapshot.tasks[0]) == "hello"


def test_report_collects_preceding_outputs(repository, make_workflow, ok_job) -> None:
    registry = JobRegistry({"ok": ok_job, "report": ReportGenerationJob(repository=repository)})
    executor = TaskExecutor(repository=repository, registry=registry)
    snapshot = make_workflow([(1, "ok", None), (2, "report", 1)])
    first, second = snapshot.tasks

    for _ in range(2):
        executor.execute(repository.claim_next_queued_task(worker_id="worker-a"))

    assert repository.get_task(task_id=second.task_id).status is TaskStatus.COMPLETED
    report = json.loads(repository.get_result(task_id=second.task_id).output)
    assert report["workflowId"] == snapshot.workflow.workflow_id
    assert report["tasks"] == [
        {"taskId": first.task_id, "stepNumber": 1, "type": "ok", "output": "ok"},
    ]
    assert report["finalReport"] == "Tasks completed: 1. Total tasks: 1."


def test_report_with_incomplete_predecessors_returns_error_payload(
    repository,
    make_workflow,
) -> None:
    snapshot = make_workflow([(1, "ok", None), (2, "ok", None), (3, "report", None)])

    output = ReportGenerationJob(repository=repository).run(snapshot.tasks[2])

    assert output["error"] is True
    assert output["output"].startswith("Cannot generate report: 2 preceding task(s)")
    assert snapshot.tasks[0].task_id in output["output"]


def test_default_registry_knows_builtin_types(repository) -> None:
    registry = default_registry(repository)

    assert list(registry) == ["echo", "polygonArea", "reportGeneration"]
    assert "polygonArea" in registry
    with pytest.raises(UnknownJobType, match="'nope'"):
        registry.lookup("nope")
    with pytest.raises(ValueError, match="non-empty"):
        registry.register("  ", EchoJob())
