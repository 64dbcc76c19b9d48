"""Geodesic area of a GeoJSON polygon payload."""

from __future__ import annotations

import json
import logging
from typing import Any

from area import area as geojson_area

from taskchain.engine.errors import JobExecutionError
from taskchain.engine.models import TaskView

logger = logging.getLogger(__name__)

_SUPPORTED_TYPES = ("Polygon", "MultiPolygon")


def geometry_area(geometry: dict[str, Any]) -> float:
    """Area in square metres on the WGS84 sphere; holes are subtracted."""

    geometry_type = geometry.get("type")
    if geometry_type not in _SUPPORTED_TYPES:
        raise JobExecutionError(
            f"Invalid geometry type: {geometry_type}. Expected Polygon or MultiPolygon.",
        )
    if not isinstance(geometry.get("coordinates"), list):
        raise JobExecutionError("Geometry coordinates must be a list.")
    return float(geojson_area(geometry))


class PolygonAreaJob:
    """Returns the area, in square metres, of the task's GeoJSON payload."""

    def run(self, task: TaskView) -> str:
        logger.info("Running polygon area calculation for task %s", task.task_id)
        try:
            geometry = json.loads(task.payload)
        except ValueError as error:
            raise JobExecutionError(
                f"Error running polygon area calculation for task {task.task_id}: "
                f"payload is not valid JSON ({error})",
            ) from error
        if isinstance(geometry, dict) and geometry.get("type") == "Feature":
            geometry = geometry.get("geometry") or {}
        if not isinstance(geometry, dict):
            raise JobExecutionError(
                f"Error running polygon area calculation for task {task.task_id}: "
                "payload must be a GeoJSON object",
            )
        try:
            area = geometry_area(geometry)
        except (TypeError, IndexError, KeyError) as error:
            raise JobExecutionError(
                f"Error running polygon area calculation for task {task.task_id}: "
                f"malformed coordinates ({error})",
            ) from error
        logger.info("The polygon area is %s square meters", area)
        return str(area)
