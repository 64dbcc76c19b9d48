"""Built-in jobs and the default task-type registry."""

from __future__ import annotations

from taskchain.engine.repository import WorkflowRepository
from taskchain.jobs.base import Job, JobRegistry
from taskchain.jobs.echo import EchoJob
from taskchain.jobs.polygon_area import PolygonAreaJob
from taskchain.jobs.report_generation import ReportGenerationJob

__all__ = [
    "EchoJob",
    "Job",
    "JobRegistry",
    "PolygonAreaJob",
    "ReportGenerationJob",
    "default_registry",
]


def default_registry(repository: WorkflowRepository) -> JobRegistry:
    """Registry with every built-in job; report generation reads from `repository`."""

    registry = JobRegistry()
    registry.register("echo", EchoJob())
    registry.register("polygonArea", PolygonAreaJob())
    registry.register("reportGeneration", ReportGenerationJob(repository=repository))
    return registry
