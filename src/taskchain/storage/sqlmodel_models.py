"""SQLModel ORM tables for workflow storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class WorkflowRow(SQLModel, table=True):
    __tablename__ = "workflows"  # type: ignore[bad-override]

    workflow_id: str = Field(primary_key=True)
    client_id: str = Field(index=True)
    name: str
    status: str = Field(index=True)
    final_result: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="uq_tasks_workflow_step"),
        Index("idx_tasks_queue", "status", "worker_id", "created_at", "step_number"),
    )

    task_id: str = Field(primary_key=True)
    workflow_id: str = Field(
        sa_column=Column(
            ForeignKey("workflows.workflow_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    client_id: str
    step_number: int
    task_type: str = Field(index=True)
    status: str = Field(index=True)
    depends_on: int | None = None
    progress: str | None = None
    result_id: str | None = None
    payload: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    worker_id: str | None = None
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskResultRow(SQLModel, table=True):
    __tablename__ = "task_results"  # type: ignore[bad-override]

    result_id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    data: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEventRow(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
