"""Workflow model for the automation engine."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, SoftDeleteMixin


class Workflow(SoftDeleteMixin, BaseModel):
    """An automation: triggers, guard conditions and ordered actions.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name
        description: Free-form description
        enabled: Whether the workflow may be executed
        version: Bumped on every definition change
        triggers: JSON list of trigger declarations
        conditions: JSON condition tree, null means always pass
        actions: JSON list of action declarations
        trigger_types: Comma-delimited trigger types (",A,B,") for lookup by type
        priority: Dispatch order among workflows sharing a trigger, higher first
        category: Grouping label used by the template library
        tags: JSON list of tags
        max_retries: Whole-workflow retry budget
        retry_delay_seconds: Delay before a RETRYING execution is re-run;
            unset means WORKFLOW_DEFAULT_RETRY_DELAY
        timeout_seconds: Default per-action timeout
        execution_count / success_count / failure_count: Running counters
        avg_execution_ms: Running average execution duration
        last_execution_at: Completion time of the latest finished execution
        created_by_id: Id of the user who created the workflow
    """

    __tablename__ = "workflows"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    enabled: Mapped[bool] = mapped_column(default=True, index=True)
    version: Mapped[int] = mapped_column(default=1)

    triggers: Mapped[list] = mapped_column(JSON, default=list)
    conditions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    actions: Mapped[list] = mapped_column(JSON, default=list)
    trigger_types: Mapped[str] = mapped_column(Text, default=",")

    priority: Mapped[int] = mapped_column(default=5)
    category: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)

    max_retries: Mapped[int] = mapped_column(default=3)
    retry_delay_seconds: Mapped[Optional[int]] = mapped_column(nullable=True)
    timeout_seconds: Mapped[Optional[float]] = mapped_column(nullable=True)

    # Statistics
    execution_count: Mapped[int] = mapped_column(default=0)
    success_count: Mapped[int] = mapped_column(default=0)
    failure_count: Mapped[int] = mapped_column(default=0)
    avg_execution_ms: Mapped[int] = mapped_column(default=0)
    last_execution_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_by_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)

    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="noload",
    )
