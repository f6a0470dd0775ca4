"""Task and TaskComment models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, SoftDeleteMixin


class Task(SoftDeleteMixin, BaseModel):
    """A unit of work inside a project.

    Attributes:
        project_id: Owning project
        title / description: Task text
        status: TODO, IN_PROGRESS, REVIEW, TESTING, DONE, COMPLETED or CANCELLED
        priority: LOW, MEDIUM, HIGH or URGENT
        assignee_id: Assigned user, if any
        created_by: User id, or "system" for tasks created by workflows
        due_date: Optional due date
    """

    __tablename__ = "tasks"

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(default="TODO", index=True)
    priority: Mapped[str] = mapped_column(default="MEDIUM")
    assignee_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    created_by: Mapped[str] = mapped_column(default="system")
    due_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    project: Mapped["Project"] = relationship(
        "Project", back_populates="tasks", lazy="noload"
    )
    comments: Mapped[list["TaskComment"]] = relationship(
        "TaskComment",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="noload",
    )


class TaskComment(BaseModel):
    __tablename__ = "task_comments"

    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id: Mapped[str] = mapped_column(default="system")
    content: Mapped[str] = mapped_column(Text, nullable=False)

    task: Mapped["Task"] = relationship(
        "Task", back_populates="comments", lazy="noload"
    )
