"""Project model: the domain object most workflows react to."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel, SoftDeleteMixin


class Project(SoftDeleteMixin, BaseModel):
    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(default="PLANNING", index=True)
    priority: Mapped[str] = mapped_column(default="MEDIUM")
    client_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    budget: Mapped[Optional[float]] = mapped_column(nullable=True)
    budget_used: Mapped[Optional[float]] = mapped_column(nullable=True)
    progress: Mapped[int] = mapped_column(default=0)
    start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="noload",
    )
