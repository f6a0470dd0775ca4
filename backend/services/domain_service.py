"""Domain mutations invoked by workflow actions (tasks, projects, notifications)."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

from core.constants import NotificationType
from core.exceptions import NotFoundError, ValidationError
from core.utils import parse_datetime, to_snake_case
from db.models.notification import Notification
from db.models.project import Project
from db.models.task import Task, TaskComment
from services.base import BaseService

# Columns UPDATE_PROJECT_FIELD may touch
PROJECT_UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "status",
    "priority",
    "client_id",
    "budget",
    "budget_used",
    "progress",
    "start_date",
    "deadline",
    "notes",
})

_PROJECT_DATE_FIELDS = frozenset({"start_date", "deadline"})


@dataclass(frozen=True)
class MutationResult:
    """Which entity a mutation touched, and the field/value it set."""
    entity_id: str
    field: str
    value: Any

    def to_dict(self) -> dict:
        value = self.value.isoformat() if isinstance(self.value, datetime) else self.value
        return {"entityId": self.entity_id, "field": self.field, "value": value}


class DomainService(Protocol):
    """Domain mutation collaborator used by the action handlers."""

    async def create_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
        priority: str = "MEDIUM",
        status: str = "TODO",
        assignee_id: Optional[str] = None,
        due_date: Optional[datetime] = None,
        created_by: str = "system",
    ) -> MutationResult: ...

    async def update_project_status(self, project_id: str, status: str) -> MutationResult: ...

    async def update_project_field(self, project_id: str, field: str, value: Any) -> MutationResult: ...

    async def update_task_status(self, task_id: str, status: str) -> MutationResult: ...

    async def update_task_priority(self, task_id: str, priority: str) -> MutationResult: ...

    async def assign_task(self, task_id: str, assignee_id: str) -> MutationResult: ...

    async def add_task_comment(self, task_id: str, content: str, author_id: str = "system") -> MutationResult: ...

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = NotificationType.INFO.value,
        link: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> MutationResult: ...


class SqlDomainService:
    """SQLAlchemy implementation of ``DomainService``; one transaction per call."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ─── Projects ──────────────────────────────────────────

    async def update_project_status(self, project_id: str, status: str) -> MutationResult:
        return await self._update(Project, project_id, "status", status)

    async def update_project_field(self, project_id: str, field: str, value: Any) -> MutationResult:
        column = to_snake_case(field)
        if column not in PROJECT_UPDATABLE_FIELDS:
            raise ValidationError(f"Project field '{field}' cannot be updated by a workflow")
        if column in _PROJECT_DATE_FIELDS and value is not None:
            parsed = parse_datetime(value)
            if parsed is None:
                raise ValidationError(f"Invalid date for project field '{field}': {value!r}")
            value = parsed
        return await self._update(Project, project_id, column, value)

    # ─── Tasks ─────────────────────────────────────────────

    async def create_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
        priority: str = "MEDIUM",
        status: str = "TODO",
        assignee_id: Optional[str] = None,
        due_date: Optional[datetime] = None,
        created_by: str = "system",
    ) -> MutationResult:
        async with self._session_factory() as session:
            await BaseService(Project, session).require(project_id)
            task = await BaseService(Task, session).create({
                "project_id": project_id,
                "title": title,
                "description": description or "",
                "priority": priority,
                "status": status,
                "assignee_id": assignee_id,
                "due_date": due_date,
                "created_by": created_by,
            })
            await session.commit()
            return MutationResult(entity_id=task.id, field="title", value=task.title)

    async def update_task_status(self, task_id: str, status: str) -> MutationResult:
        return await self._update(Task, task_id, "status", status)

    async def update_task_priority(self, task_id: str, priority: str) -> MutationResult:
        return await self._update(Task, task_id, "priority", priority)

    async def assign_task(self, task_id: str, assignee_id: str) -> MutationResult:
        return await self._update(Task, task_id, "assignee_id", assignee_id)

    async def add_task_comment(self, task_id: str, content: str, author_id: str = "system") -> MutationResult:
        async with self._session_factory() as session:
            await BaseService(Task, session).require(task_id)
            comment = await BaseService(TaskComment, session).create({
                "task_id": task_id,
                "author_id": author_id,
                "content": content,
            })
            await session.commit()
            return MutationResult(entity_id=task_id, field="comments", value=comment.id)

    # ─── Notifications ─────────────────────────────────────

    async def create_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        type: str = NotificationType.INFO.value,
        link: Optional[str] = None,
        data: Optional[dict] = None,
    ) -> MutationResult:
        async with self._session_factory() as session:
            notification = await BaseService(Notification, session).create({
                "user_id": user_id,
                "title": title,
                "message": message,
                "type": type,
                "link": link,
                "data": data,
            })
            await session.commit()
            return MutationResult(entity_id=notification.id, field="user_id", value=user_id)

    async def _update(self, model, entity_id: str, column: str, value: Any) -> MutationResult:
        async with self._session_factory() as session:
            instance = await BaseService(model, session).update(entity_id, {column: value})
            if instance is None:
                raise NotFoundError(f"{model.__name__} {entity_id} not found")
            await session.commit()
            return MutationResult(entity_id=instance.id, field=column, value=getattr(instance, column))
