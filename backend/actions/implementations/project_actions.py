"""Project-side domain mutations: create a task, update project status or a field."""

from typing import Any, Mapping

from actions.base_action import BaseAction
from core.exceptions import ActionError
from core.utils import parse_datetime
from core.constants import ActionType
from workflow.templating import render_text


class CreateTaskAction(BaseAction):
    """Create a task inside a project.

    Config:
        projectId, title: required
        description, assigneeId, dueDate: optional
        priority: default MEDIUM
        status: default TODO
    """

    action_type = ActionType.CREATE_TASK
    display_name = "Create Task"
    description = "Create a task in a project"
    required_config = ("title", "projectId")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "title", "projectId")
        due_date = None
        if config.get("dueDate"):
            due_date = parse_datetime(config["dueDate"])
            if due_date is None:
                raise ActionError(f"Invalid dueDate: {config['dueDate']!r}")

        mutation = await self.deps.domain.create_task(
            project_id=str(config["projectId"]),
            title=render_text(config["title"]),
            description=render_text(config.get("description")),
            priority=str(config.get("priority") or "MEDIUM").upper(),
            status=str(config.get("status") or "TODO").upper(),
            assignee_id=config.get("assigneeId") or None,
            due_date=due_date,
            created_by=self.actor_id(context),
        )
        return {"taskId": mutation.entity_id, "title": mutation.value, "projectId": str(config["projectId"])}


class UpdateProjectStatusAction(BaseAction):
    action_type = ActionType.UPDATE_PROJECT_STATUS
    display_name = "Update Project Status"
    description = "Set a project's status"
    required_config = ("projectId", "status")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "projectId", "status")
        mutation = await self.deps.domain.update_project_status(
            str(config["projectId"]), str(config["status"]).upper()
        )
        return {"projectId": mutation.entity_id, "field": mutation.field, "status": mutation.value}


class UpdateProjectFieldAction(BaseAction):
    """Set one whitelisted project column; ``value`` may be any JSON value."""

    action_type = ActionType.UPDATE_PROJECT_FIELD
    display_name = "Update Project Field"
    description = "Set a single field on a project"
    required_config = ("projectId", "field")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "projectId", "field")
        mutation = await self.deps.domain.update_project_field(
            str(config["projectId"]), str(config["field"]), config.get("value")
        )
        return {"projectId": mutation.entity_id, **mutation.to_dict()}


PROJECT_ACTIONS = [
    CreateTaskAction,
    UpdateProjectStatusAction,
    UpdateProjectFieldAction,
]
