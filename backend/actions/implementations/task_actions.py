"""Task mutations: status, priority, assignment and comments."""

from typing import Any, Mapping

from actions.base_action import BaseAction, first_present
from core.constants import ActionType
from core.exceptions import ActionError
from workflow.templating import render_text


class UpdateTaskStatusAction(BaseAction):
    action_type = ActionType.UPDATE_TASK_STATUS
    display_name = "Update Task Status"
    description = "Set a task's status"
    required_config = ("taskId", "status")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "taskId", "status")
        mutation = await self.deps.domain.update_task_status(
            str(config["taskId"]), str(config["status"]).upper()
        )
        return {"taskId": mutation.entity_id, "field": mutation.field, "status": mutation.value}


class UpdateTaskPriorityAction(BaseAction):
    action_type = ActionType.UPDATE_TASK_PRIORITY
    display_name = "Update Task Priority"
    description = "Set a task's priority"
    required_config = ("taskId", "priority")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "taskId", "priority")
        mutation = await self.deps.domain.update_task_priority(
            str(config["taskId"]), str(config["priority"]).upper()
        )
        return {"taskId": mutation.entity_id, "field": mutation.field, "priority": mutation.value}


class AssignTaskAction(BaseAction):
    """Assign a task. ``assigneeId`` wins over the older ``userId`` key."""

    action_type = ActionType.ASSIGN_TASK
    display_name = "Assign Task"
    description = "Assign a task to a user"
    required_config = ("taskId", "assigneeId")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "taskId")
        assignee = first_present(config, "assigneeId", "userId")
        if assignee is None:
            raise ActionError("ASSIGN_TASK requires assigneeId")
        mutation = await self.deps.domain.assign_task(str(config["taskId"]), str(assignee))
        return {"taskId": mutation.entity_id, "field": mutation.field, "assigneeId": mutation.value}


class AddTaskCommentAction(BaseAction):
    """Comment on a task as ``authorId``, the acting user, or "system"."""

    action_type = ActionType.ADD_TASK_COMMENT
    display_name = "Add Task Comment"
    description = "Add a comment to a task"
    required_config = ("taskId", "comment")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "taskId", "comment")
        author = first_present(config, "authorId", "userId") or self.actor_id(context)
        mutation = await self.deps.domain.add_task_comment(
            str(config["taskId"]), render_text(config["comment"]), author_id=str(author)
        )
        return {"taskId": mutation.entity_id, "field": mutation.field, "commentId": mutation.value}


TASK_ACTIONS = [
    UpdateTaskStatusAction,
    UpdateTaskPriorityAction,
    AssignTaskAction,
    AddTaskCommentAction,
]
