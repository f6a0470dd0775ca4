"""
Action Registry: one handler per ActionType.

The registry is built from the handler lists of each implementation module
and refuses to construct unless every ActionType has exactly one handler.
"""

from typing import Dict, Optional, Type

from actions.base_action import ActionDependencies, BaseAction
from actions.implementations.notification_actions import NOTIFICATION_ACTIONS
from actions.implementations.project_actions import PROJECT_ACTIONS
from actions.implementations.task_actions import TASK_ACTIONS
from actions.implementations.webhook_action import HTTP_ACTIONS
from core.constants import ActionType

BUILTIN_ACTIONS: list[Type[BaseAction]] = [
    *NOTIFICATION_ACTIONS,
    *PROJECT_ACTIONS,
    *TASK_ACTIONS,
    *HTTP_ACTIONS,
]


class ActionRegistry:
    """Maps each ActionType to a ready-to-run handler instance."""

    def __init__(self, deps: ActionDependencies, handlers: Optional[list[Type[BaseAction]]] = None):
        self.deps = deps
        self._handlers: Dict[ActionType, BaseAction] = {}
        for handler_class in handlers if handlers is not None else BUILTIN_ACTIONS:
            self.register(handler_class)
        self._check_exhaustive()

    def register(self, handler_class: Type[BaseAction]) -> None:
        action_type = handler_class.action_type
        if action_type in self._handlers:
            raise RuntimeError(f"Duplicate handler for action type {action_type.value}")
        self._handlers[action_type] = handler_class(self.deps)

    def _check_exhaustive(self) -> None:
        missing = [t.value for t in ActionType if t not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for action type(s): {', '.join(missing)}")

    def get(self, action_type) -> Optional[BaseAction]:
        """Handler for ``action_type`` (enum or raw string); None when unknown."""
        try:
            return self._handlers.get(ActionType(action_type))
        except ValueError:
            return None

    def list_all(self) -> list:
        return [handler.describe() for handler in self._handlers.values()]

    @property
    def available_types(self) -> list:
        return [t.value for t in self._handlers]
