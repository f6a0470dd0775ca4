"""
Base action interface for all workflow action handlers.

Every action type (send email, create task, call webhook, ...) inherits
from BaseAction and implements execute(). Handlers raise ActionError
subclasses on failure; the action executor turns any exception into a
FAILED ActionResult.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog

from app.config import Settings
from core.constants import ActionType
from core.exceptions import ActionError
from core.utils import resolve_path, MISSING
from notifications.manager import NotificationManager
from services.domain_service import DomainService

logger = structlog.get_logger(__name__)


@dataclass
class ActionDependencies:
    """Collaborators handed to every handler."""
    domain: DomainService
    notifications: NotificationManager
    settings: Settings


class BaseAction(ABC):
    """
    Abstract base class for all action handlers.

    Subclasses must implement:
    - execute(config, context) -> result payload
    - action_type (class attribute)
    - display_name (class attribute)
    """

    action_type: ActionType
    display_name: str = "Base Action"
    description: str = "Abstract base action"
    required_config: tuple[str, ...] = ()

    def __init__(self, deps: ActionDependencies):
        self.deps = deps

    @abstractmethod
    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        """
        Perform the side effect.

        Args:
            config: Action config with placeholders already substituted
            context: Execution-context namespace (entity, user, metadata, ...)

        Returns:
            JSON-serialisable result payload
        """

    async def run(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        """
        Run the handler with timing and structured logging.

        This is the entry point called by the action executor. Exceptions
        propagate to the executor after being logged.
        """
        start = time.monotonic()
        logger.debug("action.starting", action_type=self.action_type.value)
        try:
            result = await self.execute(config, context)
        except Exception as e:
            logger.warning(
                "action.failed",
                action_type=self.action_type.value,
                error=str(e),
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise
        logger.info(
            "action.completed",
            action_type=self.action_type.value,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return result

    def require(self, config: Mapping[str, Any], *keys: str) -> None:
        """Fail with ActionError when any of ``keys`` is missing or empty."""
        missing = [k for k in keys if config.get(k) in (None, "", [])]
        if missing:
            raise ActionError(f"{self.action_type.value} requires {', '.join(missing)}")

    @staticmethod
    def actor_id(context: Mapping[str, Any], default: str = "system") -> str:
        value = resolve_path(context, "user.id")
        return default if value is MISSING or not value else str(value)

    @classmethod
    def describe(cls) -> dict[str, Any]:
        return {
            "action_type": cls.action_type.value,
            "display_name": cls.display_name,
            "description": cls.description,
            "required_config": list(cls.required_config),
        }


def first_present(config: Mapping[str, Any], *keys: str, default: Optional[Any] = None) -> Any:
    """First non-empty value among alternative config keys."""
    for key in keys:
        if config.get(key) not in (None, ""):
            return config[key]
    return default
