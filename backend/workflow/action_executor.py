"""Action Executor: runs a workflow's actions in order.

Each action:
1. gets an effective timeout (action, then workflow, then default),
2. has its config templated against the execution context,
3. is dispatched to exactly one handler from the ActionRegistry,
4. races the handler (and its optional retries) against the timeout.

Every failure, including an unknown action type, becomes a FAILED
ActionResult; nothing raised by a handler escapes the batch.
"""

import asyncio
import time
import traceback
from typing import Any, Mapping, Optional, Sequence, Union

import structlog

from actions.registry import ActionRegistry
from app.config import Settings, get_settings
from core.constants import ActionStatus
from core.exceptions import TemplateResolutionError
from core.utils import utc_now
from workflow.models import (
    ActionDeclaration,
    ActionResult,
    ContextLike,
    WorkflowDefinition,
    context_namespace,
    type_name,
)
from workflow.retry_strategies import RetryStrategy, execute_with_retry
from workflow.templating import render_templates

logger = structlog.get_logger(__name__)

DEFAULT_ACTION_TIMEOUT = 300.0

ActionLike = Union[ActionDeclaration, Mapping[str, Any]]


def sort_actions(actions: Sequence[ActionLike]) -> list[ActionDeclaration]:
    """Parse and order actions by ``order``; ties keep declaration order."""
    parsed = [a if isinstance(a, ActionDeclaration) else ActionDeclaration.from_dict(a) for a in actions]
    return sorted(parsed, key=lambda a: a.order)


def error_payload(error: BaseException) -> dict[str, Any]:
    return {
        "message": str(error) or type(error).__name__,
        "type": type(error).__name__,
        "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
    }


class ActionExecutor:
    """Sequential action runner.

    Args:
        registry: handlers keyed by ActionType
        default_timeout: seconds, used when neither action nor workflow sets one
        strict_templates: fail actions whose config has unresolved placeholders
    """

    def __init__(
        self,
        registry: ActionRegistry,
        default_timeout: Optional[float] = None,
        strict_templates: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.registry = registry
        self.default_timeout = (
            default_timeout if default_timeout is not None
            else settings.WORKFLOW_DEFAULT_ACTION_TIMEOUT or DEFAULT_ACTION_TIMEOUT
        )
        self.strict_templates = (
            strict_templates if strict_templates is not None
            else settings.WORKFLOW_STRICT_TEMPLATES
        )

    async def execute_actions(
        self,
        actions: Sequence[ActionLike],
        context: ContextLike,
        workflow: Optional[WorkflowDefinition] = None,
        execution_id: Optional[str] = None,
    ) -> list[ActionResult]:
        """Run ``actions`` one at a time in ``order``.

        Stops after the first FAILED action unless that action set
        ``continueOnError``.
        """
        namespace = context_namespace(context)
        log = logger.bind(
            workflow_id=workflow.id if workflow else None,
            execution_id=execution_id,
        )
        workflow_timeout = workflow.timeout_seconds if workflow else None

        results: list[ActionResult] = []
        for action in sort_actions(actions):
            result = await self.execute_action(action, namespace, workflow_timeout)
            results.append(result)

            if not result.succeeded:
                log.warning(
                    "action.result_failed",
                    action_type=result.action_type,
                    order=result.order,
                    error=result.error.get("message") if result.error else None,
                )
                if not action.continue_on_error:
                    log.info("action.batch_stopped", after_order=action.order)
                    break

        return results

    async def execute_action(
        self,
        action: ActionDeclaration,
        namespace: Mapping[str, Any],
        workflow_timeout: Optional[float] = None,
    ) -> ActionResult:
        action_type = type_name(action.type)
        started_at = utc_now()
        start = time.monotonic()
        attempts = 0

        def finish(status: ActionStatus, result: Any = None, error: Optional[dict] = None) -> ActionResult:
            return ActionResult(
                action_type=action_type,
                order=action.order,
                status=status,
                started_at=started_at,
                completed_at=utc_now(),
                duration_ms=int((time.monotonic() - start) * 1000),
                result=result,
                error=error,
                attempts=max(attempts, 1),
            )

        handler = self.registry.get(action.type)
        if handler is None:
            logger.warning("action.unsupported_type", action_type=action_type, order=action.order)
            return finish(ActionStatus.FAILED, error={
                "message": f"Unsupported action type: {action_type}",
                "type": "UnsupportedActionType",
            })

        timeout = self.resolve_timeout(action, workflow_timeout)

        try:
            config = render_templates(action.config, namespace, strict=self.strict_templates)
        except TemplateResolutionError as e:
            return finish(ActionStatus.FAILED, error={
                "message": e.message,
                "type": type(e).__name__,
                "placeholders": e.placeholders,
            })

        async def attempt_once() -> Any:
            nonlocal attempts
            attempts += 1
            return await handler.run(config, namespace)

        try:
            if action.retry_on_error:
                strategy = RetryStrategy.from_dict(action.retry)
                runner = execute_with_retry(attempt_once, strategy)
            else:
                runner = attempt_once()
            output = await asyncio.wait_for(runner, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("action.timeout", action_type=action_type, timeout_seconds=timeout)
            return finish(ActionStatus.FAILED, error={
                "message": "Action timeout",
                "type": "ActionTimeoutError",
                "timeoutSeconds": timeout,
            })
        except Exception as e:
            return finish(ActionStatus.FAILED, error=error_payload(e))

        return finish(ActionStatus.SUCCESS, result=output)

    def resolve_timeout(self, action: ActionDeclaration, workflow_timeout: Optional[float] = None) -> float:
        for candidate in (action.timeout_seconds, workflow_timeout):
            if candidate is not None and float(candidate) > 0:
                return float(candidate)
        return float(self.default_timeout)
