"""Workflow Engine: orchestrates one execution per call.

State machine per execution:

    PENDING -> RUNNING -> SUCCESS | FAILED | CANCELLED | RETRYING

- Load: a missing or disabled workflow raises before any row exists.
- Trigger re-validation or conditions returning False -> CANCELLED.
- Actions: all failed -> FAILED, otherwise SUCCESS (partial success
  included; failed ActionResults stay in ``results``).
- An exception after the row exists -> RETRYING when the workflow still
  has retries left (``nextRetryAt`` is set; the retry poller re-invokes
  the engine), otherwise FAILED. Broken definitions never retry.

The engine rejects new calls once ``max_concurrent_executions`` calls are
in flight; it never queues.
"""

import asyncio
import traceback
from collections import defaultdict
from typing import Any, Optional
from uuid import uuid4

import structlog

from actions.base_action import ActionDependencies
from actions.registry import ActionRegistry
from app.config import Settings, get_settings
from core.constants import ActionStatus, ExecutionStatus, LogLevel
from core.exceptions import (
    ConcurrencyLimitError,
    ConfigurationError,
    NotFoundError,
    WorkflowDisabledError,
)
from core.logging_config import bind_execution, clear_execution
from core.utils import utc_now
from services.workflow_service import WorkflowStore
from workflow.action_executor import ActionExecutor
from workflow.condition_evaluator import ConditionEvaluator
from workflow.models import (
    ActionResult,
    ContextLike,
    ExecutionContext,
    ExecutionResult,
    WorkflowDefinition,
)
from workflow.retry_strategies import RetryStrategy
from workflow.trigger_evaluator import TriggerEvaluator

logger = structlog.get_logger(__name__)


def as_execution_context(context: ContextLike) -> ExecutionContext:
    if isinstance(context, ExecutionContext):
        return context
    return ExecutionContext.from_dict(context or {})


class WorkflowEngine:
    """Runs workflows against execution contexts.

    Construct one per process (or per test). Collaborators are injected;
    keyword arguments override the matching settings.
    """

    def __init__(
        self,
        store: WorkflowStore,
        action_executor: ActionExecutor,
        trigger_evaluator: Optional[TriggerEvaluator] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        *,
        max_concurrent_executions: Optional[int] = None,
        retry_enabled: Optional[bool] = None,
        db_logging_enabled: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.action_executor = action_executor
        self.trigger_evaluator = trigger_evaluator or TriggerEvaluator()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.max_concurrent_executions = (
            max_concurrent_executions if max_concurrent_executions is not None
            else settings.WORKFLOW_MAX_CONCURRENT_EXECUTIONS
        )
        self.retry_enabled = (
            retry_enabled if retry_enabled is not None else settings.WORKFLOW_RETRY_ENABLED
        )
        self.default_retry_delay = settings.WORKFLOW_DEFAULT_RETRY_DELAY
        self.db_logging_enabled = (
            db_logging_enabled if db_logging_enabled is not None
            else settings.WORKFLOW_DB_LOGGING_ENABLED
        )

        # call token -> workflow id
        self._in_flight: dict[str, str] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False
        # workflow id -> stats lock, dropped once no call holds that workflow
        self._stats_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ─── Introspection ─────────────────────────────────────

    @property
    def active_execution_count(self) -> int:
        return len(self._in_flight)

    def get_running_executions(self) -> dict[str, str]:
        """In-flight call tokens mapped to their workflow ids."""
        return dict(self._in_flight)

    # ─── Execution ─────────────────────────────────────────

    async def execute_workflow(
        self,
        workflow_id: str,
        context: ContextLike,
        *,
        retry_count: int = 0,
        parent_execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        """Run one workflow for one triggering event.

        Args:
            workflow_id: Workflow to run
            context: ExecutionContext, or its dict form
            retry_count: Attempts already made (set by the retry poller)
            parent_execution_id: The RETRYING execution this attempt replaces

        Raises:
            ConcurrencyLimitError: the in-flight ceiling is reached
            NotFoundError: no such workflow
            WorkflowDisabledError: the workflow is disabled
            ConfigurationError: the stored definition cannot be parsed
        """
        if self._closing:
            raise ConcurrencyLimitError("Workflow engine is shutting down")
        if len(self._in_flight) >= self.max_concurrent_executions:
            logger.warning(
                "engine.concurrency_limit",
                workflow_id=workflow_id,
                active=len(self._in_flight),
                limit=self.max_concurrent_executions,
            )
            raise ConcurrencyLimitError(
                f"Maximum concurrent executions ({self.max_concurrent_executions}) reached"
            )

        token = str(uuid4())
        self._in_flight[token] = workflow_id
        self._idle.clear()
        try:
            return await self._run(workflow_id, as_execution_context(context), retry_count, parent_execution_id)
        finally:
            self._in_flight.pop(token, None)
            if workflow_id not in self._in_flight.values():
                self._stats_locks.pop(workflow_id, None)
            if not self._in_flight:
                self._idle.set()
            clear_execution()

    async def _run(
        self,
        workflow_id: str,
        context: ExecutionContext,
        retry_count: int,
        parent_execution_id: Optional[str],
    ) -> ExecutionResult:
        definition = await self.load_workflow(workflow_id)

        started_at = utc_now()
        execution = await self.store.create_execution({
            "workflow_id": definition.id,
            "parent_execution_id": parent_execution_id,
            "status": ExecutionStatus.PENDING,
            "triggered_by": context.triggered_by,
            "trigger_source": context.trigger_source,
            "context": context.to_dict(),
            "started_at": started_at,
            "retry_count": retry_count,
        })
        execution_id = execution.id
        bind_execution(definition.id, execution_id)
        log = logger.bind(workflow_id=definition.id, execution_id=execution_id)

        await self.store.update_execution(execution_id, {"status": ExecutionStatus.RUNNING})
        await self._audit(definition.id, execution_id, LogLevel.INFO, "Workflow execution started", {
            "triggeredBy": context.triggered_by,
            "triggerSource": context.trigger_source,
            "retryCount": retry_count,
        })

        try:
            if not self.trigger_evaluator.evaluate(definition.triggers, context):
                await self._audit(definition.id, execution_id, LogLevel.WARNING, "Trigger conditions not met")
                return await self._complete(
                    definition, execution_id, started_at, ExecutionStatus.CANCELLED,
                    retry_count=retry_count, reason="Trigger conditions not met",
                )

            if not self.condition_evaluator.evaluate(definition.conditions, context):
                await self._audit(
                    definition.id, execution_id, LogLevel.INFO,
                    "Workflow conditions not met, execution skipped",
                )
                return await self._complete(
                    definition, execution_id, started_at, ExecutionStatus.CANCELLED,
                    retry_count=retry_count, reason="Conditions not met",
                )

            await self._audit(
                definition.id, execution_id, LogLevel.INFO,
                f"Executing {len(definition.actions)} action(s)",
            )
            results = await self.action_executor.execute_actions(
                definition.actions, context, definition, execution_id
            )
        except Exception as e:
            log.error("engine.execution_error", error=str(e), exc_info=True)
            await self._audit(definition.id, execution_id, LogLevel.ERROR, "Workflow execution failed", {
                "error": str(e),
                "type": type(e).__name__,
            })
            return await self._fail_or_retry(definition, execution_id, started_at, retry_count, e)

        for result in results:
            await self._audit(
                definition.id,
                execution_id,
                LogLevel.INFO if result.succeeded else LogLevel.ERROR,
                f"Action {result.action_type} {result.status.value.lower()}",
                {"durationMs": result.duration_ms, "error": result.error},
                action=result.action_type,
                step=result.order,
            )

        failed = sum(1 for r in results if r.status == ActionStatus.FAILED)
        status = ExecutionStatus.FAILED if results and failed == len(results) else ExecutionStatus.SUCCESS
        await self._audit(definition.id, execution_id, LogLevel.INFO, "Workflow execution completed", {
            "status": status,
            "actionsExecuted": len(results),
            "actionsSuccess": len(results) - failed,
            "actionsFailed": failed,
        })
        return await self._complete(
            definition, execution_id, started_at, status, results=results, retry_count=retry_count
        )

    async def load_workflow(self, workflow_id: str) -> WorkflowDefinition:
        row = await self.store.get_workflow(workflow_id)
        if row is None:
            logger.error("engine.workflow_not_found", workflow_id=workflow_id)
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        if not row.enabled:
            logger.error("engine.workflow_disabled", workflow_id=workflow_id)
            raise WorkflowDisabledError(f"Workflow is disabled: {workflow_id}")
        try:
            return WorkflowDefinition.from_model(row)
        except ConfigurationError as e:
            logger.error("engine.workflow_malformed", workflow_id=workflow_id, error=e.message)
            raise

    async def _fail_or_retry(
        self,
        definition: WorkflowDefinition,
        execution_id: str,
        started_at,
        retry_count: int,
        error: Exception,
    ) -> ExecutionResult:
        delay = definition.retry_delay_seconds
        strategy = RetryStrategy.for_workflow(
            definition.max_retries, delay if delay is not None else self.default_retry_delay
        )
        retryable = (
            self.retry_enabled
            and not isinstance(error, ConfigurationError)
            and strategy.should_retry(retry_count + 1)
        )
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        if not retryable:
            return await self._complete(
                definition, execution_id, started_at, ExecutionStatus.FAILED,
                retry_count=retry_count, reason=str(error), error_stack=stack,
            )

        next_retry_at = strategy.retry_after(retry_count + 1, utc_now())
        logger.info(
            "engine.retry_scheduled",
            workflow_id=definition.id,
            execution_id=execution_id,
            retry_count=retry_count + 1,
            next_retry_at=next_retry_at.isoformat(),
        )
        await self._audit(definition.id, execution_id, LogLevel.WARNING, "Workflow execution scheduled for retry", {
            "retryCount": retry_count + 1,
            "nextRetryAt": next_retry_at,
        })
        return await self._complete(
            definition, execution_id, started_at, ExecutionStatus.RETRYING,
            retry_count=retry_count + 1, reason=str(error), error_stack=stack,
            next_retry_at=next_retry_at,
        )

    async def _complete(
        self,
        definition: WorkflowDefinition,
        execution_id: str,
        started_at,
        status: ExecutionStatus,
        *,
        results: Optional[list[ActionResult]] = None,
        retry_count: int = 0,
        reason: Optional[str] = None,
        error_stack: Optional[str] = None,
        next_retry_at=None,
    ) -> ExecutionResult:
        results = results or []
        completed_at = utc_now()
        duration_ms = int((completed_at - started_at).total_seconds() * 1000)
        success = sum(1 for r in results if r.succeeded)
        errors = [
            {"order": r.order, "actionType": r.action_type, **(r.error or {})}
            for r in results if not r.succeeded
        ]
        if reason:
            errors.insert(0, {"message": reason})

        await self.store.update_execution(execution_id, {
            "status": status,
            "completed_at": completed_at,
            "duration_ms": duration_ms,
            "actions_executed": len(results),
            "actions_success": success,
            "actions_failed": len(results) - success,
            "results": [r.to_dict() for r in results],
            "error": reason,
            "error_stack": error_stack,
            "retry_count": retry_count,
            "next_retry_at": next_retry_at,
        })

        if status.is_terminal:
            await self._update_stats(definition.id, status, duration_ms, completed_at)

        logger.info(
            "engine.execution_completed",
            workflow_id=definition.id,
            execution_id=execution_id,
            status=status.value,
            duration_ms=duration_ms,
            actions_executed=len(results),
        )
        return ExecutionResult(
            execution_id=execution_id,
            workflow_id=definition.id,
            status=status,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
            actions_executed=len(results),
            actions_success=success,
            actions_failed=len(results) - success,
            results=results,
            errors=errors,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
        )

    # ─── Best-effort side records ──────────────────────────

    async def _update_stats(self, workflow_id: str, status: ExecutionStatus, duration_ms: int, completed_at) -> None:
        try:
            async with self._stats_locks[workflow_id]:
                await self.store.update_workflow_stats(workflow_id, status, duration_ms, completed_at)
        except Exception as e:
            logger.error("engine.stats_update_failed", workflow_id=workflow_id, error=str(e))

    async def _audit(
        self,
        workflow_id: str,
        execution_id: Optional[str],
        level: LogLevel,
        message: str,
        data: Optional[dict[str, Any]] = None,
        action: Optional[str] = None,
        step: Optional[int] = None,
    ) -> None:
        if not self.db_logging_enabled:
            return
        try:
            await self.store.append_log(
                workflow_id, level, message, data,
                execution_id=execution_id, action=action, step=step,
            )
        except Exception as e:
            logger.error("engine.audit_log_failed", workflow_id=workflow_id, message=message, error=str(e))

    # ─── Dry run & lifecycle ───────────────────────────────

    async def preview_workflow(self, workflow_id: str, context: ContextLike) -> dict[str, Any]:
        """Evaluate triggers and conditions without creating an execution.

        Disabled workflows can be previewed; missing ones raise NotFoundError.
        """
        row = await self.store.get_workflow(workflow_id)
        if row is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        definition = WorkflowDefinition.from_model(row)
        context = as_execution_context(context)

        errors: list[str] = []
        triggers_matched = self.trigger_evaluator.evaluate(definition.triggers, context)
        try:
            conditions_met = self.condition_evaluator.evaluate(definition.conditions, context)
        except ConfigurationError as e:
            conditions_met = False
            errors.append(e.message)

        return {
            "workflowId": definition.id,
            "enabled": definition.enabled,
            "triggersMatched": triggers_matched,
            "conditionsMet": conditions_met,
            "wouldExecute": definition.enabled and triggers_matched and conditions_met,
            "actions": [
                {"type": a.to_dict()["type"], "order": a.order}
                for a in sorted(definition.actions, key=lambda a: a.order)
            ],
            "errors": errors,
        }

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop accepting executions and wait for in-flight ones to finish."""
        self._closing = True
        logger.info("engine.shutting_down", active=len(self._in_flight))
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)


def create_workflow_engine(
    store: WorkflowStore,
    domain,
    notifications,
    settings: Optional[Settings] = None,
    **overrides,
) -> WorkflowEngine:
    """Wire an engine with the built-in action handlers."""
    settings = settings or get_settings()
    registry = ActionRegistry(ActionDependencies(domain=domain, notifications=notifications, settings=settings))
    executor = ActionExecutor(registry, settings=settings)
    return WorkflowEngine(store, executor, settings=settings, **overrides)
