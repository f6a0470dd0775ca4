"""Trigger Dispatcher: entry points that route classified events to workflows.

- ``trigger_workflows``: run every enabled workflow declaring a trigger type
- ``trigger_workflows_async``: enqueue the same on a bounded queue drained by
  worker tasks; failures are logged by the workers
- ``execute_workflow_manually`` / ``execute_workflow_via_webhook``: run one
  workflow directly, bypassing the trigger-type lookup
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from app.config import Settings, get_settings
from core.constants import EntityType, TriggeredBy, TriggerType
from core.exceptions import AutomationError, DispatchQueueFullError
from core.utils import utc_now
from services.workflow_service import WorkflowStore
from triggers.events import DomainEvent, UserLike, as_actor, build_context
from workflow.engine import WorkflowEngine, as_execution_context
from workflow.models import ContextLike, ExecutionContext, ExecutionResult, type_name

logger = logging.getLogger(__name__)


@dataclass
class DispatchJob:
    trigger_type: str
    context: ExecutionContext
    enqueued_at: datetime = field(default_factory=utc_now)


class TriggerDispatcher:
    """Routes events to the engine.

    Args:
        engine: WorkflowEngine that runs each workflow
        store: persistence used for the trigger-type lookup (defaults to the engine's)
        queue_size: capacity of the async dispatch queue
        workers: number of consumer tasks draining the queue
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        store: Optional[WorkflowStore] = None,
        *,
        queue_size: Optional[int] = None,
        workers: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.engine = engine
        self.store = store or engine.store
        self.queue_size = queue_size if queue_size is not None else settings.DISPATCH_QUEUE_SIZE
        self.worker_count = workers if workers is not None else settings.DISPATCH_WORKERS
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []

    # ─── Synchronous dispatch ──────────────────────────────

    async def trigger_workflows(
        self,
        trigger_type: Union[TriggerType, str],
        context: ContextLike,
    ) -> list[ExecutionResult]:
        """Run every enabled workflow declaring ``trigger_type``.

        Workflows run one after another. A workflow the engine refuses
        (ceiling reached, disabled meanwhile, malformed definition) or that
        fails unexpectedly is logged and skipped.
        """
        trigger_name = type_name(trigger_type)
        context = as_execution_context(context)
        workflows = await self.store.find_enabled_by_trigger_type(trigger_name)
        logger.info("Dispatching %s to %d workflow(s)", trigger_name, len(workflows))

        results: list[ExecutionResult] = []
        for workflow in workflows:
            try:
                results.append(await self.engine.execute_workflow(workflow.id, context))
            except AutomationError as e:
                logger.warning(
                    "Workflow %s not executed for %s: %s", workflow.id, trigger_name, e.message
                )
            except Exception:
                logger.error(
                    "Workflow %s failed unexpectedly for %s", workflow.id, trigger_name, exc_info=True
                )
        return results

    async def dispatch(self, event: DomainEvent, wait: bool = True) -> Optional[list[ExecutionResult]]:
        """Dispatch a built ``DomainEvent``; ``wait=False`` enqueues it."""
        if wait:
            return await self.trigger_workflows(event.trigger_type, event.context)
        await self.trigger_workflows_async(event.trigger_type, event.context)
        return None

    async def dispatch_event(
        self,
        trigger_type: Union[TriggerType, str],
        entity_type: Union[EntityType, str],
        entity_id: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        changes: Optional[Mapping[str, Any]] = None,
        user: UserLike = None,
        triggered_by: Union[TriggeredBy, str] = TriggeredBy.EVENT,
        wait: bool = True,
    ) -> Optional[list[ExecutionResult]]:
        """Build a context for one entity change and dispatch it."""
        context = build_context(
            entity_type,
            entity_id,
            data,
            changes=changes,
            user=user,
            triggered_by=triggered_by,
            trigger_source=type_name(trigger_type),
        )
        return await self.dispatch(DomainEvent(TriggerType(trigger_type), context), wait=wait)

    # ─── Direct execution ──────────────────────────────────

    async def execute_workflow_manually(
        self,
        workflow_id: str,
        context: Optional[ContextLike] = None,
        user: UserLike = None,
    ) -> ExecutionResult:
        """Run one workflow now ("run now" / test flows)."""
        if context is None:
            context = ExecutionContext(
                triggered_by=TriggeredBy.MANUAL,
                trigger_source="manual",
                user=as_actor(user),
            )
        return await self.engine.execute_workflow(workflow_id, context)

    async def execute_workflow_via_webhook(
        self,
        workflow_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        source: Optional[str] = None,
    ) -> ExecutionResult:
        """Run one workflow for an inbound webhook; the payload lands in ``metadata.payload``."""
        context = ExecutionContext(
            triggered_by=TriggeredBy.WEBHOOK,
            trigger_source=source or "webhook",
            metadata={"payload": dict(payload or {}), "source": source},
        )
        return await self.engine.execute_workflow(workflow_id, context)

    # ─── Async dispatch queue ──────────────────────────────

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"dispatch-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info("Dispatcher started: %d worker(s), queue size %d", self.worker_count, self.queue_size)

    async def trigger_workflows_async(
        self,
        trigger_type: Union[TriggerType, str],
        context: ContextLike,
    ) -> None:
        """Enqueue a dispatch; waits for a free slot when the queue is full."""
        if not self._workers:
            await self.start()
        await self._queue.put(DispatchJob(type_name(trigger_type), as_execution_context(context)))

    def try_enqueue(self, trigger_type: Union[TriggerType, str], context: ContextLike) -> None:
        """Enqueue without waiting.

        Raises:
            DispatchQueueFullError: no free slot, or the dispatcher is not started
        """
        if self._queue is None or not self._workers:
            raise DispatchQueueFullError("Dispatcher is not running")
        try:
            self._queue.put_nowait(DispatchJob(type_name(trigger_type), as_execution_context(context)))
        except asyncio.QueueFull:
            raise DispatchQueueFullError(f"Dispatch queue is full ({self.queue_size} pending)")

    async def join(self) -> None:
        """Wait until every queued dispatch has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, first processing what is queued when ``drain``."""
        if not self._workers:
            return
        if drain:
            await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Dispatcher stopped")

    async def _worker(self, number: int) -> None:
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                results = await self.trigger_workflows(job.trigger_type, job.context)
                logger.debug(
                    "Worker %d dispatched %s: %d execution(s)", number, job.trigger_type, len(results)
                )
            except Exception as e:
                logger.error(
                    "Async dispatch of %s failed: %s", job.trigger_type, e, exc_info=True
                )
            finally:
                queue.task_done()
