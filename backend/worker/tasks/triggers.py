"""Celery task for dispatching domain events from other processes."""

import logging

from worker.celery_app import celery_app
from worker.runtime import run_in_new_loop, worker_runtime

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.triggers.dispatch_trigger",
    bind=True,
    max_retries=2,
    default_retry_delay=10,
    queue="triggers",
)
def dispatch_trigger(self, trigger_type: str, context: dict):
    """Run every enabled workflow declaring ``trigger_type``.

    Args:
        trigger_type: TriggerType value
        context: Serialized ExecutionContext
    """
    logger.info(f"Dispatching trigger: {trigger_type}")
    try:
        return run_in_new_loop(_dispatch(trigger_type, context))
    except Exception as exc:
        logger.error(f"Trigger dispatch failed: {trigger_type}: {exc}")
        raise self.retry(exc=exc)


async def _dispatch(trigger_type: str, context: dict) -> dict:
    async with worker_runtime() as runtime:
        results = await runtime.dispatcher.trigger_workflows(trigger_type, context)
        return {
            "trigger_type": trigger_type,
            "executions": [
                {"execution_id": r.execution_id, "workflow_id": r.workflow_id, "status": r.status.value}
                for r in results
            ],
        }
