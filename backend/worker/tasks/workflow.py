"""Celery task for running one workflow outside the web process.

Used for "run now" requests and inbound webhooks: the caller enqueues the
workflow id and a serialized context; the worker runs it and returns the
execution result as a dict.
"""

import logging
from typing import Optional

from core.exceptions import ConcurrencyLimitError
from worker.celery_app import celery_app
from worker.runtime import run_in_new_loop, worker_runtime

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.workflow.execute_workflow",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    queue="workflows",
)
def execute_workflow(self, workflow_id: str, context: Optional[dict] = None, webhook_source: Optional[str] = None):
    """Run a workflow.

    Args:
        workflow_id: Workflow to run
        context: Serialized ExecutionContext; for webhooks, the request payload
        webhook_source: Set for webhook deliveries; ``context`` is then the payload
    """
    logger.info(f"Executing workflow {workflow_id}")
    try:
        return run_in_new_loop(_execute(workflow_id, context, webhook_source))
    except ConcurrencyLimitError as exc:
        logger.warning(f"Workflow {workflow_id} deferred: {exc.message}")
        raise self.retry(exc=exc)


async def _execute(workflow_id: str, context: Optional[dict], webhook_source: Optional[str]) -> dict:
    async with worker_runtime() as runtime:
        if webhook_source is not None:
            result = await runtime.dispatcher.execute_workflow_via_webhook(
                workflow_id, context, webhook_source
            )
        else:
            result = await runtime.dispatcher.execute_workflow_manually(workflow_id, context)
        return result.to_dict()
