"""Celery task that re-runs executions left in RETRYING.

The engine never sets timers itself: a failed attempt is stored as
RETRYING with ``next_retry_at``. This task runs every minute, claims the
due rows and starts a new attempt against the captured context, linked
back through ``parent_execution_id``.
"""

import logging
from datetime import datetime
from typing import Optional

from app.config import get_settings
from core.exceptions import AutomationError
from core.utils import utc_now
from worker.celery_app import celery_app
from worker.runtime import WorkerRuntime, run_in_new_loop, worker_runtime
from workflow.models import ExecutionContext

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.retry_poller.poll_retries",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def poll_retries(self):
    """Re-run executions whose retry time has come."""
    logger.info("[retry-poller] Polling due retries...")
    try:
        result = run_in_new_loop(_poll())
        logger.info(f"[retry-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[retry-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


async def _poll() -> dict:
    async with worker_runtime() as runtime:
        return await dispatch_due_retries(runtime)


async def dispatch_due_retries(
    runtime: WorkerRuntime,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> dict:
    """Claim and re-run due RETRYING executions.

    A row claimed by another poller is skipped. A workflow deleted or
    disabled since the failure is counted as an error and not retried again.
    """
    now = now or utc_now()
    limit = limit if limit is not None else get_settings().RETRY_POLL_BATCH_SIZE
    dispatched = 0
    skipped = 0
    errors = 0

    for row in await runtime.store.list_due_retries(now, limit):
        if not await runtime.store.mark_retry_dispatched(row.id, now):
            skipped += 1
            continue
        try:
            result = await runtime.engine.execute_workflow(
                row.workflow_id,
                ExecutionContext.from_dict(row.context or {}),
                retry_count=row.retry_count,
                parent_execution_id=row.id,
            )
            dispatched += 1
            logger.info(
                f"[retry-poller] Retry {row.retry_count} of execution {row.id} "
                f"-> {result.execution_id}: {result.status.value}"
            )
        except AutomationError as e:
            errors += 1
            logger.error(f"[retry-poller] Retry of execution {row.id} not run: {e.message}")
        except Exception:
            errors += 1
            logger.error(f"[retry-poller] Retry of execution {row.id} failed unexpectedly", exc_info=True)

    return {"dispatched": dispatched, "skipped": skipped, "errors": errors}
