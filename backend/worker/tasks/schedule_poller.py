"""Celery task to run workflows whose schedule triggers are due.

Runs every minute via Celery Beat. For each enabled workflow declaring a
SCHEDULE_DAILY/WEEKLY/MONTHLY/CUSTOM trigger, derives the trigger's cron
expression and, when it matches the current minute in the trigger's
timezone, runs the workflow with a SCHEDULE-sourced context.
"""

import logging
from datetime import datetime
from typing import Optional

from app.config import get_settings
from core.exceptions import AutomationError, ConfigurationError
from core.utils import utc_now
from triggers.events import scheduled_tick
from worker.celery_app import celery_app
from worker.runtime import WorkerRuntime, run_in_new_loop, worker_runtime
from worker.schedules import cron_for_trigger, due_triggers, polled_trigger_types
from workflow.models import WorkflowDefinition, type_name

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.schedule_poller.poll_schedules",
    bind=True,
    max_retries=2,
    default_retry_delay=15,
    queue="triggers",
)
def poll_schedules(self):
    """Check schedule triggers and run the workflows that are due."""
    logger.info("[schedule-poller] Polling schedule triggers...")
    try:
        result = run_in_new_loop(_poll())
        logger.info(f"[schedule-poller] Done: {result}")
        return result
    except Exception as exc:
        logger.error(f"[schedule-poller] Polling failed: {exc}", exc_info=True)
        raise self.retry(exc=exc)


async def _poll(now: Optional[datetime] = None) -> dict:
    async with worker_runtime() as runtime:
        return await poll_due_schedules(runtime, now)


async def poll_due_schedules(runtime: WorkerRuntime, now: Optional[datetime] = None) -> dict:
    """Run every workflow with a schedule trigger due at ``now``.

    A workflow declaring several due triggers runs once.
    """
    now = now or utc_now()
    default_timezone = get_settings().SCHEDULE_TIMEZONE
    dispatched = 0
    errors = 0
    seen: set[str] = set()

    for trigger_type in polled_trigger_types():
        for row in await runtime.store.find_enabled_by_trigger_type(trigger_type):
            if row.id in seen:
                continue
            try:
                definition = WorkflowDefinition.from_model(row)
            except ConfigurationError as e:
                seen.add(row.id)
                errors += 1
                logger.error(f"[schedule-poller] Workflow {row.id} skipped: {e.message}")
                continue
            due = due_triggers(definition, now, default_timezone)
            if not due:
                continue
            seen.add(row.id)

            trigger = due[0]
            event = scheduled_tick(
                type_name(trigger.type),
                at=now,
                schedule=cron_for_trigger(trigger.type, trigger.config),
            )
            try:
                result = await runtime.engine.execute_workflow(row.id, event.context)
                dispatched += 1
                logger.info(
                    f"[schedule-poller] Ran workflow {row.id} ({definition.name}) "
                    f"for {event.trigger_type.value}: {result.status.value}"
                )
            except AutomationError as e:
                errors += 1
                logger.error(f"[schedule-poller] Workflow {row.id} not run: {e.message}")

    return {"dispatched": dispatched, "errors": errors}
