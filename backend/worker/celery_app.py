"""Celery application for out-of-process workflow runs and the pollers.

- Redis is broker and result backend
- ``workflows`` queue: single workflow runs (manual and webhook)
- ``triggers`` queue: event dispatch plus the retry and schedule pollers,
  both fired every minute by Celery Beat
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()

TASK_MODULES = [
    "worker.tasks.workflow",
    "worker.tasks.triggers",
    "worker.tasks.retry_poller",
    "worker.tasks.schedule_poller",
]

EVERY_MINUTE = crontab(minute="*")


def task_time_limits(settings) -> tuple[int, int]:
    """(soft, hard) limits for worker tasks.

    The hard limit is ``WORKER_TASK_TIME_LIMIT`` but never less than one
    action timeout plus two minutes; the soft limit fires a minute earlier.
    """
    hard = max(int(settings.WORKER_TASK_TIME_LIMIT), int(settings.WORKFLOW_DEFAULT_ACTION_TIMEOUT) + 120)
    return hard - 60, hard


SOFT_TIME_LIMIT, HARD_TIME_LIMIT = task_time_limits(settings)

celery_app = Celery(
    "workflow_automation",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=TASK_MODULES,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.workflow.*": {"queue": "workflows"},
        "worker.tasks.triggers.*": {"queue": "triggers"},
        "worker.tasks.retry_poller.*": {"queue": "triggers"},
        "worker.tasks.schedule_poller.*": {"queue": "triggers"},
    },
    task_default_queue="workflows",

    # Results are only inspected for "run now" requests
    result_expires=3600,

    # A run killed at the hard limit is left RUNNING
    task_soft_time_limit=SOFT_TIME_LIMIT,
    task_time_limit=HARD_TIME_LIMIT,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    beat_schedule={
        "poll-retries": {
            "task": "worker.tasks.retry_poller.poll_retries",
            "schedule": EVERY_MINUTE,
        },
        "poll-schedules": {
            "task": "worker.tasks.schedule_poller.poll_schedules",
            "schedule": EVERY_MINUTE,
        },
    },
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the application's structlog setup instead of Celery's own."""
    setup_logging()
