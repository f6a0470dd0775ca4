"""Engine wiring for Celery tasks.

Each task invocation runs in its own event loop, so it gets its own
database engine, store, workflow engine and dispatcher, all torn down
when the task's coroutine finishes.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from app.config import Settings, get_settings
from db.database import worker_session_factory
from notifications.manager import create_notification_manager
from services.domain_service import SqlDomainService
from services.workflow_service import SqlWorkflowStore, WorkflowStore
from triggers.dispatcher import TriggerDispatcher
from workflow.engine import WorkflowEngine, create_workflow_engine


@dataclass
class WorkerRuntime:
    store: WorkflowStore
    engine: WorkflowEngine
    dispatcher: TriggerDispatcher


@asynccontextmanager
async def worker_runtime(settings: Optional[Settings] = None):
    """Yield a ``WorkerRuntime`` bound to a fresh database engine."""
    settings = settings or get_settings()
    async with worker_session_factory(settings) as session_factory:
        store = SqlWorkflowStore(session_factory)
        engine = create_workflow_engine(
            store,
            SqlDomainService(session_factory),
            create_notification_manager(settings),
            settings=settings,
        )
        try:
            yield WorkerRuntime(store=store, engine=engine, dispatcher=TriggerDispatcher(engine, store, settings=settings))
        finally:
            await engine.shutdown()


def run_in_new_loop(coro: Awaitable[Any]) -> Any:
    """Run ``coro`` to completion on a private event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
