"""Shared pytest fixtures for the workflow automation engine test suite.

Provides:
- In-memory async SQLite database (no PostgreSQL needed for tests)
- Async session factory for the SQL-backed stores
- In-memory WorkflowStore and recording domain/notification fakes
- A fully wired engine built from those fakes
"""

import os
from types import SimpleNamespace
from typing import Any, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from actions.base_action import ActionDependencies  # noqa: E402
from actions.registry import ActionRegistry  # noqa: E402
from app.config import Settings  # noqa: E402
from core.constants import ExecutionStatus, TriggeredBy  # noqa: E402
from core.exceptions import NotFoundError  # noqa: E402
from core.utils import ensure_aware, utc_now  # noqa: E402
from db.database import create_session_factory, init_db  # noqa: E402
from notifications.channels import DeliveryResult, NotificationChannel  # noqa: E402
from services.domain_service import MutationResult  # noqa: E402
from triggers.events import build_context  # noqa: E402
from workflow.action_executor import ActionExecutor  # noqa: E402
from workflow.engine import WorkflowEngine  # noqa: E402
from workflow.models import type_name  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test; StaticPool shares one connection."""
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class InMemoryWorkflowStore:
    """Dict-backed WorkflowStore.

    ``status_history`` records every status an execution passed through.
    Names in ``failing`` make the matching method raise.
    """

    def __init__(self):
        self.workflows: dict[str, SimpleNamespace] = {}
        self.executions: dict[str, SimpleNamespace] = {}
        self.status_history: dict[str, list[str]] = {}
        self.logs: list[dict[str, Any]] = []
        self.stats: list[dict[str, Any]] = []
        self.failing: set[str] = set()

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    def add_workflow(self, **definition) -> SimpleNamespace:
        row = SimpleNamespace(
            id=definition.pop("id", str(uuid4())),
            name=definition.pop("name", "Test Workflow"),
            enabled=definition.pop("enabled", True),
            triggers=definition.pop("triggers", []),
            conditions=definition.pop("conditions", None),
            actions=definition.pop("actions", []),
            max_retries=definition.pop("max_retries", 3),
            retry_delay_seconds=definition.pop("retry_delay_seconds", 60),
            timeout_seconds=definition.pop("timeout_seconds", None),
            priority=definition.pop("priority", 5),
            **definition,
        )
        self.workflows[row.id] = row
        return row

    async def get_workflow(self, workflow_id: str) -> Optional[SimpleNamespace]:
        self._maybe_fail("get_workflow")
        return self.workflows.get(workflow_id)

    async def create_workflow(self, data: dict[str, Any]) -> SimpleNamespace:
        return self.add_workflow(**data)

    async def update_workflow(self, workflow_id: str, data: dict[str, Any]):
        row = self.workflows.get(workflow_id)
        if row is not None:
            for key, value in data.items():
                setattr(row, key, value)
        return row

    async def delete_workflow(self, workflow_id: str) -> bool:
        return self.workflows.pop(workflow_id, None) is not None

    async def list_workflows(self, enabled=None, category=None, offset=0, limit=50):
        rows = [w for w in self.workflows.values() if enabled is None or w.enabled == enabled]
        return rows[offset:offset + limit]

    async def find_enabled_by_trigger_type(self, trigger_type: str) -> list[SimpleNamespace]:
        name = type_name(trigger_type)
        rows = [
            w for w in self.workflows.values()
            if w.enabled and any(type_name(t.get("type")) == name for t in w.triggers)
        ]
        return sorted(rows, key=lambda w: -w.priority)

    async def create_execution(self, data: dict[str, Any]) -> SimpleNamespace:
        self._maybe_fail("create_execution")
        execution = SimpleNamespace(
            id=str(uuid4()),
            retry_dispatched_at=None,
            next_retry_at=None,
            **{**data, "status": type_name(data["status"])},
        )
        self.executions[execution.id] = execution
        self.status_history[execution.id] = [execution.status]
        return execution

    async def update_execution(self, execution_id: str, data: dict[str, Any]):
        execution = self.executions[execution_id]
        for key, value in data.items():
            setattr(execution, key, type_name(value) if key == "status" else value)
        if "status" in data:
            self.status_history[execution_id].append(execution.status)
        return execution

    async def get_execution(self, execution_id: str):
        return self.executions.get(execution_id)

    async def list_due_retries(self, now, limit: int = 50):
        due = [
            e for e in self.executions.values()
            if e.status == ExecutionStatus.RETRYING.value
            and e.retry_dispatched_at is None
            and e.next_retry_at is not None
            and ensure_aware(e.next_retry_at) <= now
        ]
        return sorted(due, key=lambda e: e.next_retry_at)[:limit]

    async def mark_retry_dispatched(self, execution_id: str, now) -> bool:
        execution = self.executions[execution_id]
        if execution.retry_dispatched_at is not None:
            return False
        execution.retry_dispatched_at = now
        return True

    async def append_log(self, workflow_id, level, message, data=None, execution_id=None, action=None, step=None):
        self._maybe_fail("append_log")
        self.logs.append({
            "workflow_id": workflow_id,
            "execution_id": execution_id,
            "level": type_name(level),
            "message": message,
            "data": data,
            "action": action,
            "step": step,
        })

    async def update_workflow_stats(self, workflow_id, status, duration_ms, completed_at):
        self._maybe_fail("update_workflow_stats")
        self.stats.append({"workflow_id": workflow_id, "status": type_name(status), "duration_ms": duration_ms})

    def messages(self, execution_id: Optional[str] = None) -> list[str]:
        return [
            log["message"] for log in self.logs
            if execution_id is None or log["execution_id"] == execution_id
        ]


class RecordingNotifications:
    """NotificationManager stand-in that records every send."""

    def __init__(self):
        self.sent: list[tuple[NotificationChannel, Any, dict]] = []
        self.failing: dict[NotificationChannel, str] = {}
        self.webhook_status = 200
        self.webhook_response: Any = {"ok": True}

    def fail(self, channel: NotificationChannel, error: str = "provider unavailable") -> None:
        self.failing[channel] = error

    async def send(self, channel: NotificationChannel, target: Any, content: dict) -> DeliveryResult:
        self.sent.append((channel, target, content))
        recipient = target if isinstance(target, str) else ", ".join(target or [])
        if channel in self.failing:
            return DeliveryResult(success=False, channel=channel, recipient=recipient, error=self.failing[channel])
        if channel == NotificationChannel.WEBHOOK:
            return DeliveryResult(
                success=True,
                channel=channel,
                recipient=recipient,
                status_code=self.webhook_status,
                response=self.webhook_response,
            )
        return DeliveryResult(
            success=True,
            channel=channel,
            recipient=recipient,
            provider_message_id=f"msg-{len(self.sent)}",
        )

    def sent_on(self, channel: NotificationChannel) -> list[tuple[Any, dict]]:
        return [(target, content) for ch, target, content in self.sent if ch == channel]


class RecordingDomain:
    """DomainService stand-in. Ids listed in ``missing`` raise NotFoundError."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.missing: set[str] = set()

    def _record(self, name: str, entity_id: str, field: str, value: Any, **kwargs) -> MutationResult:
        if entity_id in self.missing:
            raise NotFoundError(f"Not found: {entity_id}")
        self.calls.append((name, {"entity_id": entity_id, "field": field, "value": value, **kwargs}))
        return MutationResult(entity_id=entity_id, field=field, value=value)

    async def create_task(self, project_id, title, description="", priority="MEDIUM", status="TODO",
                          assignee_id=None, due_date=None, created_by="system"):
        if project_id in self.missing:
            raise NotFoundError(f"Project not found: {project_id}")
        task_id = f"task-{len(self.calls) + 1}"
        self.calls.append(("create_task", {
            "project_id": project_id,
            "title": title,
            "description": description,
            "priority": priority,
            "status": status,
            "assignee_id": assignee_id,
            "due_date": due_date,
            "created_by": created_by,
        }))
        return MutationResult(entity_id=task_id, field="title", value=title)

    async def update_project_status(self, project_id, status):
        return self._record("update_project_status", project_id, "status", status)

    async def update_project_field(self, project_id, field, value):
        return self._record("update_project_field", project_id, field, value)

    async def update_task_status(self, task_id, status):
        return self._record("update_task_status", task_id, "status", status)

    async def update_task_priority(self, task_id, priority):
        return self._record("update_task_priority", task_id, "priority", priority)

    async def assign_task(self, task_id, assignee_id):
        return self._record("assign_task", task_id, "assignee_id", assignee_id)

    async def add_task_comment(self, task_id, content, author_id="system"):
        return self._record("add_task_comment", task_id, "comments", f"comment-{len(self.calls) + 1}",
                            content=content, author_id=author_id)

    async def create_notification(self, user_id, title, message, type="INFO", link=None, data=None):
        notification_id = f"notification-{len(self.calls) + 1}"
        self.calls.append(("create_notification", {
            "user_id": user_id, "title": title, "message": message, "type": type, "link": link,
        }))
        return MutationResult(entity_id=notification_id, field="user_id", value=user_id)

    def called(self, name: str) -> list[dict]:
        return [kwargs for call, kwargs in self.calls if call == name]


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="testing",
        WORKFLOW_MAX_CONCURRENT_EXECUTIONS=10,
        WORKFLOW_DEFAULT_ACTION_TIMEOUT=5.0,
        WORKFLOW_STRICT_TEMPLATES=True,
        WORKFLOW_RETRY_ENABLED=True,
        WORKFLOW_DB_LOGGING_ENABLED=True,
        DISPATCH_QUEUE_SIZE=10,
        DISPATCH_WORKERS=2,
    )


@pytest.fixture
def store() -> InMemoryWorkflowStore:
    return InMemoryWorkflowStore()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def domain() -> RecordingDomain:
    return RecordingDomain()


@pytest.fixture
def registry(domain, notifications, settings) -> ActionRegistry:
    return ActionRegistry(ActionDependencies(domain=domain, notifications=notifications, settings=settings))


@pytest.fixture
def executor(registry, settings) -> ActionExecutor:
    return ActionExecutor(registry, settings=settings)


@pytest.fixture
def engine(store, executor, settings) -> WorkflowEngine:
    return WorkflowEngine(store, executor, settings=settings)


@pytest.fixture
def project_context():
    """Factory for a project-update execution context."""
    def make(**data):
        project = {"id": "proj-1", "name": "Website Redesign", "status": "ACTIVE", "budget": 75000, **data}
        return build_context(
            "project",
            project["id"],
            project,
            user={"id": "user-1", "email": "owner@example.com", "name": "Ada Owner"},
            triggered_by=TriggeredBy.USER_ACTION,
            trigger_source="project-form",
            timestamp=utc_now(),
        )
    return make
