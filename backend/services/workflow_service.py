"""Workflow persistence: definitions, executions, audit logs, statistics.

``WorkflowStore`` is the contract the engine and dispatcher depend on;
``SqlWorkflowStore`` implements it on SQLAlchemy. Each call opens its own
session so concurrent executions never share one.
"""

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from core.constants import ExecutionStatus, LogLevel
from core.utils import ensure_aware, to_jsonable, utc_now
from db.models.execution import WorkflowExecution
from db.models.workflow import Workflow
from db.models.workflow_log import WorkflowLog
from services.base import BaseService
from workflow.models import type_name

# camelCase definition keys accepted on create/update -> model columns
_DEFINITION_FIELDS = {
    "name": "name",
    "description": "description",
    "enabled": "enabled",
    "triggers": "triggers",
    "conditions": "conditions",
    "actions": "actions",
    "priority": "priority",
    "category": "category",
    "tags": "tags",
    "maxRetries": "max_retries",
    "max_retries": "max_retries",
    "retryDelaySeconds": "retry_delay_seconds",
    "retry_delay_seconds": "retry_delay_seconds",
    "timeoutSeconds": "timeout_seconds",
    "timeout_seconds": "timeout_seconds",
    "createdById": "created_by_id",
    "created_by_id": "created_by_id",
}

_VERSIONED_FIELDS = ("triggers", "conditions", "actions")


def trigger_types_column(triggers: Sequence[Any]) -> str:
    """Encode declared trigger types as ``,TYPE_A,TYPE_B,`` for LIKE lookups."""
    types = []
    for trigger in triggers or ():
        raw = trigger.get("type") if isinstance(trigger, dict) else getattr(trigger, "type", None)
        if raw:
            types.append(type_name(raw))
    return "," + ",".join(dict.fromkeys(types)) + ","


def _columns_from_definition(data: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in data.items():
        column = _DEFINITION_FIELDS.get(key)
        if column is None:
            continue
        columns[column] = to_jsonable(value) if column in _VERSIONED_FIELDS else value
    if "triggers" in columns:
        columns["trigger_types"] = trigger_types_column(columns["triggers"])
    return columns


class WorkflowStore(Protocol):
    """Persistence collaborator used by the engine and dispatcher."""

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]: ...

    async def create_workflow(self, data: dict[str, Any]) -> Workflow: ...

    async def update_workflow(self, workflow_id: str, data: dict[str, Any]) -> Optional[Workflow]: ...

    async def delete_workflow(self, workflow_id: str) -> bool: ...

    async def list_workflows(
        self,
        enabled: Optional[bool] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[Workflow]: ...

    async def find_enabled_by_trigger_type(self, trigger_type: str) -> Sequence[Workflow]: ...

    async def create_execution(self, data: dict[str, Any]) -> WorkflowExecution: ...

    async def update_execution(self, execution_id: str, data: dict[str, Any]) -> Optional[WorkflowExecution]: ...

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]: ...

    async def list_due_retries(self, now: datetime, limit: int = 50) -> Sequence[WorkflowExecution]: ...

    async def mark_retry_dispatched(self, execution_id: str, now: datetime) -> bool: ...

    async def append_log(
        self,
        workflow_id: str,
        level: LogLevel,
        message: str,
        data: Optional[dict[str, Any]] = None,
        execution_id: Optional[str] = None,
        action: Optional[str] = None,
        step: Optional[int] = None,
    ) -> None: ...

    async def update_workflow_stats(
        self,
        workflow_id: str,
        status: ExecutionStatus,
        duration_ms: int,
        completed_at: datetime,
    ) -> None: ...


class SqlWorkflowStore:
    """SQLAlchemy implementation of ``WorkflowStore``.

    Args:
        session_factory: async session factory from ``db.database.create_session_factory``
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ─── Workflows ─────────────────────────────────────────

    async def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        async with self._session_factory() as session:
            return await BaseService(Workflow, session).get_by_id(workflow_id)

    async def create_workflow(self, data: dict[str, Any]) -> Workflow:
        """Create a workflow from a (camelCase or snake_case) definition dict."""
        columns = _columns_from_definition(data)
        columns.setdefault("triggers", [])
        columns.setdefault("actions", [])
        columns.setdefault("trigger_types", trigger_types_column(columns["triggers"]))
        async with self._session_factory() as session:
            workflow = await BaseService(Workflow, session).create(columns)
            await session.commit()
            return workflow

    async def update_workflow(self, workflow_id: str, data: dict[str, Any]) -> Optional[Workflow]:
        """Apply a partial update; definition changes bump ``version``."""
        columns = _columns_from_definition(data)
        async with self._session_factory() as session:
            service = BaseService(Workflow, session)
            current = await service.get_by_id(workflow_id)
            if current is None:
                return None
            if any(field in columns for field in _VERSIONED_FIELDS):
                columns["version"] = (current.version or 1) + 1
            workflow = await service.update(workflow_id, columns)
            await session.commit()
            return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        async with self._session_factory() as session:
            deleted = await BaseService(Workflow, session).soft_delete(workflow_id)
            await session.commit()
            return deleted

    async def list_workflows(
        self,
        enabled: Optional[bool] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[Workflow]:
        async with self._session_factory() as session:
            items, _ = await BaseService(Workflow, session).list(
                offset=offset,
                limit=limit,
                filters={"enabled": enabled, "category": category},
            )
            return items

    async def find_enabled_by_trigger_type(self, trigger_type: str) -> Sequence[Workflow]:
        """Enabled, non-deleted workflows declaring ``trigger_type``, highest priority first."""
        needle = f"%,{type_name(trigger_type)},%"
        async with self._session_factory() as session:
            return await BaseService(Workflow, session).query(
                Workflow.enabled == True,  # noqa: E712
                Workflow.trigger_types.like(needle),
                order_by=[Workflow.priority.desc(), Workflow.created_at.asc()],
            )

    # ─── Executions ────────────────────────────────────────

    async def create_execution(self, data: dict[str, Any]) -> WorkflowExecution:
        async with self._session_factory() as session:
            execution = await BaseService(WorkflowExecution, session).create(to_jsonable_fields(data))
            await session.commit()
            return execution

    async def update_execution(self, execution_id: str, data: dict[str, Any]) -> Optional[WorkflowExecution]:
        async with self._session_factory() as session:
            execution = await BaseService(WorkflowExecution, session).update(
                execution_id, to_jsonable_fields(data)
            )
            await session.commit()
            return execution

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        async with self._session_factory() as session:
            return await BaseService(WorkflowExecution, session).get_by_id(execution_id)

    async def list_due_retries(self, now: datetime, limit: int = 50) -> Sequence[WorkflowExecution]:
        """RETRYING executions whose retry time has come and that no poller took yet."""
        async with self._session_factory() as session:
            return await BaseService(WorkflowExecution, session).query(
                WorkflowExecution.status == ExecutionStatus.RETRYING.value,
                WorkflowExecution.retry_dispatched_at.is_(None),
                WorkflowExecution.next_retry_at <= now,
                order_by=[WorkflowExecution.next_retry_at.asc()],
                limit=limit,
            )

    async def mark_retry_dispatched(self, execution_id: str, now: datetime) -> bool:
        """Claim a due retry. False when another poller claimed it first."""
        async with self._session_factory() as session:
            claimed = await BaseService(WorkflowExecution, session).claim(
                execution_id, {"retry_dispatched_at": now}, retry_dispatched_at=None
            )
            await session.commit()
            return claimed

    # ─── Audit log & statistics ────────────────────────────

    async def append_log(
        self,
        workflow_id: str,
        level: LogLevel,
        message: str,
        data: Optional[dict[str, Any]] = None,
        execution_id: Optional[str] = None,
        action: Optional[str] = None,
        step: Optional[int] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(WorkflowLog(
                workflow_id=workflow_id,
                execution_id=execution_id,
                level=type_name(level),
                message=message,
                data=to_jsonable(data) if data is not None else None,
                action=action,
                step=step,
                timestamp=utc_now(),
            ))
            await session.commit()

    async def update_workflow_stats(
        self,
        workflow_id: str,
        status: ExecutionStatus,
        duration_ms: int,
        completed_at: datetime,
    ) -> None:
        """Fold one finished execution into the workflow's running statistics.

        The average is a plain running mean over every counted execution.
        """
        async with self._session_factory() as session:
            workflow = await BaseService(Workflow, session).get_by_id(workflow_id, include_deleted=True)
            if workflow is None:
                return
            count = workflow.execution_count or 0
            new_count = count + 1
            workflow.avg_execution_ms = round(
                ((workflow.avg_execution_ms or 0) * count + duration_ms) / new_count
            )
            workflow.execution_count = new_count
            if status == ExecutionStatus.SUCCESS:
                workflow.success_count = (workflow.success_count or 0) + 1
            elif status == ExecutionStatus.FAILED:
                workflow.failure_count = (workflow.failure_count or 0) + 1
            previous = ensure_aware(workflow.last_execution_at)
            if previous is None or completed_at >= previous:
                workflow.last_execution_at = completed_at
            await session.commit()


def to_jsonable_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Make JSON columns of an execution payload serialisable; keep datetimes native."""
    converted = dict(data)
    for key in ("context", "results"):
        if key in converted and converted[key] is not None:
            converted[key] = to_jsonable(converted[key])
    for key in ("status", "triggered_by"):
        if key in converted and converted[key] is not None:
            converted[key] = type_name(converted[key])
    return converted
