"""Data types shared by the evaluators, the action executor and the engine.

Definitions arrive as JSON (camelCase keys, as stored in the workflow
row); the ``from_dict`` constructors accept both camelCase and
snake_case spellings so templates and hand-written tests read naturally.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from core.constants import (
    ActionStatus,
    ActionType,
    ExecutionStatus,
    TriggeredBy,
    TriggerType,
)
from core.exceptions import ConfigurationError
from core.utils import ensure_aware, parse_datetime, to_jsonable, utc_now


def _pick(data: Mapping, *keys: str, default: Any = None) -> Any:
    """Return the first present key among ``keys``."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _enum_or_raw(enum_cls, value):
    """Coerce to ``enum_cls`` when possible, keep the raw string otherwise.

    Unknown type tags must survive parsing so the evaluators can fail them
    closed at run time instead of rejecting the whole definition.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


def type_name(value: Union[str, Any]) -> str:
    return value.value if hasattr(value, "value") else str(value)


@contextmanager
def _malformed_definition(workflow_id):
    """Turn parse failures of a stored definition into ConfigurationError."""
    try:
        yield
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Malformed workflow definition {workflow_id}: {e}") from e


# ─── Execution Context ────────────────────────────────────────

@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an event happened."""
    id: str
    email: str = ""
    name: Optional[str] = None
    role: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "name": self.name, "role": self.role}


@dataclass(frozen=True)
class EntityRef:
    """The domain object an event is about, plus the delta for updates."""
    type: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)
    changes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "id": self.id,
            "data": dict(self.data),
            "changes": dict(self.changes),
        }


@dataclass(frozen=True)
class ExecutionContext:
    """Read-only snapshot of the triggering event.

    ``as_namespace()`` is what condition field paths and action templates
    resolve against, e.g. ``entity.data.status`` or ``user.email``.
    """

    triggered_by: Union[TriggeredBy, str] = TriggeredBy.MANUAL
    trigger_source: Optional[str] = None
    entity: Optional[EntityRef] = None
    user: Optional[Actor] = None
    timestamp: datetime = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def as_namespace(self) -> dict[str, Any]:
        return {
            "triggered_by": type_name(self.triggered_by),
            "trigger_source": self.trigger_source,
            "entity": self.entity.to_dict() if self.entity else None,
            "user": self.user.to_dict() if self.user else None,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }

    def to_dict(self) -> dict:
        """JSON-safe form stored on the execution row."""
        return to_jsonable(self.as_namespace())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionContext":
        entity_data = data.get("entity")
        user_data = data.get("user")
        timestamp = parse_datetime(data.get("timestamp")) or utc_now()
        return cls(
            triggered_by=_enum_or_raw(
                TriggeredBy,
                _pick(data, "triggered_by", "triggeredBy", default=TriggeredBy.MANUAL),
            ),
            trigger_source=_pick(data, "trigger_source", "triggerSource"),
            entity=EntityRef(
                type=entity_data.get("type", ""),
                id=str(entity_data.get("id", "")),
                data=dict(entity_data.get("data") or {}),
                changes=dict(entity_data.get("changes") or {}),
            ) if entity_data else None,
            user=Actor(
                id=str(user_data.get("id", "")),
                email=user_data.get("email", ""),
                name=user_data.get("name"),
                role=user_data.get("role"),
            ) if user_data else None,
            timestamp=timestamp,
            metadata=dict(data.get("metadata") or {}),
        )


ContextLike = Union[ExecutionContext, Mapping[str, Any]]


def context_namespace(context: ContextLike) -> Mapping[str, Any]:
    """Evaluators accept either an ExecutionContext or a plain mapping."""
    if isinstance(context, ExecutionContext):
        return context.as_namespace()
    return context if context is not None else {}


# ─── Declarations ─────────────────────────────────────────────

@dataclass(frozen=True)
class TriggerDeclaration:
    """A trigger type tag plus its type-specific filter payload."""
    type: Union[TriggerType, str]
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TriggerDeclaration":
        return cls(
            type=_enum_or_raw(TriggerType, data.get("type", "")),
            config=dict(data.get("config") or {}),
            enabled=data.get("enabled", True) is not False,
        )

    def to_dict(self) -> dict:
        return {"type": type_name(self.type), "config": self.config, "enabled": self.enabled}


@dataclass(frozen=True)
class ActionDeclaration:
    """One side-effecting step of a workflow."""
    type: Union[ActionType, str]
    order: int = 0
    config: dict[str, Any] = field(default_factory=dict)
    timeout_seconds: Optional[float] = None
    continue_on_error: bool = False
    retry_on_error: bool = False
    retry: Optional[dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionDeclaration":
        return cls(
            type=_enum_or_raw(ActionType, data.get("type", "")),
            order=int(data.get("order") or 0),
            config=dict(data.get("config") or {}),
            timeout_seconds=_pick(data, "timeoutSeconds", "timeout_seconds", "timeout"),
            continue_on_error=bool(_pick(data, "continueOnError", "continue_on_error", default=False)),
            retry_on_error=bool(_pick(data, "retryOnError", "retry_on_error", default=False)),
            retry=data.get("retry"),
        )

    def to_dict(self) -> dict:
        data = {
            "type": type_name(self.type),
            "order": self.order,
            "config": self.config,
            "continueOnError": self.continue_on_error,
        }
        if self.timeout_seconds is not None:
            data["timeoutSeconds"] = self.timeout_seconds
        if self.retry_on_error:
            data["retryOnError"] = True
        if self.retry:
            data["retry"] = self.retry
        return data


@dataclass
class WorkflowDefinition:
    """Engine-side view of a stored workflow."""
    id: str
    name: str = ""
    enabled: bool = True
    triggers: list[TriggerDeclaration] = field(default_factory=list)
    conditions: Optional[dict[str, Any]] = None
    actions: list[ActionDeclaration] = field(default_factory=list)
    max_retries: int = 3
    # None: the engine default
    retry_delay_seconds: Optional[int] = None
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowDefinition":
        with _malformed_definition(data.get("id")):
            max_retries = _pick(data, "maxRetries", "max_retries", default=3)
            retry_delay = _pick(data, "retryDelaySeconds", "retry_delay_seconds")
            return cls(
                id=str(data.get("id", "")),
                name=data.get("name", ""),
                enabled=data.get("enabled", True) is not False,
                triggers=[TriggerDeclaration.from_dict(t) for t in data.get("triggers") or []],
                conditions=data.get("conditions"),
                actions=[ActionDeclaration.from_dict(a) for a in data.get("actions") or []],
                max_retries=int(max_retries),
                retry_delay_seconds=int(retry_delay) if retry_delay is not None else None,
                timeout_seconds=_pick(data, "timeoutSeconds", "timeout_seconds"),
            )

    @classmethod
    def from_model(cls, row) -> "WorkflowDefinition":
        """Build from a ``db.models.Workflow`` row.

        Raises:
            ConfigurationError: a stored trigger or action cannot be parsed
        """
        with _malformed_definition(row.id):
            return cls(
                id=row.id,
                name=row.name,
                enabled=bool(row.enabled),
                triggers=[TriggerDeclaration.from_dict(t) for t in row.triggers or []],
                conditions=row.conditions,
                actions=[ActionDeclaration.from_dict(a) for a in row.actions or []],
                max_retries=row.max_retries if row.max_retries is not None else 3,
                retry_delay_seconds=row.retry_delay_seconds,
                timeout_seconds=row.timeout_seconds,
            )


# ─── Results ──────────────────────────────────────────────────

@dataclass
class ActionResult:
    """Outcome of one action."""
    action_type: str
    order: int
    status: ActionStatus
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
    result: Any = None
    error: Optional[dict[str, Any]] = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCESS

    def to_dict(self) -> dict:
        return to_jsonable({
            "actionType": self.action_type,
            "order": self.order,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "result": self.result,
            "error": self.error,
            "attempts": self.attempts,
        })


@dataclass
class ExecutionResult:
    """What the engine returns for one ``execute_workflow`` call."""
    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    actions_executed: int = 0
    actions_success: int = 0
    actions_failed: int = 0
    results: list[ActionResult] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    retry_count: int = 0
    next_retry_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return to_jsonable({
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "actionsExecuted": self.actions_executed,
            "actionsSuccess": self.actions_success,
            "actionsFailed": self.actions_failed,
            "results": [r.to_dict() for r in self.results],
            "errors": self.errors,
            "retryCount": self.retry_count,
            "nextRetryAt": self.next_retry_at,
        })

    @classmethod
    def from_model(cls, row) -> "ExecutionResult":
        """Rebuild a summary from a ``db.models.WorkflowExecution`` row.

        Per-action results are not rehydrated; they stay on the row as JSON.
        """
        return cls(
            execution_id=row.id,
            workflow_id=row.workflow_id,
            status=ExecutionStatus(row.status),
            started_at=ensure_aware(row.started_at) or utc_now(),
            completed_at=ensure_aware(row.completed_at),
            duration_ms=row.duration_ms,
            actions_executed=row.actions_executed or 0,
            actions_success=row.actions_success or 0,
            actions_failed=row.actions_failed or 0,
            errors=[{"message": row.error}] if row.error else [],
            retry_count=row.retry_count or 0,
            next_retry_at=ensure_aware(row.next_retry_at),
        )
