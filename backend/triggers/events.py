"""Domain-event context builders.

Each helper turns a domain change into a ``DomainEvent``: the trigger type
to dispatch plus the ``ExecutionContext`` the matching workflows run
against. Entities are plain dicts (camelCase keys) carrying an ``id``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from core.constants import EntityType, TriggeredBy, TriggerType
from core.utils import utc_now
from workflow.models import Actor, EntityRef, ExecutionContext

UserLike = Union[Actor, Mapping[str, Any], None]


@dataclass(frozen=True)
class DomainEvent:
    trigger_type: TriggerType
    context: ExecutionContext


def as_actor(user: UserLike) -> Optional[Actor]:
    if user is None or isinstance(user, Actor):
        return user
    return Actor(
        id=str(user.get("id", "")),
        email=user.get("email", ""),
        name=user.get("name"),
        role=user.get("role"),
    )


def build_context(
    entity_type: Union[EntityType, str],
    entity_id: str,
    data: Optional[Mapping[str, Any]] = None,
    *,
    changes: Optional[Mapping[str, Any]] = None,
    user: UserLike = None,
    triggered_by: Union[TriggeredBy, str] = TriggeredBy.EVENT,
    trigger_source: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> ExecutionContext:
    """Build the execution context for an event about one entity."""
    entity_type = entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)
    return ExecutionContext(
        triggered_by=triggered_by,
        trigger_source=trigger_source,
        entity=EntityRef(
            type=entity_type,
            id=str(entity_id),
            data=dict(data or {}),
            changes=dict(changes or {}),
        ),
        user=as_actor(user),
        timestamp=timestamp or utc_now(),
        metadata=dict(metadata or {}),
    )


def _event(
    trigger_type: TriggerType,
    entity_type: EntityType,
    entity: Mapping[str, Any],
    user: UserLike = None,
    changes: Optional[Mapping[str, Any]] = None,
    source: Optional[str] = None,
) -> DomainEvent:
    return DomainEvent(
        trigger_type=trigger_type,
        context=build_context(
            entity_type,
            entity.get("id", ""),
            entity,
            changes=changes,
            user=user,
            trigger_source=source or trigger_type.value,
        ),
    )


def _change(old: Any, new: Any) -> dict[str, Any]:
    return {"from": old, "to": new}


# ─── Projects ─────────────────────────────────────────────────

def project_created(project: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    return _event(TriggerType.PROJECT_CREATED, EntityType.PROJECT, project, user)


def project_status_changed(
    project: Mapping[str, Any],
    old_status: Optional[str],
    user: UserLike = None,
) -> DomainEvent:
    """``project`` carries the new status."""
    return _event(
        TriggerType.PROJECT_STATUS_CHANGED,
        EntityType.PROJECT,
        {**project, "previousStatus": old_status},
        user,
        changes={"status": _change(old_status, project.get("status"))},
    )


def project_budget_updated(
    project: Mapping[str, Any],
    old_budget_used: Optional[float] = None,
    user: UserLike = None,
) -> DomainEvent:
    """Dispatched as PROJECT_BUDGET_THRESHOLD; the trigger filter decides."""
    return _event(
        TriggerType.PROJECT_BUDGET_THRESHOLD,
        EntityType.PROJECT,
        project,
        user,
        changes={"budgetUsed": _change(old_budget_used, project.get("budgetUsed"))},
    )


# ─── Tasks ────────────────────────────────────────────────────

def task_created(task: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    return _event(TriggerType.TASK_CREATED, EntityType.TASK, task, user)


def task_assigned(
    task: Mapping[str, Any],
    previous_assignee_id: Optional[str] = None,
    user: UserLike = None,
) -> DomainEvent:
    return _event(
        TriggerType.TASK_ASSIGNED,
        EntityType.TASK,
        task,
        user,
        changes={"assigneeId": _change(previous_assignee_id, task.get("assigneeId"))},
    )


def task_completed(task: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    data = {**task, "status": task.get("status") or "COMPLETED"}
    return _event(TriggerType.TASK_COMPLETED, EntityType.TASK, data, user)


def task_overdue(task: Mapping[str, Any]) -> DomainEvent:
    return _event(TriggerType.TASK_OVERDUE, EntityType.TASK, task)


# ─── Invoices ─────────────────────────────────────────────────

def invoice_created(invoice: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    return _event(TriggerType.INVOICE_CREATED, EntityType.INVOICE, invoice, user)


def invoice_paid(invoice: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    data = {**invoice, "status": "PAID", "paidAt": invoice.get("paidAt") or utc_now().isoformat()}
    return _event(TriggerType.INVOICE_PAID, EntityType.INVOICE, data, user)


def invoice_overdue(invoice: Mapping[str, Any]) -> DomainEvent:
    return _event(TriggerType.INVOICE_OVERDUE, EntityType.INVOICE, invoice)


# ─── Clients ──────────────────────────────────────────────────

def client_created(client: Mapping[str, Any], user: UserLike = None) -> DomainEvent:
    return _event(TriggerType.CLIENT_CREATED, EntityType.CLIENT, client, user)


# ─── Schedules ────────────────────────────────────────────────

def scheduled_tick(
    trigger_type: Union[TriggerType, str],
    at: Optional[datetime] = None,
    schedule: Optional[str] = None,
) -> DomainEvent:
    """A schedule firing. There is no entity; ``metadata`` carries the tick."""
    trigger_type = TriggerType(trigger_type)
    at = at or utc_now()
    return DomainEvent(
        trigger_type=trigger_type,
        context=ExecutionContext(
            triggered_by=TriggeredBy.SCHEDULE,
            trigger_source=schedule or trigger_type.value,
            timestamp=at,
            metadata={"scheduledAt": at.isoformat(), "schedule": schedule},
        ),
    )
