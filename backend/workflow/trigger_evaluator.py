"""Trigger Evaluator: re-validates type-specific trigger filters.

The dispatcher has already selected workflows by trigger *type*; this
stage checks each declaration's filter payload against the event (allowed
statuses, budget thresholds, deadline windows, ...). Every enabled
declaration must match. Schedule, manual and webhook triggers always
match here because the upstream dispatch decision already happened.
"""

import math
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional

import structlog

from core.constants import EntityType, TriggerType
from core.utils import parse_datetime, to_number, utc_now
from workflow.models import ContextLike, TriggerDeclaration, context_namespace, type_name

logger = structlog.get_logger(__name__)

SECONDS_PER_DAY = 86400

TERMINAL_TASK_STATUSES = frozenset({"COMPLETED", "DONE", "CANCELLED"})

Matcher = Callable[[Mapping[str, Any], Mapping[str, Any], datetime], bool]


def _entity_is(entity: Mapping[str, Any], *types: EntityType) -> bool:
    return bool(entity) and entity.get("type") in {t.value for t in types}


def _data(entity: Mapping[str, Any]) -> Mapping[str, Any]:
    return (entity or {}).get("data") or {}


def _in_allow_list(allowed: Optional[Iterable], value: Any) -> bool:
    """An empty or missing allow-list accepts everything."""
    if not allowed:
        return True
    return value in allowed


def _days_between(later: datetime, earlier: datetime) -> int:
    """Whole days from ``earlier`` to ``later``, rounded up."""
    return math.ceil((later - earlier).total_seconds() / SECONDS_PER_DAY)


# ─── Project ──────────────────────────────────────────────────

def _project_created(config, entity, now) -> bool:
    return _entity_is(entity, EntityType.PROJECT)


def _project_status_changed(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.PROJECT):
        return False
    return _in_allow_list(config.get("status"), _data(entity).get("status"))


def _project_milestone_reached(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.PROJECT):
        return False
    data = _data(entity)
    if config.get("milestoneId"):
        return data.get("milestoneId") == config["milestoneId"]
    return bool(data.get("milestoneReached"))


def _budget_threshold(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.PROJECT):
        return False
    threshold = to_number(config.get("budgetThreshold", config.get("threshold")))
    if not threshold:
        return True
    data = _data(entity)
    used = to_number(data.get("budgetUsed"))
    total = to_number(data.get("budgetTotal", data.get("budget")))
    if not used or not total:
        return False
    return (used / total) * 100 >= threshold


def _project_deadline_approaching(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.PROJECT):
        return False
    window = to_number(config.get("deadlineDays"))
    if not window:
        return True
    deadline = parse_datetime(_data(entity).get("deadline"))
    if deadline is None:
        return False
    return _days_between(deadline, now) <= window


# ─── Task ─────────────────────────────────────────────────────

def _task_created(config, entity, now) -> bool:
    return _entity_is(entity, EntityType.TASK)


def _task_assigned(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.TASK):
        return False
    assignee = _data(entity).get("assigneeId")
    if config.get("assigneeId"):
        return assignee == config["assigneeId"]
    return bool(assignee)


def _task_completed(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.TASK):
        return False
    data = _data(entity)
    return data.get("status") == "COMPLETED" or data.get("completed") is True


def _task_overdue(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.TASK):
        return False
    data = _data(entity)
    due = parse_datetime(data.get("dueDate"))
    if due is None:
        return False
    return due < now and data.get("status") not in TERMINAL_TASK_STATUSES


def _task_priority_changed(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.TASK):
        return False
    return _in_allow_list(config.get("priority"), _data(entity).get("priority"))


def _task_status_changed(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.TASK):
        return False
    return _in_allow_list(config.get("status"), _data(entity).get("status"))


# ─── Financial ────────────────────────────────────────────────

def _invoice_created(config, entity, now) -> bool:
    return _entity_is(entity, EntityType.INVOICE)


def _invoice_sent(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.INVOICE):
        return False
    data = _data(entity)
    return data.get("status") == "SENT" or bool(data.get("sentAt"))


def _invoice_paid(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.INVOICE):
        return False
    data = _data(entity)
    return data.get("status") == "PAID" or bool(data.get("paidAt"))


def _invoice_overdue(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.INVOICE):
        return False
    data = _data(entity)
    due = parse_datetime(data.get("dueDate"))
    if due is None:
        return False
    days_overdue = _days_between(now, due)
    minimum = to_number(config.get("overdueDays"))
    if minimum:
        return days_overdue >= minimum
    return days_overdue > 0 and data.get("status") != "PAID"


def _payment_received(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.INVOICE):
        return False
    data = _data(entity)
    threshold = to_number(config.get("amountThreshold"))
    if threshold:
        amount = to_number(data.get("amount"))
        return amount is not None and amount >= threshold
    return bool(data.get("paidAt"))


def _budget_alert(config, entity, now) -> bool:
    if _entity_is(entity, EntityType.INVOICE):
        return True
    return _budget_threshold(config, entity, now)


# ─── Client / Team ────────────────────────────────────────────

def _client_created(config, entity, now) -> bool:
    return _entity_is(entity, EntityType.CLIENT)


def _client_updated(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.CLIENT):
        return False
    fields = config.get("fields")
    if not fields:
        return True
    changes = entity.get("changes") or {}
    return any(name in changes for name in fields)


def _team_member_changed(config, entity, now) -> bool:
    if not _entity_is(entity, EntityType.USER, EntityType.PROJECT):
        return False
    project_id = config.get("projectId")
    if not project_id:
        return True
    data = _data(entity)
    return project_id in (data.get("projectId"), entity.get("id"))


def _always(config, entity, now) -> bool:
    return True


MATCHERS: dict[TriggerType, Matcher] = {
    TriggerType.PROJECT_CREATED: _project_created,
    TriggerType.PROJECT_STATUS_CHANGED: _project_status_changed,
    TriggerType.PROJECT_MILESTONE_REACHED: _project_milestone_reached,
    TriggerType.PROJECT_BUDGET_THRESHOLD: _budget_threshold,
    TriggerType.PROJECT_DEADLINE_APPROACHING: _project_deadline_approaching,
    TriggerType.TASK_CREATED: _task_created,
    TriggerType.TASK_ASSIGNED: _task_assigned,
    TriggerType.TASK_COMPLETED: _task_completed,
    TriggerType.TASK_OVERDUE: _task_overdue,
    TriggerType.TASK_PRIORITY_CHANGED: _task_priority_changed,
    TriggerType.TASK_STATUS_CHANGED: _task_status_changed,
    TriggerType.INVOICE_CREATED: _invoice_created,
    TriggerType.INVOICE_SENT: _invoice_sent,
    TriggerType.INVOICE_PAID: _invoice_paid,
    TriggerType.INVOICE_OVERDUE: _invoice_overdue,
    TriggerType.PAYMENT_RECEIVED: _payment_received,
    TriggerType.BUDGET_ALERT: _budget_alert,
    TriggerType.CLIENT_CREATED: _client_created,
    TriggerType.CLIENT_UPDATED: _client_updated,
    TriggerType.TEAM_MEMBER_ADDED: _team_member_changed,
    TriggerType.TEAM_MEMBER_REMOVED: _team_member_changed,
    # Scheduling / dispatch already happened upstream
    TriggerType.SCHEDULE_DAILY: _always,
    TriggerType.SCHEDULE_WEEKLY: _always,
    TriggerType.SCHEDULE_MONTHLY: _always,
    TriggerType.SCHEDULE_CUSTOM: _always,
    TriggerType.SPECIFIC_DATE: _always,
    TriggerType.RELATIVE_DATE: _always,
    TriggerType.WEBHOOK: _always,
    TriggerType.MANUAL: _always,
}


class TriggerEvaluator:
    """Checks trigger declarations against an execution context.

    Args:
        clock: returns "now" for deadline and overdue checks; injectable
            so tests can pin time.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._matchers = dict(MATCHERS)
        missing = set(TriggerType) - set(self._matchers)
        if missing:
            raise RuntimeError(f"No trigger matcher registered for: {sorted(m.value for m in missing)}")

    def evaluate(self, triggers: Iterable[Any], context: ContextLike) -> bool:
        """True when every enabled declaration matches. No triggers → True."""
        namespace = context_namespace(context)
        now = self._clock()
        for raw in triggers or ():
            trigger = raw if isinstance(raw, TriggerDeclaration) else TriggerDeclaration.from_dict(raw)
            if not trigger.enabled:
                continue
            if not self.matches(trigger, namespace, now):
                return False
        return True

    def matches(
        self,
        trigger: TriggerDeclaration,
        namespace: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> bool:
        matcher = self._matchers.get(trigger.type) if isinstance(trigger.type, TriggerType) else None
        if matcher is None:
            logger.warning("trigger.unknown_type", trigger_type=type_name(trigger.type))
            return False
        entity = namespace.get("entity") or {}
        return matcher(trigger.config or {}, entity, now or self._clock())
