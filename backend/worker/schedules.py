"""Cron derivation for schedule triggers.

A schedule trigger's config carries either a ``schedule`` cron string or
a ``time`` (HH:MM) plus ``dayOfWeek`` (0-6, Sunday first) for weekly and
``dayOfMonth`` (1-31) for monthly triggers. ``timezone`` overrides the
poller's default zone.
"""

import logging
import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from core.constants import TriggerType
from workflow.models import TriggerDeclaration, WorkflowDefinition, type_name

logger = logging.getLogger(__name__)

POLLED_SCHEDULE_TYPES = frozenset({
    TriggerType.SCHEDULE_DAILY,
    TriggerType.SCHEDULE_WEEKLY,
    TriggerType.SCHEDULE_MONTHLY,
    TriggerType.SCHEDULE_CUSTOM,
})

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _cron_list(values: Any, default: str) -> str:
    if values is None or values == []:
        return default
    if not isinstance(values, (list, tuple)):
        values = [values]
    return ",".join(str(int(v)) for v in values)


def cron_for_trigger(trigger_type: TriggerType, config: Mapping[str, Any]) -> Optional[str]:
    """Cron expression for one schedule trigger, or None when it has none."""
    schedule = config.get("schedule")
    if schedule:
        return str(schedule) if croniter.is_valid(str(schedule)) else None
    if trigger_type == TriggerType.SCHEDULE_CUSTOM:
        return None

    match = _TIME_RE.match(str(config.get("time") or ""))
    if not match:
        return None
    minute, hour = int(match.group(2)), int(match.group(1))

    try:
        if trigger_type == TriggerType.SCHEDULE_WEEKLY:
            return f"{minute} {hour} * * {_cron_list(config.get('dayOfWeek'), '1')}"
        if trigger_type == TriggerType.SCHEDULE_MONTHLY:
            return f"{minute} {hour} {_cron_list(config.get('dayOfMonth'), '1')} * *"
    except (TypeError, ValueError):
        return None
    return f"{minute} {hour} * * *"


def zone(name: Optional[str], default: str = "UTC") -> ZoneInfo:
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using %s", name, default)
        return ZoneInfo(default)


def trigger_is_due(trigger: TriggerDeclaration, now: datetime, default_timezone: str = "UTC") -> bool:
    """True when ``trigger`` fires in the minute containing ``now``."""
    try:
        trigger_type = TriggerType(type_name(trigger.type))
    except ValueError:
        return False
    if not trigger.enabled or trigger_type not in POLLED_SCHEDULE_TYPES:
        return False

    cron = cron_for_trigger(trigger_type, trigger.config)
    if cron is None:
        logger.warning("Schedule trigger %s has no usable schedule: %s", trigger_type.value, trigger.config)
        return False
    local_now = now.astimezone(zone(trigger.config.get("timezone"), default_timezone))
    return croniter.match(cron, local_now.replace(second=0, microsecond=0))


def due_triggers(
    workflow: WorkflowDefinition,
    now: datetime,
    default_timezone: str = "UTC",
) -> list[TriggerDeclaration]:
    return [t for t in workflow.triggers if trigger_is_due(t, now, default_timezone)]


def polled_trigger_types() -> Iterable[str]:
    return sorted(t.value for t in POLLED_SCHEDULE_TYPES)
