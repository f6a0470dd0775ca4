"""Workflow definition validation.

Checks a definition before it is saved: name, trigger types and schedules,
condition trees, per-action required config and template placeholders.
Every problem is collected; nothing raises.
"""

import re
from typing import Any, Iterable, Mapping, Optional

from croniter import croniter
from pydantic import BaseModel

from actions.registry import BUILTIN_ACTIONS
from core.constants import (
    SCHEDULE_TRIGGER_TYPES,
    UNARY_OPERATORS,
    ActionType,
    ConditionOperator,
    LogicalOperator,
    TriggerType,
)
from core.utils import to_number
from workflow.retry_strategies import RetryStrategy
from workflow.templating import find_placeholders

# Top-level names of the execution-context namespace
CONTEXT_ROOTS = ("entity", "user", "timestamp", "metadata", "triggered_by", "trigger_source")

REQUIRED_ACTION_CONFIG: dict[ActionType, tuple[str, ...]] = {
    handler.action_type: handler.required_config for handler in BUILTIN_ACTIONS
}

# Older keys still accepted in place of the canonical one
ALTERNATE_CONFIG_KEYS = {
    "assigneeId": ("userId",),
    "userId": ("userIds",),
}


class ValidationResult(BaseModel):
    """Outcome of a validation pass."""
    valid: bool = True
    errors: list[str] = []
    warnings: list[str] = []

    @classmethod
    def from_messages(cls, errors: list[str], warnings: Optional[list[str]] = None) -> "ValidationResult":
        return cls(valid=not errors, errors=errors, warnings=warnings or [])


def _present(config: Mapping[str, Any], key: str) -> bool:
    for candidate in (key, *ALTERNATE_CONFIG_KEYS.get(key, ())):
        if config.get(candidate) not in (None, "", []):
            return True
    return False


# ─── Workflow ─────────────────────────────────────────────────

def validate_workflow(workflow: Mapping[str, Any]) -> ValidationResult:
    """Validate a complete definition (camelCase JSON form)."""
    errors: list[str] = []
    warnings: list[str] = []

    name = workflow.get("name")
    if not name or not isinstance(name, str):
        errors.append("Workflow name is required and must be a string")
    elif len(name.strip()) < 3:
        errors.append("Workflow name must be at least 3 characters")
    elif len(name) > 255:
        errors.append("Workflow name must be at most 255 characters")

    if not workflow.get("triggers"):
        errors.append("At least one trigger is required")
    else:
        result = validate_triggers(workflow["triggers"])
        errors.extend(result.errors)
        warnings.extend(result.warnings)

    if workflow.get("conditions"):
        errors.extend(validate_conditions(workflow["conditions"]).errors)

    if not workflow.get("actions"):
        errors.append("At least one action is required")
    else:
        result = validate_actions(workflow["actions"])
        errors.extend(result.errors)
        warnings.extend(result.warnings)

    for key in ("maxRetries", "retryDelaySeconds", "timeoutSeconds"):
        if workflow.get(key) is not None:
            number = to_number(workflow[key])
            if number is None or number < 0:
                errors.append(f"{key} must be a non-negative number")

    return ValidationResult.from_messages(errors, warnings)


# ─── Triggers ─────────────────────────────────────────────────

def validate_triggers(triggers: Any) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(triggers, list):
        return ValidationResult.from_messages(["Triggers must be a list"])
    if not triggers:
        return ValidationResult.from_messages(["At least one trigger is required"])

    for index, trigger in enumerate(triggers, start=1):
        if not isinstance(trigger, Mapping):
            errors.append(f"Trigger {index}: must be an object")
            continue
        raw_type = trigger.get("type")
        if not raw_type:
            errors.append(f"Trigger {index}: type is required")
            continue
        try:
            trigger_type = TriggerType(raw_type)
        except ValueError:
            errors.append(f'Trigger {index}: invalid type "{raw_type}"')
            continue

        if trigger.get("enabled") is False:
            warnings.append(f"Trigger {index}: disabled and will be ignored")

        if trigger_type in SCHEDULE_TRIGGER_TYPES:
            errors.extend(
                f"Trigger {index}: {message}"
                for message in _schedule_errors(trigger_type, trigger.get("config") or {})
            )

    return ValidationResult.from_messages(errors, warnings)


def _schedule_errors(trigger_type: TriggerType, config: Mapping[str, Any]) -> list[str]:
    schedule = config.get("schedule")
    if schedule:
        if not isinstance(schedule, str) or not croniter.is_valid(schedule):
            return [f'invalid cron expression "{schedule}"']
        return []
    if trigger_type == TriggerType.SCHEDULE_CUSTOM:
        return ["a cron schedule is required for custom schedule triggers"]
    if not config.get("time"):
        return ["schedule configuration (cron schedule or time) is required for schedule triggers"]
    if not re.fullmatch(r"([01]?\d|2[0-3]):[0-5]\d", str(config["time"])):
        return [f'invalid time "{config["time"]}", expected HH:MM']
    return []


# ─── Conditions ───────────────────────────────────────────────

def validate_conditions(conditions: Any) -> ValidationResult:
    """Validate a condition tree, reporting every problem found."""
    errors: list[str] = []
    _check_condition_node(conditions, "Conditions", errors)
    return ValidationResult.from_messages(errors)


def _check_condition_node(node: Any, label: str, errors: list[str]) -> None:
    if not isinstance(node, Mapping):
        errors.append(f"{label}: must be an object")
        return

    children = node.get("conditions", node.get("children"))
    if children is not None:
        operator = str(node.get("operator", node.get("logicalOperator", "AND")))
        if operator not in LogicalOperator.__members__:
            errors.append(f"{label}: invalid logical operator \"{operator}\"")
        if not isinstance(children, list):
            errors.append(f"{label}: conditions must be a list")
            return
        if operator == LogicalOperator.NOT.value and len(children) != 1:
            errors.append(f"{label}: NOT group requires exactly one condition, got {len(children)}")
        elif not children:
            errors.append(f"{label}: condition group must have at least one condition")
        for index, child in enumerate(children, start=1):
            _check_condition_node(child, f"{label} > condition {index}", errors)
        return

    if not node.get("field"):
        errors.append(f"{label}: field is required")

    raw_operator = node.get("operator")
    if not raw_operator:
        errors.append(f"{label}: operator is required")
        return
    try:
        operator = ConditionOperator(raw_operator)
    except ValueError:
        errors.append(f'{label}: invalid operator "{raw_operator}"')
        return

    has_value = "value" in node or "compareValue" in node
    value = node["value"] if "value" in node else node.get("compareValue")
    if operator not in UNARY_OPERATORS and not has_value:
        errors.append(f'{label}: value is required for operator "{operator.value}"')
        return

    if operator == ConditionOperator.MATCHES_REGEX:
        try:
            re.compile(str(value))
        except re.error as e:
            errors.append(f'{label}: invalid regular expression "{value}" ({e})')
    elif operator == ConditionOperator.BETWEEN:
        if not isinstance(value, list) or len(value) != 2:
            errors.append(f"{label}: BETWEEN requires a [start, end] pair")
    elif operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(value, list):
            errors.append(f"{label}: {operator.value} requires a list value")


# ─── Actions ──────────────────────────────────────────────────

def validate_actions(actions: Any) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(actions, list):
        return ValidationResult.from_messages(["Actions must be a list"])
    if not actions:
        return ValidationResult.from_messages(["At least one action is required"])

    for index, action in enumerate(actions, start=1):
        if not isinstance(action, Mapping):
            errors.append(f"Action {index}: must be an object")
            continue
        raw_type = action.get("type")
        if not raw_type:
            errors.append(f"Action {index}: type is required")
            continue
        try:
            action_type = ActionType(raw_type)
        except ValueError:
            errors.append(f'Action {index}: invalid type "{raw_type}"')
            continue

        config = action.get("config")
        if not isinstance(config, Mapping):
            errors.append(f"Action {index}: config is required")
            continue

        errors.extend(f"Action {index}: {m}" for m in _action_config_errors(action_type, config))

        timeout = action.get("timeoutSeconds", action.get("timeout_seconds"))
        if timeout is not None and (to_number(timeout) is None or to_number(timeout) <= 0):
            errors.append(f"Action {index}: timeoutSeconds must be a positive number")

        if action.get("retry") is not None:
            try:
                RetryStrategy.from_dict(action["retry"])
            except (AttributeError, TypeError, ValueError) as e:
                errors.append(f"Action {index}: invalid retry policy ({e})")

        unknown = validate_template_variables(config)
        warnings.extend(f"Action {index}: {m}" for m in unknown.errors)

    return ValidationResult.from_messages(errors, warnings)


def _action_config_errors(action_type: ActionType, config: Mapping[str, Any]) -> list[str]:
    if action_type == ActionType.DELAY:
        raw = config.get("seconds", config.get("delay"))
        if raw is None:
            return ["delay duration (seconds) is required"]
        number = to_number(raw)
        if number is None or number < 0:
            return ["delay duration must be a non-negative number"]
        return []
    return [
        f'"{key}" is required'
        for key in REQUIRED_ACTION_CONFIG.get(action_type, ())
        if not _present(config, key)
    ]


# ─── Templates ────────────────────────────────────────────────

def validate_template_variables(
    value: Any,
    available_variables: Optional[Iterable[str]] = None,
) -> ValidationResult:
    """Check every ``{{path}}`` in ``value`` against known variables.

    A placeholder is known when it equals an available variable or lies
    beneath one (``entity.data.name`` under ``entity``). Defaults to the
    execution-context roots.
    """
    available = tuple(available_variables) if available_variables is not None else CONTEXT_ROOTS
    errors = []
    for path in find_placeholders(value):
        if not any(path == known or path.startswith(known + ".") for known in available):
            errors.append(f"Unknown template variable: {{{{{path}}}}}")
    return ValidationResult.from_messages(errors)
