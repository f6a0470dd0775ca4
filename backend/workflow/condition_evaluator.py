"""Condition Evaluator: boolean guard expressions over an execution context.

A condition tree is either a leaf ``Condition(field, operator, value)`` or
a ``ConditionGroup(operator, conditions)`` combining children with
AND / OR / NOT. Trees are parsed from the JSON stored on a workflow:

    {"operator": "AND", "conditions": [
        {"field": "entity.data.budget", "operator": "GREATER_THAN", "value": 50000},
        {"operator": "NOT", "conditions": [
            {"field": "entity.data.status", "operator": "IN", "value": ["CANCELLED"]}
        ]}
    ]}

Malformed trees (NOT with more or fewer than one child, unknown operators,
leaves without a field) raise ``ConfigurationError`` while parsing. Data
problems never raise: a missing path, a non-numeric operand or an
unparseable date simply make the leaf evaluate to False.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Mapping, Optional, Union

import structlog

from core.constants import UNARY_OPERATORS, ConditionOperator, LogicalOperator
from core.exceptions import ConfigurationError
from core.utils import MISSING, parse_datetime, resolve_path, to_number
from workflow.models import ContextLike, context_namespace

logger = structlog.get_logger(__name__)


# ─── Condition Tree ───────────────────────────────────────────

@dataclass(frozen=True)
class Condition:
    """Leaf: compare the value at ``field`` (a dot path) with ``value``."""
    field: str
    operator: ConditionOperator
    value: Any = None

    def __post_init__(self):
        if not isinstance(self.field, str) or not self.field:
            raise ConfigurationError("Condition field must be a non-empty dot path")
        if not isinstance(self.operator, ConditionOperator):
            raise ConfigurationError(f"Unknown condition operator: {self.operator}")


@dataclass(frozen=True)
class ConditionGroup:
    """Inner node combining child trees with a logical operator."""
    operator: LogicalOperator
    conditions: tuple

    def __post_init__(self):
        if not isinstance(self.operator, LogicalOperator):
            raise ConfigurationError(f"Unknown logical operator: {self.operator}")
        if self.operator == LogicalOperator.NOT and len(self.conditions) != 1:
            raise ConfigurationError(
                f"NOT group requires exactly one condition, got {len(self.conditions)}"
            )


ConditionTree = Union[Condition, ConditionGroup]


def parse_condition_tree(data: Any) -> Optional[ConditionTree]:
    """Build a typed tree from its JSON form.

    Group nodes carry ``conditions`` (or ``children``) and an ``operator``
    (or ``logicalOperator``); leaves carry ``field``, ``operator`` and
    ``value`` (or ``compareValue``). ``None`` means "always pass".
    """
    if data is None:
        return None
    if isinstance(data, (Condition, ConditionGroup)):
        return data
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Condition node must be an object, got {type(data).__name__}"
        )

    children = data.get("conditions", data.get("children"))
    if children is not None:
        if not isinstance(children, (list, tuple)):
            raise ConfigurationError("Condition group children must be a list")
        raw_operator = data.get("operator", data.get("logicalOperator", LogicalOperator.AND))
        try:
            operator = LogicalOperator(raw_operator)
        except ValueError:
            raise ConfigurationError(f"Unknown logical operator: {raw_operator}")
        return ConditionGroup(
            operator=operator,
            conditions=tuple(parse_condition_tree(child) for child in children),
        )

    raw_operator = data.get("operator")
    try:
        operator = ConditionOperator(raw_operator)
    except ValueError:
        raise ConfigurationError(f"Unknown condition operator: {raw_operator}")
    value = data["value"] if "value" in data else data.get("compareValue")
    return Condition(field=data.get("field"), operator=operator, value=value)


# ─── Comparison helpers ───────────────────────────────────────

def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion ("1" != 1, True != 1)."""
    if left is MISSING or right is MISSING:
        return False
    if _kind(left) != _kind(right):
        return False
    return left == right


@lru_cache(maxsize=256)
def _compile(pattern: str) -> "re.Pattern":
    return re.compile(pattern)


def _numeric(operation: Callable[[float, float], bool]):
    def compare(actual: Any, expected: Any) -> bool:
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        return operation(left, right)
    return compare


def _textual(operation: Callable[[str, str], bool]):
    def compare(actual: Any, expected: Any) -> bool:
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        return operation(actual.casefold(), expected.casefold())
    return compare


def _temporal(operation: Callable[[Any, Any], bool]):
    def compare(actual: Any, expected: Any) -> bool:
        left, right = parse_datetime(actual), parse_datetime(expected)
        if left is None or right is None:
            return False
        return operation(left, right)
    return compare


def _between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    value = parse_datetime(actual)
    start, end = parse_datetime(expected[0]), parse_datetime(expected[1])
    if value is None or start is None or end is None:
        return False
    return start <= value <= end


def _matches_regex(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    try:
        pattern = _compile(expected)
    except re.error as e:
        logger.warning(
            "condition.configuration_error",
            reason="invalid_regex",
            pattern=expected,
            error=str(e),
        )
        return False
    return pattern.search(actual) is not None


def _in(actual: Any, expected: Any) -> bool:
    if actual is MISSING or not isinstance(expected, (list, tuple)):
        return False
    return any(strict_equals(actual, item) for item in expected)


def _not_in(actual: Any, expected: Any) -> bool:
    if actual is MISSING or not isinstance(expected, (list, tuple)):
        return False
    return not any(strict_equals(actual, item) for item in expected)


def _not_equals(actual: Any, expected: Any) -> bool:
    if actual is MISSING:
        return False
    return not strict_equals(actual, expected)


# ─── Evaluator ────────────────────────────────────────────────

class ConditionEvaluator:
    """Evaluates condition trees. Stateless and safe to share."""

    def __init__(self):
        self._operators: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
            ConditionOperator.EQUALS: strict_equals,
            ConditionOperator.NOT_EQUALS: _not_equals,
            ConditionOperator.GREATER_THAN: _numeric(lambda a, b: a > b),
            ConditionOperator.LESS_THAN: _numeric(lambda a, b: a < b),
            ConditionOperator.GREATER_OR_EQUAL: _numeric(lambda a, b: a >= b),
            ConditionOperator.LESS_OR_EQUAL: _numeric(lambda a, b: a <= b),
            ConditionOperator.CONTAINS: _textual(lambda a, b: b in a),
            ConditionOperator.NOT_CONTAINS: _textual(lambda a, b: b not in a),
            ConditionOperator.STARTS_WITH: _textual(lambda a, b: a.startswith(b)),
            ConditionOperator.ENDS_WITH: _textual(lambda a, b: a.endswith(b)),
            ConditionOperator.MATCHES_REGEX: _matches_regex,
            ConditionOperator.IN: _in,
            ConditionOperator.NOT_IN: _not_in,
            ConditionOperator.IS_TRUE: lambda a, _: a is True,
            ConditionOperator.IS_FALSE: lambda a, _: a is False,
            ConditionOperator.IS_NULL: lambda a, _: a is None or a is MISSING,
            ConditionOperator.IS_NOT_NULL: lambda a, _: a is not None and a is not MISSING,
            ConditionOperator.BEFORE: _temporal(lambda a, b: a < b),
            ConditionOperator.AFTER: _temporal(lambda a, b: a > b),
            ConditionOperator.BETWEEN: _between,
        }
        missing = set(ConditionOperator) - set(self._operators)
        if missing:
            raise RuntimeError(f"No comparison registered for: {sorted(m.value for m in missing)}")

    def evaluate(self, tree: Any, context: ContextLike) -> bool:
        """Evaluate ``tree`` (typed or JSON) against ``context``.

        Raises:
            ConfigurationError: if a JSON tree is malformed.
        """
        if tree is None:
            return True
        node = parse_condition_tree(tree)
        return self._evaluate_node(node, context_namespace(context))

    def evaluate_condition(self, condition: Condition, namespace: Mapping[str, Any]) -> bool:
        actual = resolve_path(namespace, condition.field)
        if actual is MISSING and condition.operator not in UNARY_OPERATORS:
            return False
        return self._operators[condition.operator](actual, condition.value)

    def _evaluate_node(self, node: ConditionTree, namespace: Mapping[str, Any]) -> bool:
        if isinstance(node, Condition):
            return self.evaluate_condition(node, namespace)

        if node.operator == LogicalOperator.NOT:
            return not self._evaluate_node(node.conditions[0], namespace)
        if node.operator == LogicalOperator.AND:
            for child in node.conditions:
                if not self._evaluate_node(child, namespace):
                    return False
            return True
        for child in node.conditions:
            if self._evaluate_node(child, namespace):
                return True
        return False


_default_evaluator = ConditionEvaluator()


def evaluate_conditions(tree: Any, context: ContextLike) -> bool:
    """Module-level shortcut using a shared evaluator."""
    return _default_evaluator.evaluate(tree, context)
