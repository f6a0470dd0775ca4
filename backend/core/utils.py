"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Dot-path resolution over nested mappings
- Lenient date and number coercion used by the evaluators
"""

import math
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class _Missing:
    """Sentinel for a dot-path that does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def to_snake_case(name: str) -> str:
    """Convert ``triggeredBy`` style keys to ``triggered_by``."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def resolve_path(obj: Any, path: str) -> Any:
    """Resolve a dot-path like ``entity.data.status`` against nested data.

    Mappings are indexed by key (falling back to the snake_case spelling
    of a camelCase segment), sequences by integer segment, other objects
    by attribute. Private and dunder attributes are never read. Returns
    ``MISSING`` as soon as a segment cannot be found.
    """
    if not path:
        return MISSING

    current = obj
    for part in path.split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
                continue
            alt = to_snake_case(part)
            if alt in current:
                current = current[alt]
                continue
            return MISSING
        if isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return MISSING
            continue
        if isinstance(current, str) or part.startswith("_"):
            return MISSING
        if hasattr(current, part):
            current = getattr(current, part)
            continue
        alt = to_snake_case(part)
        if hasattr(current, alt):
            current = getattr(current, alt)
            continue
        return MISSING
    return current


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings; anything else gives None.

    Booleans are not numbers here.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse datetimes, dates, ISO-8601 strings and epoch milliseconds.

    Naive values are assumed to be UTC. Unparseable input gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_jsonable(value: Any) -> Any:
    """Recursively convert datetimes and enums so ``value`` fits a JSON column."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
