"""``{{dot.path}}`` placeholder substitution for action configs.

Placeholders are plain dot paths into the execution-context namespace;
nothing is evaluated. A string that is exactly one placeholder yields the
resolved value itself (so ``"{{entity.data.memberIds}}"`` can produce a
list); placeholders embedded in text are rendered as strings.
"""

import json
import re
from datetime import date, datetime
from typing import Any, Mapping

from core.exceptions import TemplateResolutionError
from core.utils import MISSING, resolve_path

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


def _render_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def find_placeholders(value: Any) -> list[str]:
    """All placeholder paths inside ``value`` (recursing into dicts and lists)."""
    found: list[str] = []
    if isinstance(value, str):
        found.extend(match.strip() for match in PLACEHOLDER.findall(value))
    elif isinstance(value, Mapping):
        for item in value.values():
            found.extend(find_placeholders(item))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(find_placeholders(item))
    return found


class TemplateRenderer:
    """Resolves placeholders against one namespace.

    With ``strict`` set, any unresolved placeholder raises
    ``TemplateResolutionError`` after the whole value has been walked, so
    the error lists every bad path at once. Otherwise unresolved
    placeholders are left verbatim.
    """

    def __init__(self, namespace: Mapping[str, Any], strict: bool = True):
        self.namespace = namespace
        self.strict = strict
        self.unresolved: list[str] = []

    def render(self, value: Any) -> Any:
        self.unresolved = []
        rendered = self._walk(value)
        if self.strict and self.unresolved:
            raise TemplateResolutionError(sorted(set(self.unresolved)))
        return rendered

    def _walk(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._render_string(value)
        if isinstance(value, Mapping):
            return {key: self._walk(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._walk(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self._walk(item) for item in value)
        return value

    def _render_string(self, text: str) -> Any:
        whole = PLACEHOLDER.fullmatch(text.strip())
        if whole:
            path = whole.group(1).strip()
            resolved = resolve_path(self.namespace, path)
            if resolved is MISSING:
                self.unresolved.append(path)
                return text
            return resolved

        def substitute(match: "re.Match") -> str:
            path = match.group(1).strip()
            resolved = resolve_path(self.namespace, path)
            if resolved is MISSING:
                self.unresolved.append(path)
                return match.group(0)
            return _render_value(resolved)

        return PLACEHOLDER.sub(substitute, text)


def render_templates(value: Any, namespace: Mapping[str, Any], strict: bool = True) -> Any:
    """Shortcut for ``TemplateRenderer(namespace, strict).render(value)``."""
    return TemplateRenderer(namespace, strict=strict).render(value)


def render_text(value: Any) -> str:
    """Coerce an already-rendered value to display text."""
    return _render_value(value)
