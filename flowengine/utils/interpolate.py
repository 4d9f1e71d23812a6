"""``{{path}}`` template interpolation against an execution context."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_JOIN = re.compile(r"^(.+?)\.join\(([^)]*)\)$")


def resolve_path(expr: str, context: Mapping[str, Any]) -> Any:
    """Resolve a dot path with the ``first``/``last``/``length`` array helpers."""
    expr = expr.strip()
    join = _JOIN.match(expr)
    if join:
        value = resolve_path(join.group(1), context)
        if isinstance(value, (list, tuple)):
            return join.group(2).join(str(v) for v in value)
        return value

    value: Any = context
    for segment in expr.split("."):
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            if segment == "first":
                value = value[0] if value else None
            elif segment == "last":
                value = value[-1] if value else None
            elif segment == "length":
                value = len(value)
            elif segment.lstrip("-").isdigit() and -len(value) <= int(segment) < len(value):
                value = value[int(segment)]
            else:
                return None
        elif isinstance(value, Mapping):
            value = value.get(segment)
        elif isinstance(value, str) and segment == "length":
            value = len(value)
        else:
            return None
    return value


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def interpolate(template: Any, context: Mapping[str, Any]) -> Any:
    """Render ``template`` against ``context``.

    A template made of a single placeholder returns the resolved value with
    its type intact; otherwise placeholders are substituted as text and
    missing values render as an empty string. Non-string templates are
    rendered recursively.
    """
    if isinstance(template, Mapping):
        return {key: interpolate(value, context) for key, value in template.items()}
    if isinstance(template, list):
        return [interpolate(value, context) for value in template]
    if not isinstance(template, str):
        return template

    whole = _PLACEHOLDER.fullmatch(template.strip())
    if whole:
        return resolve_path(whole.group(1), context)
    return _PLACEHOLDER.sub(lambda m: _stringify(resolve_path(m.group(1), context)), template)
