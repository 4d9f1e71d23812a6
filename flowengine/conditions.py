"""Condition evaluation for Condition nodes.

A condition node selects exactly one outgoing edge by label. Two config
shapes are accepted:

Rule list (first matching rule wins, ``default`` otherwise)::

    rules:
      - label: high
        field: analysis.risk_score
        operator: gte
        value: 80
    default: low

Single condition, routed through the ``true`` / ``false`` labels::

    field: feed.items
    operator: not_empty
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Set

from .errors import ConditionUnresolvedError

logger = logging.getLogger(__name__)

TRUE_LABEL = "true"
FALSE_LABEL = "false"


def get_nested_value(data: Any, field_path: str) -> Any:
    """Resolve a dot path such as ``items.0.name``; missing parts yield ``None``."""
    if data is None or not field_path:
        return None

    current = data
    for part in field_path.split("."):
        if current is None:
            return None
        if isinstance(current, (list, tuple)):
            if not part.lstrip("-").isdigit():
                return None
            index = int(part)
            if -len(current) <= index < len(current):
                current = current[index]
            else:
                return None
        elif isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return False


def _compare(op: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def compare(actual: Any, target: Any) -> bool:
        try:
            return op(float(actual), float(target))
        except (TypeError, ValueError):
            return False

    return compare


def _contains(actual: Any, target: Any) -> bool:
    if isinstance(actual, str):
        return str(target).lower() in actual.lower()
    if isinstance(actual, (list, tuple, set)):
        return any(str(item) == str(target) for item in actual)
    if isinstance(actual, Mapping):
        return target in actual
    return False


def _in(actual: Any, target: Any) -> bool:
    if isinstance(target, str):
        target = [part.strip() for part in target.split(",")]
    if not isinstance(target, (list, tuple, set)):
        return False
    return actual in target or str(actual) in {str(t) for t in target}


def _matches(actual: Any, target: Any) -> bool:
    if actual is None or target is None:
        return False
    return re.search(str(target), str(actual)) is not None


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "exists": lambda a, t: a is not None,
    "not_exists": lambda a, t: a is None,
    "is_empty": lambda a, t: _is_empty(a),
    "not_empty": lambda a, t: not _is_empty(a),
    "equals": lambda a, t: str(a) == str(t),
    "not_equals": lambda a, t: str(a) != str(t),
    "eq": lambda a, t: a == t,
    "neq": lambda a, t: a != t,
    "greater_than": _compare(lambda a, t: a > t),
    "less_than": _compare(lambda a, t: a < t),
    "gt": _compare(lambda a, t: a > t),
    "gte": _compare(lambda a, t: a >= t),
    "lt": _compare(lambda a, t: a < t),
    "lte": _compare(lambda a, t: a <= t),
    "contains": _contains,
    "not_contains": lambda a, t: not _contains(a, t),
    "in": _in,
    "not_in": lambda a, t: not _in(a, t),
    "starts_with": lambda a, t: isinstance(a, str) and a.startswith(str(t)),
    "ends_with": lambda a, t: isinstance(a, str) and a.endswith(str(t)),
    "matches": _matches,
}

_CONFIG_ALIASES = {
    "conditionSource": "field",
    "conditionOperator": "operator",
    "conditionValue": "value",
}


def _normalize(condition: Mapping[str, Any]) -> Dict[str, Any]:
    normalized = dict(condition)
    for alias, key in _CONFIG_ALIASES.items():
        if alias in normalized and key not in normalized:
            normalized[key] = normalized.pop(alias)
    return normalized


def evaluate_condition(condition: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    """Evaluate a single ``{field, operator, value}`` condition against ``context``."""
    condition = _normalize(condition)
    field = condition.get("field", "")
    operator = condition.get("operator", "exists")
    target = condition.get("value")

    compare = OPERATORS.get(operator)
    if compare is None:
        raise ConditionUnresolvedError(f"Unknown condition operator '{operator}'")

    actual = get_nested_value(context, field)
    try:
        result = compare(actual, target)
    except Exception as exc:
        logger.warning(f"Condition {field} {operator} {target!r} errored: {exc}")
        return False
    logger.debug(f"Condition {field} {operator} {target!r} -> {result}")
    return bool(result)


def possible_labels(config: Mapping[str, Any]) -> Set[str]:
    """Return every label a condition config can select."""
    rules = config.get("rules")
    if rules is None:
        return {TRUE_LABEL, FALSE_LABEL}
    labels = {str(rule.get("label")) for rule in rules if rule.get("label") is not None}
    default = config.get("default")
    if default is not None:
        labels.add(str(default))
    return labels


def unknown_operators(config: Mapping[str, Any]) -> Set[str]:
    rules = config.get("rules")
    conditions = rules if rules is not None else [config]
    found = set()
    for condition in conditions:
        operator = _normalize(condition).get("operator", "exists")
        if operator not in OPERATORS:
            found.add(str(operator))
    return found


def select_label(config: Mapping[str, Any], context: Mapping[str, Any]) -> str:
    """Pick the outgoing edge label for a condition node.

    Raises:
        ConditionUnresolvedError: If no rule matches and no default is configured.
    """
    rules = config.get("rules")
    if rules is None:
        return TRUE_LABEL if evaluate_condition(config, context) else FALSE_LABEL

    for rule in rules:
        if evaluate_condition(rule, context):
            label = rule.get("label")
            if label is None:
                raise ConditionUnresolvedError("Matching condition rule has no label")
            return str(label)

    default: Optional[Any] = config.get("default")
    if default is None:
        raise ConditionUnresolvedError("No condition rule matched and no default label is set")
    return str(default)
