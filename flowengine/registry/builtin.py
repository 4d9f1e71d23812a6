"""Built-in control-flow handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

from ..conditions import get_nested_value, select_label
from ..constants import ALIAS_KEY, BRANCH_KEY, DEFAULT_LOOP_ALIAS, ITEMS_KEY
from ..utils.interpolate import interpolate

if TYPE_CHECKING:
    from . import HandlerRegistry


def trigger_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def condition_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    return {BRANCH_KEY: select_label(config, context)}


def parallel_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def loop_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve the list a Loop node iterates over.

    ``items`` is a literal list (or a ``{{path}}`` template); ``items_path``
    is a dot path into the context. A scalar becomes a one-item list and a
    missing value an empty one. ``once`` keeps only the first item.
    """
    if "items_path" in config:
        items = get_nested_value(context, config["items_path"])
    else:
        items = interpolate(config.get("items", []), context)

    if items is None:
        items = []
    elif isinstance(items, tuple):
        items = list(items)
    elif not isinstance(items, list):
        items = [items]

    if config.get("once"):
        items = items[:1]

    return {
        ITEMS_KEY: items,
        ALIAS_KEY: config.get("alias") or DEFAULT_LOOP_ALIAS,
    }


def terminal_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    return {}


def set_handler(context: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Write the configured ``fields`` into the context, rendering templates."""
    fields = config.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValueError("set node 'fields' must be a mapping")
    return interpolate(fields, context)


def noop_handler(context: Dict[str, Any], config: Dict[str, Any]) -> None:
    return None


BUILTIN_HANDLERS = {
    "trigger": trigger_handler,
    "condition": condition_handler,
    "parallel": parallel_handler,
    "loop": loop_handler,
    "terminal": terminal_handler,
    "set": set_handler,
    "noop": noop_handler,
}


def register_builtins(registry: "HandlerRegistry") -> None:
    for tag, handler in BUILTIN_HANDLERS.items():
        registry.register(tag, handler)
