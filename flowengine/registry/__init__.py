"""Node handler registry.

Maps node type tags to the callables that implement them. Business handlers
(classification, scraping, notification) are registered by plugins; the
control-flow handlers ship in :mod:`flowengine.registry.builtin`.
"""

from __future__ import annotations

import importlib
import logging
from typing import Dict, List

from ..errors import UnknownNodeTypeError
from .models import Handler, HandlerResult, HandlerReturn

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Lookup table of node handlers keyed by type tag."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Handler] = {}

    def register(self, tag: str, handler: Handler) -> None:
        """Add ``handler`` under ``tag``, replacing any previous registration."""
        if not callable(handler):
            raise TypeError(f"Handler for '{tag}' must be callable")
        if tag in self._handlers:
            logger.debug(f"Replacing handler for node type '{tag}'")
        self._handlers[tag] = handler

    def unregister(self, tag: str) -> None:
        self._handlers.pop(tag, None)

    def resolve(self, tag: str) -> Handler:
        try:
            return self._handlers[tag]
        except KeyError:
            raise UnknownNodeTypeError(tag) from None

    def tags(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, tag: object) -> bool:
        return tag in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def load_plugin(self, module_path: str) -> None:
        """Import ``module_path`` and call its ``register(registry)`` function."""
        module = importlib.import_module(module_path)
        register = getattr(module, "register", None)
        if register is None:
            raise AttributeError(f"Plugin module '{module_path}' has no register() function")
        register(self)
        logger.info(f"Loaded handler plugin {module_path}")

    @classmethod
    def with_builtins(cls) -> "HandlerRegistry":
        """Return a registry pre-populated with the control-flow handlers."""
        from .builtin import register_builtins

        registry = cls()
        register_builtins(registry)
        return registry


__all__ = [
    "Handler",
    "HandlerRegistry",
    "HandlerResult",
    "HandlerReturn",
]
