"""
Handler Registry - maps event type tags to the handlers that write them.

Each handler writes one sub-record for an event type. Adding support for
a new event type means registering a handler; the dispatcher itself never
changes.
"""

import importlib
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from ..core.exceptions import ConfigError
from ..core.models import ParsedEvent
from ..core.sink import EventSink


logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """
    Everything a handler receives for one event.

    Attributes:
        envelope_id: Identifier of the stored envelope
        event: The parsed event
        sink: Event sink the envelope lives in
        record: Instance of the handler's schema built from the event
            fields, or None when the handler declares no schema
    """
    envelope_id: int
    event: ParsedEvent
    sink: EventSink
    record: Any = None


@dataclass
class HandlerDefinition:
    """
    Definition of one type handler.

    Attributes:
        event_type: Event type tag the handler applies to (e.g. 'FSDJump')
        name: Name unique among the handlers for the event type
        func: Callable taking a HandlerContext
        schema: Optional dataclass the event fields are decoded into
    """
    event_type: str
    name: str
    func: Callable[[HandlerContext], None]
    schema: Optional[Type] = None


class HandlerRegistry:
    """
    Registry of type handlers.

    Several handlers may be registered for one event type; they run in
    registration order.

    Example:
        >>> registry = HandlerRegistry()
        >>> @registry.handler("FSDJump")
        ... def record_jump(ctx):
        ...     ...
        >>> [d.name for d in registry.get("FSDJump")]
        ['record_jump']
    """

    def __init__(self):
        """Initialize an empty registry."""
        self._handlers: Dict[str, List[HandlerDefinition]] = {}

    def register(self, definition: HandlerDefinition) -> None:
        """
        Register a handler definition.

        A definition with the same event type and name replaces the
        existing one in place.
        """
        handlers = self._handlers.setdefault(definition.event_type, [])
        for i, existing in enumerate(handlers):
            if existing.name == definition.name:
                logger.warning(
                    f"Overwriting existing handler: {definition.event_type}/{definition.name}"
                )
                handlers[i] = definition
                return
        handlers.append(definition)
        logger.debug(f"Registered handler: {definition.event_type}/{definition.name}")

    def handler(
        self,
        event_type: str,
        name: Optional[str] = None,
        schema: Optional[Type] = None,
    ) -> Callable:
        """Decorator form of ``register``; the function name is the default handler name."""
        def decorator(func: Callable[[HandlerContext], None]) -> Callable[[HandlerContext], None]:
            self.register(HandlerDefinition(
                event_type=event_type,
                name=name or func.__name__,
                func=func,
                schema=schema,
            ))
            return func
        return decorator

    def get(self, event_type: str) -> List[HandlerDefinition]:
        """Get the handlers for an event type, in registration order."""
        return list(self._handlers.get(event_type, []))

    def list_types(self) -> List[str]:
        """List event types that have at least one handler."""
        return [t for t, handlers in self._handlers.items() if handlers]

    def unregister(self, event_type: str, name: str) -> bool:
        """
        Remove a handler.

        Returns:
            True if a handler was removed
        """
        handlers = self._handlers.get(event_type, [])
        for i, existing in enumerate(handlers):
            if existing.name == name:
                del handlers[i]
                logger.debug(f"Unregistered handler: {event_type}/{name}")
                return True
        return False


# Global registry instance
_registry: Optional[HandlerRegistry] = None


def get_handler_registry() -> HandlerRegistry:
    """Get the global handler registry."""
    global _registry
    if _registry is None:
        _registry = HandlerRegistry()
    return _registry


def load_handler_modules(
    module_paths: Iterable[str],
    registry: Optional[HandlerRegistry] = None,
) -> List[str]:
    """
    Import the modules that define event handlers.

    A module registers its handlers when imported, usually with the
    ``handler`` decorator of the global registry. If it also defines
    ``register_handlers(registry)``, that is called with ``registry``.

    Args:
        module_paths: Dotted module paths, e.g. "mypackage.handlers.scans"
        registry: Registry passed to ``register_handlers`` (default: global)

    Returns:
        The module paths that were loaded

    Raises:
        ConfigError: If a module cannot be imported
    """
    registry = registry if registry is not None else get_handler_registry()
    loaded = []

    for module_path in module_paths:
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise ConfigError(f"Cannot import handler module {module_path}: {e}") from e
        except Exception as e:
            raise ConfigError(f"Error loading handler module {module_path}: {e}") from e

        register = getattr(module, "register_handlers", None)
        if callable(register):
            register(registry)
        loaded.append(module_path)
        logger.debug(f"Loaded handler module: {module_path}")

    if loaded:
        logger.info(f"Loaded {len(loaded)} handler modules; handled types: {', '.join(registry.list_types())}")
    return loaded
